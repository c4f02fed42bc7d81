# src/hl7_fhir_bridge/transform/fhir_to_v2/encounter.py
"""Encounter -> PV1 (+ PV2 admit reason)."""

from __future__ import annotations

import logging
from typing import Any

from ... import codes
from ...context import ConversionContext
from ...message_tree import MessageTree
from ..base import OutboundConverter, as_list, attr, first_coding
from ..registry import register_outbound
from ._datatypes import text, write_concept, write_person

LOG = logging.getLogger(__name__)

# v3 ParticipationType -> PV1 field
_PARTICIPANT_FIELDS = {"ATND": 7, "REF": 8, "CON": 9}


def _class_code(record: Any) -> Any:
    return attr(record, "class_fhir", "code") or attr(record, "class", "code")


@register_outbound("encounter-pv1", order=20)
class EncounterWriter(OutboundConverter):
    handles = ("Encounter",)

    def convert(self, record: Any, tree: MessageTree, context: ConversionContext) -> None:
        if self.next_index() > 0:
            LOG.warning("Only the first Encounter is written to PV1; %s ignored", attr(record, "id"))
            return

        location = attr(record, "location", 0, "location", "display")
        parts = str(location).split() if location else []
        self.write(
            tree,
            "PV1",
            {
                "1": "1",
                "2": codes.lookup(codes.ENCOUNTER_CLASS_OUT, _class_code(record), "U"),
                "3-1": parts[0] if parts else None,
                "3-2": parts[1] if len(parts) > 1 else None,
                "3-3": parts[2] if len(parts) > 2 else None,
                "3-4": " ".join(parts[3:]) or None,
                "4": text(attr(first_coding(attr(record, "type", 0)), "code")),
                "10": text(attr(first_coding(attr(record, "serviceType")), "code")),
                "19": text(attr(record, "identifier", 0, "value")),
                "36": text(
                    attr(
                        first_coding(attr(record, "hospitalization", "dischargeDisposition")),
                        "code",
                    )
                ),
                "44": text(attr(record, "period", "start")),
                "45": text(attr(record, "period", "end")),
            },
        )

        reps = {}
        for participant in as_list(attr(record, "participant")):
            role = attr(first_coding(attr(participant, "type", 0)), "code") or "ATND"
            field = _PARTICIPANT_FIELDS.get(role)
            individual = attr(participant, "individual")
            if field is None or individual is None:
                continue
            rep = reps.get(field, 0)
            reps[field] = rep + 1
            write_person(tree, "PV1", field, rep, individual)

        reason = attr(record, "reasonCode", 0)
        if reason is not None:
            write_concept(tree, "PV2", 3, 0, reason)
