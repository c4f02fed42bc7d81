# src/hl7_fhir_bridge/transform/v2_to_fhir/encounter.py
"""
PV1 (+ PV2, EVN) -> Encounter.

Notes
-----
- Class comes from PV1-2; without it the v3 NullFlavor ``UNK`` is used.
- Status: ``finished`` when PV1-45 (discharge) is set, ``in-progress`` when
  PV1-44 (admit) is set, ``unknown`` otherwise.
- The period start falls back to EVN-2 when PV1-44 is empty.
- Participants and the location point at the Practitioner and Location
  records of the same message when those exist, and keep their display
  text either way.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from ... import codes
from ...context import ConversionContext
from ...datetime_utils import hl7_to_fhir_datetime
from ...message_tree import Locator, Segment
from ...paths import Location, field_repetitions, first_segment
from ..base import (
    FieldRule,
    InboundConverter,
    codeable_concept,
    concept,
    display_reference,
    put,
    reference,
)
from ..registry import register_inbound
from ._datatypes import practitioner

# PV1 field -> v3 ParticipationType code
_PARTICIPANTS = ((7, "ATND", "attender"), (8, "REF", "referrer"), (9, "CON", "consultant"))


def _location_display(pv1: Segment) -> Optional[str]:
    """PL: point of care^room^bed^facility, joined with spaces."""
    parts = [pv1.get(Locator(3, 0, c)) for c in (1, 2, 3, 4)]
    text = " ".join(p for p in parts if p)
    return text or None


@register_inbound("Encounter", order=20)
class EncounterConverter(InboundConverter):
    segment = "PV1"
    rules = (
        FieldRule("19", "identifier.0.value"),
        FieldRule("44", "period.start", hl7_to_fhir_datetime),
        FieldRule("45", "period.end", hl7_to_fhir_datetime),
    )

    def build(
        self, loc: Location, data: Dict[str, Any], context: ConversionContext
    ) -> Optional[Dict[str, Any]]:
        pv1 = loc.segment
        root = loc.root

        code = codes.lookup(codes.ENCOUNTER_CLASS, pv1.get(Locator(2)))
        if code:
            act, display = code
            data["class"] = {"system": codes.SYSTEM_V3_ACT_CODE, "code": act, "display": display}
        else:
            data["class"] = {
                "system": codes.SYSTEM_V3_NULL_FLAVOR,
                "code": "UNK",
                "display": "unknown",
            }

        if pv1.get(Locator(45)):
            data["status"] = "finished"
        elif pv1.get(Locator(44)):
            data["status"] = "in-progress"
        else:
            data["status"] = "unknown"

        if "period" not in data:
            evn = next(root.segments("EVN"), None)
            if evn is not None:
                put(data, "period.start", hl7_to_fhir_datetime(evn.get(Locator(2))))

        put(data, "subject", self.subject(context))

        admission = concept(codes.SYSTEM_V2_0007, pv1.get(Locator(4)))
        if admission:
            data["type"] = [admission]
        put(data, "serviceType", concept(codes.SYSTEM_V2_0069, pv1.get(Locator(10))))

        where = _location_display(pv1)
        primary = context.lookup("Location", "PRIMARY")
        location = reference("Location", primary, where) or display_reference(where)
        if location:
            data["location"] = [{"location": location}]

        participants = []
        for field, role, role_display in _PARTICIPANTS:
            for rep in field_repetitions(pv1, field, None):
                individual = practitioner(pv1, field, rep, context)
                if individual:
                    participants.append(
                        {
                            "type": [
                                concept(codes.SYSTEM_V3_PARTICIPATION_TYPE, role, role_display)
                            ],
                            "individual": individual,
                        }
                    )
        put(data, "participant", participants)

        put(
            data,
            "hospitalization.dischargeDisposition",
            concept(codes.SYSTEM_V2_0112, pv1.get(Locator(36))),
        )
        if "identifier" in data:
            data["identifier"][0]["type"] = concept(codes.SYSTEM_V2_0203, "VN", "Visit number")

        pv2 = first_segment(root, "PV2", self.caps)
        if pv2 is not None:
            reason = codeable_concept(pv2.segment, 3)
            if reason:
                data["reasonCode"] = [reason]
        return data

    def registered(
        self,
        record_id: str,
        loc: Location,
        data: Dict[str, Any],
        context: ConversionContext,
    ) -> None:
        if context.encounter_id is None:
            context.bind_encounter(record_id)
