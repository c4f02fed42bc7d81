# src/hl7_fhir_bridge/transform/fhir_to_v2/clinical.py
"""
History records:

- Condition -> DG1
- AllergyIntolerance -> AL1
- Procedure -> PR1
"""

from __future__ import annotations

from typing import Any

from ... import codes
from ...context import ConversionContext
from ...message_tree import MessageTree
from ..base import OutboundConverter, as_list, attr, first_coding
from ..registry import register_outbound
from ._datatypes import loc, text, write_concept, write_person

# condition-ver-status -> DG1-6 diagnosis type
_DIAGNOSIS_TYPE_OUT = {"confirmed": "F", "provisional": "W", "differential": "W"}


@register_outbound("condition-dg1", order=60)
class ConditionWriter(OutboundConverter):
    handles = ("Condition",)

    def convert(self, record: Any, tree: MessageTree, context: ConversionContext) -> None:
        n = self.next_index()
        dg1 = f"DG1({n})"
        coding = first_coding(attr(record, "code"))
        self.write(
            tree,
            dg1,
            {
                "1": str(n + 1),
                "2": codes.hl7_system(attr(coding, "system")),
                "5": text(attr(record, "onsetDateTime")),
                "6": _DIAGNOSIS_TYPE_OUT.get(
                    attr(first_coding(attr(record, "verificationStatus")), "code") or ""
                ),
                "19": text(attr(record, "recordedDate")),
            },
        )
        write_concept(tree, dg1, 3, 0, attr(record, "code"))
        asserter = attr(record, "asserter")
        if asserter is not None:
            write_person(tree, dg1, 16, 0, asserter)


@register_outbound("allergy-al1", order=70)
class AllergyIntoleranceWriter(OutboundConverter):
    handles = ("AllergyIntolerance",)

    def convert(self, record: Any, tree: MessageTree, context: ConversionContext) -> None:
        n = self.next_index()
        al1 = f"AL1({n})"
        self.write(
            tree,
            al1,
            {
                "1": str(n + 1),
                "2": codes.lookup(codes.ALLERGY_CATEGORY_OUT, attr(record, "category", 0)),
                "4": codes.lookup(codes.ALLERGY_CRITICALITY_OUT, attr(record, "criticality")),
                "6": text(attr(record, "onsetDateTime")),
            },
        )
        write_concept(tree, al1, 3, 0, attr(record, "code"))
        manifestations = as_list(attr(record, "reaction", 0, "manifestation"))
        for rep, manifestation in enumerate(manifestations):
            label = attr(manifestation, "text") or attr(first_coding(manifestation), "display")
            self.write(tree, al1, {loc(5, rep): text(label)})


@register_outbound("procedure-pr1", order=80)
class ProcedureWriter(OutboundConverter):
    handles = ("Procedure",)

    def convert(self, record: Any, tree: MessageTree, context: ConversionContext) -> None:
        n = self.next_index()
        pr1 = f"PR1({n})"
        performed = attr(record, "performedDateTime") or attr(record, "performedPeriod", "start")
        self.write(tree, pr1, {"1": str(n + 1), "5": text(performed)})
        write_concept(tree, pr1, 3, 0, attr(record, "code"))
        actor = attr(record, "performer", 0, "actor")
        if actor is not None:
            write_person(tree, pr1, 12, 0, actor)
