# src/hl7_fhir_bridge/transform/fhir_to_v2/scheduling.py
"""
Administrative records:

- Coverage -> IN1
- Appointment -> SCH
"""

from __future__ import annotations

from typing import Any

from ... import codes
from ...context import ConversionContext
from ...message_tree import MessageTree
from ..base import OutboundConverter, as_list, attr, first_coding
from ..registry import register_outbound
from ._datatypes import text, write_concept

_RELATIONSHIP_OUT = {"self": "SEL", "spouse": "SPO", "child": "CHD", "parent": "PAR", "common": "DOM"}


def _coverage_class(record: Any, code: str) -> Any:
    classes = as_list(attr(record, "class_fhir")) or as_list(attr(record, "class"))
    for entry in classes:
        if attr(first_coding(attr(entry, "type")), "code") == code:
            return entry
    return None


@register_outbound("coverage-in1", order=120)
class CoverageWriter(OutboundConverter):
    handles = ("Coverage",)

    def convert(self, record: Any, tree: MessageTree, context: ConversionContext) -> None:
        n = self.next_index()
        plan = _coverage_class(record, "plan")
        group = _coverage_class(record, "group")
        payor = attr(record, "payor", 0)
        relationship = attr(first_coding(attr(record, "relationship")), "code")
        self.write(
            tree,
            f"IN1({n})",
            {
                "1": str(n + 1),
                "2-1": text(attr(plan, "value")),
                "2-2": text(attr(plan, "name")),
                "3": text(attr(payor, "identifier", "value")) or text(attr(payor, "display")),
                "4": text(attr(payor, "display")),
                "8": text(attr(group, "value")),
                "9": text(attr(group, "name")),
                "12": text(attr(record, "period", "start")),
                "13": text(attr(record, "period", "end")),
                "17": _RELATIONSHIP_OUT.get(relationship or "", "OTH" if relationship else None),
                "22": text(attr(record, "order")),
                "36": text(attr(record, "subscriberId"))
                or text(attr(record, "identifier", 0, "value")),
            },
        )


@register_outbound("appointment-sch", order=130)
class AppointmentWriter(OutboundConverter):
    handles = ("Appointment",)

    def convert(self, record: Any, tree: MessageTree, context: ConversionContext) -> None:
        n = self.next_index()
        sch = f"SCH({n})"
        identifiers = as_list(attr(record, "identifier"))
        self.write(
            tree,
            sch,
            {
                "1": text(attr(identifiers[0] if identifiers else None, "value")),
                "2": text(attr(identifiers[1] if len(identifiers) > 1 else None, "value")),
                "7": text(attr(record, "priority")),
                "9": text(attr(record, "minutesDuration")),
                "10": "MIN" if attr(record, "minutesDuration") else None,
                "11-4": text(attr(record, "start")),
                "11-5": text(attr(record, "end")),
                "25": codes.lookup(codes.APPOINTMENT_STATUS_OUT, attr(record, "status")),
            },
        )
        write_concept(tree, sch, 6, 0, attr(record, "reasonCode", 0))
        write_concept(tree, sch, 8, 0, attr(record, "appointmentType"))
