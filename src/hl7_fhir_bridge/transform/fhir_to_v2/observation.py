# src/hl7_fhir_bridge/transform/fhir_to_v2/observation.py
"""
Results.

- Observation -> OBX. An Observation whose ``basedOn`` request (or whose
  report) was written to an order group goes into that group; any other
  Observation is a root-level OBX.
- DiagnosticReport -> OBR status and result fields, in the group of its
  request when that was written, otherwise in a new order group.
"""

from __future__ import annotations

from typing import Any, Dict

from ... import codes
from ...context import ConversionContext
from ...message_tree import MessageTree
from ..base import OutboundConverter, as_list, attr, first_coding, reference_id
from ..registry import register_outbound
from ._datatypes import (
    loc,
    split_display,
    text,
    write_concept,
    write_person,
    write_quantity,
)
from ._orders import allocate_group, based_on_group, group_of, group_path, order_numbers

REPORT_GROUP = "REPORT_GROUP"


def _range_text(record: Any) -> str:
    rr = attr(record, "referenceRange", 0)
    if rr is None:
        return ""
    if attr(rr, "text"):
        return str(attr(rr, "text"))
    low, high = text(attr(rr, "low", "value")), text(attr(rr, "high", "value"))
    if low and high:
        return f"{low}-{high}"
    if high:
        return f"<{high}"
    if low:
        return f">{low}"
    return ""


@register_outbound("observation-obx", order=50)
class ObservationWriter(OutboundConverter):
    handles = ("Observation",)

    def __init__(self) -> None:
        super().__init__()
        self._per_group: Dict[int, int] = {}

    def reset(self) -> None:
        super().reset()
        self._per_group.clear()

    def _target(self, record: Any, context: ConversionContext):
        group = based_on_group(context, record)
        if group is None:
            found = context.lookup(REPORT_GROUP, attr(record, "id") or "")
            group = int(found) if found is not None else None
        if group is None:
            n = self.next_index()
            return f"OBX({n})", n
        n = self._per_group.get(group, 0)
        self._per_group[group] = n + 1
        return group_path(context, group, f"OBSERVATION({n})/OBX"), n

    def convert(self, record: Any, tree: MessageTree, context: ConversionContext) -> None:
        obx, n = self._target(record, context)
        values: Dict[str, Any] = {
            "1": str(n + 1),
            "11": codes.lookup(codes.OBSERVATION_STATUS_OUT, attr(record, "status")),
            "14": text(attr(record, "effectiveDateTime")),
            "7": _range_text(record) or None,
        }

        quantity = attr(record, "valueQuantity")
        concept_value = attr(record, "valueCodeableConcept")
        if quantity is not None:
            values["2"] = "NM"
            write_quantity(tree, obx, 5, 6, quantity)
        elif concept_value is not None:
            values["2"] = "CWE"
            write_concept(tree, obx, 5, 0, concept_value)
        elif attr(record, "valueDateTime") is not None:
            values["2"] = "DTM"
            values["5"] = text(attr(record, "valueDateTime"))
        elif attr(record, "valueBoolean") is not None:
            values["2"] = "ST"
            values["5"] = text(attr(record, "valueBoolean"))
        elif attr(record, "valueInteger") is not None:
            values["2"] = "NM"
            values["5"] = text(attr(record, "valueInteger"))
        elif attr(record, "valueString") is not None:
            values["2"] = "ST"
            values["5"] = text(attr(record, "valueString"))
        self.write(tree, obx, values)

        write_concept(tree, obx, 3, 0, attr(record, "code"))
        for rep, interpretation in enumerate(as_list(attr(record, "interpretation"))):
            self.write(
                tree, obx, {loc(8, rep): text(attr(first_coding(interpretation), "code"))}
            )
        performer = attr(record, "performer", 0)
        if performer is not None:
            write_person(tree, obx, 16, 0, performer)
        write_concept(tree, obx, 17, 0, attr(record, "method"))


@register_outbound("diagnostic-report-obr", order=40)
class DiagnosticReportWriter(OutboundConverter):
    handles = ("DiagnosticReport",)

    def convert(self, record: Any, tree: MessageTree, context: ConversionContext) -> None:
        record_id = attr(record, "id")
        index = based_on_group(context, record)
        if index is None:
            index = group_of(context, record_id)
        if index is None:
            index = allocate_group(context, record_id)
        for ref in as_list(attr(record, "result")):
            rid = reference_id(ref, "Observation")
            if rid:
                context.register(REPORT_GROUP, rid, str(index))

        obr = group_path(context, index, "OBR")
        placer, filler = order_numbers(record)
        self.write(
            tree,
            obr,
            {
                "1": str(index + 1),
                "2": placer,
                "3": filler,
                "7": text(attr(record, "effectiveDateTime")),
                "22": text(attr(record, "issued")),
                "24": text(attr(first_coding(attr(record, "category", 0)), "code")),
                "25": codes.lookup(codes.REPORT_STATUS_OUT, attr(record, "status")),
            },
        )
        write_concept(tree, obr, 4, 0, attr(record, "code"))

        interpreter = attr(record, "resultsInterpreter", 0)
        if interpreter is not None:
            family, given = split_display(attr(interpreter, "display"))
            self.write(tree, obr, {"32-1-2": family, "32-1-3": given})
