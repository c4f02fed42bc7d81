# src/hl7_fhir_bridge/transform/fhir_to_v2/specimen.py
"""
Specimen -> SPM.

A Specimen whose ``request`` was written to an order group goes into that
group's SPECIMEN repetition; any other Specimen is a root-level SPM.
"""

from __future__ import annotations

from typing import Any, Dict

from ...context import ConversionContext
from ...message_tree import MessageTree
from ..base import OutboundConverter, as_list, attr, reference_id
from ..registry import register_outbound
from ._datatypes import loc, text, write_concept
from ._orders import group_of, group_path

# Specimen.status -> SPM-20 availability
_AVAILABILITY_OUT = {"available": "Y", "unavailable": "N", "unsatisfactory": "N"}


@register_outbound("specimen-spm", order=125)
class SpecimenWriter(OutboundConverter):
    handles = ("Specimen",)

    def __init__(self) -> None:
        super().__init__()
        self._per_group: Dict[int, int] = {}

    def reset(self) -> None:
        super().reset()
        self._per_group.clear()

    def _target(self, record: Any, context: ConversionContext):
        for ref in as_list(attr(record, "request")):
            group = group_of(context, reference_id(ref))
            if group is not None:
                n = self._per_group.get(group, 0)
                self._per_group[group] = n + 1
                return group_path(context, group, f"SPECIMEN({n})/SPM"), n
        n = self.next_index()
        return f"SPM({n})", n

    def convert(self, record: Any, tree: MessageTree, context: ConversionContext) -> None:
        spm, n = self._target(record, context)
        values: Dict[str, Any] = {"1": str(n + 1)}
        for ident in as_list(attr(record, "identifier")):
            code = attr(ident, "type", "coding", 0, "code")
            comp = 2 if code == "FILL" else 1
            values.setdefault(loc(2, 0, comp, 1), text(attr(ident, "value")))

        collection = attr(record, "collection")
        quantity = attr(collection, "quantity")
        values.update(
            {
                "12-1": text(attr(quantity, "value")),
                "12-2-1": text(attr(quantity, "code")) or text(attr(quantity, "unit")),
                "17-1": text(attr(collection, "collectedDateTime")),
                "18": text(attr(record, "receivedTime")),
                "20": _AVAILABILITY_OUT.get(attr(record, "status") or ""),
            }
        )
        self.write(tree, spm, values)

        write_concept(tree, spm, 4, 0, attr(record, "type"))
        write_concept(tree, spm, 7, 0, attr(collection, "method"))
        write_concept(tree, spm, 8, 0, attr(collection, "bodySite"))
        for rep, condition in enumerate(as_list(attr(record, "condition"))):
            write_concept(tree, spm, 24, rep, condition)
        if attr(record, "status") == "unsatisfactory":
            self.write(tree, spm, {"21-2": text(attr(record, "note", 0, "text"))})
