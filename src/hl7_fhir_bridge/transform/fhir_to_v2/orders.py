# src/hl7_fhir_bridge/transform/fhir_to_v2/orders.py
"""ServiceRequest -> ORC + OBR, one order group per request."""

from __future__ import annotations

from typing import Any

from ... import codes
from ...context import ConversionContext
from ...message_tree import MessageTree
from ..base import OutboundConverter, as_list, attr
from ..registry import register_outbound
from ._datatypes import text, write_concept, write_person
from ._orders import allocate_group, group_path, order_numbers

_CONTROL_OUT = {"revoked": "CA", "on-hold": "HD", "completed": "SC", "entered-in-error": "CA"}


@register_outbound("service-request-orc-obr", order=30)
class ServiceRequestWriter(OutboundConverter):
    handles = ("ServiceRequest",)

    def convert(self, record: Any, tree: MessageTree, context: ConversionContext) -> None:
        index = allocate_group(context, attr(record, "id"))
        orc = group_path(context, index, "ORC")
        obr = group_path(context, index, "OBR")
        placer, filler = order_numbers(record)
        status = attr(record, "status")
        authored = text(attr(record, "authoredOn"))

        self.write(
            tree,
            orc,
            {
                "1": _CONTROL_OUT.get(status or "", "NW"),
                "2": placer,
                "3": filler,
                "5": codes.lookup(codes.ORDER_STATUS_OUT, status),
                "9": authored,
            },
        )
        self.write(
            tree,
            obr,
            {
                "1": str(index + 1),
                "2": placer,
                "3": filler,
                "7": text(attr(record, "occurrenceDateTime")),
                "25": codes.lookup(codes.REQUEST_STATUS_OUT, status),
                "27-6": codes.lookup(codes.PRIORITY_OUT, attr(record, "priority")),
            },
        )
        write_concept(tree, obr, 4, 0, attr(record, "code"))
        write_concept(tree, obr, 31, 0, attr(record, "reasonCode", 0))

        requester = attr(record, "requester")
        if requester is not None:
            write_person(tree, orc, 12, 0, requester)
            write_person(tree, obr, 16, 0, requester)

        for i, note in enumerate(as_list(attr(record, "note"))):
            nte = group_path(context, index, f"NTE({i})")
            self.write(tree, nte, {"1": str(i + 1), "3": text(attr(note, "text"))})
