# src/hl7_fhir_bridge/transform/fhir_to_v2/communication.py
"""Communication -> root-level NTE."""

from __future__ import annotations

from typing import Any

from ... import codes
from ...context import ConversionContext
from ...message_tree import MessageTree
from ..base import OutboundConverter, as_list, attr, first_coding
from ..registry import register_outbound
from ._datatypes import loc, text, write_concept, write_person


@register_outbound("communication-nte", order=170)
class CommunicationWriter(OutboundConverter):
    handles = ("Communication",)

    def convert(self, record: Any, tree: MessageTree, context: ConversionContext) -> None:
        self.next_index()
        n = len(tree.children_named("NTE"))
        nte = f"NTE({n})"

        source = None
        comment_type = None
        for category in as_list(attr(record, "category")):
            found = first_coding(category, codes.SYSTEM_V2_0105)
            if attr(found, "system") == codes.SYSTEM_V2_0105:
                source = source or attr(found, "code")
            elif comment_type is None:
                comment_type = category

        lines = [
            line
            for p in as_list(attr(record, "payload"))
            for line in str(attr(p, "contentString") or "").splitlines()
            if line
        ]
        values = {"1": str(n + 1), "2": text(source), "6": text(attr(record, "sent"))}
        for rep, line in enumerate(lines):
            values[loc(3, rep)] = line
        self.write(tree, nte, values)

        write_concept(tree, nte, 4, 0, comment_type)
        sender = attr(record, "sender")
        if sender is not None:
            write_person(tree, nte, 5, 0, sender)
