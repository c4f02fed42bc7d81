# src/hl7_fhir_bridge/transform/fhir_to_v2/document.py
"""
DocumentReference -> TXA, with the attachment text as root-level TX OBX
segments (one per line).
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Any, List

from ... import codes
from ...context import ConversionContext
from ...message_tree import MessageTree
from ..base import OutboundConverter, as_list, attr, first_coding
from ..registry import register_outbound
from ._datatypes import text, write_person

LOG = logging.getLogger(__name__)


def _lines(attachment: Any) -> List[str]:
    data = attr(attachment, "data")
    if not data:
        return []
    if isinstance(data, bytes):
        # parsed models hold the decoded bytes
        decoded = data
    else:
        try:
            decoded = base64.b64decode(data, validate=False)
        except (binascii.Error, ValueError) as e:
            LOG.warning("Document attachment is not valid base64: %s", e)
            return []
    return [line for line in decoded.decode("utf-8", errors="replace").splitlines() if line]


@register_outbound("document-reference-txa", order=160)
class DocumentReferenceWriter(OutboundConverter):
    handles = ("DocumentReference",)

    def convert(self, record: Any, tree: MessageTree, context: ConversionContext) -> None:
        n = self.next_index()
        txa = f"TXA({n})"
        doc_type = first_coding(attr(record, "type"))
        attachment = attr(record, "content", 0, "attachment")
        status = attr(record, "docStatus")
        self.write(
            tree,
            txa,
            {
                "1": str(n + 1),
                "2-1": text(attr(doc_type, "code")),
                "2-2": text(attr(doc_type, "display")),
                "3": codes.lookup(codes.CONTENT_PRESENTATION_OUT, attr(attachment, "contentType")),
                "4": text(attr(record, "date")),
                "6": text(attr(attachment, "creation")),
                "12-1": text(attr(record, "masterIdentifier", "value")),
                "16": text(attr(attachment, "title")) or text(attr(record, "identifier", 0, "value")),
                "17": codes.lookup(codes.DOCUMENT_COMPLETION_OUT, status, "AU"),
                "18": text(attr(first_coding(attr(record, "securityLabel", 0)), "code")),
            },
        )
        for rep, author in enumerate(as_list(attr(record, "author"))):
            write_person(tree, txa, 9, rep, author)
        authenticator = attr(record, "authenticator")
        if authenticator is not None:
            write_person(tree, txa, 10, 0, authenticator)

        first = len(tree.children_named("OBX"))
        for i, line in enumerate(_lines(attachment), first):
            self.write(
                tree,
                f"OBX({i})",
                {
                    "1": str(i + 1),
                    "2": "TX",
                    "3-1": text(attr(doc_type, "code")) or "DOC",
                    "5": line,
                    "11": "F",
                },
            )
