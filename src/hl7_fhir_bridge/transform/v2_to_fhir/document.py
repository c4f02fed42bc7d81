# src/hl7_fhir_bridge/transform/v2_to_fhir/document.py
"""
TXA (+ OBX text) -> DocumentReference, for MDM messages.

The attachment takes its content type from TXA-3, its title from TXA-16
and its data from the text OBX segments of the message, joined line by line
and base64 encoded.
"""

from __future__ import annotations

import base64
from typing import Any, Dict, List, Optional

from ... import codes
from ...context import ConversionContext
from ...datetime_utils import hl7_to_fhir_instant
from ...message_tree import Locator, MessageTree, unescape
from ...paths import Location, segments_anywhere
from ..base import InboundConverter, TransformResult, concept, put, reference
from ..registry import register_inbound
from ._datatypes import practitioner


def _document_text(tree: MessageTree, caps) -> str:
    lines: List[str] = []
    for loc in segments_anywhere(tree, "OBX", caps):
        obx = loc.segment
        if obx.get(Locator(2)).upper() not in ("TX", "FT", "ST", ""):
            continue
        for rep in range(obx.repetition_count(5)):
            line = unescape(obx.repetition_text(5, rep), obx.delimiters)
            if line:
                lines.append(line)
    return "\n".join(lines)


@register_inbound("DocumentReference", order=170)
class DocumentReferenceConverter(InboundConverter):
    segment = "TXA"

    def __init__(self, caps=None, options=None) -> None:
        super().__init__(caps, options)
        self._text = ""

    def convert(self, tree: MessageTree, context: ConversionContext) -> TransformResult:
        if context.message_type.upper() != "MDM" and context.trigger_event.upper() != "T02":
            return []
        self._text = _document_text(tree, self.caps)
        return super().convert(tree, context)

    def build(
        self, loc: Location, data: Dict[str, Any], context: ConversionContext
    ) -> Optional[Dict[str, Any]]:
        txa = loc.segment
        data["status"] = "current"
        put(
            data,
            "docStatus",
            codes.lookup(codes.DOCUMENT_COMPLETION, txa.get(Locator(17))),
        )
        doc_type = txa.get(Locator(2, 0, 1))
        put(data, "type", concept(codes.SYSTEM_V2_0270, doc_type, txa.get(Locator(2, 0, 2)) or None))
        put(data, "subject", self.subject(context))
        put(data, "masterIdentifier.value", txa.get(Locator(12, 0, 1)))
        put(data, "identifier.0.value", txa.get(Locator(16)))

        when = txa.get(Locator(4)) or txa.get(Locator(6)) or txa.get(Locator(7))
        put(data, "date", hl7_to_fhir_instant(when))

        authors = [practitioner(txa, 9, rep, context) for rep in range(txa.repetition_count(9))]
        put(data, "author", [a for a in authors if a])
        put(data, "authenticator", practitioner(txa, 10, 0, context))

        confidentiality = txa.get(Locator(18))
        if confidentiality in codes.CONFIDENTIALITY:
            data["securityLabel"] = [concept(codes.SYSTEM_V3_CONFIDENTIALITY, confidentiality)]

        attachment: Dict[str, Any] = {
            "contentType": codes.lookup(
                codes.CONTENT_PRESENTATION, txa.get(Locator(3)).upper(), "text/plain"
            )
        }
        put(attachment, "title", txa.get(Locator(16)))
        if self._text:
            attachment["data"] = base64.b64encode(self._text.encode("utf-8")).decode("ascii")
        put(attachment, "creation", hl7_to_fhir_instant(txa.get(Locator(6))))
        data["content"] = [{"attachment": attachment}]

        encounter = self.encounter(context)
        if encounter:
            data["context"] = {"encounter": [encounter]}
        order = context.link(
            "ServiceRequest",
            txa.get(Locator(14, 0, 1)) or None,
            txa.get(Locator(15, 0, 1)) or None,
        )
        put(data, "context.related", [reference("ServiceRequest", order)] if order else None)
        return data
