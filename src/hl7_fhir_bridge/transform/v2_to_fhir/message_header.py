# src/hl7_fhir_bridge/transform/v2_to_fhir/message_header.py
"""
MSH -> MessageHeader, only when ``emit_message_header`` is on.

Endpoints are ``urn:oid:`` URIs when the application HD carries a universal
id, otherwise ``urn:hl7:application:<namespace>``. Sender and receiver
point at the Organizations registered for MSH-4 and MSH-6.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from ... import codes
from ...context import ConversionContext
from ...fhir_parser import build_resource
from ...message_tree import Locator, MessageTree, Segment
from ..base import InboundConverter, TransformResult, new_id, put, reference
from ..registry import register_inbound
from .organization import RECEIVER, SENDER


def _endpoint(msh: Segment, field: int) -> Optional[str]:
    name = msh.get(Locator(field, 0, 1))
    universal = msh.get(Locator(field, 0, 2))
    if universal:
        return "urn:oid:" + universal
    if name:
        return "urn:hl7:application:" + name
    return None


@register_inbound("MessageHeader", order=200)
class MessageHeaderConverter(InboundConverter):
    segment = "MSH"

    def convert(self, tree: MessageTree, context: ConversionContext) -> TransformResult:
        msh = tree.msh
        if msh is None or not self.enabled("emit_message_header"):
            return []

        message_type = msh.get(Locator(9, 0, 1))
        trigger = msh.get(Locator(9, 0, 2))
        event: Dict[str, Any] = {
            "system": codes.SYSTEM_V2_0003,
            "code": trigger or message_type,
        }
        put(event, "display", "^".join(p for p in (message_type, trigger) if p))

        data: Dict[str, Any] = {"id": new_id(), "eventCoding": event}
        data["source"] = {"endpoint": _endpoint(msh, 3) or "urn:hl7:application:unknown"}
        put(data, "source.name", msh.get(Locator(3, 0, 1)))
        put(data, "source.software", msh.get(Locator(4, 0, 1)))

        endpoint = _endpoint(msh, 5)
        if endpoint:
            destination: Dict[str, Any] = {"endpoint": endpoint}
            put(destination, "name", msh.get(Locator(5, 0, 1)))
            put(
                destination,
                "receiver",
                reference("Organization", context.lookup("Organization", RECEIVER)),
            )
            data["destination"] = [destination]

        put(data, "sender", reference("Organization", context.lookup("Organization", SENDER)))
        put(data, "focus", [self.subject(context)] if context.patient_id else None)
        put(data, "language", msh.get(Locator(19, 0, 1)))
        profile = msh.get(Locator(21, 0, 1))
        if profile:
            data["meta"] = {"profile": ["urn:hl7:profile:" + profile]}
        return [build_resource(self.kind, data)]
