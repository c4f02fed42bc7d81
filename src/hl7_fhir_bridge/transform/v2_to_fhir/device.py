# src/hl7_fhir_bridge/transform/v2_to_fhir/device.py
"""
OBX-18 (equipment instance identifier) -> Device.

One Device per distinct equipment id, registered under that id so the
Observation pass can set ``Observation.device``.
"""

from __future__ import annotations

import re
from typing import Any, Dict, Iterator, Optional

from ...context import ConversionContext
from ...message_tree import Locator, MessageTree
from ...paths import Location, enumerate_segments
from ..base import InboundConverter, codeable_concept, put
from ..registry import register_inbound

_OID_RE = re.compile(r"^\d+(\.\d+)+$")


@register_inbound("Device", order=45)
class DeviceConverter(InboundConverter):
    segment = "OBX"

    def locations(self, tree: MessageTree, context: ConversionContext) -> Iterator[Location]:
        for obr in enumerate_segments(tree, "OBR", self.caps):
            if obr.group is not tree:
                yield from enumerate_segments(obr.group, "OBX", self.caps)
        yield from enumerate_segments(tree, "OBX", self.caps)

    def build(
        self, loc: Location, data: Dict[str, Any], context: ConversionContext
    ) -> Optional[Dict[str, Any]]:
        obx = loc.segment
        equipment = obx.get(Locator(18, 0, 1))
        if not equipment or context.lookup(self.kind, equipment):
            return None

        # EI: entity id^namespace id^universal id^universal id type
        namespace = obx.get(Locator(18, 0, 2))
        universal = obx.get(Locator(18, 0, 3))
        ident: Dict[str, Any] = {"value": equipment}
        if _OID_RE.match(universal):
            ident["system"] = "urn:oid:" + universal
        put(ident, "type.text", obx.get(Locator(18, 0, 4)))

        data["status"] = "active"
        data["identifier"] = [ident]
        data["serialNumber"] = equipment
        put(data, "manufacturer", namespace)
        if universal and not _OID_RE.match(universal):
            data["deviceName"] = [{"name": universal, "type": "model-name"}]
        put(data, "patient", self.subject(context))
        put(data, "type", codeable_concept(obx, 17))
        return data

    def registered(
        self,
        record_id: str,
        loc: Location,
        data: Dict[str, Any],
        context: ConversionContext,
    ) -> None:
        context.register(self.kind, loc.get(Locator(18, 0, 1)), record_id)

