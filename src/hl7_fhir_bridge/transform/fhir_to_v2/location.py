# src/hl7_fhir_bridge/transform/fhir_to_v2/location.py
"""
Location -> PV1-3 (assigned patient location).

Each Location fills the PL component its physical type names (ward, room,
bed, building, level). Components the Encounter already wrote are left
alone.
"""

from __future__ import annotations

from typing import Any, Optional

from ... import codes
from ...context import ConversionContext
from ...message_tree import MessageTree
from ..base import OutboundConverter, attr, first_coding
from ..registry import register_outbound
from ._datatypes import text


def _component_value(code: str, name: Optional[str]) -> Optional[str]:
    if not name:
        return None
    if code == "bd":
        # "ICU 101-A" -> "A"
        return name.split()[-1].rsplit("-", 1)[-1]
    return name


@register_outbound("location-pv1", order=25)
class LocationWriter(OutboundConverter):
    handles = ("Location",)

    def convert(self, record: Any, tree: MessageTree, context: ConversionContext) -> None:
        code = attr(first_coding(attr(record, "physicalType")), "code") or ""
        component = codes.LOCATION_COMPONENT_OUT.get(code)
        if component is None:
            return
        self.next_index()

        values = {"1": "1"}
        if not tree.get(f"PV1-3-{component}"):
            values[f"3-{component}"] = _component_value(code, text(attr(record, "name")))
        facility = text(attr(record, "managingOrganization", "display"))
        if facility and not tree.get("PV1-3-4"):
            values["3-4"] = facility
        status = codes.lookup(codes.LOCATION_STATUS_OUT, attr(record, "status"))
        if status and code == "bd" and not tree.get("PV1-3-5"):
            values["3-5"] = status
        self.write(tree, "PV1", values)
