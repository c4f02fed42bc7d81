# src/hl7_fhir_bridge/transform/v2_to_fhir/organization.py
"""
Where the message comes from and where the patient is.

- Organization: the facility of the patient location (PV1-3.4) and, when
  message headers are emitted, the sending (MSH-4) and receiving (MSH-6)
  facilities. Names are compared case-insensitively so one facility gives
  one record. Each record is registered under ``FACILITY``, ``SENDER`` or
  ``RECEIVER``.
- Location: the PV1-3 point of care as a building > level > ward > room >
  bed hierarchy linked through ``partOf``. The innermost level is the
  primary location, registered under ``PRIMARY`` for the Encounter pass.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from ... import codes
from ...context import ConversionContext
from ...fhir_parser import build_resource
from ...message_tree import Locator, MessageTree, Segment
from ...paths import first_segment
from ..base import (
    InboundConverter,
    TransformResult,
    concept,
    display_reference,
    new_id,
    put,
    reference,
)
from ..registry import register_inbound
from ._datatypes import hd_identifier

LOG = logging.getLogger(__name__)

FACILITY = "FACILITY"
SENDER = "SENDER"
RECEIVER = "RECEIVER"
PRIMARY = "PRIMARY"


def _organization(segment: Segment, field: int, component: int = 1) -> Optional[Dict[str, Any]]:
    name = segment.get(Locator(field, 0, component))
    if not name:
        return None
    data: Dict[str, Any] = {
        "id": new_id(),
        "active": True,
        "name": name,
        "type": [concept(codes.SYSTEM_ORGANIZATION_TYPE, "prov", "Healthcare Provider")],
    }
    if component == 1:
        put(data, "identifier.+", hd_identifier(segment, field))
    return data


@register_inbound("Organization", order=12)
class OrganizationConverter(InboundConverter):
    segment = "PV1"

    def _sources(self, tree: MessageTree) -> List[Tuple[str, Optional[Dict[str, Any]]]]:
        sources = []
        msh = tree.msh
        if msh is not None and self.enabled("emit_message_header"):
            sources.append((SENDER, _organization(msh, 4)))
            sources.append((RECEIVER, _organization(msh, 6)))
        pv1 = first_segment(tree, "PV1", self.caps)
        if pv1 is not None:
            # PL.4 is an HD; its namespace id is the facility name
            sources.append((FACILITY, _organization(pv1.segment, 3, 4)))
        return sources

    def convert(self, tree: MessageTree, context: ConversionContext) -> TransformResult:
        records: TransformResult = []
        by_name: Dict[str, str] = {}
        for role, data in self._sources(tree):
            if data is None:
                continue
            key = data["name"].lower()
            if key in by_name:
                context.register(self.kind, role, by_name[key])
                continue
            records.append(build_resource(self.kind, data))
            by_name[key] = data["id"]
            context.register(self.kind, role, data["id"])
        LOG.debug("%s produced %d %s record(s)", self.name, len(records), self.kind)
        return records


@register_inbound("Location", order=14)
class LocationConverter(InboundConverter):
    segment = "PV1"

    def convert(self, tree: MessageTree, context: ConversionContext) -> TransformResult:
        pv1 = first_segment(tree, "PV1", self.caps)
        if pv1 is None:
            return []
        seg = pv1.segment

        levels: List[Dict[str, Any]] = []
        parent: Optional[Dict[str, Any]] = None
        for component, code, display in codes.LOCATION_LEVELS:
            name = seg.get(Locator(3, 0, component))
            if not name:
                continue
            data: Dict[str, Any] = {
                "id": new_id(),
                "name": name,
                "status": "active",
                "mode": "instance",
                "description": f"{display}: {name}",
                "physicalType": concept(codes.SYSTEM_LOCATION_PHYSICAL_TYPE, code, display),
            }
            if parent is not None:
                data["partOf"] = reference("Location", parent["id"], parent["name"])
            levels.append(data)
            parent = data
        if not levels:
            return []

        primary = levels[-1]
        if len(levels) > 1 and primary["physicalType"]["coding"][0]["code"] == "bd":
            # a bed is named after the ward and room it sits in
            ward, room, bed = (seg.get(Locator(3, 0, c)) for c in (1, 2, 3))
            primary["name"] = " ".join(p for p in (ward, "-".join(p for p in (room, bed) if p)) if p)
        status = seg.get(Locator(3, 0, 5))
        if status:
            primary["status"] = codes.lookup(codes.LOCATION_STATUS, status, "active")
        detail = seg.get(Locator(3, 0, 9))
        if detail:
            primary["description"] = f"{primary['description']} - {detail}"

        facility = context.lookup("Organization", FACILITY)
        facility_name = seg.get(Locator(3, 0, 4)) or None
        put(
            levels[0],
            "managingOrganization",
            reference("Organization", facility, facility_name) or display_reference(facility_name),
        )

        context.register(self.kind, PRIMARY, primary["id"])
        records = [build_resource(self.kind, data) for data in levels]
        LOG.debug("%s produced %d %s record(s)", self.name, len(records), self.kind)
        return records
