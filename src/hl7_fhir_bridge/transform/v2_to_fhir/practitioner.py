# src/hl7_fhir_bridge/transform/v2_to_fhir/practitioner.py
"""
Care providers.

- Practitioner: one record per distinct XCN id found in PV1-7/8/9/17/52,
  ORC-12, OBR-16 and ROL-4, in that order. The role of the first
  occurrence is kept as a v2-0443 ``meta.tag`` and the record is registered
  under the XCN id so other passes can reference it. Repetitions without an
  id are left as display references on the records that mention them.
- PractitionerRole (ROL): role code, practitioner, period, specialty and
  telecom.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterator, Optional, Tuple

from ... import codes
from ...context import ConversionContext
from ...datetime_utils import hl7_to_fhir_datetime
from ...fhir_parser import build_resource
from ...message_tree import Locator, MessageTree, Segment
from ...paths import Location, field_repetitions, first_segment, segments_anywhere
from ..base import (
    InboundConverter,
    TransformResult,
    codeable_concept,
    concept,
    display_reference,
    new_id,
    person_name,
    put,
    reference,
)
from ..registry import register_inbound
from ._datatypes import contact_points, practitioner_name

LOG = logging.getLogger(__name__)

# PV1 field -> v2-0443 role
_VISIT_ROLES = ((7, "AT"), (8, "RP"), (9, "CP"), (17, "AD"), (52, "PP"))


def _role_tag(code: str) -> Dict[str, str]:
    tag = {"system": codes.SYSTEM_V2_0443, "code": code}
    display = codes.PROVIDER_ROLE_DISPLAY.get(code)
    if display:
        tag["display"] = display
    return tag


@register_inbound("Practitioner", order=16)
class PractitionerConverter(InboundConverter):
    segment = "PV1"

    def _mentions(self, tree: MessageTree) -> Iterator[Tuple[Segment, int, int, str]]:
        pv1 = first_segment(tree, "PV1", self.caps)
        if pv1 is not None:
            for field, role in _VISIT_ROLES:
                for rep in field_repetitions(pv1.segment, field):
                    yield pv1.segment, field, rep, role
        for orc in segments_anywhere(tree, "ORC", self.caps):
            for rep in field_repetitions(orc.segment, 12):
                yield orc.segment, 12, rep, "OP"
        for obr in segments_anywhere(tree, "OBR", self.caps):
            for rep in field_repetitions(obr.segment, 16):
                yield obr.segment, 16, rep, "OP"
        for rol in segments_anywhere(tree, "ROL", self.caps):
            for rep in field_repetitions(rol.segment, 4):
                yield rol.segment, 4, rep, rol.get("3-1")

    def convert(self, tree: MessageTree, context: ConversionContext) -> TransformResult:
        records: TransformResult = []
        for seg, field, rep, role in self._mentions(tree):
            xcn_id = seg.get(Locator(field, rep, 1))
            if context.lookup(self.kind, xcn_id):
                continue
            data: Dict[str, Any] = {
                "id": new_id(),
                "active": True,
                "identifier": [{"value": xcn_id}],
            }
            authority = seg.get(Locator(field, rep, 9))
            if authority:
                data["identifier"][0]["assigner"] = {"display": authority}
            put(data, "name.+", practitioner_name(seg, field, rep))
            if role:
                data["meta"] = {"tag": [_role_tag(role)]}
            records.append(build_resource(self.kind, data))
            context.register(self.kind, xcn_id, data["id"])
        LOG.debug("%s produced %d %s record(s)", self.name, len(records), self.kind)
        return records


@register_inbound("PractitionerRole", order=17)
class PractitionerRoleConverter(InboundConverter):
    segment = "ROL"

    def build(
        self, loc: Location, data: Dict[str, Any], context: ConversionContext
    ) -> Optional[Dict[str, Any]]:
        rol = loc.segment
        role = rol.get(Locator(3, 0, 1))
        data["active"] = True
        put(data, "identifier.0.value", rol.get(Locator(1, 0, 1)))

        code = concept(
            codes.SYSTEM_V2_0443,
            role,
            rol.get(Locator(3, 0, 2)) or codes.PROVIDER_ROLE_DISPLAY.get(role),
        )
        data["code"] = [code]

        xcn_id = rol.get(Locator(4, 0, 1))
        found = context.lookup("Practitioner", xcn_id) if xcn_id else None
        name = person_name(rol, 4)
        put(
            data,
            "practitioner",
            reference("Practitioner", found, name) or display_reference(name),
        )

        put(data, "period.start", hl7_to_fhir_datetime(rol.get(Locator(5))))
        put(data, "period.end", hl7_to_fhir_datetime(rol.get(Locator(6))))
        specialty = codeable_concept(rol, 9)
        if specialty:
            data["specialty"] = [specialty]
        put(data, "telecom", contact_points(rol, 12, "work"))

        facility = context.lookup("Organization", "FACILITY")
        put(data, "organization", reference("Organization", facility))
        return data
