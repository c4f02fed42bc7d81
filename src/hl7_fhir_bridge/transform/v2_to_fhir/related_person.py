# src/hl7_fhir_bridge/transform/v2_to_fhir/related_person.py
"""
GT1 -> RelatedPerson (the guarantor).

The relationship carries the GT1-11 code (table 0063) and a v3 ``GUAR``
coding; the outbound side uses the latter to tell a guarantor from a next
of kin.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from ... import codes
from ...context import ConversionContext
from ...datetime_utils import hl7_to_fhir_date
from ...paths import Location
from ..base import FieldRule, InboundConverter, codeable_concept, put
from ..registry import register_inbound
from ._datatypes import addresses, contact_points, human_names, identifier

GUARANTOR = {"system": codes.SYSTEM_V3_ROLE_CODE, "code": "GUAR", "display": "guarantor"}


@register_inbound("RelatedPerson", order=145)
class RelatedPersonConverter(InboundConverter):
    segment = "GT1"
    rules = (
        FieldRule("8", "birthDate", hl7_to_fhir_date),
        FieldRule("9", "gender", lambda code: codes.lookup(codes.GENDER, code, "unknown")),
    )

    def build(
        self, loc: Location, data: Dict[str, Any], context: ConversionContext
    ) -> Optional[Dict[str, Any]]:
        gt1 = loc.segment
        data["active"] = True
        data["patient"] = self.subject(context)
        put(data, "identifier.+", identifier(gt1, 2))
        put(data, "name", human_names(gt1, 3))
        put(data, "address", addresses(gt1, 5))
        put(data, "telecom", contact_points(gt1, 6, "home") + contact_points(gt1, 7, "work"))

        relationship = codeable_concept(gt1, 11, default_system=codes.SYSTEM_V2_0063) or {}
        relationship.setdefault("coding", []).append(dict(GUARANTOR))
        data["relationship"] = [relationship]
        return data
