# src/hl7_fhir_bridge/transform/v2_to_fhir/coverage.py
"""
IN1 -> Coverage.

The payor is not a separate record; it is a display reference carrying the
insurance company name (IN1-4) and id (IN1-3).
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from ...context import ConversionContext
from ...datetime_utils import hl7_to_fhir_date
from ...message_tree import Locator
from ...paths import Location
from ..base import FieldRule, InboundConverter, concept, display_reference, put
from ..registry import register_inbound

_COVERAGE_CLASS = "http://terminology.hl7.org/CodeSystem/coverage-class"
_SUBSCRIBER_RELATIONSHIP = "http://terminology.hl7.org/CodeSystem/subscriber-relationship"

# IN1-17 (HL7 table 0063) -> subscriber-relationship
_RELATIONSHIP = {"SEL": "self", "SPO": "spouse", "CHD": "child", "PAR": "parent", "DOM": "common"}


@register_inbound("Coverage", order=140)
class CoverageConverter(InboundConverter):
    segment = "IN1"
    rules = (
        FieldRule("12", "period.start", hl7_to_fhir_date),
        FieldRule("13", "period.end", hl7_to_fhir_date),
        FieldRule("36", "subscriberId"),
    )

    def build(
        self, loc: Location, data: Dict[str, Any], context: ConversionContext
    ) -> Optional[Dict[str, Any]]:
        in1 = loc.segment
        data["status"] = "active"
        data["beneficiary"] = self.subject(context)
        data["payor"] = [
            display_reference(
                in1.get(Locator(4, 0, 1)) or in1.get(Locator(3, 0, 1)),
                in1.get(Locator(3, 0, 1)),
            )
        ]
        if in1.get(Locator(36)):
            data["identifier"] = [{"value": in1.get(Locator(36))}]

        classes = []
        for code, value_field, name_field in (("plan", 2, None), ("group", 8, 9)):
            value = in1.get(Locator(value_field))
            if not value:
                continue
            entry: Dict[str, Any] = {"type": concept(_COVERAGE_CLASS, code), "value": value}
            if name_field:
                put(entry, "name", in1.get(Locator(name_field)))
            elif in1.get(Locator(2, 0, 2)):
                entry["name"] = in1.get(Locator(2, 0, 2))
            classes.append(entry)
        put(data, "class", classes)

        relationship = _RELATIONSHIP.get(in1.get(Locator(17)).upper())
        if in1.get(Locator(17)) and not relationship:
            relationship = "other"
        put(data, "relationship", concept(_SUBSCRIBER_RELATIONSHIP, relationship))

        priority = in1.get(Locator(22))
        if priority.isdigit() and int(priority) > 0:
            data["order"] = int(priority)
        return data
