# src/hl7_fhir_bridge/transform/v2_to_fhir/diagnostic_report.py
"""
OBR in result messages -> DiagnosticReport.

A report is built for every OBR of an ORU message, and for OBRs of other
messages that carry a result status (OBR-25). Its ``result`` list is the set
of Observations collected for the same order by the Observation pass.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from ... import codes
from ...context import ConversionContext
from ...datetime_utils import hl7_to_fhir_datetime, hl7_to_fhir_instant
from ...message_tree import Locator, Segment
from ...paths import Location
from ..base import (
    InboundConverter,
    codeable_concept,
    concept,
    display_reference,
    notes_after,
    put,
    reference,
)
from ..registry import register_inbound
from ._orders import order_control, order_identifiers, order_numbers


def _interpreter(obr: Segment, field: int) -> Optional[Dict[str, Any]]:
    """NDL: the name is a CNN packed into subcomponents of component 1."""
    family = obr.get(Locator(field, 0, 1, 2))
    given = obr.get(Locator(field, 0, 1, 3))
    name = " ".join(p for p in (given, family) if p)
    return display_reference(name or None, obr.get(Locator(field, 0, 1, 1)))


@register_inbound("DiagnosticReport", order=60)
class DiagnosticReportConverter(InboundConverter):
    segment = "OBR"

    def build(
        self, loc: Location, data: Dict[str, Any], context: ConversionContext
    ) -> Optional[Dict[str, Any]]:
        obr = loc.segment
        result_status = obr.get(Locator(25))
        if context.message_type.upper() != "ORU" and not result_status:
            return None
        placer, filler = order_numbers(obr, order_control(loc))

        data["status"] = codes.lookup(codes.REPORT_STATUS, result_status, "unknown")
        data["code"] = codeable_concept(obr, 4)
        put(data, "subject", self.subject(context))
        put(data, "encounter", self.encounter(context))
        put(data, "identifier", order_identifiers(placer, filler))
        category = concept(codes.SYSTEM_V2_0074, obr.get(Locator(24)))
        if category:
            data["category"] = [category]
        put(data, "effectiveDateTime", hl7_to_fhir_datetime(obr.get(Locator(7))))
        put(data, "issued", hl7_to_fhir_instant(obr.get(Locator(22))))

        request = context.link("ServiceRequest", placer, filler, loc.index)
        if request:
            data["basedOn"] = [reference("ServiceRequest", request)]
        results = context.members("Observation", placer, filler, loc.index)
        put(data, "result", [reference("Observation", rid) for rid in results])

        interpreter = _interpreter(obr, 32)
        if interpreter:
            data["resultsInterpreter"] = [interpreter]
        technician = _interpreter(obr, 34)
        if technician:
            data["performer"] = [technician]

        notes = notes_after(obr, self.cap("NTE"))
        if notes:
            data["conclusion"] = "\n".join(notes)
        return data
