# src/hl7_fhir_bridge/transform/v2_to_fhir/appointment.py
"""
SCH -> Appointment.

Start and end come from the timing quantity in SCH-11 (components 4 and 5).
Without an explicit end, SCH-9/SCH-10 (duration and units) are used to
derive one. The patient is always a participant.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict, Optional

from ... import codes
from ...context import ConversionContext
from ...datetime_utils import hl7_to_fhir_instant, parse_hl7_datetime
from ...message_tree import Locator
from ...paths import Location
from ..base import InboundConverter, codeable_concept, put
from ..registry import register_inbound

_DURATION_UNITS = {"MIN": 1, "M": 1, "H": 60, "HR": 60, "D": 1440}


@register_inbound("Appointment", order=150)
class AppointmentConverter(InboundConverter):
    segment = "SCH"

    def build(
        self, loc: Location, data: Dict[str, Any], context: ConversionContext
    ) -> Optional[Dict[str, Any]]:
        sch = loc.segment
        status = codes.lookup(codes.APPOINTMENT_STATUS, sch.get(Locator(25)), "booked")
        data["status"] = status

        identifiers = []
        for field in (1, 2):
            value = sch.get(Locator(field, 0, 1))
            if value:
                identifiers.append({"value": value})
        put(data, "identifier", identifiers)

        reason = codeable_concept(sch, 6) or codeable_concept(sch, 7)
        if reason:
            data["reasonCode"] = [reason]
        put(data, "appointmentType", codeable_concept(sch, 8))

        priority = sch.get(Locator(7, 0, 1))
        if priority.isdigit():
            data["priority"] = int(priority)

        start_raw = sch.get(Locator(11, 0, 4))
        end_raw = sch.get(Locator(11, 0, 5))
        put(data, "start", hl7_to_fhir_instant(start_raw))
        end = hl7_to_fhir_instant(end_raw)
        duration = sch.get(Locator(9))
        if not end and duration.isdigit() and start_raw:
            minutes = int(duration) * _DURATION_UNITS.get(sch.get(Locator(10)).upper(), 1)
            start = parse_hl7_datetime(start_raw)
            if start is not None:
                end = (start + timedelta(minutes=minutes)).isoformat()
                data["minutesDuration"] = minutes
        put(data, "end", end)

        data["participant"] = [
            {"actor": self.subject(context), "status": "accepted"}
        ]
        return data
