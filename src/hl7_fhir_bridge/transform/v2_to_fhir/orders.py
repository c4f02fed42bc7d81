# src/hl7_fhir_bridge/transform/v2_to_fhir/orders.py
"""
Order converters.

- OBR (with the ORC of the same order) -> ServiceRequest, registered under
  its placer number, filler number and positional index so later passes can
  point at it.
- ORC carrying a workflow control code -> Task whose ``focus`` is the
  ServiceRequest of the same order.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from ... import codes
from ...context import ConversionContext
from ...datetime_utils import hl7_to_fhir_datetime
from ...message_tree import Locator
from ...paths import Location
from ..base import (
    InboundConverter,
    codeable_concept,
    concept,
    notes_after,
    put,
    reference,
)
from ..registry import register_inbound
from ._datatypes import practitioner
from ._orders import order_control, order_identifiers, order_numbers


@register_inbound("ServiceRequest", order=30)
class ServiceRequestConverter(InboundConverter):
    segment = "OBR"

    def build(
        self, loc: Location, data: Dict[str, Any], context: ConversionContext
    ) -> Optional[Dict[str, Any]]:
        obr = loc.segment
        orc = order_control(loc)
        placer, filler = order_numbers(obr, orc)

        status = orc.get(Locator(5)) if orc is not None else ""
        data["status"] = codes.lookup(codes.ORDER_STATUS, status, "active")
        data["intent"] = "order"
        put(data, "subject", self.subject(context))
        put(data, "encounter", self.encounter(context))
        put(data, "identifier", order_identifiers(placer, filler))
        put(data, "code", codeable_concept(obr, 4))

        priority = obr.get(Locator(27, 0, 6))
        if not priority and orc is not None:
            priority = orc.get(Locator(7, 0, 6))
        put(data, "priority", codes.lookup(codes.OBR_PRIORITY, priority))

        put(data, "occurrenceDateTime", hl7_to_fhir_datetime(obr.get(Locator(7))))
        if orc is not None:
            put(data, "authoredOn", hl7_to_fhir_datetime(orc.get(Locator(9))))
            requester = practitioner(orc, 12, 0, context)
        else:
            requester = None
        requester = requester or practitioner(obr, 16, 0, context)
        put(data, "requester", requester)

        reason = codeable_concept(obr, 31)
        if reason:
            data["reasonCode"] = [reason]
        put(data, "note", [{"text": t} for t in notes_after(obr, self.cap("NTE"))])
        return data

    def registered(
        self,
        record_id: str,
        loc: Location,
        data: Dict[str, Any],
        context: ConversionContext,
    ) -> None:
        placer, filler = order_numbers(loc.segment, order_control(loc))
        context.register_order("ServiceRequest", record_id, placer, filler, loc.index)


@register_inbound("Task", order=40)
class TaskConverter(InboundConverter):
    """One Task per ORC whose order control code is a workflow action."""

    segment = "ORC"

    def build(
        self, loc: Location, data: Dict[str, Any], context: ConversionContext
    ) -> Optional[Dict[str, Any]]:
        orc = loc.segment
        control = orc.get(Locator(1)).upper()
        if control not in codes.WORKFLOW_CONTROLS:
            return None
        placer, filler = order_numbers(None, orc)

        data["status"] = codes.TASK_STATUS[control]
        data["intent"] = "order"
        data["businessStatus"] = concept(codes.SYSTEM_V2_0119, control)
        put(data, "for", self.subject(context))
        put(data, "encounter", self.encounter(context))
        put(data, "identifier", order_identifiers(placer, filler))
        put(data, "authoredOn", hl7_to_fhir_datetime(orc.get(Locator(9))))
        put(
            data,
            "focus",
            reference(
                "ServiceRequest",
                context.link("ServiceRequest", placer, filler, loc.index),
            ),
        )
        put(
            data,
            "requester",
            practitioner(orc, 12, 0, context),
        )
        return data
