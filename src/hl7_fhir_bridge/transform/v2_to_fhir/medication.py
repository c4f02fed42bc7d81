# src/hl7_fhir_bridge/transform/v2_to_fhir/medication.py
"""
Pharmacy segments.

- RXE (with the ORC of the same order) -> MedicationRequest
- RXA -> Immunization when the administered code is a CVX vaccine code or
  the message is a VXU; otherwise MedicationAdministration.

RXA-3 (start of administration) is required for both administration
records; an RXA without it is skipped.
"""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from ... import codes
from ...context import ConversionContext
from ...datetime_utils import hl7_to_fhir_date, hl7_to_fhir_datetime
from ...message_tree import Locator, Segment
from ...paths import Location
from ..base import (
    InboundConverter,
    codeable_concept,
    display_reference,
    person_name,
    put,
    reference,
)
from ..registry import register_inbound
from ._orders import order_control, order_identifiers, order_numbers

LOG = logging.getLogger(__name__)

# ORC-5 statuses valid for ServiceRequest but not for MedicationRequest
_REQUEST_STATUS_FIXUP = {"revoked": "cancelled"}


def _quantity(seg: Segment, value_field: int, unit_field: int) -> Optional[Dict[str, Any]]:
    text = seg.get(Locator(value_field))
    if not text:
        return None
    try:
        value = Decimal(text)
    except InvalidOperation:
        LOG.debug("%s-%d is not numeric: %r", seg.name, value_field, text)
        return None
    out: Dict[str, Any] = {"value": value}
    unit = seg.get(Locator(unit_field, 0, 1))
    if unit:
        out["unit"] = seg.get(Locator(unit_field, 0, 2)) or unit
        out["system"] = codes.SYSTEM_UCUM
        out["code"] = unit
    return out


def is_vaccine(rxa: Segment, context: ConversionContext) -> bool:
    if context.message_type.upper() == "VXU":
        return True
    return rxa.get(Locator(5, 0, 3)).upper() == "CVX"


def _administrator(rxa: Segment) -> Optional[Dict[str, Any]]:
    actor = display_reference(person_name(rxa, 10), rxa.get(Locator(10, 0, 1)))
    return {"actor": actor} if actor else None


@register_inbound("MedicationRequest", order=100)
class MedicationRequestConverter(InboundConverter):
    segment = "RXE"

    def build(
        self, loc: Location, data: Dict[str, Any], context: ConversionContext
    ) -> Optional[Dict[str, Any]]:
        rxe = loc.segment
        orc = order_control(loc)
        placer, filler = order_numbers(None, orc)

        status = codes.lookup(codes.ORDER_STATUS, orc.get(Locator(5)) if orc else "", "active")
        data["status"] = _REQUEST_STATUS_FIXUP.get(status, status)
        data["intent"] = "order"
        data["subject"] = self.subject(context)
        put(data, "encounter", self.encounter(context))
        data["medicationCodeableConcept"] = codeable_concept(
            rxe, 2, default_system=codes.SYSTEM_RXNORM
        )
        put(data, "identifier", order_identifiers(placer, filler))

        dosage: Dict[str, Any] = {}
        put(dosage, "text", rxe.get(Locator(7, 0, 2)) or rxe.get(Locator(7, 0, 1)))
        dose = _quantity(rxe, 3, 5)
        if dose:
            dosage["doseAndRate"] = [{"doseQuantity": dose}]
        put(dosage, "timing.code.text", rxe.get(Locator(1, 0, 2)))
        if dosage:
            data["dosageInstruction"] = [dosage]

        put(data, "dispenseRequest.quantity", _quantity(rxe, 10, 11))
        refills = rxe.get(Locator(12))
        if refills.isdigit():
            put(data, "dispenseRequest.numberOfRepeatsAllowed", int(refills))

        if orc is not None:
            put(data, "authoredOn", hl7_to_fhir_datetime(orc.get(Locator(9))))
            put(
                data,
                "requester",
                display_reference(person_name(orc, 12), orc.get(Locator(12, 0, 1))),
            )
        return data

    def registered(
        self,
        record_id: str,
        loc: Location,
        data: Dict[str, Any],
        context: ConversionContext,
    ) -> None:
        placer, filler = order_numbers(None, order_control(loc))
        context.register_order("MedicationRequest", record_id, placer, filler, loc.index)


@register_inbound("MedicationAdministration", order=110)
class MedicationAdministrationConverter(InboundConverter):
    segment = "RXA"

    def build(
        self, loc: Location, data: Dict[str, Any], context: ConversionContext
    ) -> Optional[Dict[str, Any]]:
        rxa = loc.segment
        if is_vaccine(rxa, context):
            return None
        start = hl7_to_fhir_datetime(rxa.get(Locator(3)))
        if not start:
            LOG.debug("RXA %d has no administration time; skipped", loc.index)
            return None
        end = hl7_to_fhir_datetime(rxa.get(Locator(4)))
        if end and end != start:
            data["effectivePeriod"] = {"start": start, "end": end}
        else:
            data["effectiveDateTime"] = start

        data["status"] = codes.lookup(codes.ADMIN_STATUS, rxa.get(Locator(20)), "completed")
        data["subject"] = self.subject(context)
        put(data, "context", self.encounter(context))
        data["medicationCodeableConcept"] = codeable_concept(
            rxa, 5, default_system=codes.SYSTEM_RXNORM
        )
        dose = _quantity(rxa, 6, 7)
        if dose:
            data["dosage"] = {"dose": dose}
        performer = _administrator(rxa)
        if performer:
            data["performer"] = [performer]

        placer, filler = order_numbers(None, order_control(loc))
        request = context.link("MedicationRequest", placer, filler, loc.index)
        put(data, "request", reference("MedicationRequest", request))
        return data


@register_inbound("Immunization", order=120)
class ImmunizationConverter(InboundConverter):
    segment = "RXA"

    def build(
        self, loc: Location, data: Dict[str, Any], context: ConversionContext
    ) -> Optional[Dict[str, Any]]:
        rxa = loc.segment
        if not is_vaccine(rxa, context):
            return None
        occurrence = hl7_to_fhir_datetime(rxa.get(Locator(3)))
        if not occurrence:
            LOG.debug("RXA %d has no administration time; skipped", loc.index)
            return None

        data["status"] = codes.lookup(codes.ADMIN_STATUS, rxa.get(Locator(20)), "completed")
        data["occurrenceDateTime"] = occurrence
        data["patient"] = self.subject(context)
        put(data, "encounter", self.encounter(context))
        data["vaccineCode"] = codeable_concept(rxa, 5, default_system=codes.SYSTEM_CVX)
        data["primarySource"] = True
        put(data, "doseQuantity", _quantity(rxa, 6, 7))
        put(data, "lotNumber", rxa.get(Locator(15)))
        put(data, "expirationDate", hl7_to_fhir_date(rxa.get(Locator(16))))
        put(data, "manufacturer", display_reference(rxa.get(Locator(17, 0, 2)) or rxa.get(Locator(17, 0, 1))))
        performer = _administrator(rxa)
        if performer:
            data["performer"] = [performer]
        return data
