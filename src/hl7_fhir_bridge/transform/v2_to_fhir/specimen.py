# src/hl7_fhir_bridge/transform/v2_to_fhir/specimen.py
"""SPM -> Specimen, linked to the request of the order it belongs to."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from ... import codes
from ...context import ConversionContext
from ...datetime_utils import hl7_to_fhir_datetime
from ...message_tree import Locator, Segment
from ...paths import Location, field_repetitions
from ..base import InboundConverter, codeable_concept, put, reference
from ..registry import register_inbound
from ._orders import governing, order_control, order_numbers


def _collected_quantity(spm: Segment) -> Optional[Dict[str, Any]]:
    text = spm.get(Locator(12, 0, 1))
    try:
        value = Decimal(text)
    except InvalidOperation:
        return None
    out: Dict[str, Any] = {"value": value}
    unit = spm.get(Locator(12, 0, 2, 1))
    if unit:
        out.update(unit=unit, system=codes.SYSTEM_UCUM, code=unit)
    return out


@register_inbound("Specimen", order=130)
class SpecimenConverter(InboundConverter):
    segment = "SPM"

    def build(
        self, loc: Location, data: Dict[str, Any], context: ConversionContext
    ) -> Optional[Dict[str, Any]]:
        spm = loc.segment
        put(data, "subject", self.subject(context))

        # EIP: placer assigned id ^ filler assigned id, each an EI in subcomponents
        identifiers = []
        for comp, code in ((1, "PLAC"), (2, "FILL")):
            value = spm.get(Locator(2, 0, comp, 1))
            if value:
                identifiers.append(
                    {
                        "type": {"coding": [{"system": codes.SYSTEM_V2_0203, "code": code}]},
                        "value": value,
                    }
                )
        put(data, "identifier", identifiers)
        put(data, "type", codeable_concept(spm, 4, default_system=codes.SYSTEM_V2_0487))

        collection: Dict[str, Any] = {}
        put(collection, "method", codeable_concept(spm, 7))
        put(collection, "bodySite", codeable_concept(spm, 8))
        put(collection, "quantity", _collected_quantity(spm))
        put(collection, "collectedDateTime", hl7_to_fhir_datetime(spm.get(Locator(17, 0, 1))))
        put(data, "collection", collection)
        put(data, "receivedTime", hl7_to_fhir_datetime(spm.get(Locator(18))))

        conditions = [codeable_concept(spm, 24, rep) for rep in field_repetitions(spm, 24)]
        put(data, "condition", [c for c in conditions if c])

        rejected = codeable_concept(spm, 21)
        availability = spm.get(Locator(20)).upper()
        if rejected:
            data["status"] = "unsatisfactory"
            put(data, "note", [{"text": rejected.get("text") or rejected["coding"][0]["code"]}])
        elif availability == "Y":
            data["status"] = "available"
        elif availability == "N":
            data["status"] = "unavailable"

        obr = governing(loc, "OBR")
        if obr is not None:
            placer, filler = order_numbers(obr, order_control(loc))
            request = context.link("ServiceRequest", placer, filler, None)
            if request:
                data["request"] = [reference("ServiceRequest", request)]
        return data
