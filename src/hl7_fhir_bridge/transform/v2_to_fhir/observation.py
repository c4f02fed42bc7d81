# src/hl7_fhir_bridge/transform/v2_to_fhir/observation.py
"""
OBX -> Observation.

OBX segments are read in two places: inside each order group that holds an
OBR (relative to that group) and at the root of flat messages. Each result
is linked to the OBR that governs it: ``basedOn`` points at the
ServiceRequest built for that order, and the Observation joins the order's
result list so the DiagnosticReport pass can collect it.

Value typing follows OBX-2:

- NM, SN: Quantity (unit from OBX-6, UCUM system); a non-numeric value
  falls back to a string.
- CE, CWE, CNE: CodeableConcept.
- TS, DT, DTM: dateTime.
- anything else: string, repetitions joined with a space.
"""

from __future__ import annotations

import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterator, Optional

from ... import codes
from ...context import ConversionContext, order_keys
from ...datetime_utils import hl7_to_fhir_datetime
from ...message_tree import Locator, MessageTree, Segment, unescape
from ...paths import Location, enumerate_segments, field_repetitions
from ..base import (
    InboundConverter,
    codeable_concept,
    concept,
    display_reference,
    notes_after,
    person_name,
    put,
    reference,
)
from ..registry import register_inbound
from ._orders import governing, order_control, order_numbers

LOG = logging.getLogger(__name__)

_RANGE_RE = re.compile(r"^\s*(?P<low>-?\d+(\.\d+)?)\s*-\s*(?P<high>-?\d+(\.\d+)?)\s*$")
_BOUND_RE = re.compile(r"^\s*(?P<op>[<>]=?)\s*(?P<value>-?\d+(\.\d+)?)\s*$")


# ------------------------------------------------------------------------------
# helpers
# ------------------------------------------------------------------------------


def _decimal(text: str) -> Optional[Decimal]:
    try:
        return Decimal(text.strip())
    except (InvalidOperation, AttributeError):
        return None


def _quantity(value: Decimal, obx: Segment) -> Dict[str, Any]:
    out: Dict[str, Any] = {"value": value}
    unit_code = obx.get(Locator(6, 0, 1))
    unit_text = obx.get(Locator(6, 0, 2)) or unit_code
    if unit_text:
        out["unit"] = unit_text
    if unit_code:
        out["system"] = codes.SYSTEM_UCUM
        out["code"] = unit_code
    return out


def _value(obx: Segment) -> Dict[str, Any]:
    """``value[x]`` entries for the OBX-5 content, keyed by their JSON name."""
    value_type = obx.get(Locator(2)).upper()
    first = obx.get(Locator(5))

    if value_type in ("NM", "SN"):
        text = first
        if value_type == "SN":
            # comparator^num1^separator^num2; only the plain number is a Quantity
            text = obx.get(Locator(5, 0, 2)) if not obx.get(Locator(5, 0, 3)) else ""
        number = _decimal(text)
        if number is not None:
            return {"valueQuantity": _quantity(number, obx)}
    elif value_type in ("CE", "CWE", "CNE"):
        cc = codeable_concept(obx, 5)
        if cc:
            return {"valueCodeableConcept": cc}
    elif value_type in ("TS", "DT", "DTM"):
        when = hl7_to_fhir_datetime(first)
        if when:
            return {"valueDateTime": when}

    reps = range(obx.repetition_count(5))
    if value_type in ("TX", "FT", "ST"):
        # free text keeps component separators as typed
        pieces = [unescape(obx.repetition_text(5, rep), obx.delimiters) for rep in reps]
    else:
        pieces = [obx.get(Locator(5, rep)) for rep in reps]
    text = " ".join(p for p in pieces if p).strip()
    return {"valueString": text} if text else {}


def _reference_range(text: str) -> Optional[Dict[str, Any]]:
    if not text:
        return None
    m = _RANGE_RE.match(text)
    if m:
        return {
            "low": {"value": Decimal(m.group("low"))},
            "high": {"value": Decimal(m.group("high"))},
            "text": text,
        }
    m = _BOUND_RE.match(text)
    if m:
        side = "high" if m.group("op").startswith("<") else "low"
        return {side: {"value": Decimal(m.group("value"))}, "text": text}
    return {"text": text}


# ------------------------------------------------------------------------------
# converter
# ------------------------------------------------------------------------------


@register_inbound("Observation", order=50)
class ObservationConverter(InboundConverter):
    segment = "OBX"

    def __init__(self, caps=None, options=None) -> None:
        super().__init__(caps, options)
        self._order_index: Dict[int, int] = {}

    def locations(self, tree: MessageTree, context: ConversionContext) -> Iterator[Location]:
        self._order_index.clear()
        for obr in enumerate_segments(tree, "OBR", self.caps):
            self._order_index[id(obr.segment)] = obr.index
            if obr.group is not tree:
                yield from enumerate_segments(obr.group, "OBX", self.caps)
        yield from enumerate_segments(tree, "OBX", self.caps)

    def _order(self, loc: Location):
        obr = governing(loc, "OBR")
        if obr is None:
            return None, None, None
        placer, filler = order_numbers(obr, order_control(loc))
        return placer, filler, self._order_index.get(id(obr))

    def build(
        self, loc: Location, data: Dict[str, Any], context: ConversionContext
    ) -> Optional[Dict[str, Any]]:
        obx = loc.segment
        obr = governing(loc, "OBR")
        placer, filler, index = self._order(loc)

        data["status"] = codes.lookup(codes.OBSERVATION_STATUS, obx.get(Locator(11)), "final")
        data["code"] = codeable_concept(obx, 3)
        put(data, "subject", self.subject(context))
        put(data, "encounter", self.encounter(context))
        data.update(_value(obx))

        effective = obx.get(Locator(14)) or (obr.get(Locator(7)) if obr is not None else "")
        put(data, "effectiveDateTime", hl7_to_fhir_datetime(effective))

        range_ = _reference_range(obx.get(Locator(7)))
        if range_:
            data["referenceRange"] = [range_]

        flags = []
        for rep in field_repetitions(obx, 8):
            flag = obx.get(Locator(8, rep))
            flags.append(
                concept(
                    codes.SYSTEM_V3_INTERPRETATION,
                    flag,
                    codes.lookup(codes.INTERPRETATION_DISPLAY, flag),
                )
            )
        put(data, "interpretation", [f for f in flags if f])

        performers = []
        for rep in field_repetitions(obx, 16, None):
            ref = display_reference(person_name(obx, 16, rep), obx.get(Locator(16, rep, 1)))
            if ref:
                performers.append(ref)
        put(data, "performer", performers)
        put(data, "method", codeable_concept(obx, 17))
        equipment = obx.get(Locator(18, 0, 1))
        if equipment:
            put(data, "device", reference("Device", context.lookup("Device", equipment)))
        put(data, "note", [{"text": t} for t in notes_after(obx, self.cap("NTE"))])

        request = context.link("ServiceRequest", placer, filler, index)
        if request:
            data["basedOn"] = [reference("ServiceRequest", request)]
        elif obr is not None:
            LOG.debug("OBX-%s has no ServiceRequest to link to", obx.get(Locator(1)))
        return data

    def registered(
        self,
        record_id: str,
        loc: Location,
        data: Dict[str, Any],
        context: ConversionContext,
    ) -> None:
        placer, filler, index = self._order(loc)
        for key in order_keys(placer, filler, index):
            context.add_member("Observation", key, record_id)
