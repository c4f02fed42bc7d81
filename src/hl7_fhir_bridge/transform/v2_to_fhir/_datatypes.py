# src/hl7_fhir_bridge/transform/v2_to_fhir/_datatypes.py
"""
Readers for composite HL7 v2 data types (XPN, XAD, XTN, CX, HD, XCN) that
several inbound converters share. Each returns a FHIR JSON-shaped dict, or
None when the repetition carries nothing usable.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

from ... import codes
from ...context import ConversionContext
from ...message_tree import Locator, Segment
from ...paths import field_repetitions
from ..base import display_reference, person_name, put

_OID_RE = re.compile(r"^\d+(\.\d+)+$")


def _c(segment: Segment, field: int, rep: int, comp: int, sub: Optional[int] = None) -> str:
    return segment.get(Locator(field, rep, comp, sub))


def human_name(segment: Segment, field: int, rep: int = 0) -> Optional[Dict[str, Any]]:
    """XPN: family^given^middle^suffix^prefix^degree^type."""
    out: Dict[str, Any] = {}
    put(out, "family", _c(segment, field, rep, 1))
    put(out, "given.+", _c(segment, field, rep, 2))
    put(out, "given.+", _c(segment, field, rep, 3))
    put(out, "suffix.+", _c(segment, field, rep, 4))
    put(out, "prefix.+", _c(segment, field, rep, 5))
    if not out:
        return None
    put(out, "use", codes.lookup(codes.NAME_USE, _c(segment, field, rep, 7)))
    return out


def human_names(segment: Segment, field: int) -> List[Dict[str, Any]]:
    names = []
    for rep in field_repetitions(segment, field, None):
        name = human_name(segment, field, rep)
        if name:
            names.append(name)
    return names


def address(segment: Segment, field: int, rep: int = 0) -> Optional[Dict[str, Any]]:
    """XAD: street^other^city^state^zip^country^type."""
    out: Dict[str, Any] = {}
    put(out, "line.+", _c(segment, field, rep, 1))
    put(out, "line.+", _c(segment, field, rep, 2))
    put(out, "city", _c(segment, field, rep, 3))
    put(out, "state", _c(segment, field, rep, 4))
    put(out, "postalCode", _c(segment, field, rep, 5))
    put(out, "country", _c(segment, field, rep, 6))
    if not out:
        return None
    put(out, "use", codes.lookup(codes.ADDRESS_USE, _c(segment, field, rep, 7)))
    return out


def addresses(segment: Segment, field: int) -> List[Dict[str, Any]]:
    found = []
    for rep in field_repetitions(segment, field, None):
        addr = address(segment, field, rep)
        if addr:
            found.append(addr)
    return found


def contact_point(
    segment: Segment, field: int, rep: int = 0, default_use: Optional[str] = None
) -> Optional[Dict[str, Any]]:
    """
    XTN: number^use^equipment^email^country^area^local^extension.

    The equipment type picks ``system`` (and sometimes ``use``) and is kept
    verbatim in an extension so it survives a round trip.
    """
    number = _c(segment, field, rep, 1)
    use_code = _c(segment, field, rep, 2)
    equipment = _c(segment, field, rep, 3)
    email = _c(segment, field, rep, 4)
    if not number:
        area, local = _c(segment, field, rep, 6), _c(segment, field, rep, 7)
        if local:
            number = f"({area}){local}" if area else local
    ext = _c(segment, field, rep, 8)
    if number and ext:
        number = f"{number} x{ext}"

    system, use = codes.EQUIPMENT.get(equipment, ("phone", None))
    if email or "@" in number:
        system = "email"
        number = email or number
    if not number:
        return None

    out: Dict[str, Any] = {"system": system, "value": number}
    put(out, "use", use or codes.lookup(codes.TELECOM_USE, use_code, default_use))
    if equipment:
        out["extension"] = [
            {"url": codes.EXT_HL7_EQUIPMENT_TYPE, "valueString": equipment}
        ]
    return out


def contact_points(
    segment: Segment, field: int, default_use: Optional[str] = None
) -> List[Dict[str, Any]]:
    found = []
    for rep in field_repetitions(segment, field, None):
        cp = contact_point(segment, field, rep, default_use)
        if cp:
            found.append(cp)
    return found


def identifier(segment: Segment, field: int, rep: int = 0) -> Optional[Dict[str, Any]]:
    """
    CX: id^check^scheme^authority^type.

    An assigning authority with an OID universal id becomes a ``urn:oid:``
    system; otherwise the default identifier system is used and the
    authority's namespace id is kept as the assigner display.
    """
    value = _c(segment, field, rep, 1)
    if not value:
        return None
    namespace = _c(segment, field, rep, 4, 1)
    universal = _c(segment, field, rep, 4, 2)
    type_code = _c(segment, field, rep, 5)

    out: Dict[str, Any] = {"value": value}
    if _OID_RE.match(universal or ""):
        out["system"] = "urn:oid:" + universal
    elif _OID_RE.match(namespace or ""):
        out["system"] = "urn:oid:" + namespace
    else:
        out["system"] = codes.DEFAULT_IDENTIFIER_SYSTEM
    if namespace and not _OID_RE.match(namespace):
        out["assigner"] = {"display": namespace}
    if type_code:
        out["type"] = {"coding": [{"system": codes.SYSTEM_V2_0203, "code": type_code}]}
        if type_code == "MR":
            out["use"] = "official"
    return out


def identifiers(segment: Segment, field: int) -> List[Dict[str, Any]]:
    found = []
    for rep in field_repetitions(segment, field):
        ident = identifier(segment, field, rep)
        if ident:
            found.append(ident)
    return found


def hd_identifier(segment: Segment, field: int, rep: int = 0) -> Optional[Dict[str, Any]]:
    """HD: namespace^universal id^universal id type, as an Identifier."""
    namespace = _c(segment, field, rep, 1)
    universal = _c(segment, field, rep, 2)
    if not namespace and not universal:
        return None
    if universal:
        system = "urn:oid:" + universal if _OID_RE.match(universal) else codes.DEFAULT_IDENTIFIER_SYSTEM
        return {"system": system, "value": universal}
    return {"system": codes.DEFAULT_IDENTIFIER_SYSTEM, "value": namespace}


def practitioner_name(segment: Segment, field: int, rep: int = 0) -> Optional[Dict[str, Any]]:
    """XCN: id^family^given^middle^suffix^prefix, as a HumanName."""
    out: Dict[str, Any] = {}
    put(out, "family", _c(segment, field, rep, 2, 1))
    put(out, "given.+", _c(segment, field, rep, 3))
    put(out, "given.+", _c(segment, field, rep, 4))
    put(out, "suffix.+", _c(segment, field, rep, 5))
    put(out, "prefix.+", _c(segment, field, rep, 6))
    return out or None


def practitioner(
    segment: Segment, field: int, rep: int, context: ConversionContext
) -> Optional[Dict[str, Any]]:
    """
    Reference for an XCN repetition: the display and identifier, plus the
    Practitioner record built for the same id when there is one.
    """
    xcn_id = _c(segment, field, rep, 1)
    out = display_reference(person_name(segment, field, rep), xcn_id)
    found = context.lookup("Practitioner", xcn_id) if xcn_id else None
    if out is not None and found:
        out["reference"] = f"Practitioner/{found}"
    return out
