# src/hl7_fhir_bridge/transform/fhir_to_v2/_datatypes.py
"""
Writers for composite HL7 v2 data types from FHIR record attributes.

Every writer takes a segment path (``"PID"``, ``"ORDER(0)/ORC"``), a field
number and a repetition, and writes only the components that have a value.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from ... import codes
from ...datetime_utils import fhir_to_hl7_date, fhir_to_hl7_datetime
from ...message_tree import MessageTree
from ..base import OutboundConverter, as_list, attr, first_coding

write = OutboundConverter.write

# ContactPoint.system -> XTN equipment type
_EQUIPMENT_OUT = {"phone": "PH", "fax": "FX", "pager": "BP", "email": "Internet"}
_TELECOM_USE_OUT = {"home": "PRN", "work": "WPN", "temp": "VHN", "mobile": "PRN"}

# FHIR date or dateTime kept as a string by the model
_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}(-\d{2}(T\d{2}:\d{2}(:\d{2}(\.\d+)?)?(Z|[+-]\d{2}:\d{2})?)?)?$")


def text(value: Any) -> Optional[str]:
    """HL7 text for a scalar FHIR value; None for empty values."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return "Y" if value else "N"
    if isinstance(value, datetime):
        return fhir_to_hl7_datetime(value)
    if isinstance(value, date):
        return fhir_to_hl7_date(value)
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, str) and _ISO_DATE_RE.match(value):
        if "T" in value:
            return fhir_to_hl7_datetime(value)
        return fhir_to_hl7_date(value)
    return str(value)


def loc(field: int, rep: int = 0, comp: Optional[int] = None, sub: Optional[int] = None) -> str:
    """Locator string ``F(r)-C-S`` (the repetition is omitted when 0)."""
    out = f"{field}({rep})" if rep else f"{field}"
    if comp is not None:
        out += f"-{comp}"
        if sub is not None:
            out += f"-{sub}"
    return out


def split_display(display: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """("Given Middle Family") -> (family, given)."""
    if not display:
        return None, None
    parts = display.split()
    if len(parts) == 1:
        return parts[0], None
    return parts[-1], " ".join(parts[:-1])


# ------------------------------------------------------------------------------
# writers
# ------------------------------------------------------------------------------


def write_name(tree: MessageTree, seg: str, field: int, rep: int, name: Any) -> None:
    given = [text(g) for g in as_list(attr(name, "given"))]
    write(
        tree,
        seg,
        {
            loc(field, rep, 1): text(attr(name, "family")) or text(attr(name, "text")),
            loc(field, rep, 2): given[0] if given else None,
            loc(field, rep, 3): " ".join(g for g in given[1:] if g) or None,
            loc(field, rep, 4): text(attr(name, "suffix", 0)),
            loc(field, rep, 5): text(attr(name, "prefix", 0)),
            loc(field, rep, 7): codes.lookup(codes.NAME_USE_OUT, attr(name, "use")),
        },
    )


def write_address(tree: MessageTree, seg: str, field: int, rep: int, address: Any) -> None:
    write(
        tree,
        seg,
        {
            loc(field, rep, 1): text(attr(address, "line", 0)),
            loc(field, rep, 2): text(attr(address, "line", 1)),
            loc(field, rep, 3): text(attr(address, "city")),
            loc(field, rep, 4): text(attr(address, "state")),
            loc(field, rep, 5): text(attr(address, "postalCode")),
            loc(field, rep, 6): text(attr(address, "country")),
            loc(field, rep, 7): codes.lookup(codes.ADDRESS_USE_OUT, attr(address, "use")),
        },
    )


def equipment_type(point: Any) -> Optional[str]:
    for ext in as_list(attr(point, "extension")):
        if attr(ext, "url") == codes.EXT_HL7_EQUIPMENT_TYPE and attr(ext, "valueString"):
            return attr(ext, "valueString")
    system = attr(point, "system")
    if system == "phone" and attr(point, "use") == "mobile":
        return "CP"
    return _EQUIPMENT_OUT.get(system or "")


def write_telecom(tree: MessageTree, seg: str, field: int, rep: int, point: Any) -> None:
    value = text(attr(point, "value"))
    is_email = attr(point, "system") == "email"
    write(
        tree,
        seg,
        {
            loc(field, rep, 1): None if is_email else value,
            loc(field, rep, 2): "NET" if is_email else _TELECOM_USE_OUT.get(attr(point, "use") or ""),
            loc(field, rep, 3): equipment_type(point),
            loc(field, rep, 4): value if is_email else None,
        },
    )


def write_identifier(tree: MessageTree, seg: str, field: int, rep: int, ident: Any) -> None:
    system = attr(ident, "system") or ""
    oid = None
    if system.startswith("urn:oid:") and system != codes.DEFAULT_IDENTIFIER_SYSTEM:
        oid = system[len("urn:oid:"):]
    type_code = attr(first_coding(attr(ident, "type")), "code")
    write(
        tree,
        seg,
        {
            loc(field, rep, 1): text(attr(ident, "value")),
            loc(field, rep, 4, 1): text(attr(ident, "assigner", "display")),
            loc(field, rep, 4, 2): oid,
            loc(field, rep, 4, 3): "ISO" if oid else None,
            loc(field, rep, 5): text(type_code),
        },
    )


def write_concept(
    tree: MessageTree, seg: str, field: int, rep: int, concept_obj: Any
) -> None:
    """CE/CWE: code^display^system, plus the second coding as the alternate."""
    codings = as_list(attr(concept_obj, "coding"))
    values: Dict[str, Optional[str]] = {}
    for offset, c in zip((0, 3), codings[:2]):
        system = attr(c, "system")
        values[loc(field, rep, offset + 1)] = text(attr(c, "code"))
        values[loc(field, rep, offset + 2)] = text(attr(c, "display"))
        values[loc(field, rep, offset + 3)] = codes.hl7_system(system) or system
    if not codings:
        values[loc(field, rep, 2)] = text(attr(concept_obj, "text"))
    elif not values.get(loc(field, rep, 2)):
        values[loc(field, rep, 2)] = text(attr(concept_obj, "text"))
    write(tree, seg, values)


def write_person(tree: MessageTree, seg: str, field: int, rep: int, ref: Any) -> None:
    """XCN from a (display-only) reference: id^family^given."""
    family, given = split_display(attr(ref, "display"))
    write(
        tree,
        seg,
        {
            loc(field, rep, 1): text(attr(ref, "identifier", "value")),
            loc(field, rep, 2): family,
            loc(field, rep, 3): given,
        },
    )


def write_quantity(
    tree: MessageTree, seg: str, value_field: int, unit_field: int, quantity: Any
) -> None:
    write(
        tree,
        seg,
        {
            loc(value_field): text(attr(quantity, "value")),
            loc(unit_field, 0, 1): text(attr(quantity, "code")) or text(attr(quantity, "unit")),
            loc(unit_field, 0, 2): text(attr(quantity, "unit")),
            loc(unit_field, 0, 3): "UCUM" if attr(quantity, "code") else None,
        },
    )


def extensions(record: Any, url: str) -> List[Any]:
    return [e for e in as_list(attr(record, "extension")) if attr(e, "url") == url]
