# src/hl7_fhir_bridge/transform/v2_to_fhir/patient.py
"""
PID (+ PD1, NK1, Z segments) -> Patient.

The Patient is the anchor of an inbound conversion: every other record
points at it, so its pass is fatal. The record id is the ``patient_id``
pre-bound in the conversion context when there is one.

Notes
-----
- Birth date keeps the precision of PID-7 (YYYY, YYYY-MM or YYYY-MM-DD).
- Gender is only set when PID-8 is present; unknown codes become "unknown".
- ZPI carries site extensions (pet name, VIP level, archive status). Any
  other Z segment is kept verbatim as an ``hl7-z-segment`` extension.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from ... import codes
from ...context import ConversionContext
from ...datetime_utils import hl7_to_fhir_date, hl7_to_fhir_datetime
from ...message_tree import Group, Locator, Segment
from ...paths import (
    Location,
    custom_segments,
    enumerate_segments,
    field_repetitions,
    first_segment,
)
from ..base import (
    FieldRule,
    InboundConverter,
    codeable_concept,
    concept,
    display_reference,
    person_name,
    put,
)
from ..registry import register_inbound
from ._datatypes import addresses, contact_points, human_name, human_names, identifiers

# ------------------------------------------------------------------------------
# globals
# ------------------------------------------------------------------------------

_ZPI_EXTENSIONS = (
    (2, codes.EXT_PET_NAME),
    (3, codes.EXT_VIP_LEVEL),
    (4, codes.EXT_ARCHIVE_STATUS),
)


def _gender(code: str) -> str:
    return codes.lookup(codes.GENDER, code, "unknown") or "unknown"


# ------------------------------------------------------------------------------
# helpers
# ------------------------------------------------------------------------------


def _category_extension(url: str, segment: Segment, field: int) -> Optional[Dict[str, Any]]:
    """US Core race/ethnicity: ombCategory codings plus a text summary."""
    subs: List[Dict[str, Any]] = []
    texts: List[str] = []
    for rep in field_repetitions(segment, field, None):
        code = segment.get(Locator(field, rep, 1))
        display = segment.get(Locator(field, rep, 2))
        if code:
            c = {"system": codes.SYSTEM_V3_RACE, "code": code}
            if display:
                c["display"] = display
            subs.append({"url": "ombCategory", "valueCoding": c})
        text = display or code
        if text:
            texts.append(text)
    if not subs and not texts:
        return None
    subs.append({"url": "text", "valueString": ", ".join(texts)})
    return {"url": url, "extension": subs}


def _contact(nk1: Segment) -> Optional[Dict[str, Any]]:
    out: Dict[str, Any] = {}
    put(out, "name", human_name(nk1, 2))
    relationship = codeable_concept(nk1, 3, default_system=codes.SYSTEM_V2_0063)
    if relationship:
        out["relationship"] = [relationship]
    put(out, "telecom", contact_points(nk1, 5) + contact_points(nk1, 6, "work"))
    addrs = addresses(nk1, 4)
    if addrs:
        out["address"] = addrs[0]
    return out or None


def _z_extensions(root: Group, caps: Dict[str, int]) -> List[Dict[str, Any]]:
    extensions: List[Dict[str, Any]] = []
    zpi_seen = False
    for seg in custom_segments(root, caps):
        if seg.name != "ZPI":
            extensions.append(
                {"url": codes.EXT_HL7_Z_SEGMENT, "valueString": seg.to_er7()}
            )
        elif not zpi_seen:
            zpi_seen = True
            for field, url in _ZPI_EXTENSIONS:
                value = seg.get(Locator(field))
                if value:
                    extensions.append({"url": url, "valueString": value})
    return extensions


# ------------------------------------------------------------------------------
# converter
# ------------------------------------------------------------------------------


@register_inbound("Patient", order=10, fatal=True)
class PatientConverter(InboundConverter):
    """Build the anchor Patient from PID and its satellite segments."""

    segment = "PID"
    rules = (
        FieldRule("7", "birthDate", hl7_to_fhir_date),
        FieldRule("8", "gender", _gender),
    )

    def build(
        self, loc: Location, data: Dict[str, Any], context: ConversionContext
    ) -> Optional[Dict[str, Any]]:
        pid = loc.segment
        root = loc.root
        if context.patient_id:
            data["id"] = context.patient_id
        else:
            context.bind_patient(data["id"])

        put(data, "identifier", identifiers(pid, 3) + identifiers(pid, 2))
        put(data, "name", human_names(pid, 5))
        put(data, "address", addresses(pid, 11))
        put(data, "telecom", contact_points(pid, 13, "home") + contact_points(pid, 14, "work"))

        marital = pid.get(Locator(16))
        put(
            data,
            "maritalStatus",
            concept(
                codes.SYSTEM_V3_MARITAL_STATUS,
                marital,
                codes.lookup(codes.MARITAL_DISPLAY, marital),
            ),
        )

        language = pid.get(Locator(15))
        if language:
            data["communication"] = [
                {"language": {"coding": [{"system": "urn:ietf:bcp:47", "code": language}]}}
            ]

        multiple = pid.get(Locator(24))
        order = pid.get(Locator(25))
        if order.isdigit():
            data["multipleBirthInteger"] = int(order)
        elif multiple in ("Y", "N"):
            data["multipleBirthBoolean"] = multiple == "Y"

        deceased_at = hl7_to_fhir_datetime(pid.get(Locator(29)))
        if deceased_at:
            data["deceasedDateTime"] = deceased_at
        elif pid.get(Locator(30)) in ("Y", "N"):
            data["deceasedBoolean"] = pid.get(Locator(30)) == "Y"

        extensions = [
            _category_extension(codes.EXT_US_CORE_RACE, pid, 10),
            _category_extension(codes.EXT_US_CORE_ETHNICITY, pid, 22),
        ]
        religion = codeable_concept(pid, 17, default_system=codes.SYSTEM_V3_RELIGION)
        if religion:
            extensions.append({"url": codes.EXT_RELIGION, "valueCodeableConcept": religion})
        extensions.extend(_z_extensions(root, self.caps))
        put(data, "extension", [e for e in extensions if e])

        pd1 = first_segment(root, "PD1", self.caps)
        if pd1 is not None:
            gp = display_reference(
                person_name(pd1.segment, 4), pd1.get(Locator(4, 0, 1))
            )
            if gp:
                data["generalPractitioner"] = [gp]

        contacts = [_contact(nk.segment) for nk in enumerate_segments(root, "NK1", self.caps)]
        put(data, "contact", [c for c in contacts if c])
        return data
