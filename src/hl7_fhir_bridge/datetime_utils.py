# src/hl7_fhir_bridge/datetime_utils.py
"""
Date/time conversion between HL7 v2 TS/DTM and FHIR date, dateTime, instant.

HL7 v2 timestamps look like ``YYYY[MM[DD[HH[MM[SS[.S[S[S[S]]]]]]]]][+/-ZZZZ]``.
Values without an offset are read as UTC.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Union

LOG = logging.getLogger(__name__)

# ------------------------------------------------------------------------------
# globals
# ------------------------------------------------------------------------------

_HL7_TS_RE = re.compile(
    r"^(?P<year>\d{4})(?P<month>\d{2})?(?P<day>\d{2})?"
    r"(?:(?P<hour>\d{2})(?P<minute>\d{2})?(?P<second>\d{2})?(?:\.(?P<frac>\d{1,4}))?)?"
    r"(?P<tz>[+-]\d{4})?$"
)
_PARTIAL_DATE_RE = re.compile(r"\d{4}(-\d{2})?")

DateLike = Union[str, date, datetime, None]


# ------------------------------------------------------------------------------
# helpers
# ------------------------------------------------------------------------------


def _offset(tz: Optional[str]) -> timezone:
    if not tz:
        return timezone.utc
    sign = -1 if tz[0] == "-" else 1
    hours, minutes = int(tz[1:3]), int(tz[3:5])
    return timezone(sign * timedelta(hours=hours, minutes=minutes))


def _match(value: Optional[str]):
    text = (value or "").strip()
    if not text:
        return None
    m = _HL7_TS_RE.match(text)
    if not m:
        LOG.debug("Ignoring malformed HL7 timestamp %r", text)
    return m


# ------------------------------------------------------------------------------
# HL7 -> FHIR
# ------------------------------------------------------------------------------


def parse_hl7_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an HL7 timestamp into a timezone-aware datetime.

    Missing parts default to the start of the period (``2024`` becomes
    2024-01-01T00:00:00+00:00). Returns None for empty or invalid input.
    """
    m = _match(value)
    if m is None:
        return None
    g = m.groupdict()
    frac = g["frac"] or ""
    try:
        return datetime(
            int(g["year"]),
            int(g["month"] or 1),
            int(g["day"] or 1),
            int(g["hour"] or 0),
            int(g["minute"] or 0),
            int(g["second"] or 0),
            int(frac.ljust(6, "0")) if frac else 0,
            tzinfo=_offset(g["tz"]),
        )
    except ValueError:
        LOG.debug("Ignoring out-of-range HL7 timestamp %r", value)
        return None


def hl7_to_fhir_date(value: Optional[str]) -> Optional[str]:
    """
    Normalize an HL7 date (YYYY[MM[DD]]...) into a FHIR date.

    Keeps the source precision: ``1980`` -> ``1980``, ``198001`` ->
    ``1980-01``, ``19800101123000`` -> ``1980-01-01``.
    """
    m = _match(value)
    if m is None or parse_hl7_datetime(value) is None:
        return None
    g = m.groupdict()
    out = g["year"]
    if g["month"]:
        out += f"-{g['month']}"
        if g["day"]:
            out += f"-{g['day']}"
    return out


def hl7_to_fhir_datetime(value: Optional[str]) -> Optional[str]:
    """
    Convert an HL7 timestamp into a FHIR dateTime.

    Date-only values stay dates (FHIR allows partial dateTimes); values with a
    time get seconds and an offset, as FHIR requires.
    """
    m = _match(value)
    if m is None:
        return None
    if m.group("hour") is None:
        return hl7_to_fhir_date(value)
    dt = parse_hl7_datetime(value)
    return dt.isoformat() if dt else None


def hl7_to_fhir_instant(value: Optional[str]) -> Optional[str]:
    """Convert an HL7 timestamp into a FHIR instant (always full precision)."""
    dt = parse_hl7_datetime(value)
    return dt.isoformat() if dt else None


# ------------------------------------------------------------------------------
# FHIR -> HL7
# ------------------------------------------------------------------------------


def _coerce(value: DateLike) -> Union[date, datetime, None]:
    if value is None or isinstance(value, (date, datetime)):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        if len(text) <= 10:
            parts = text.split("-")
            year = int(parts[0])
            month = int(parts[1]) if len(parts) > 1 else 1
            day = int(parts[2]) if len(parts) > 2 else 1
            return date(year, month, day)
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except (ValueError, IndexError):
        LOG.debug("Ignoring malformed FHIR date %r", value)
        return None


def _partial(value: DateLike) -> Optional[str]:
    if isinstance(value, str) and _PARTIAL_DATE_RE.fullmatch(value.strip()):
        return value.strip().replace("-", "")
    return None


def fhir_to_hl7_date(value: DateLike) -> Optional[str]:
    """Format a FHIR date/dateTime (object or string) as HL7 ``YYYYMMDD``."""
    partial = _partial(value)
    if partial:
        # year or year-month keeps its precision
        return partial
    d = _coerce(value)
    return d.strftime("%Y%m%d") if d else None


def fhir_to_hl7_datetime(value: DateLike) -> Optional[str]:
    """
    Format a FHIR dateTime/instant as HL7 ``YYYYMMDDHHMMSS[+ZZZZ]``.

    Dates without a time are written as ``YYYYMMDD``.
    """
    partial = _partial(value)
    if partial:
        return partial
    d = _coerce(value)
    if d is None:
        return None
    if not isinstance(d, datetime):
        return d.strftime("%Y%m%d")
    out = d.strftime("%Y%m%d%H%M%S")
    if d.tzinfo is not None:
        out += d.strftime("%z")
    return out


def now_hl7() -> str:
    """Current UTC time as an HL7 timestamp."""
    return fhir_to_hl7_datetime(datetime.now(timezone.utc)) or ""


def now_instant() -> str:
    return datetime.now(timezone.utc).isoformat()
