# tests/test_datetime_utils.py
"""
Tests for hl7_fhir_bridge.datetime_utils.
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from hl7_fhir_bridge.datetime_utils import (
    fhir_to_hl7_date,
    fhir_to_hl7_datetime,
    hl7_to_fhir_date,
    hl7_to_fhir_datetime,
    hl7_to_fhir_instant,
    now_hl7,
    parse_hl7_datetime,
)

# ------------------------------------------------------------------------------
# HL7 -> FHIR
# ------------------------------------------------------------------------------


@pytest.mark.parametrize(
    "value, expected",
    [
        ("1980", "1980"),
        ("198001", "1980-01"),
        ("19800101", "1980-01-01"),
        ("19800101123000", "1980-01-01"),
        ("", None),
        (None, None),
        ("yesterday", None),
        ("19801301", None),
    ],
)
def test_hl7_to_fhir_date(value, expected):
    assert hl7_to_fhir_date(value) == expected


@pytest.mark.parametrize(
    "value, expected",
    [
        ("20240101", "2024-01-01"),
        ("202401011230", "2024-01-01T12:30:00+00:00"),
        ("20240101123045", "2024-01-01T12:30:45+00:00"),
        ("20240101123045-0500", "2024-01-01T12:30:45-05:00"),
        ("20240101123045.25", "2024-01-01T12:30:45.250000+00:00"),
        ("bad", None),
    ],
)
def test_hl7_to_fhir_datetime(value, expected):
    assert hl7_to_fhir_datetime(value) == expected


def test_hl7_to_fhir_instant_always_has_time():
    assert hl7_to_fhir_instant("20240101") == "2024-01-01T00:00:00+00:00"
    assert hl7_to_fhir_instant("") is None


def test_parse_hl7_datetime_offset():
    dt = parse_hl7_datetime("202401011200+0130")
    assert dt.utcoffset() == timedelta(hours=1, minutes=30)
    assert parse_hl7_datetime("20240230") is None


# ------------------------------------------------------------------------------
# FHIR -> HL7
# ------------------------------------------------------------------------------


@pytest.mark.parametrize(
    "value, expected",
    [
        ("1980", "1980"),
        ("1980-01", "198001"),
        ("1980-01-02", "19800102"),
        (date(1980, 1, 2), "19800102"),
        ("2024-01-01T12:00:00+00:00", "20240101"),
        (None, None),
        ("", None),
    ],
)
def test_fhir_to_hl7_date(value, expected):
    assert fhir_to_hl7_date(value) == expected


@pytest.mark.parametrize(
    "value, expected",
    [
        ("2024-01-01T12:30:45+00:00", "20240101123045+0000"),
        ("2024-01-01T12:30:45Z", "20240101123045+0000"),
        ("2024-01-01T12:30:45-05:00", "20240101123045-0500"),
        (datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc), "20240101080000+0000"),
        (datetime(2024, 1, 1, 8, 0), "20240101080000"),
        ("2024-01-01", "20240101"),
        ("2024-01", "202401"),
        ("garbage-value-here", None),
    ],
)
def test_fhir_to_hl7_datetime(value, expected):
    assert fhir_to_hl7_datetime(value) == expected


def test_now_hl7_shape():
    value = now_hl7()
    assert len(value) == len("20240101120000+0000")
    assert value.endswith("+0000")
