# tests/test_hl7_parser.py
"""
Tests for hl7_fhir_bridge.hl7_parser.
"""

import pytest
from hl7apy.core import Message

from hl7_fhir_bridge.exceptions import ParseError
from hl7_fhir_bridge.hl7_parser import (
    iter_segments,
    normalize_segments,
    parse_hl7_structured,
    parse_hl7_v2,
    to_pretty_segments,
)

from conftest import ADT_A01, MSH_ORM, ORU_R01, PID, hl7

# Minimal valid HL7 v2 ADT^A01 (ER7) with CR separators.
VALID_ADT_A01 = (
    "MSH|^~\\&|SEND|SENDER|RECV|RECEIVER|202001011200||ADT^A01|MSG00001|P|2.5\r"
    "PID|1||12345^^^HOSP^MR||Doe^John\r"
    "PV1|1|I\r"
)

# Deliberately odd/invalid message type to trigger strict validation failure,
# but still parseable when strict=False (lenient mode).
MALFORMED_MSGTYPE = (
    "MSH|^~\\&|SEND|SENDER|RECV|RECEIVER|202001011200||BAD^EVT|MSG00002|P|2.5\r"
    "ZXY|freeform\r"
)


# ------------------------------------------------------------------------------
# normalize_segments
# ------------------------------------------------------------------------------


def test_normalize_segments_accepts_any_line_ending():
    assert normalize_segments("MSH|a\r\nPID|1\nPV1|1\r") == "MSH|a\rPID|1\rPV1|1"


def test_normalize_segments_drops_blank_segments():
    assert normalize_segments("MSH|a\r\r  \rPID|1\r\r") == "MSH|a\rPID|1"


# ------------------------------------------------------------------------------
# parse_hl7_v2
# ------------------------------------------------------------------------------


def test_parse_hl7_v2_rejects_non_string():
    with pytest.raises(TypeError, match=r"^raw must be str"):
        parse_hl7_v2(123)


def test_parse_hl7_v2_rejects_empty_string():
    with pytest.raises(ValueError, match=r"^raw must be a non-empty HL7 v2 str"):
        parse_hl7_v2("")


def test_parse_hl7_v2_rejects_missing_msh():
    with pytest.raises(ParseError, match=r"first segment is not MSH"):
        parse_hl7_v2("PID|1||12345\r")


def test_parse_hl7_v2_parses_valid_message_strict():
    msg = parse_hl7_v2(VALID_ADT_A01, strict=True)
    assert isinstance(msg, Message)
    # MSH-9 should be ADT^A01
    msh9 = msg.MSH.msh_9.to_er7()
    assert str(msh9) == "ADT^A01"


def test_parse_hl7_v2_accepts_lf_separators():
    msg = parse_hl7_v2(VALID_ADT_A01.replace("\r", "\n"), strict=False)
    assert [s.name for s in iter_segments(msg)] == ["MSH", "PID", "PV1"]


def test_parse_hl7_v2_lenient_allows_malformed_message():
    # In lenient mode, odd message types should still parse to a Message
    msg = parse_hl7_v2(MALFORMED_MSGTYPE, strict=False)
    assert isinstance(msg, Message)


def test_parse_hl7_v2_strict_raises_on_malformed_message():
    # In strict mode, malformed message type should raise a ParseError
    with pytest.raises(ParseError, match=r"^Failed to parse HL7 v2 message"):
        parse_hl7_v2(MALFORMED_MSGTYPE, strict=True)


# ------------------------------------------------------------------------------
# parse_hl7_structured
# ------------------------------------------------------------------------------


def test_parse_hl7_structured_keeps_every_segment():
    msg = parse_hl7_structured(ORU_R01)
    names = [s.name for s in iter_segments(msg)]
    assert names == ["MSH", "PID", "ORC", "OBR", "OBX", "OBX"]


def test_parse_hl7_structured_falls_back_for_unknown_structures():
    msg = parse_hl7_structured(MALFORMED_MSGTYPE)
    assert [s.name for s in iter_segments(msg)] == ["MSH", "ZXY"]


def test_parse_hl7_structured_falls_back_when_segments_are_dropped():
    raw = ADT_A01.rstrip("\r") + "\rZPI|1|Fluffy|GOLD\rZXY|1|abc\r"
    names = [s.name for s in iter_segments(parse_hl7_structured(raw))]
    assert names[-2:] == ["ZPI", "ZXY"]
    assert len(names) == len(normalize_segments(raw).split("\r"))


def test_parse_hl7_structured_keeps_orm_pharmacy_segments():
    raw = hl7(MSH_ORM, PID, "ORC|NW|RX1", "RXE|^BID|197361^Amlodipine^RXNORM|5")
    names = [s.name for s in iter_segments(parse_hl7_structured(raw))]
    assert names == ["MSH", "PID", "ORC", "RXE"]


def test_parse_hl7_structured_still_rejects_garbage():
    with pytest.raises(ParseError):
        parse_hl7_structured("not an hl7 message")


# ------------------------------------------------------------------------------
# to_pretty_segments
# ------------------------------------------------------------------------------


def test_to_pretty_segments_rejects_non_message():
    with pytest.raises(TypeError, match=r"^msg must be hl7apy.core.Message"):
        to_pretty_segments("not a message")


def test_to_pretty_segments_returns_segments_list():
    msg = parse_hl7_v2(VALID_ADT_A01, strict=True)
    segments = to_pretty_segments(msg)
    assert isinstance(segments, list)
    assert segments[0].startswith("MSH|")
    assert segments[1] == "PID|1||12345^^^HOSP^MR||Doe^John"
    assert any(s.startswith("PV1|") for s in segments)
