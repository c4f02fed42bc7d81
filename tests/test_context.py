# tests/test_context.py
"""
Tests for hl7_fhir_bridge.context.ConversionContext.
"""

import pytest

from hl7_fhir_bridge.context import (
    ConversionContext,
    filler_key,
    order_keys,
    placer_key,
)

# ------------------------------------------------------------------------------
# keys
# ------------------------------------------------------------------------------


def test_order_keys_priority():
    assert order_keys("P1", "F1", 0) == ["PLACER:P1", "FILLER:F1", "0"]
    assert order_keys(None, "F1", None) == ["FILLER:F1"]
    assert order_keys("", "", 3) == ["3"]
    assert placer_key("X") == "PLACER:X"
    assert filler_key("X") == "FILLER:X"


# ------------------------------------------------------------------------------
# anchors
# ------------------------------------------------------------------------------


def test_anchor_ids_bind_once():
    ctx = ConversionContext(transaction_id="MSG1")
    ctx.bind_patient("p1")
    ctx.bind_patient("p1")  # same value is fine
    assert ctx.patient_id == "p1"
    with pytest.raises(RuntimeError):
        ctx.bind_patient("p2")
    with pytest.raises(RuntimeError):
        ctx.bind_transaction("MSG2")


def test_anchor_ids_reject_empty():
    ctx = ConversionContext()
    with pytest.raises(ValueError):
        ctx.bind_encounter("")
    assert ctx.encounter_id is None


# ------------------------------------------------------------------------------
# correlation
# ------------------------------------------------------------------------------


def test_first_registration_wins(caplog):
    ctx = ConversionContext()
    assert ctx.register("ServiceRequest", "PLACER:P1", "sr-1") is True
    assert ctx.register("ServiceRequest", "PLACER:P1", "sr-2") is False
    assert ctx.lookup("ServiceRequest", "PLACER:P1") == "sr-1"
    assert "Duplicate ServiceRequest key" in caplog.text


def test_register_order_reports_new_keys_only():
    ctx = ConversionContext()
    assert ctx.register_order("ServiceRequest", "sr-1", "P1", "F1", 0) == [
        "PLACER:P1",
        "FILLER:F1",
        "0",
    ]
    assert ctx.register_order("ServiceRequest", "sr-2", "P2", "F1", 1) == ["PLACER:P2", "1"]
    assert ctx.lookup("ServiceRequest", "FILLER:F1") == "sr-1"


def test_link_prefers_placer_then_filler_then_index():
    ctx = ConversionContext()
    ctx.register("ServiceRequest", "PLACER:P1", "by-placer")
    ctx.register("ServiceRequest", "FILLER:F1", "by-filler")
    ctx.register("ServiceRequest", "0", "by-index")

    assert ctx.link("ServiceRequest", "P1", "F1", 0) == "by-placer"
    assert ctx.link("ServiceRequest", None, "F1", 0) == "by-filler"
    # an unknown placer falls through to the filler
    assert ctx.link("ServiceRequest", "nope", "F1", 0) == "by-filler"
    assert ctx.link("ServiceRequest", None, None, 0) == "by-index"
    assert ctx.link("ServiceRequest", "nope", "nope", 7) is None


def test_link_is_scoped_by_kind():
    ctx = ConversionContext()
    ctx.register("ServiceRequest", "0", "sr")
    assert ctx.link("MedicationRequest", index=0) is None


def test_members_follow_key_priority():
    ctx = ConversionContext()
    for key in order_keys("P1", "F1", 0):
        ctx.add_member("Observation", key, "obs-1")
        ctx.add_member("Observation", key, "obs-2")
        ctx.add_member("Observation", key, "obs-1")
    ctx.add_member("Observation", "1", "obs-3")

    assert ctx.members("Observation", "P1", "F1", 0) == ("obs-1", "obs-2")
    assert ctx.members("Observation", None, None, 1) == ("obs-3",)
    assert ctx.members("Observation", "P9") == ()


def test_sequences_are_per_name():
    ctx = ConversionContext()
    assert [ctx.next_sequence("ORDER_GROUP") for _ in range(3)] == [0, 1, 2]
    assert ctx.next_sequence("OTHER") == 0


def test_contexts_do_not_share_state():
    a, b = ConversionContext(), ConversionContext()
    a.register("ServiceRequest", "0", "sr")
    a.next_sequence("ORDER_GROUP")
    assert b.lookup("ServiceRequest", "0") is None
    assert b.next_sequence("ORDER_GROUP") == 0
    assert a.registered_kinds() == ["ServiceRequest"]
    assert b.registered_kinds() == []
