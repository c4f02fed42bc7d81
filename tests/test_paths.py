# tests/test_paths.py
"""
Tests for hl7_fhir_bridge.paths (candidate resolution, enumeration stop rules,
field repetitions and the additive write helper).
"""

import logging

import pytest

from hl7_fhir_bridge.message_tree import MessageTree, Path, Segment
from hl7_fhir_bridge.paths import (
    DEFAULT_CUSTOM_SEGMENT_CAP,
    DEFAULT_POLICIES,
    StopReason,
    custom_segments,
    enumerate_segments,
    field_repetitions,
    first_segment,
    path_of,
    policy_for,
    put_if_present,
    resolve,
    segments_anywhere,
)

# ------------------------------------------------------------------------------
# helpers
# ------------------------------------------------------------------------------


def flat_tree(*lines: str) -> MessageTree:
    """Root-level tree built by hand (no hl7apy), one segment per line."""
    tree = MessageTree.new("TEST")
    for line in lines:
        tree.append(Segment.from_er7(line))
    return tree


# ------------------------------------------------------------------------------
# policies
# ------------------------------------------------------------------------------


def test_default_policy_table():
    assert policy_for("PID").cap == 1
    assert policy_for("OBX").discriminator == "3-1"
    assert policy_for("OBR").cap == 50
    assert policy_for("NK1").cap == 10
    assert policy_for("DG1").cap == 20
    # root candidates come first
    for policy in DEFAULT_POLICIES.values():
        assert policy.candidates[0].startswith(policy.kind)


def test_policy_cap_override():
    assert policy_for("OBX", {"OBX": 3}).cap == 3
    assert policy_for("OBX", {"DG1": 3}).cap == 50


def test_policy_paths_substitute_index():
    paths = policy_for("OBX").paths(2)
    assert paths == [Path.parse("OBX(2)"), Path.parse("OBSERVATION(2)/OBX")]


# ------------------------------------------------------------------------------
# resolve
# ------------------------------------------------------------------------------


def test_resolve_prefers_first_candidate():
    tree = MessageTree.new("TEST")
    tree.set("OBX-3-1", "root")
    tree.set("OBSERVATION/OBX-3-1", "nested")
    loc = resolve(tree, "OBX", 0, policy_for("OBX").paths(0))
    assert loc is not None
    assert loc.get("3-1") == "root"
    assert str(loc.path) == "OBX"


def test_resolve_falls_back_to_nested_candidate():
    tree = MessageTree.new("TEST")
    tree.set("PATIENT_RESULT/PATIENT/PID-3-1", "123")
    loc = resolve(tree, "PID", 0, policy_for("PID").paths(0))
    assert loc is not None
    assert loc.get("3-1") == "123"
    assert loc.root is tree


def test_resolve_miss_returns_none():
    tree = MessageTree.new("TEST")
    assert resolve(tree, "PID", 0, policy_for("PID").paths(0)) is None


# ------------------------------------------------------------------------------
# enumeration
# ------------------------------------------------------------------------------


def test_enumeration_exhausts_when_no_candidate():
    tree = flat_tree("DG1|1||A^a", "DG1|2||B^b")
    cursor = enumerate_segments(tree, "DG1")
    assert [loc.get("3-1") for loc in cursor] == ["A", "B"]
    assert cursor.stop_reason is StopReason.EXHAUSTED
    assert cursor.consumed == 2


def test_empty_discriminator_at_index_zero_means_absent(caplog):
    # the asymmetry is intentional: index 0 empty -> no segments at all
    tree = flat_tree("DG1|1||", "DG1|2||B^b")
    cursor = enumerate_segments(tree, "DG1")
    with caplog.at_level(logging.DEBUG, logger="hl7_fhir_bridge.paths"):
        assert list(cursor) == []
    assert cursor.stop_reason is StopReason.ABSENT
    assert "treating as absent" in caplog.text


def test_empty_discriminator_later_means_truncated(caplog):
    tree = flat_tree("DG1|1||A^a", "DG1|2||", "DG1|3||C^c")
    cursor = enumerate_segments(tree, "DG1")
    with caplog.at_level(logging.DEBUG, logger="hl7_fhir_bridge.paths"):
        assert [loc.get("3-1") for loc in cursor] == ["A"]
    assert cursor.stop_reason is StopReason.TRUNCATED
    assert "stopping" in caplog.text


def test_enumeration_stops_at_cap(caplog):
    lines = [f"OBX|{i}|NM|CODE{i}" for i in range(500)]
    tree = flat_tree(*lines)
    cursor = enumerate_segments(tree, "OBX")
    with caplog.at_level(logging.WARNING, logger="hl7_fhir_bridge.paths"):
        found = list(cursor)
    assert len(found) == 50
    assert cursor.stop_reason is StopReason.CAPPED
    assert "safety cap 50" in caplog.text


def test_enumeration_cap_override_from_config():
    tree = flat_tree(*[f"OBX|{i}|NM|CODE{i}" for i in range(10)])
    assert len(list(enumerate_segments(tree, "OBX", {"OBX": 4}))) == 4


def test_cursor_is_not_restartable():
    tree = flat_tree("AL1|1||PCN", "AL1|2||LTX")
    cursor = enumerate_segments(tree, "AL1")
    assert len(list(cursor)) == 2
    assert list(cursor) == []


def test_cursor_is_lazy():
    tree = flat_tree("AL1|1||PCN", "AL1|2||LTX")
    cursor = enumerate_segments(tree, "AL1")
    first = next(cursor)
    assert first.index == 0
    assert cursor.consumed == 1
    assert cursor.stop_reason is StopReason.RUNNING


def test_segment_without_discriminator_is_enough():
    tree = flat_tree("PID")
    loc = first_segment(tree, "PID")
    assert loc is not None and loc.index == 0


def test_enumeration_inside_groups():
    tree = MessageTree.new("ORU_R01")
    tree.set("ORDER_OBSERVATION(0)/OBR-4-1", "A")
    tree.set("ORDER_OBSERVATION(1)/OBR-4-1", "B")
    tree.set("ORDER_OBSERVATION(1)/OBSERVATION(0)/OBX-3-1", "X")
    tree.set("ORDER_OBSERVATION(1)/OBSERVATION(1)/OBX-3-1", "Y")
    obrs = list(enumerate_segments(tree, "OBR"))
    assert [o.get("4-1") for o in obrs] == ["A", "B"]
    obx = list(enumerate_segments(obrs[1].group, "OBX"))
    assert [o.get("3-1") for o in obx] == ["X", "Y"]
    assert list(enumerate_segments(obrs[0].group, "OBX")) == []


def test_path_of_nested_segment():
    tree = MessageTree.new("ORU_R01")
    tree.set("ORDER_OBSERVATION(1)/OBSERVATION(0)/OBX-3-1", "X")
    obx = tree.child("ORDER_OBSERVATION", 1).child("OBSERVATION").child("OBX")
    assert path_of(obx) == Path.parse("ORDER_OBSERVATION(1)/OBSERVATION(0)/OBX")


# ------------------------------------------------------------------------------
# segments anywhere in the tree
# ------------------------------------------------------------------------------


def notes_tree() -> MessageTree:
    tree = MessageTree.new("ORU_R01")
    tree.set("NTE-3", "root")
    tree.set("ORDER_OBSERVATION(0)/NTE-3", "order")
    tree.set("ORDER_OBSERVATION(0)/OBSERVATION(0)/NTE-3", "result")
    tree.set("ORDER_OBSERVATION(1)/NTE(0)-1", "1")
    tree.set("ORDER_OBSERVATION(1)/NTE(1)-3", "later")
    return tree


def test_segments_anywhere_walks_every_group():
    found = list(segments_anywhere(notes_tree(), "NTE"))
    assert [n.get("3") for n in found] == ["root", "order", "result", "later"]
    assert [n.index for n in found] == [0, 1, 2, 3]
    assert str(found[2].path) == "ORDER_OBSERVATION/OBSERVATION/NTE"
    assert str(found[3].path) == "ORDER_OBSERVATION(1)/NTE(1)"


def test_segments_anywhere_cap(caplog):
    with caplog.at_level(logging.WARNING, logger="hl7_fhir_bridge.paths"):
        found = list(segments_anywhere(notes_tree(), "NTE", {"NTE": 2}))
    assert [n.get("3") for n in found] == ["root", "order"]
    assert "safety cap 2" in caplog.text


# ------------------------------------------------------------------------------
# field repetitions
# ------------------------------------------------------------------------------


def test_field_repetitions_stop_on_empty_discriminator():
    seg = Segment.from_er7("PID|1||A^^^X~^^^Y~C^^^Z")
    assert list(field_repetitions(seg, 3)) == [0]


def test_field_repetitions_any_content():
    seg = Segment.from_er7("PID|1||||Doe^John~^Johnny")
    assert list(field_repetitions(seg, 5, None)) == [0, 1]


def test_field_repetitions_cap(caplog):
    seg = Segment.from_er7("PID|1||" + "~".join(f"ID{i}" for i in range(15)))
    with caplog.at_level(logging.WARNING, logger="hl7_fhir_bridge.paths"):
        assert len(list(field_repetitions(seg, 3))) == 10
    assert "only 10 read" in caplog.text


def test_custom_segments_in_message_order():
    tree = flat_tree("PID|1", "ZPI|1|Fluffy", "PV1|1", "ZXY|1|abc")
    assert [s.name for s in custom_segments(tree)] == ["ZPI", "ZXY"]
    assert [s.name for s in custom_segments(tree, exclude=("ZPI",))] == ["ZXY"]


def test_custom_segments_stop_at_cap(caplog):
    tree = flat_tree(*[f"ZXY|{i}" for i in range(500)])
    with caplog.at_level(logging.WARNING, logger="hl7_fhir_bridge.paths"):
        found = list(custom_segments(tree))
    assert len(found) == DEFAULT_CUSTOM_SEGMENT_CAP
    assert "Z segment enumeration stopped at safety cap 20" in caplog.text
    assert len(list(custom_segments(tree, {"Z": 3}))) == 3


# ------------------------------------------------------------------------------
# additive write
# ------------------------------------------------------------------------------


@pytest.mark.parametrize("absent", [None, ""])
def test_put_if_present_never_blanks(absent):
    tree = MessageTree.new("ADT_A01")
    assert put_if_present(tree, "PID-5-1", "Doe") is True
    assert put_if_present(tree, "PID-5-1", absent) is False
    assert tree.get("PID-5-1") == "Doe"


def test_put_if_present_stringifies():
    tree = MessageTree.new("ADT_A01")
    put_if_present(tree, "OBX-5", 42)
    assert tree.get("OBX-5") == "42"
