# tests/test_transform_registry.py
"""
Tests for hl7_fhir_bridge.transform.registry and the dispatch loop in
hl7_fhir_bridge.transform.dispatch.
"""

import pytest

from hl7_fhir_bridge.context import ConversionContext
from hl7_fhir_bridge.exceptions import MissingAnchorError, TransformError
from hl7_fhir_bridge.fhir_parser import build_resource, resource_type_of
from hl7_fhir_bridge.message_tree import MessageTree
from hl7_fhir_bridge.transform import registry as live_registry
from hl7_fhir_bridge.transform.base import InboundConverter, OutboundConverter
from hl7_fhir_bridge.transform.dispatch import run_inbound, run_outbound

# ------------------------------------------------------------------------------
# sample converters
# ------------------------------------------------------------------------------


class _PatientStub(InboundConverter):
    def convert(self, tree, context):
        context.bind_patient("p1")
        return [build_resource("Patient", {"id": "p1"})]


class _EmptyStub(InboundConverter):
    def convert(self, tree, context):
        return []


class _BoomStub(InboundConverter):
    def convert(self, tree, context):
        raise ValueError("boom")


class _ConditionStub(InboundConverter):
    def convert(self, tree, context):
        return [
            build_resource(
                "Condition",
                {"id": "c1", "subject": {"reference": f"Patient/{context.patient_id}"}},
            )
        ]


class _RecordingWriter(OutboundConverter):
    handles = ("Patient",)
    seen = []

    def convert(self, record, tree, context):
        type(self).seen.append((self.next_index(), record.id))


class _BrokenWriter(OutboundConverter):
    handles = ("Patient",)

    def convert(self, record, tree, context):
        raise KeyError("missing")


def _tree():
    return MessageTree.new("ADT_A01")


# ------------------------------------------------------------------------------
# live registry
# ------------------------------------------------------------------------------


def test_live_registry_is_frozen_and_ordered():
    assert live_registry.is_frozen()
    kinds = live_registry.available_kinds()
    assert kinds[0] == "Patient"
    assert kinds.index("ServiceRequest") < kinds.index("Observation")
    assert kinds.index("Observation") < kinds.index("DiagnosticReport")
    # devices precede the observations that point at them
    assert kinds.index("Device") < kinds.index("Observation")
    assert kinds[-1] == "MessageHeader"
    assert live_registry.get_inbound("Patient").fatal is True
    assert live_registry.get_inbound("Observation").fatal is False
    assert live_registry.available_outbound()[-1] == "extension-zsegment"


def test_live_registry_rejects_late_registration():
    with pytest.raises(RuntimeError, match="frozen"):
        live_registry.register_inbound("Late", order=999)(_EmptyStub)


# ------------------------------------------------------------------------------
# register_inbound / register_outbound
# ------------------------------------------------------------------------------


def test_register_inbound_sets_class_attributes(isolated_registry):
    cls = isolated_registry.register_inbound("Patient", order=10, fatal=True)(_PatientStub)
    assert cls is _PatientStub
    assert (cls.kind, cls.order, cls.fatal) == ("Patient", 10, True)


def test_inbound_dispatch_order_is_declared_order(isolated_registry):
    isolated_registry.register_inbound("Condition", order=70)(_ConditionStub)
    isolated_registry.register_inbound("Patient", order=10, fatal=True)(_PatientStub)
    assert isolated_registry.available_kinds() == ["Patient", "Condition"]


def test_register_inbound_rejects_duplicate_kind(isolated_registry):
    isolated_registry.register_inbound("Patient", order=10)(_PatientStub)
    with pytest.raises(ValueError, match=r"^Inbound converter already registered"):
        isolated_registry.register_inbound("Patient", order=11)(_EmptyStub)


def test_register_inbound_rejects_duplicate_order(isolated_registry):
    isolated_registry.register_inbound("Patient", order=10)(_PatientStub)
    with pytest.raises(ValueError, match=r"^Dispatch order 10 already used"):
        isolated_registry.register_inbound("Condition", order=10)(_ConditionStub)


def test_register_inbound_rejects_non_class(isolated_registry):
    with pytest.raises(TypeError, match=r"^Only classes can be registered"):
        isolated_registry.register_inbound("Patient", order=10)("duck")


def test_register_inbound_rejects_wrong_base(isolated_registry):
    class _NotAConverter:
        def convert(self, tree, context):
            return []

    with pytest.raises(TypeError, match="is not an InboundConverter"):
        isolated_registry.register_inbound("Patient", order=10)(_NotAConverter)


def test_register_outbound_rejects_duplicates_and_wrong_base(isolated_registry):
    isolated_registry.register_outbound("patient-pid", order=10)(_RecordingWriter)
    with pytest.raises(ValueError):
        isolated_registry.register_outbound("patient-pid", order=11)(_BrokenWriter)
    with pytest.raises(TypeError):
        isolated_registry.register_outbound("other", order=12)(_PatientStub)


def test_outbound_order_breaks_ties_by_key(isolated_registry):
    isolated_registry.register_outbound("b-writer", order=5)(_BrokenWriter)
    isolated_registry.register_outbound("a-writer", order=5)(_RecordingWriter)
    assert isolated_registry.available_outbound() == ["a-writer", "b-writer"]


def test_freeze_blocks_registration(isolated_registry):
    isolated_registry.freeze()
    with pytest.raises(RuntimeError):
        isolated_registry.register_outbound("x", order=1)(_RecordingWriter)


# ------------------------------------------------------------------------------
# run_inbound
# ------------------------------------------------------------------------------


def test_run_inbound_collects_in_order(isolated_registry):
    isolated_registry.register_inbound("Condition", order=70)(_ConditionStub)
    isolated_registry.register_inbound("Patient", order=10, fatal=True)(_PatientStub)
    records, issues = run_inbound(_tree(), ConversionContext())
    assert [resource_type_of(r) for r in records] == ["Patient", "Condition"]
    assert records[1].subject.reference == "Patient/p1"
    assert issues == []


def test_run_inbound_isolates_failing_pass(isolated_registry, caplog):
    isolated_registry.register_inbound("Patient", order=10, fatal=True)(_PatientStub)
    isolated_registry.register_inbound("Observation", order=50)(_BoomStub)
    isolated_registry.register_inbound("Condition", order=70)(_ConditionStub)

    records, issues = run_inbound(_tree(), ConversionContext())

    assert [resource_type_of(r) for r in records] == ["Patient", "Condition"]
    assert len(issues) == 1
    assert issues[0].severity == "error"
    assert issues[0].code == "CONVERTER_FAILED"
    assert issues[0].converter == "_BoomStub"
    assert "Observation pass failed: boom" in caplog.text


def test_run_inbound_stops_when_not_continuing(isolated_registry):
    isolated_registry.register_inbound("Patient", order=10, fatal=True)(_PatientStub)
    isolated_registry.register_inbound("Observation", order=50)(_BoomStub)
    with pytest.raises(TransformError, match="Observation conversion failed"):
        run_inbound(_tree(), ConversionContext(), continue_on_error=False)


def test_run_inbound_fatal_failure_is_missing_anchor(isolated_registry):
    isolated_registry.register_inbound("Patient", order=10, fatal=True)(_BoomStub)
    with pytest.raises(MissingAnchorError):
        run_inbound(_tree(), ConversionContext())


def test_run_inbound_fatal_empty_is_missing_anchor(isolated_registry):
    isolated_registry.register_inbound("Patient", order=10, fatal=True)(_EmptyStub)
    isolated_registry.register_inbound("Condition", order=70)(_ConditionStub)
    with pytest.raises(MissingAnchorError, match="No Patient"):
        run_inbound(_tree(), ConversionContext())


def test_missing_anchor_is_a_transform_error():
    assert issubclass(MissingAnchorError, TransformError)


# ------------------------------------------------------------------------------
# run_outbound
# ------------------------------------------------------------------------------


def test_run_outbound_fresh_counters_per_call(isolated_registry):
    isolated_registry.register_outbound("patient-pid", order=10)(_RecordingWriter)
    _RecordingWriter.seen = []
    patient = build_resource("Patient", {"id": "p1"})

    run_outbound([patient, patient], _tree(), ConversionContext())
    run_outbound([patient], _tree(), ConversionContext())

    assert _RecordingWriter.seen == [(0, "p1"), (1, "p1"), (0, "p1")]


def test_run_outbound_reports_unmatched_and_failures(isolated_registry, caplog):
    isolated_registry.register_outbound("broken", order=10)(_BrokenWriter)
    records = [
        build_resource("Patient", {"id": "p1"}),
        build_resource("Condition", {"id": "c1", "subject": {"reference": "Patient/p1"}}),
    ]
    issues = run_outbound(records, _tree(), ConversionContext())
    assert [(i.severity, i.code) for i in issues] == [
        ("error", "CONVERTER_FAILED"),
        ("warning", "NO_CONVERTER"),
    ]
    assert "No outbound converter for Condition" in caplog.text
