# tests/test_service.py
"""
Tests for hl7_fhir_bridge.service: the single-message conversions, their
configuration switches and the helpers around them.
"""

import json

import pytest

from hl7_fhir_bridge.config import AppConfig
from hl7_fhir_bridge.exceptions import MissingAnchorError, ParseError, TransformError
from hl7_fhir_bridge.fhir_parser import build_resource
from hl7_fhir_bridge.message_tree import MessageTree, Segment
from hl7_fhir_bridge.service import (
    ADT_A01 as ADT_A01_TYPE,
    MDM_T02,
    ORM_O01,
    ORU_R01,
    SIU_S12,
    VXU_V04,
    canonical_order,
    convert_inbound,
    convert_outbound,
    detect_message_type,
    fhir_id,
    message_control_id,
)
from hl7_fhir_bridge.transform.v2_to_fhir.clinical import ConditionConverter

from conftest import ADT_A01, MSH_ADT, ORU_R01 as ORU_MESSAGE, PID_ONLY, hl7

# ------------------------------------------------------------------------------
# helpers
# ------------------------------------------------------------------------------


def bundle_of(raw: str, **config) -> dict:
    return json.loads(convert_inbound(raw, AppConfig(**config)).bundle_json)


def kinds(bundle: dict) -> list:
    return [e["resource"]["resourceType"] for e in bundle.get("entry", [])]


def normalized(bundle: dict) -> dict:
    """Bundle with generated ids replaced by their position and the timestamp dropped."""
    ids = {}
    for entry in bundle["entry"]:
        ids.setdefault(entry["resource"]["id"], f"id{len(ids)}")

    def swap(value):
        if isinstance(value, dict):
            return {k: swap(v) for k, v in value.items() if k != "timestamp"}
        if isinstance(value, list):
            return [swap(v) for v in value]
        if isinstance(value, str):
            for old, new in ids.items():
                if value == old or value.endswith("/" + old) or value.endswith(":" + old):
                    return value[: len(value) - len(old)] + new
        return value

    return swap(bundle)


def empty_values(node, path="$"):
    """Paths of every empty string, list, dict or null below ``node``."""
    found = []
    if isinstance(node, dict):
        for key, value in node.items():
            if value in ("", [], {}, None):
                found.append(f"{path}.{key}")
            found.extend(empty_values(value, f"{path}.{key}"))
    elif isinstance(node, list):
        for i, value in enumerate(node):
            found.extend(empty_values(value, f"{path}[{i}]"))
    return found


def _boom(self, loc, data, context):
    raise ValueError("bad DG1")


# ------------------------------------------------------------------------------
# convert_inbound
# ------------------------------------------------------------------------------


def test_inbound_structure_is_deterministic():
    first = normalized(bundle_of(ADT_A01))
    second = normalized(bundle_of(ADT_A01))
    assert first == second


def test_inbound_result_carries_transaction_id():
    result = convert_inbound(PID_ONLY)
    assert result.transaction_id == "MSG001"
    assert result.issues == ()
    assert json.loads(result.bundle_json)["id"] == "MSG001"


def test_inbound_never_emits_empty_values():
    for raw in (PID_ONLY, ADT_A01, ORU_MESSAGE):
        assert empty_values(bundle_of(raw)) == []


def test_inbound_without_control_id_gets_generated_id():
    raw = hl7(
        "MSH|^~\\&|SEND|SFAC|RECV|RFAC|20240101120000||ADT^A01||P|2.5",
        "PID|1||12345||Doe^John",
    )
    result = convert_inbound(raw)
    assert len(result.transaction_id) == 36
    assert json.loads(result.bundle_json)["id"] == result.transaction_id


def test_inbound_control_id_is_sanitized_for_bundle_id():
    raw = PID_ONLY.replace("MSG001", "MSG 001/A")
    result = convert_inbound(raw)
    assert result.transaction_id == "MSG 001/A"
    assert json.loads(result.bundle_json)["id"] == "MSG-001-A"


def test_inbound_without_pid_raises_missing_anchor():
    with pytest.raises(MissingAnchorError):
        convert_inbound(hl7(MSH_ADT, "EVN|A01|20240101120000", "PV1|1|I"))


def test_inbound_rejects_garbage():
    with pytest.raises(ParseError):
        convert_inbound("PID|1||12345")
    with pytest.raises(ParseError):
        convert_inbound("   ")


def test_inbound_version_strict_rejects(caplog):
    with pytest.raises(ParseError, match="Unsupported HL7 version '2.5'"):
        convert_inbound(
            PID_ONLY,
            AppConfig(supported_versions=("2.4",), version_strictness="strict"),
        )


def test_inbound_version_flexible_warns(caplog):
    result = convert_inbound(PID_ONLY, AppConfig(supported_versions=("2.4",)))
    assert json.loads(result.bundle_json)["entry"]
    assert "Unsupported HL7 version '2.5'" in caplog.text


def test_inbound_failed_pass_reported_in_operation_outcome(monkeypatch):
    monkeypatch.setattr(ConditionConverter, "build", _boom)
    result = convert_inbound(ADT_A01)
    bundle = json.loads(result.bundle_json)

    assert "Condition" not in kinds(bundle)
    assert kinds(bundle)[-1] == "OperationOutcome"
    assert [i.code for i in result.issues] == ["CONVERTER_FAILED"]
    outcome = bundle["entry"][-1]["resource"]
    issue = outcome["issue"][0]
    assert issue["severity"] == "error"
    assert issue["code"] == "exception"
    assert issue["details"]["text"] == "CONVERTER_FAILED"
    assert "bad DG1" in issue["diagnostics"]


def test_inbound_operation_outcome_can_be_disabled(monkeypatch):
    monkeypatch.setattr(ConditionConverter, "build", _boom)
    bundle = bundle_of(ADT_A01, emit_operation_outcome=False)
    assert "OperationOutcome" not in kinds(bundle)


def test_inbound_stop_on_error(monkeypatch):
    monkeypatch.setattr(ConditionConverter, "build", _boom)
    with pytest.raises(TransformError, match="Condition conversion failed"):
        convert_inbound(ADT_A01, AppConfig(continue_on_error=False))


def test_inbound_provenance_targets_every_record():
    bundle = bundle_of(ORU_MESSAGE, emit_provenance=True)
    assert kinds(bundle)[-1] == "Provenance"
    provenance = bundle["entry"][-1]["resource"]
    targets = [t["reference"] for t in provenance["target"]]
    expected = [
        f"{e['resource']['resourceType']}/{e['resource']['id']}" for e in bundle["entry"][:-1]
    ]
    assert targets == expected
    assert provenance["agent"][0]["who"]["display"] == "hl7-fhir-bridge"


def test_no_provenance_by_default():
    assert "Provenance" not in kinds(bundle_of(ORU_MESSAGE))


# ------------------------------------------------------------------------------
# convert_outbound
# ------------------------------------------------------------------------------


def _bundle(*records, bundle_id="B1"):
    return json.dumps(
        {
            "resourceType": "Bundle",
            "id": bundle_id,
            "type": "collection",
            "entry": [{"resource": r} for r in records],
        }
    )


PATIENT = {"resourceType": "Patient", "id": "p1", "name": [{"family": "Doe"}]}


def test_outbound_rejects_invalid_bundles():
    with pytest.raises(ParseError):
        convert_outbound("not json")
    with pytest.raises(ParseError, match="Expected a Bundle"):
        convert_outbound(json.dumps(PATIENT))
    with pytest.raises(ParseError):
        convert_outbound("")


def test_outbound_msh_defaults_from_config():
    er7 = convert_outbound(
        _bundle(PATIENT),
        AppConfig(sending_application="BRIDGE", receiving_application="LIS", hl7_version="2.5.1"),
    )
    msh = Segment.from_er7(er7.split("\r")[0])
    assert msh.get("3") == "BRIDGE"
    assert msh.get("5") == "LIS"
    assert msh.get("11") == "P"
    assert msh.get("12") == "2.5.1"
    assert len(msh.get("7")) >= 14


def test_outbound_message_header_event_and_source_win():
    header = {
        "resourceType": "MessageHeader",
        "id": "mh1",
        "eventCoding": {"system": "http://terminology.hl7.org/CodeSystem/v2-0003", "code": "R01"},
        "source": {"name": "EHR", "endpoint": "http://ehr.example.org"},
        "destination": [{"name": "LIS", "endpoint": "http://lis.example.org"}],
    }
    er7 = convert_outbound(_bundle(header, PATIENT))
    lines = [line for line in er7.split("\r") if line]
    msh = Segment.from_er7(lines[0])
    assert (msh.get("9-1"), msh.get("9-2")) == ("ORU", "R01")
    assert msh.get("3") == "EHR"
    assert msh.get("5") == "LIS"
    # header records produce no segments of their own
    assert [line.split("|")[0] for line in lines] == ["MSH", "PID"]


def test_outbound_control_id_falls_back_to_uuid():
    er7 = convert_outbound(json.dumps({"resourceType": "Bundle", "type": "collection", "entry": [{"resource": PATIENT}]}))
    assert len(message_control_id(er7)) == 36


def test_outbound_unknown_records_are_skipped(caplog):
    device = {"resourceType": "Device", "id": "d1"}
    er7 = convert_outbound(_bundle(PATIENT, device))
    assert [line.split("|")[0] for line in er7.split("\r") if line] == ["MSH", "EVN", "PID"]
    assert "No outbound converter for Device" in caplog.text


def test_inbound_bundle_converts_back():
    bundle_json = convert_inbound(ADT_A01).bundle_json
    er7 = convert_outbound(bundle_json)
    lines = {line.split("|")[0]: Segment.from_er7(line) for line in er7.split("\r") if line}

    assert message_control_id(er7) == "MSG001"
    assert lines["PID"].get("3-1") == "12345"
    assert lines["PID"].get("5-1") == "Doe"
    assert lines["PID"].get("7") == "19800101"
    assert lines["PV1"].get("2") == "I"
    assert lines["DG1"].get("3-1") == "I10"
    assert lines["AL1"].get("3-2") == "Penicillin"


# ------------------------------------------------------------------------------
# detect_message_type
# ------------------------------------------------------------------------------


@pytest.mark.parametrize(
    "kinds_present, expected",
    [
        (["Patient"], ADT_A01_TYPE),
        (["Patient", "Observation"], ADT_A01_TYPE),
        (["Patient", "ServiceRequest", "DiagnosticReport"], ORU_R01),
        (["Patient", "ServiceRequest"], ORM_O01),
        (["Patient", "MedicationRequest"], ORM_O01),
        (["Patient", "Immunization"], VXU_V04),
        (["Patient", "Appointment"], SIU_S12),
        (["Patient", "DocumentReference"], MDM_T02),
    ],
)
def test_detect_message_type_from_content(kinds_present, expected):
    records = [build_resource(kind, _minimal(kind)) for kind in kinds_present]
    assert detect_message_type(records) == expected


def _minimal(kind):
    subject = {"reference": "Patient/p1"}
    return {
        "Patient": {"id": "p1"},
        "Observation": {"id": "o1", "status": "final", "code": {"text": "x"}},
        "ServiceRequest": {"id": "sr1", "status": "active", "intent": "order", "subject": subject},
        "DiagnosticReport": {"id": "dr1", "status": "final", "code": {"text": "x"}},
        "MedicationRequest": {
            "id": "mr1",
            "status": "active",
            "intent": "order",
            "subject": subject,
            "medicationCodeableConcept": {"text": "x"},
        },
        "Immunization": {
            "id": "i1",
            "status": "completed",
            "patient": subject,
            "vaccineCode": {"text": "x"},
            "occurrenceDateTime": "2024-01-01",
        },
        "Appointment": {
            "id": "a1",
            "status": "booked",
            "participant": [{"actor": subject, "status": "accepted"}],
        },
        "DocumentReference": {
            "id": "doc1",
            "status": "current",
            "subject": subject,
            "content": [{"attachment": {"contentType": "text/plain"}}],
        },
    }[kind]


@pytest.mark.parametrize(
    "event, expected",
    [
        ("A08", ("ADT", "A08", "ADT_A01")),
        ("ADT^A03", ("ADT", "A03", "ADT_A03")),
        ("a01", ("ADT", "A01", "ADT_A01")),
        ("O01", ("ORM", "O01", "ORM_O01")),
        ("T02", ("MDM", "T02", "MDM_T02")),
        ("MDM^T02", ("MDM", "T02", "MDM_T02")),
    ],
)
def test_detect_message_type_from_header_event(event, expected, caplog):
    header = build_resource(
        "MessageHeader",
        {"id": "mh1", "eventCoding": {"code": event}, "source": {"endpoint": "http://ehr.example.org"}},
    )
    patient = build_resource("Patient", _minimal("Patient"))
    mtype = detect_message_type([header, patient])
    assert (mtype.code, mtype.trigger, mtype.structure) == expected
    assert "Unrecognized MessageHeader event" not in caplog.text


def test_message_type_text():
    assert str(ORU_R01) == "ORU^R01"
    assert ORU_R01.structure == "ORU_R01"


# ------------------------------------------------------------------------------
# helpers
# ------------------------------------------------------------------------------


def test_canonical_order():
    tree = MessageTree.new("ADT_A01")
    tree.append(Segment.from_er7("ZAB|1"))
    tree.set("ORDER/ORC-1", "NW")
    tree.append(Segment.from_er7("XYZ|1"))
    tree.append(Segment.from_er7("DG1|1"))
    tree.append(Segment.from_er7("PID|1"))
    tree.append(Segment.from_er7("EVN|A01"))

    canonical_order(tree)

    assert [c.name for c in tree.children] == ["MSH", "EVN", "PID", "DG1", "ORDER", "XYZ", "ZAB"]


def test_fhir_id():
    assert fhir_id("MSG001") == "MSG001"
    assert fhir_id("MSG 001/x") == "MSG-001-x"
    assert fhir_id("a" * 80) == "a" * 64
    assert len(fhir_id("")) == 36


def test_message_control_id():
    er7 = "MSH|^~\\&|A|B|C|D|20240101||ADT^A01|CTRL9|P|2.5\rPID|1\r"
    assert message_control_id(er7) == "CTRL9"
    assert message_control_id(er7.replace("\r", "\n")) == "CTRL9"
    assert message_control_id("PID|1") == ""
    assert message_control_id("MSH|^~\\&|A") == ""
