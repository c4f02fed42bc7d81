# tests/test_cli.py
"""
Tests for hl7_fhir_bridge/cli.
"""

import io
import json as _json
import os
import runpy
import sys
import types
from pathlib import Path

import pytest

from hl7_fhir_bridge import cli

from conftest import ADT_A01, PID_ONLY

# ------------------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------------------

HL7_TEXT = (
    "MSH|^~\\&|HIS|RIH|EKG|EKG|20250101123000||ADT^A01|MSG00001|P|2.5.1\n"
    "EVN|A01|20250101123000\n"
    "PID|1||12345^^^MRN||Doe^John||19700101|M\n"
    "PV1|1|I|2000^2012^01||||1234^Physician^Primary\n"
)

BUNDLE_TEXT = _json.dumps(
    {
        "resourceType": "Bundle",
        "id": "B1",
        "type": "collection",
        "entry": [
            {
                "resource": {
                    "resourceType": "Patient",
                    "id": "p1",
                    "name": [{"family": "Doe", "given": ["John"]}],
                }
            }
        ],
    }
)


def write_hl7(tmp_path: Path, name: str = "msg.hl7", text: str = HL7_TEXT) -> Path:
    p = tmp_path / name
    p.write_text(text, encoding="utf-8")
    return p


def write_bundle(tmp_path: Path, name: str = "bundle.json", text: str = BUNDLE_TEXT) -> Path:
    p = tmp_path / name
    p.write_text(text, encoding="utf-8")
    return p


# ------------------------------------------------------------------------------
# Happy paths
# ------------------------------------------------------------------------------


def test_parse_hl7_ok(tmp_path, capsys):
    p = write_hl7(tmp_path)
    code = cli.main(["parse-hl7", str(p)])
    out, _ = capsys.readouterr()
    assert code == cli.EXIT_OK
    assert "MSH|" in out and "PID|" in out and "PV1|" in out


def test_to_fhir_stdout_pretty_ok(tmp_path, capsys):
    p = write_hl7(tmp_path)
    code = cli.main(["to-fhir", str(p), "--stdout", "--pretty"])
    out, _ = capsys.readouterr()
    assert code == cli.EXIT_OK
    assert out.strip().startswith("{") and out.strip().endswith("}")
    bundle = _json.loads(out)
    assert bundle["id"] == "MSG00001"
    assert bundle["entry"][0]["resource"]["resourceType"] == "Patient"


def test_to_fhir_writes_file(tmp_path):
    p = write_hl7(tmp_path, "adt.hl7")
    outdir = tmp_path / "out"
    code = cli.main(["to-fhir", str(p), "-o", str(outdir)])
    assert code == cli.EXIT_OK
    written = outdir / "adt.json"
    assert written.exists()
    assert _json.loads(written.read_text())["resourceType"] == "Bundle"


def test_to_fhir_reads_stdin(monkeypatch, capsys):
    monkeypatch.setattr(sys, "stdin", io.StringIO(PID_ONLY))
    code = cli.main(["to-fhir", "-", "--stdout"])
    out, _ = capsys.readouterr()
    assert code == cli.EXIT_OK
    assert _json.loads(out)["id"] == "MSG001"


def test_to_hl7_stdout_ok(tmp_path, capsys):
    p = write_bundle(tmp_path)
    code = cli.main(["to-hl7", str(p), "--stdout"])
    out, _ = capsys.readouterr()
    assert code == cli.EXIT_OK
    lines = out.strip().splitlines()
    assert lines[0].startswith("MSH|")
    assert any(line.startswith("PID|1||||Doe^John") for line in lines)


def test_to_hl7_writes_file_with_cr_separators(tmp_path):
    p = write_bundle(tmp_path)
    outdir = tmp_path / "out"
    code = cli.main(["to-hl7", str(p), "-o", str(outdir)])
    assert code == cli.EXIT_OK
    text = (outdir / "bundle.hl7").read_bytes().decode("utf-8")
    assert text.startswith("MSH|")
    assert "\r" in text and "\n" not in text


def test_to_hl7_invalid_bundle_is_handled_error(tmp_path):
    p = write_bundle(tmp_path, text='{"resourceType": "Patient"}')
    code = cli.main(["to-hl7", str(p), "--stdout"])
    assert code == cli.EXIT_ERR


def test_to_fhir_missing_pid_is_handled_error(tmp_path):
    p = write_hl7(tmp_path, text="MSH|^~\\&|A|B|C|D|20240101||ADT^A01|X1|P|2.5\rPV1|1|I\r")
    code = cli.main(["to-fhir", str(p), "--stdout"])
    assert code == cli.EXIT_ERR


def test_list_converters(capsys):
    code = cli.main(["list-converters"])
    out, _ = capsys.readouterr()
    assert code == cli.EXIT_OK
    assert "Patient (fatal)" in out
    assert "patient-pid" in out
    assert out.index("ServiceRequest") < out.index("Observation")


# ------------------------------------------------------------------------------
# batch
# ------------------------------------------------------------------------------


def test_batch_inbound_all_ok(tmp_path, capsys):
    a = write_hl7(tmp_path, "a.hl7", ADT_A01)
    b = write_hl7(tmp_path, "b.hl7", PID_ONLY.replace("MSG001", "MSG777"))
    outdir = tmp_path / "out"
    code = cli.main(["batch", "inbound", str(a), str(b), "-o", str(outdir)])
    out, _ = capsys.readouterr()
    assert code == cli.EXIT_OK
    assert (outdir / "a.json").exists() and (outdir / "b.json").exists()
    assert "-> MSG777" in out
    assert "2 succeeded, 0 failed" in out


def test_batch_reports_failures(tmp_path, capsys):
    good = write_bundle(tmp_path, "good.json")
    bad = write_bundle(tmp_path, "bad.json", text="{}")
    outdir = tmp_path / "out"
    code = cli.main(["batch", "outbound", str(good), str(bad), "-o", str(outdir)])
    out, _ = capsys.readouterr()
    assert code == cli.EXIT_ERR
    assert (outdir / "good.hl7").exists()
    assert not (outdir / "bad.hl7").exists()
    assert f"error {bad}" in out
    assert "1 succeeded, 1 failed" in out


def test_batch_rejects_unknown_direction(tmp_path):
    p = write_hl7(tmp_path)
    with pytest.raises(SystemExit) as e:
        cli.main(["batch", "sideways", str(p)])
    assert e.value.code == 2


# ------------------------------------------------------------------------------
# configuration
# ------------------------------------------------------------------------------


def test_config_file_is_applied(tmp_path, capsys):
    cfg = tmp_path / "cfg.yaml"
    cfg.write_text("sending_application: BRIDGE\nhl7_version: '2.5.1'\n")
    p = write_bundle(tmp_path)
    code = cli.main(["--config", str(cfg), "to-hl7", str(p), "--stdout"])
    out, _ = capsys.readouterr()
    assert code == cli.EXIT_OK
    msh = out.splitlines()[0].split("|")
    assert msh[2] == "BRIDGE"
    assert msh[11] == "2.5.1"


def test_invalid_config_is_usage_error(tmp_path):
    cfg = tmp_path / "cfg.yaml"
    cfg.write_text("version_strictness: sometimes\n")
    p = write_hl7(tmp_path)
    code = cli.main(["--config", str(cfg), "parse-hl7", str(p)])
    assert code == cli.EXIT_CLI


def test_strict_config_rejects_unsupported_version(tmp_path):
    cfg = tmp_path / "cfg.yaml"
    cfg.write_text("version_strictness: strict\nsupported_versions: ['2.5']\n")
    p = write_hl7(tmp_path)  # MSH-12 is 2.5.1
    code = cli.main(["--config", str(cfg), "to-fhir", str(p), "--stdout"])
    assert code == cli.EXIT_ERR


# ------------------------------------------------------------------------------
# _validate_existing_file
# ------------------------------------------------------------------------------


def test_parse_hl7_file_not_found(tmp_path):
    missing = tmp_path / "nope.hl7"
    code = cli.main(["parse-hl7", str(missing)])
    assert code == cli.EXIT_ERR


def test_parse_hl7_path_is_directory(tmp_path):
    d = tmp_path / "adir"
    d.mkdir()
    code = cli.main(["parse-hl7", str(d)])
    assert code == cli.EXIT_ERR


def test_parse_hl7_not_readable(tmp_path, monkeypatch):
    p = write_hl7(tmp_path)
    real_access = os.access
    # force unreadable
    monkeypatch.setattr(
        os,
        "access",
        lambda path, mode: (
            False if Path(path) == p and (mode & os.R_OK) else real_access(path, mode)
        ),
    )
    code = cli.main(["parse-hl7", str(p)])
    assert code == cli.EXIT_ERR


def test_parse_hl7_garbage_is_handled_error(tmp_path):
    p = write_hl7(tmp_path, text="not an hl7 message")
    code = cli.main(["parse-hl7", str(p)])
    assert code == cli.EXIT_ERR


# ------------------------------------------------------------------------------
# _prepare_output_dir
# ------------------------------------------------------------------------------


def test_prepare_output_dir_mkdir_raises_oserror(tmp_path, monkeypatch):
    p = write_hl7(tmp_path)
    bad = tmp_path / "nope"

    def boom_mkdir(self, parents=False, exist_ok=False):
        raise OSError("mkdir-fail")

    monkeypatch.setattr(Path, "mkdir", boom_mkdir)
    code = cli.main(["to-fhir", str(p), "-o", str(bad)])
    assert code == cli.EXIT_ERR


def test_prepare_output_dir_not_writable(tmp_path, monkeypatch):
    p = write_hl7(tmp_path)
    outdir = tmp_path / "outdir"
    outdir.mkdir(parents=True, exist_ok=True)
    real_access = os.access
    # deny W_OK for this directory
    monkeypatch.setattr(
        os,
        "access",
        lambda path, mode: (
            False
            if Path(path) == outdir and (mode & os.W_OK)
            else real_access(path, mode)
        ),
    )
    code = cli.main(["to-fhir", str(p), "-o", str(outdir)])
    assert code == cli.EXIT_ERR


def test_default_output_dir_from_config(tmp_path, monkeypatch):
    p = write_hl7(tmp_path)
    default_dir = tmp_path / "default_out"
    cfg = tmp_path / "cfg.yaml"
    cfg.write_text(f"default_output_dir: {default_dir}\n")
    code = cli.main(["--config", str(cfg), "to-fhir", str(p)])
    assert code == cli.EXIT_OK
    assert (default_dir / "msg.json").exists()


# ------------------------------------------------------------------------------
# _read_text_input / _write_text
# ------------------------------------------------------------------------------


def test_read_text_input_file_not_found(tmp_path, monkeypatch):
    p = tmp_path / "ghost.hl7"
    # Make _read_text_input raise FileNotFoundError
    monkeypatch.setattr(
        Path,
        "read_text",
        lambda self, **k: (_ for _ in ()).throw(FileNotFoundError("nope")),
    )
    with pytest.raises(cli.HL7FHIRBridgeError, match=r"^File not found"):
        cli._read_text_input(p)


def test_read_text_input_permission_error(tmp_path, monkeypatch):
    p = tmp_path / "x.hl7"
    p.write_text("x", encoding="utf-8")

    def boom(*a, **k):
        raise PermissionError("denied")

    monkeypatch.setattr(Path, "read_text", boom)
    with pytest.raises(cli.HL7FHIRBridgeError, match=r"^Permission denied"):
        cli._read_text_input(p)


def test_read_text_input_oserror(tmp_path, monkeypatch):
    p = tmp_path / "x2.hl7"
    p.write_text("x", encoding="utf-8")

    def boom(*a, **k):
        raise OSError("weird-os")

    monkeypatch.setattr(Path, "read_text", boom)
    with pytest.raises(cli.HL7FHIRBridgeError, match=r"^Failed to read"):
        cli._read_text_input(p)


def test_write_text_oserror(tmp_path, monkeypatch):
    def boom(*a, **k):
        raise OSError("disk-full")

    monkeypatch.setattr(Path, "write_text", boom)
    with pytest.raises(cli.HL7FHIRBridgeError, match=r"^Failed to write"):
        cli._write_text(tmp_path / "x.json", "{}")


# ------------------------------------------------------------------------------
# main()
# ------------------------------------------------------------------------------


def test_main_keyboardinterrupt(tmp_path, monkeypatch):
    p = write_hl7(tmp_path)
    monkeypatch.setattr(
        "hl7_fhir_bridge.cli._cmd_parse_hl7",
        lambda _: (_ for _ in ()).throw(KeyboardInterrupt),
    )
    code = cli.main(["parse-hl7", str(p)])
    assert code == cli.EXIT_ERR


def test_main_unknown_command_path(monkeypatch):
    # Build a dummy parser
    class DummyParser:
        def parse_args(self, argv=None):
            # main() reads verbose and config before dispatching
            return types.SimpleNamespace(cmd="weird", verbose=0, config=None)

        def error(self, msg):
            # override to NOT raise SystemExit so main() reaches return EXIT_CLI
            return None

    monkeypatch.setattr("hl7_fhir_bridge.cli._build_parser", lambda: DummyParser())
    code = cli.main([])
    assert code == cli.EXIT_CLI


def test_version_flag(capsys):
    with pytest.raises(SystemExit) as e:
        cli.main(["--version"])
    assert e.value.code == 0
    out, _ = capsys.readouterr()
    assert out.startswith("hl7-fhir-bridge ")


# ------------------------------------------------------------------------------
# __main__
# ------------------------------------------------------------------------------


@pytest.mark.filterwarnings("ignore::RuntimeWarning")
def test_main_dunder_name_runs_ok(monkeypatch):
    monkeypatch.setattr(sys, "argv", ["hl7-fhir-bridge", "parse-hl7", "-"])
    monkeypatch.setattr(sys, "stdin", io.StringIO(HL7_TEXT))
    with pytest.raises(SystemExit) as e:
        runpy.run_module("hl7_fhir_bridge.cli", run_name="__main__")
    assert e.value.code == 0
