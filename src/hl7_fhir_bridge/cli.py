# src/hl7_fhir_bridge/cli.py
"""
Command-line interface for hl7_fhir_bridge.

Subcommands
-----------
parse-hl7
    Pretty-print parsed HL7 v2 segments from a file (or stdin with "-").

to-fhir
    Convert one HL7 v2 message into a FHIR transaction Bundle and write it to
    a file (default) or stdout (with --stdout).

to-hl7
    Convert one FHIR Bundle (JSON) into an HL7 v2 message.

batch
    Convert many files concurrently in one direction and report per-file
    failures.

list-converters
    List the registered inbound and outbound converters in dispatch order.

Exit codes
----------
0  success
1  handled, expected error (HL7FHIRBridgeError, failed batch items or
   KeyboardInterrupt)
2  CLI usage error (argparse or invalid configuration)
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

import yaml

from . import __version__
from .batch import DIRECTIONS, convert_batch
from .config import AppConfig, load_config
from .exceptions import HL7FHIRBridgeError
from .hl7_parser import parse_hl7_structured, to_pretty_segments
from .logging_utils import configure_logging
from .service import convert_inbound, convert_outbound
from .transform.registry import inbound_converters, outbound_converters

# ------------------------------------------------------------------------------
# globals
# ------------------------------------------------------------------------------

LOG = logging.getLogger("hl7_fhir_bridge")

EXIT_OK = 0
EXIT_ERR = 1
EXIT_CLI = 2

_SUFFIX = {"inbound": ".json", "outbound": ".hl7"}

# ------------------------------------------------------------------------------
# Parser construction
# ------------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    """
    Build and return the top-level argparse parser and subcommands.

    Returns
    -------
    argparse.ArgumentParser
        Configured parser with subcommands: parse-hl7, to-fhir, to-hl7,
        batch, list-converters.
    """
    parser = argparse.ArgumentParser(
        prog="hl7-fhir-bridge",
        description="Convert between HL7 v2 messages and FHIR Bundles.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to YAML config file (overrides defaults).",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v, -vv).",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"hl7-fhir-bridge {__version__}",
    )

    sub = parser.add_subparsers(dest="cmd", required=True)

    # parse-hl7
    s1 = sub.add_parser("parse-hl7", help="Parse an HL7 v2 message file.")
    s1.add_argument(
        "path",
        type=Path,
        help='Path to HL7 v2 message file. Use "-" to read from stdin.',
    )

    # to-fhir
    s2 = sub.add_parser("to-fhir", help="Convert HL7 v2 to a FHIR Bundle.")
    s2.add_argument(
        "path",
        type=Path,
        help='Path to HL7 v2 message file. Use "-" to read from stdin.',
    )
    _add_output_args(s2)
    s2.add_argument(
        "--pretty",
        action="store_true",
        help="Pretty-print the Bundle JSON.",
    )

    # to-hl7
    s3 = sub.add_parser("to-hl7", help="Convert a FHIR Bundle to HL7 v2.")
    s3.add_argument(
        "path",
        type=Path,
        help='Path to FHIR Bundle JSON file. Use "-" to read from stdin.',
    )
    _add_output_args(s3)

    # batch
    s4 = sub.add_parser("batch", help="Convert many files concurrently.")
    s4.add_argument(
        "direction",
        choices=DIRECTIONS,
        help="inbound: HL7 v2 -> FHIR; outbound: FHIR -> HL7 v2.",
    )
    s4.add_argument("paths", type=Path, nargs="+", help="Input files.")
    s4.add_argument(
        "-o",
        "--output-dir",
        type=Path,
        default=None,
        help="Directory for converted files (defaults to config.default_output_dir).",
    )

    # list-converters
    sub.add_parser("list-converters", help="List registered converters.")

    return parser


def _add_output_args(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "-o",
        "--output-dir",
        type=Path,
        default=None,
        help="Directory to write the result (defaults to config.default_output_dir).",
    )
    p.add_argument(
        "--stdout",
        action="store_true",
        help="Write the result to stdout instead of a file.",
    )


# ------------------------------------------------------------------------------
# Validation helpers
# ------------------------------------------------------------------------------


def _validate_existing_file(path: Path, allow_stdin: bool = False) -> None:
    """
    Validate that a path exists and is a readable file, or is "-" if
    allow_stdin is True.

    Raises
    ------
    HL7FHIRBridgeError
        If the path does not exist, is not a file or is not readable.
    """
    if allow_stdin and str(path) == "-":
        return
    if not path.exists():
        raise HL7FHIRBridgeError(f"File not found: {path}")
    if not path.is_file():
        raise HL7FHIRBridgeError(f"Not a file: {path}")
    if not os.access(path, os.R_OK):
        raise HL7FHIRBridgeError(f"File is not readable: {path}")


def _prepare_output_dir(output_dir: Path) -> Path:
    """
    Create ``output_dir`` if needed and check it is writable.

    Raises
    ------
    HL7FHIRBridgeError
        If the directory cannot be created or is not writable.
    """
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise HL7FHIRBridgeError(f"Cannot create output directory: {output_dir} ({e})")
    if not os.access(output_dir, os.W_OK):
        raise HL7FHIRBridgeError(f"Output directory not writable: {output_dir}")
    return output_dir


def _read_text_input(path: Path) -> str:
    """
    Read text either from a file or from stdin when path is "-".

    Raises
    ------
    HL7FHIRBridgeError
        On missing files, permission errors, or OS read failures.
    """
    try:
        if str(path) == "-":
            return sys.stdin.read()
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise HL7FHIRBridgeError(f"File not found: {path}")
    except PermissionError:
        raise HL7FHIRBridgeError(f"Permission denied: {path}")
    except OSError as e:
        raise HL7FHIRBridgeError(f"Failed to read {path}: {e}") from e


def _write_text(out_path: Path, text: str) -> None:
    try:
        out_path.write_text(text, encoding="utf-8")
    except OSError as e:
        raise HL7FHIRBridgeError(f"Failed to write {out_path}: {e}") from e
    LOG.info("Wrote %s", out_path)


def _emit(text: str, stem: str, suffix: str, output_dir: Optional[Path], to_stdout: bool, cfg: AppConfig) -> None:
    if to_stdout:
        sys.stdout.write(text if text.endswith("\n") else text + "\n")
        sys.stdout.flush()
        return
    out_dir = _prepare_output_dir(output_dir or cfg.default_output_dir)
    _write_text(out_dir / f"{stem}{suffix}", text)


def _stem(path: Path) -> str:
    return "stdin" if str(path) == "-" else path.stem


# ------------------------------------------------------------------------------
# Command handlers
# ------------------------------------------------------------------------------


def _cmd_parse_hl7(path: Path) -> int:
    """Parse-hl7: pretty-print HL7 v2 segments."""
    _validate_existing_file(path, allow_stdin=True)
    content = _read_text_input(path)
    try:
        msg = parse_hl7_structured(content)
    except (TypeError, ValueError) as e:
        raise HL7FHIRBridgeError(f"Failed to parse HL7 v2 message: {e}") from e
    for line in to_pretty_segments(msg):
        print(line)
    return EXIT_OK


def _cmd_to_fhir(
    path: Path,
    output_dir: Optional[Path],
    to_stdout: bool,
    pretty: bool,
    cfg: AppConfig,
) -> int:
    """
    To-fhir: convert an HL7 v2 message into a FHIR Bundle.

    The output file is named after the input file, with a ``.json`` suffix.
    """
    _validate_existing_file(path, allow_stdin=True)
    content = _read_text_input(path)
    result = convert_inbound(content, cfg)
    text = result.bundle_json
    if pretty:
        text = json.dumps(json.loads(text), indent=2)
    for issue in result.issues:
        LOG.warning("%s: %s", issue.code, issue.message)
    _emit(text, _stem(path), ".json", output_dir, to_stdout, cfg)
    return EXIT_OK


def _cmd_to_hl7(path: Path, output_dir: Optional[Path], to_stdout: bool, cfg: AppConfig) -> int:
    """To-hl7: convert a FHIR Bundle into an HL7 v2 message."""
    _validate_existing_file(path, allow_stdin=True)
    content = _read_text_input(path)
    er7 = convert_outbound(content, cfg)
    if to_stdout:
        er7 = er7.replace("\r", "\n")
    _emit(er7, _stem(path), ".hl7", output_dir, to_stdout, cfg)
    return EXIT_OK


def _cmd_batch(direction: str, paths: List[Path], output_dir: Optional[Path], cfg: AppConfig) -> int:
    """
    Batch: convert every input file; failures are reported per file.

    Returns
    -------
    int
        EXIT_OK when every item converted, EXIT_ERR otherwise.
    """
    for p in paths:
        _validate_existing_file(p)
    items = [_read_text_input(p) for p in paths]
    out_dir = _prepare_output_dir(output_dir or cfg.default_output_dir)

    batch = convert_batch(items, direction, cfg)
    suffix = _SUFFIX[direction]
    for item in batch.results:
        _write_text(out_dir / f"{paths[item.index].stem}{suffix}", item.output)
        print(f"ok    {paths[item.index]} -> {item.extracted_id} ({item.elapsed_ms:.1f} ms)")
    for err in batch.errors:
        print(f"error {paths[err.index]}: {err.message}")
    print(
        f"{batch.success_count} succeeded, {batch.failure_count} failed "
        f"in {batch.elapsed_ms:.1f} ms"
    )
    return EXIT_OK if not batch.errors else EXIT_ERR


def _cmd_list_converters() -> int:
    print("Inbound (HL7 v2 -> FHIR), dispatch order:")
    for cls in inbound_converters():
        flag = " (fatal)" if cls.fatal else ""
        print(f"    {cls.order:4d}  {cls.kind}{flag}")
    print("Outbound (FHIR -> HL7 v2):")
    for cls in outbound_converters():
        print(f"    {cls.order:4d}  {cls.key}")
    return EXIT_OK


# ------------------------------------------------------------------------------
# Entrypoint
# ------------------------------------------------------------------------------


def main(argv: Optional[list[str]] = None) -> int:
    """
    CLI entrypoint.

    Parameters
    ----------
    argv : list[str] or None, default None
        Argument list for testing; None uses sys.argv[1:].

    Returns
    -------
    int
        Process exit code (EXIT_OK, EXIT_ERR, or EXIT_CLI).
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure_logging(args.verbose)

    try:
        cfg = load_config(args.config)
    except (OSError, TypeError, ValueError, yaml.YAMLError) as e:
        LOG.error("Invalid configuration %s: %s", args.config, e)
        return EXIT_CLI

    try:
        if args.cmd == "parse-hl7":
            return _cmd_parse_hl7(args.path)
        if args.cmd == "to-fhir":
            return _cmd_to_fhir(
                path=args.path,
                output_dir=args.output_dir,
                to_stdout=bool(args.stdout),
                pretty=bool(args.pretty),
                cfg=cfg,
            )
        if args.cmd == "to-hl7":
            return _cmd_to_hl7(
                path=args.path,
                output_dir=args.output_dir,
                to_stdout=bool(args.stdout),
                cfg=cfg,
            )
        if args.cmd == "batch":
            return _cmd_batch(args.direction, args.paths, args.output_dir, cfg)
        if args.cmd == "list-converters":
            return _cmd_list_converters()
        parser.error("Unknown command")
        return EXIT_CLI

    except HL7FHIRBridgeError as e:
        LOG.error("%s", e)
        return EXIT_ERR
    except KeyboardInterrupt:
        LOG.error("Interrupted")
        return EXIT_ERR


if __name__ == "__main__":
    raise SystemExit(main())
