# src/hl7_fhir_bridge/config.py
"""
Configuration utilities for hl7_fhir_bridge.

Provides a simple dataclass-based configuration object and a loader that reads
YAML configuration files when present.

Example
-------
.. code-block:: yaml

    sending_application: BRIDGE
    receiving_application: LegacyApp
    version_strictness: strict
    supported_versions: ["2.5", "2.5.1"]
    segment_caps:
      OBX: 100
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

STRICTNESS_LEVELS = ("strict", "flexible")


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Attributes
    ----------
    default_output_dir : Path
        Directory where CLI output files are written.
    sending_application, sending_facility : str
        MSH-3 and MSH-4 of generated HL7 messages.
    receiving_application, receiving_facility : str
        MSH-5 and MSH-6 of generated HL7 messages.
    processing_id : str
        MSH-11 of generated HL7 messages.
    hl7_version : str
        MSH-12 of generated HL7 messages.
    supported_versions : tuple of str
        Inbound MSH-12 values accepted without complaint.
    version_strictness : str
        "strict" rejects unsupported inbound versions, "flexible" only warns.
    continue_on_error : bool
        When False, any failing inbound pass aborts the conversion.
    emit_provenance : bool
        Append a Provenance entry targeting every converted record.
    emit_operation_outcome : bool
        Append an OperationOutcome entry when inbound passes failed.
    emit_message_header : bool
        Add a MessageHeader, plus Organizations for the sending and
        receiving facilities, to inbound Bundles.
    batch_workers : int or None
        Worker pool size for batch conversion; None derives it from CPUs.
    segment_caps : dict
        Per segment kind override of the enumeration safety cap; the key
        "Z" caps site-defined Z segments.
    """

    default_output_dir: Path = Path("outputs")
    sending_application: str = "HL7FHIRBridge"
    sending_facility: str = ""
    receiving_application: str = "LegacyApp"
    receiving_facility: str = ""
    processing_id: str = "P"
    hl7_version: str = "2.5"
    supported_versions: Tuple[str, ...] = (
        "2.3",
        "2.3.1",
        "2.4",
        "2.5",
        "2.5.1",
        "2.6",
        "2.7",
        "2.8",
    )
    version_strictness: str = "flexible"
    continue_on_error: bool = True
    emit_provenance: bool = False
    emit_operation_outcome: bool = True
    emit_message_header: bool = False
    batch_workers: Optional[int] = None
    segment_caps: Dict[str, int] = field(default_factory=dict)


def load_config(path: Optional[Path]) -> AppConfig:
    """
    Load application configuration from a YAML file.

    Parameters
    ----------
    path : Path or None
        Path to a YAML config file. If None, defaults are used.

    Returns
    -------
    AppConfig
        The loaded configuration. Keys absent from the file keep their
        defaults; unknown keys are ignored.

    Raises
    ------
    TypeError
        If the YAML file does not parse to a mapping at the top level, or a
        value has the wrong shape.
    ValueError
        If ``version_strictness`` or ``batch_workers`` is out of range.
    yaml.YAMLError
        If the file is not valid YAML.
    """
    if path is None:
        return AppConfig()

    data: Any = yaml.safe_load(path.read_text())

    if data is None:
        return AppConfig()

    if not isinstance(data, Mapping):
        raise TypeError(
            f"Config file must contain a mapping at top level, "
            f"got {type(data).__name__}. "
            f"Config file: {path}"
        )

    known = {f.name for f in fields(AppConfig)}
    kwargs: Dict[str, Any] = {k: v for k, v in data.items() if k in known}

    if "default_output_dir" in kwargs:
        kwargs["default_output_dir"] = Path(kwargs["default_output_dir"])

    if "supported_versions" in kwargs:
        versions = kwargs["supported_versions"]
        if isinstance(versions, str) or not isinstance(versions, (list, tuple)):
            raise TypeError("supported_versions must be a list of strings")
        kwargs["supported_versions"] = tuple(str(v) for v in versions)

    strictness = str(kwargs.get("version_strictness", "flexible")).lower()
    if strictness not in STRICTNESS_LEVELS:
        raise ValueError(
            f"version_strictness must be one of {STRICTNESS_LEVELS}, got {strictness!r}"
        )
    kwargs["version_strictness"] = strictness

    workers = kwargs.get("batch_workers")
    if workers is not None:
        if not isinstance(workers, int) or isinstance(workers, bool):
            raise TypeError("batch_workers must be an integer")
        if workers < 1:
            raise ValueError(f"batch_workers must be positive, got {workers}")

    caps = kwargs.get("segment_caps")
    if caps is not None:
        if not isinstance(caps, Mapping):
            raise TypeError("segment_caps must be a mapping of segment kind to int")
        kwargs["segment_caps"] = {str(k).upper(): int(v) for k, v in caps.items()}

    for flag in (
        "continue_on_error",
        "emit_provenance",
        "emit_operation_outcome",
        "emit_message_header",
    ):
        if flag in kwargs and not isinstance(kwargs[flag], bool):
            raise TypeError(
                f"{flag} must be a boolean, got {type(kwargs[flag]).__name__}"
            )

    return AppConfig(**kwargs)
