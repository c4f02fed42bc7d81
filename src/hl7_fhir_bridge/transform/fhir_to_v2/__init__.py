# src/hl7_fhir_bridge/transform/fhir_to_v2/__init__.py
"""
FHIR -> HL7 v2 converters.

Every public module in this package registers one or more converters with
@register_outbound(...); load_all() imports them.
"""

from __future__ import annotations

from typing import List

from ..registry import discover


def load_all() -> List[str]:
    """Import all converter modules under this package (idempotent)."""
    return discover(__name__)


__all__ = ["load_all"]
