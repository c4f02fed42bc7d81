# src/hl7_fhir_bridge/transform/v2_to_fhir/__init__.py
"""
HL7 v2 -> FHIR converters.

Every public module in this package registers one or more converters with
@register_inbound(...); load_all() imports them.
"""

from __future__ import annotations

from typing import List

from ..registry import discover


def load_all() -> List[str]:
    """Import all converter modules under this package (idempotent)."""
    return discover(__name__)


__all__ = ["load_all"]
