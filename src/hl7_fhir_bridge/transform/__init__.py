# src/hl7_fhir_bridge/transform/__init__.py
"""
Transform package initializer.

Automatically imports all v2_to_fhir and fhir_to_v2 converter modules so their
@register_inbound/@register_outbound decorators run, then freezes the
registries.
"""

from __future__ import annotations

from .fhir_to_v2 import load_all as _load_outbound
from .registry import freeze as _freeze
from .v2_to_fhir import load_all as _load_inbound

# Idempotent; safe if tests/CLI import this multiple times.
_load_inbound()
_load_outbound()
_freeze()
