# src/hl7_fhir_bridge/__init__.py
"""
hl7_fhir_bridge: bidirectional HL7 v2 <-> FHIR conversion.

This package provides:
- convert_inbound: one HL7 v2 message -> FHIR transaction Bundle JSON.
- convert_outbound: one FHIR Bundle JSON -> HL7 v2 message.
- convert_batch: many items of either direction on a thread pool.
- A CLI (``hl7-fhir-bridge``) wrapping the above.
"""

from __future__ import annotations

__version__ = "0.2.0"

from .batch import BatchResult, ItemError, ItemResult, convert_batch  # noqa: E402
from .service import InboundResult, convert_inbound, convert_outbound  # noqa: E402

__all__ = [
    "__version__",
    "BatchResult",
    "InboundResult",
    "ItemError",
    "ItemResult",
    "convert_batch",
    "convert_inbound",
    "convert_outbound",
]
