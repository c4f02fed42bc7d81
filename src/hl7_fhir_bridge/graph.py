# src/hl7_fhir_bridge/graph.py
"""
Resource graph: the ordered set of records produced by one inbound
conversion, and its serialization as a FHIR transaction Bundle.

Records point at each other with ``"Kind/id"`` references. On finalize,
references to records that are not in the graph are pruned (a reference
with a display keeps the display), so the Bundle never points outside
itself.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterator, List, Optional, Sequence

from fhir.resources.R4B.bundle import Bundle
from fhir.resources.R4B.operationoutcome import OperationOutcome
from fhir.resources.R4B.provenance import Provenance
from fhir.resources.R4B.resource import Resource

from . import codes
from .datetime_utils import now_instant
from .fhir_parser import resource_to_dict, resource_to_json, resource_type_of
from .transform.base import ConversionIssue

LOG = logging.getLogger(__name__)


class ResourceGraph:
    """
    Ordered records of one conversion.

    Parameters
    ----------
    bundle_id : str
        Id given to the Bundle (MSH-10 or a UUID).
    """

    def __init__(self, bundle_id: str) -> None:
        self.bundle_id = bundle_id
        self._records: List[Resource] = []

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[Resource]:
        return iter(self._records)

    @property
    def records(self) -> List[Resource]:
        return list(self._records)

    def add(self, record: Resource) -> None:
        self._records.append(record)

    def extend(self, records: Sequence[Resource]) -> None:
        for record in records:
            self.add(record)

    def of_kind(self, kind: str) -> List[Resource]:
        return [r for r in self._records if resource_type_of(r) == kind]

    def references(self) -> List[str]:
        """``"Kind/id"`` of every record, in order."""
        return [f"{resource_type_of(r)}/{r.id}" for r in self._records]

    # ------------------------------------------------------------------------------
    # finalize
    # ------------------------------------------------------------------------------

    def to_bundle(self) -> Bundle:
        """Validated transaction Bundle with dangling references pruned."""
        known = set(self.references())
        entries = []
        for record in self._records:
            data = resource_to_dict(record)
            dropped = _prune(data, known)
            if dropped:
                LOG.debug(
                    "Pruned %d dangling reference(s) from %s/%s",
                    dropped,
                    data.get("resourceType"),
                    data.get("id"),
                )
            entries.append(
                {
                    "fullUrl": f"urn:uuid:{data['id']}",
                    "resource": data,
                    "request": {"method": "POST", "url": data["resourceType"]},
                }
            )
        return Bundle(
            **{
                "resourceType": "Bundle",
                "id": self.bundle_id,
                "type": "transaction",
                "timestamp": now_instant(),
                "entry": entries,
            }
        )

    def to_json(self, pretty: bool = False) -> str:
        return resource_to_json(self.to_bundle(), pretty=pretty)


def _is_reference(node: Dict[str, Any]) -> bool:
    ref = node.get("reference")
    return isinstance(ref, str) and "/" in ref and not ref.startswith(("http", "urn:"))


def _prune(node: Any, known: set) -> int:
    """Remove dangling ``reference`` values in place; return how many."""
    dropped = 0
    if isinstance(node, dict):
        for key in list(node):
            value = node[key]
            if isinstance(value, dict) and _is_reference(value) and value["reference"] not in known:
                del value["reference"]
                dropped += 1
                if not value:
                    del node[key]
                    continue
            dropped += _prune(value, known)
    elif isinstance(node, list):
        for item in list(node):
            if isinstance(item, dict) and _is_reference(item) and item["reference"] not in known:
                del item["reference"]
                dropped += 1
                if not item:
                    node.remove(item)
                    continue
            dropped += _prune(item, known)
    return dropped


# ------------------------------------------------------------------------------
# companion records
# ------------------------------------------------------------------------------


def provenance_for(graph: ResourceGraph, agent_name: str, record_id: str) -> Optional[Provenance]:
    """Provenance targeting every record in the graph, or None for an empty graph."""
    targets = [{"reference": ref} for ref in graph.references()]
    if not targets:
        return None
    return Provenance(
        **{
            "resourceType": "Provenance",
            "id": record_id,
            "target": targets,
            "recorded": now_instant(),
            "activity": {
                "coding": [{"system": codes.SYSTEM_V3_DATA_OPERATION, "code": "CREATE"}]
            },
            "agent": [
                {
                    "type": {
                        "coding": [
                            {"system": codes.SYSTEM_PROVENANCE_AGENT_TYPE, "code": "assembler"}
                        ]
                    },
                    "who": {"display": agent_name},
                }
            ],
        }
    )


def operation_outcome(issues: Sequence[ConversionIssue], record_id: str) -> Optional[OperationOutcome]:
    """OperationOutcome listing conversion issues, or None when there are none."""
    if not issues:
        return None
    return OperationOutcome(
        **{
            "resourceType": "OperationOutcome",
            "id": record_id,
            "issue": [
                {
                    "severity": issue.severity,
                    "code": "exception" if issue.severity in ("error", "fatal") else "processing",
                    "details": {"text": issue.code},
                    "diagnostics": f"{issue.converter}: {issue.message}"
                    if issue.converter
                    else issue.message,
                }
                for issue in issues
            ],
        }
    )
