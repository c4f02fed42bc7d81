# src/hl7_fhir_bridge/service.py
"""
The two single-message conversions.

- convert_inbound: HL7 v2 ER7 text -> FHIR transaction Bundle JSON
- convert_outbound: FHIR Bundle JSON -> HL7 v2 ER7 text

Each call owns one ConversionContext and one message tree; nothing is
shared between calls except the read-only converter registries, so both
functions can run concurrently (see ``hl7_fhir_bridge.batch``).
"""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Tuple

from . import transform  # noqa: F401  (loads and freezes the converter registries)
from .config import AppConfig
from .context import ConversionContext
from .datetime_utils import now_hl7
from .exceptions import ParseError
from .fhir_parser import bundle_id, load_bundle_resources, resource_type_of
from .graph import ResourceGraph, operation_outcome, provenance_for
from .message_tree import Group, MessageTree, Node
from .transform.base import ConversionIssue, attr
from .transform.dispatch import run_inbound, run_outbound

LOG = logging.getLogger(__name__)

AGENT_NAME = "hl7-fhir-bridge"

# ADT events by trigger alone ("A08") or with the message code ("ADT^A08")
_ADT_EVENT_RE = re.compile(r"^(?:ADT\^)?(A\d\d)$")

# characters a FHIR id may not contain
_ID_INVALID_RE = re.compile(r"[^A-Za-z0-9\-.]")

# ------------------------------------------------------------------------------
# message types
# ------------------------------------------------------------------------------


# ADT events whose message structure is ADT_A01 (HL7 table 0354)
_SHARED_STRUCTURES = {
    f"ADT_{trigger}": "ADT_A01" for trigger in ("A04", "A08", "A13")
}


class MessageType(NamedTuple):
    code: str
    trigger: str

    @property
    def structure(self) -> str:
        key = f"{self.code}_{self.trigger}"
        return _SHARED_STRUCTURES.get(key, key)

    def __str__(self) -> str:
        return f"{self.code}^{self.trigger}"


ADT_A01 = MessageType("ADT", "A01")
ORM_O01 = MessageType("ORM", "O01")
ORU_R01 = MessageType("ORU", "R01")
SIU_S12 = MessageType("SIU", "S12")
VXU_V04 = MessageType("VXU", "V04")
MDM_T02 = MessageType("MDM", "T02")

# content detection: first kind present wins
_CONTENT_TYPES: Tuple[Tuple[Tuple[str, ...], MessageType], ...] = (
    (("DiagnosticReport",), ORU_R01),
    (("Appointment",), SIU_S12),
    (("ServiceRequest", "MedicationRequest"), ORM_O01),
    (("Immunization",), VXU_V04),
    (("DocumentReference",), MDM_T02),
)

# event coding fragments, checked in order
_EVENT_TYPES: Tuple[Tuple[Tuple[str, ...], MessageType], ...] = (
    (("ADT",), ADT_A01),
    (("ORM", "O01"), ORM_O01),
    (("ORU", "R01"), ORU_R01),
    (("SIU", "S12"), SIU_S12),
    (("VXU", "V04"), VXU_V04),
    (("MDM", "T02"), MDM_T02),
)

# records that describe the message itself rather than its content
_HEADER_KINDS = frozenset({"MessageHeader", "Provenance", "OperationOutcome"})

# root segment order of generated messages; groups follow, then Z segments
_SEGMENT_RANK = {
    name: rank
    for rank, name in enumerate(
        (
            "MSH", "EVN", "SCH", "PID", "PD1", "NTE", "ROL", "NK1", "PV1", "PV2",
            "TXA", "OBX", "AL1", "DG1", "PR1", "GT1", "IN1",
        )
    )
}
_GROUP_RANK = len(_SEGMENT_RANK)


def detect_message_type(records: Sequence[Any]) -> MessageType:
    """
    Pick the outbound message type.

    A MessageHeader ``eventCoding`` wins (``"ORU^R01"``, ``"R01"`` ...); ADT
    triggers (``"A08"``, ``"ADT^A03"``) keep their event code. Otherwise the
    first matching content rule applies, defaulting to ADT^A01.
    """
    for record in records:
        if resource_type_of(record) != "MessageHeader":
            continue
        code = str(attr(record, "eventCoding", "code") or "").upper()
        adt = _ADT_EVENT_RE.match(code)
        if adt:
            return MessageType("ADT", adt.group(1))
        for fragments, mtype in _EVENT_TYPES:
            if any(f in code for f in fragments):
                return mtype
        if code:
            LOG.warning("Unrecognized MessageHeader event %r; detecting from content", code)
        break

    kinds = {resource_type_of(r) for r in records}
    for wanted, mtype in _CONTENT_TYPES:
        if kinds.intersection(wanted):
            return mtype
    return ADT_A01


# ------------------------------------------------------------------------------
# inbound
# ------------------------------------------------------------------------------


@dataclass(frozen=True)
class InboundResult:
    """Bundle JSON plus the correlation id of the conversion."""

    bundle_json: str
    transaction_id: str
    issues: Tuple[ConversionIssue, ...] = ()


def check_version(tree: MessageTree, config: AppConfig) -> None:
    """
    Compare MSH-12 with the supported versions.

    Raises
    ------
    ParseError
        If the version is not supported and strictness is "strict".
    """
    version = tree.get("MSH-12")
    if version in config.supported_versions:
        return
    msg = f"Unsupported HL7 version {version or '<missing>'!r}; supported: {', '.join(config.supported_versions)}"
    if config.version_strictness == "strict":
        raise ParseError(msg)
    LOG.warning(msg)


def convert_inbound(raw: str, config: Optional[AppConfig] = None) -> InboundResult:
    """
    Convert one HL7 v2 message into a FHIR transaction Bundle.

    Parameters
    ----------
    raw : str
        ER7 text; segments separated by CR, LF or CRLF.
    config : AppConfig, optional
        Defaults to ``AppConfig()``.

    Returns
    -------
    InboundResult
        ``bundle_json`` and ``transaction_id`` (MSH-10, or a UUID when the
        message has none; also used as the Bundle id).

    Raises
    ------
    ParseError
        If the message cannot be parsed or its version is rejected.
    MissingAnchorError
        If no Patient can be produced.
    TransformError
        If a pass fails and ``continue_on_error`` is off.
    """
    cfg = config or AppConfig()
    tree = MessageTree.parse(raw)
    check_version(tree, cfg)

    transaction_id = tree.get("MSH-10") or str(uuid.uuid4())
    context = ConversionContext(
        transaction_id=transaction_id,
        message_type=tree.get("MSH-9-1").upper(),
        trigger_event=tree.get("MSH-9-2").upper(),
    )
    LOG.info(
        "Converting %s^%s message %s to FHIR",
        context.message_type,
        context.trigger_event,
        transaction_id,
    )

    records, issues = run_inbound(
        tree,
        context,
        caps=cfg.segment_caps,
        options={"emit_message_header": cfg.emit_message_header},
        continue_on_error=cfg.continue_on_error,
    )

    graph = ResourceGraph(fhir_id(transaction_id))
    graph.extend(records)
    if cfg.emit_provenance:
        provenance = provenance_for(graph, AGENT_NAME, str(uuid.uuid4()))
        if provenance is not None:
            graph.add(provenance)
    if cfg.emit_operation_outcome:
        outcome = operation_outcome(issues, str(uuid.uuid4()))
        if outcome is not None:
            graph.add(outcome)

    LOG.info("Produced %d record(s) for message %s", len(graph), transaction_id)
    return InboundResult(graph.to_json(), transaction_id, tuple(issues))


# ------------------------------------------------------------------------------
# outbound
# ------------------------------------------------------------------------------


def populate_msh(
    tree: MessageTree,
    mtype: MessageType,
    control_id: str,
    config: AppConfig,
    header: Any = None,
) -> None:
    """Fill MSH from configuration; a MessageHeader's source and destination win."""
    destination = attr(header, "destination", 0)
    values: Dict[str, Optional[str]] = {
        "3": attr(header, "source", "name") or config.sending_application,
        "4": attr(header, "source", "software") or config.sending_facility,
        "5": attr(destination, "name") or config.receiving_application,
        "6": attr(destination, "receiver", "display") or config.receiving_facility,
        "7": now_hl7(),
        "9-1": mtype.code,
        "9-2": mtype.trigger,
        "9-3": mtype.structure,
        "10": control_id,
        "11": config.processing_id,
        "12": config.hl7_version,
    }
    for locator, value in values.items():
        if value:
            tree.set(f"MSH-{locator}", str(value))
    if mtype.code in ("ADT", "MDM"):
        tree.set("EVN-1", mtype.trigger)
        tree.set("EVN-2", tree.get("MSH-7"))


def _rank(node: Node) -> int:
    if isinstance(node, Group):
        return _GROUP_RANK
    if node.name in _SEGMENT_RANK:
        return _SEGMENT_RANK[node.name]
    if node.name.startswith("Z"):
        return _GROUP_RANK + 2
    return _GROUP_RANK + 1


def canonical_order(tree: MessageTree) -> None:
    """Stable-sort root children into message order (MSH first, Z segments last)."""
    tree.children.sort(key=_rank)


def convert_outbound(bundle_json: str, config: Optional[AppConfig] = None) -> str:
    """
    Convert a FHIR Bundle into one HL7 v2 message.

    Records are written in bundle order. Converter failures and records no
    converter handles are logged; the message is produced regardless.

    Returns
    -------
    str
        ER7 text, segments terminated by CR.

    Raises
    ------
    ParseError
        If the input is not a valid Bundle.
    """
    cfg = config or AppConfig()
    records = load_bundle_resources(bundle_json)
    control_id = bundle_id(bundle_json) or str(uuid.uuid4())

    mtype = detect_message_type(records)
    header = next((r for r in records if resource_type_of(r) == "MessageHeader"), None)
    LOG.info("Converting Bundle %s (%d entries) to %s", control_id, len(records), mtype)

    tree = MessageTree.new(mtype.structure)
    populate_msh(tree, mtype, control_id, cfg, header)

    context = ConversionContext(
        transaction_id=control_id,
        message_type=mtype.code,
        trigger_event=mtype.trigger,
    )
    content: List[Any] = []
    for record in records:
        if resource_type_of(record) in _HEADER_KINDS:
            LOG.debug("Skipping %s entry", resource_type_of(record))
            continue
        content.append(record)

    issues = run_outbound(content, tree, context)
    for issue in issues:
        LOG.debug("Outbound issue %s: %s", issue.code, issue.message)

    canonical_order(tree)
    return tree.to_er7()


def message_control_id(er7: str) -> str:
    """MSH-10 of an ER7 message, or "" when it cannot be read."""
    for line in er7.replace("\n", "\r").split("\r"):
        if line.startswith("MSH") and len(line) > 3:
            fields = line.split(line[3])
            # MSH-1 is the separator itself, so MSH-10 sits at index 9
            return fields[9] if len(fields) > 9 else ""
    return ""


def fhir_id(value: str) -> str:
    """``value`` made usable as a FHIR id (invalid characters become "-")."""
    return _ID_INVALID_RE.sub("-", value)[:64] or str(uuid.uuid4())
