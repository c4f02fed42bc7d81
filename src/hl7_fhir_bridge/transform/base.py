# src/hl7_fhir_bridge/transform/base.py
"""
Converter building blocks shared by both directions.

Inbound converters (HL7 v2 -> FHIR) walk the repetitions of one segment kind
through the path resolver and, for each location, fill a FHIR JSON-shaped
dict from declarative ``FieldRule``s plus converter-specific code, then turn
it into a validated `fhir.resources` record.

Outbound converters (FHIR -> HL7 v2) read record attributes and write them
into the message tree with "set if present" semantics. Converters that emit
repeating segments keep their own repetition counter for the lifetime of one
conversion.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import (
    Any,
    Callable,
    ClassVar,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Tuple,
    Union,
)

from fhir.resources.R4B.resource import Resource

from .. import codes
from ..context import ConversionContext
from ..fhir_parser import build_resource, resource_type_of
from ..message_tree import Locator, MessageTree, Path, Segment
from ..paths import Location, enumerate_segments, policy_for, put_if_present

__all__ = [
    "ConversionIssue",
    "FieldRule",
    "InboundConverter",
    "OutboundConverter",
    "TransformResult",
    "apply_rules",
    "attr",
    "codeable_concept",
    "coding",
    "new_id",
    "notes_after",
    "put",
    "reference",
]

LOG = logging.getLogger(__name__)

# Alias for readability in implementations and type hints.
TransformResult = List[Resource]


@dataclass(frozen=True)
class ConversionIssue:
    """A non-fatal problem recorded during one conversion."""

    severity: str  # "error" | "warning"
    code: str
    message: str
    converter: str = ""


def new_id() -> str:
    return str(uuid.uuid4())


# ------------------------------------------------------------------------------
# JSON-shaped record building
# ------------------------------------------------------------------------------


def _empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def put(data: Dict[str, Any], target: str, value: Any) -> bool:
    """
    Set ``value`` at a dotted ``target`` inside ``data``.

    Path parts are keys, list indexes or ``+`` (append to a list). Missing
    dicts and lists are created. Empty values are not written, so absent
    source data never produces an attribute.

    >>> d = {}
    >>> put(d, "name.0.given.+", "John")
    True
    >>> d
    {'name': [{'given': ['John']}]}
    """
    if _empty(value):
        return False
    parts = target.split(".")
    node: Any = data
    for i, part in enumerate(parts):
        last = i == len(parts) - 1
        nxt_is_list = not last and (parts[i + 1].isdigit() or parts[i + 1] == "+")
        if isinstance(node, list):
            if part == "+":
                idx = len(node)
            else:
                idx = int(part)
            while len(node) <= idx:
                node.append(None)
            if last:
                node[idx] = value
            else:
                if node[idx] is None:
                    node[idx] = [] if nxt_is_list else {}
                node = node[idx]
        else:
            if last:
                node[part] = value
            else:
                if part not in node or node[part] is None:
                    node[part] = [] if nxt_is_list else {}
                node = node[part]
    return True


@dataclass(frozen=True)
class FieldRule:
    """
    One declarative mapping: read ``source`` (a field locator such as
    ``"7"`` or ``"3-1"``) and write it to ``target`` (a dotted JSON path),
    optionally through ``transform``. A transform returning None skips the
    write.
    """

    source: str
    target: str
    transform: Optional[Callable[[str], Any]] = None


def apply_rules(
    segment: Segment, rules: Iterable[FieldRule], data: Dict[str, Any]
) -> Dict[str, Any]:
    for rule in rules:
        raw = segment.get(rule.source)
        if raw == "":
            continue
        value = rule.transform(raw) if rule.transform else raw
        put(data, rule.target, value)
    return data


def reference(kind: str, record_id: Optional[str], display: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """``{"reference": "Kind/id"}``, or None when there is nothing to point at."""
    if not record_id:
        return None
    out: Dict[str, Any] = {"reference": f"{kind}/{record_id}"}
    if display:
        out["display"] = display
    return out


def display_reference(display: Optional[str], identifier: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """Reference carrying only a display (and identifier) for actors not in the graph."""
    out: Dict[str, Any] = {}
    if display:
        out["display"] = display
    if identifier:
        out["identifier"] = {"value": identifier}
    return out or None


def coding(
    segment: Segment,
    field: int,
    rep: int = 0,
    default_system: Optional[str] = None,
    code_component: int = 1,
) -> Optional[Dict[str, str]]:
    """
    Read a CE/CWE (code^text^system) repetition into a FHIR Coding dict.
    """
    code = segment.get(Locator(field, rep, code_component))
    display = segment.get(Locator(field, rep, code_component + 1))
    system_name = segment.get(Locator(field, rep, code_component + 2))
    if not code and not display:
        return None
    out: Dict[str, str] = {}
    system = codes.coding_system(system_name) or default_system
    if system:
        out["system"] = system
    if code:
        out["code"] = code
    if display:
        out["display"] = display
    return out


def codeable_concept(
    segment: Segment,
    field: int,
    rep: int = 0,
    default_system: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """CodeableConcept with the primary coding and the alternate coding (CE.4-6)."""
    primary = coding(segment, field, rep, default_system)
    alternate = coding(segment, field, rep, None, code_component=4)
    codings = [c for c in (primary, alternate) if c and c.get("code")]
    text = (primary or {}).get("display")
    if not codings and not text:
        return None
    out: Dict[str, Any] = {}
    if codings:
        out["coding"] = codings
    if text:
        out["text"] = text
    return out


def concept(system: str, code: Optional[str], display: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """CodeableConcept with one coding from a fixed system."""
    if not code:
        return None
    c: Dict[str, str] = {"system": system, "code": code}
    if display:
        c["display"] = display
    return {"coding": [c]}


def notes_after(segment: Segment, cap: int = 20) -> List[str]:
    """Text of the NTE segments directly following ``segment`` (NTE-3)."""
    parent = segment.parent
    if parent is None:
        return []
    texts = []
    for nte in parent.trailing(segment, "NTE")[:cap]:
        reps = range(max(nte.repetition_count(3), 1))
        text = " ".join(t for t in (nte.get(Locator(3, r)) for r in reps) if t)
        if text:
            texts.append(text)
    return texts


def person_name(segment: Segment, field: int, rep: int = 0, id_first: bool = True) -> Optional[str]:
    """
    Display text for an XCN/CNN (id^family^given...) or XPN (family^given)
    repetition.
    """
    offset = 2 if id_first else 1
    family = segment.get(Locator(field, rep, offset))
    given = segment.get(Locator(field, rep, offset + 1))
    parts = [p for p in (given, family) if p]
    if parts:
        return " ".join(parts)
    if id_first:
        return segment.get(Locator(field, rep, 1)) or None
    return None


# ------------------------------------------------------------------------------
# attribute access on records
# ------------------------------------------------------------------------------


def attr(obj: Any, *path: Union[str, int]) -> Any:
    """
    Walk attributes/keys/indexes, returning None as soon as a step is missing.

    >>> attr(patient, "name", 0, "family")
    'Doe'
    """
    node = obj
    for step in path:
        if node is None:
            return None
        if isinstance(step, int):
            if isinstance(node, (list, tuple)) and -len(node) <= step < len(node):
                node = node[step]
            else:
                return None
        elif isinstance(node, Mapping):
            node = node.get(step)
        else:
            node = getattr(node, step, None)
    return node


def as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def reference_id(ref: Any, kind: Optional[str] = None) -> Optional[str]:
    """Logical id from ``Reference.reference`` ("Kind/id" or "urn:uuid:id")."""
    text = attr(ref, "reference")
    if not text:
        return None
    text = str(text)
    if text.startswith("urn:uuid:"):
        return text[len("urn:uuid:"):]
    parts = text.split("/")
    if len(parts) >= 2:
        if kind and parts[-2] != kind:
            return None
        return parts[-1]
    return None


def first_coding(concept_obj: Any, system: Optional[str] = None) -> Any:
    codings = as_list(attr(concept_obj, "coding"))
    if system:
        for c in codings:
            if attr(c, "system") == system:
                return c
    return codings[0] if codings else None


# ------------------------------------------------------------------------------
# inbound
# ------------------------------------------------------------------------------


class InboundConverter:
    """
    Base class for HL7 v2 -> FHIR converters.

    Subclasses set ``kind`` (resource type produced), ``segment`` (segment
    kind enumerated by default) and ``rules``, and override ``build`` to add
    what the rules cannot express. ``build`` returning None skips the
    location. ``registered`` runs once the record exists and is where
    correlation keys are published.

    ``options`` carries the conversion switches a converter may consult
    (``emit_message_header``).
    """

    kind: ClassVar[str] = ""
    segment: ClassVar[str] = ""
    rules: ClassVar[Tuple[FieldRule, ...]] = ()

    # set by @register_inbound
    order: ClassVar[int] = 0
    fatal: ClassVar[bool] = False

    def __init__(
        self,
        caps: Optional[Mapping[str, int]] = None,
        options: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.caps = dict(caps or {})
        self.options = dict(options or {})

    @property
    def name(self) -> str:
        return type(self).__name__

    def enabled(self, option: str) -> bool:
        return bool(self.options.get(option))

    def cap(self, kind: str) -> int:
        return policy_for(kind, self.caps).cap

    def locations(self, tree: MessageTree, context: ConversionContext) -> Iterable[Location]:
        return enumerate_segments(tree, self.segment, self.caps)

    def convert(self, tree: MessageTree, context: ConversionContext) -> TransformResult:
        records: TransformResult = []
        for loc in self.locations(tree, context):
            record_id = new_id()
            data = apply_rules(loc.segment, self.rules, {"id": record_id})
            built = self.build(loc, data, context)
            if built is None:
                continue
            record = build_resource(self.kind, built)
            self.registered(built.get("id", record_id), loc, built, context)
            records.append(record)
        LOG.debug("%s produced %d %s record(s)", self.name, len(records), self.kind)
        return records

    def build(
        self, loc: Location, data: Dict[str, Any], context: ConversionContext
    ) -> Optional[Dict[str, Any]]:
        return data

    def registered(
        self,
        record_id: str,
        loc: Location,
        data: Dict[str, Any],
        context: ConversionContext,
    ) -> None:
        return None

    # helpers for subclasses

    @staticmethod
    def subject(context: ConversionContext) -> Optional[Dict[str, Any]]:
        return reference("Patient", context.patient_id)

    @staticmethod
    def encounter(context: ConversionContext) -> Optional[Dict[str, Any]]:
        return reference("Encounter", context.encounter_id)


# ------------------------------------------------------------------------------
# outbound
# ------------------------------------------------------------------------------


class OutboundConverter:
    """
    Base class for FHIR -> HL7 v2 converters.

    ``handles`` lists the resource types accepted by the default
    ``can_convert``. A fresh instance is created per conversion, so the
    repetition counter starts at zero for every message.
    """

    handles: ClassVar[Tuple[str, ...]] = ()

    # set by @register_outbound
    key: ClassVar[str] = ""
    order: ClassVar[int] = 0

    def __init__(self) -> None:
        self._counter = 0

    @property
    def name(self) -> str:
        return type(self).__name__

    def reset(self) -> None:
        self._counter = 0

    def next_index(self) -> int:
        """Next repetition index for the segment this converter emits."""
        index = self._counter
        self._counter += 1
        return index

    @property
    def emitted(self) -> int:
        return self._counter

    def can_convert(self, record: Any) -> bool:
        return resource_type_of(record) in self.handles

    def convert(self, record: Any, tree: MessageTree, context: ConversionContext) -> None:
        raise NotImplementedError

    @staticmethod
    def write(
        tree: MessageTree,
        segment_path: Union[str, Path],
        values: Mapping[str, Any],
    ) -> int:
        """
        Write ``{locator: value}`` pairs into one segment with "set if present"
        semantics. Returns the number of values written.
        """
        base = segment_path if isinstance(segment_path, Path) else Path.parse(segment_path)
        written = 0
        for locator, value in values.items():
            if put_if_present(tree, base.with_locator(locator), value):
                written += 1
        return written
