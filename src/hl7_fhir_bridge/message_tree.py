# src/hl7_fhir_bridge/message_tree.py
"""
Addressable HL7 v2 message tree.

hl7apy parses ER7 text and (for structures it knows) infers the groups a
message is made of. This module turns the parsed hl7apy element tree into a
small read/write tree of ``Group`` and ``Segment`` nodes that can be
addressed with terser-style paths::

    PATIENT_RESULT/ORDER_OBSERVATION(1)/OBR-4-1
    PID-3(2)-4
    OBX(0)-5

Steps are ``NAME`` or ``NAME(rep)`` (repetitions are 0-based), the final step
names a segment, and the optional locator after the first ``-`` is
``field[(rep)][-component[-subcomponent]]`` (field, component and
subcomponent are 1-based as in HL7). A leading ``/`` or ``/.`` is accepted
and ignored.

Group names drop the structure prefix hl7apy puts on them, so
``ORU_R01_ORDER_OBSERVATION`` is addressed as ``ORDER_OBSERVATION``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterator, List, NamedTuple, Optional, Tuple, Union

from hl7apy.core import Message, Segment as HL7Segment

from .exceptions import ParseError, PathError
from .hl7_parser import parse_hl7_structured

LOG = logging.getLogger(__name__)

__all__ = [
    "Delimiters",
    "DEFAULT_DELIMITERS",
    "Locator",
    "Path",
    "Segment",
    "Group",
    "MessageTree",
]


class Delimiters(NamedTuple):
    field: str = "|"
    component: str = "^"
    repetition: str = "~"
    escape: str = "\\"
    subcomponent: str = "&"

    @property
    def encoding_characters(self) -> str:
        return self.component + self.repetition + self.escape + self.subcomponent

    @classmethod
    def from_msh(cls, line: str) -> "Delimiters":
        """Read the delimiters declared by an MSH segment line."""
        if len(line) < 4 or not line.startswith("MSH"):
            return DEFAULT_DELIMITERS
        fs = line[3]
        enc = line[4:].split(fs, 1)[0]
        defaults = DEFAULT_DELIMITERS
        return cls(
            field=fs,
            component=enc[0] if len(enc) > 0 else defaults.component,
            repetition=enc[1] if len(enc) > 1 else defaults.repetition,
            escape=enc[2] if len(enc) > 2 else defaults.escape,
            subcomponent=enc[3] if len(enc) > 3 else defaults.subcomponent,
        )


DEFAULT_DELIMITERS = Delimiters()

# ------------------------------------------------------------------------------
# addressing
# ------------------------------------------------------------------------------

_STEP_RE = re.compile(r"^([A-Z][A-Z0-9_]*)(?:\((\d+)\))?$")
_LOCATOR_RE = re.compile(r"^(\d+)(?:\((\d+)\))?(?:-(\d+))?(?:-(\d+))?$")
_GROUP_PREFIX_RE = re.compile(r"^[A-Z0-9]{3}_[A-Z0-9]{2,3}_")
# hl7apy wraps alternative segments (OBR/RQD/RQ1/RXO/ODS/ODT) in a choice group
_CHOICE_GROUP_SUFFIX = "_SUPPGRP"


@dataclass(frozen=True)
class Locator:
    """Field position inside a segment."""

    field: int
    repetition: int = 0
    component: Optional[int] = None
    subcomponent: Optional[int] = None

    @classmethod
    def parse(cls, text: str) -> "Locator":
        return _parse_locator(text)

    def __str__(self) -> str:
        out = str(self.field)
        if self.repetition:
            out += f"({self.repetition})"
        if self.component is not None:
            out += f"-{self.component}"
        if self.subcomponent is not None:
            out += f"-{self.subcomponent}"
        return out


@lru_cache(maxsize=1024)
def _parse_locator(text: str) -> Locator:
    m = _LOCATOR_RE.match(text.strip())
    if not m:
        raise PathError(f"Invalid field locator: {text!r}")
    field, rep, comp, sub = m.groups()
    locator = Locator(
        field=int(field),
        repetition=int(rep) if rep else 0,
        component=int(comp) if comp else None,
        subcomponent=int(sub) if sub else None,
    )
    if locator.field < 1 or locator.component == 0 or locator.subcomponent == 0:
        raise PathError(f"Field, component and subcomponent are 1-based: {text!r}")
    if locator.subcomponent is not None and locator.component is None:
        raise PathError(f"Subcomponent without component: {text!r}")
    return locator


@dataclass(frozen=True)
class Path:
    """Group/segment steps plus an optional field locator."""

    steps: Tuple[Tuple[str, int], ...]
    locator: Optional[Locator] = None

    @classmethod
    def parse(cls, text: str) -> "Path":
        return _parse_path(text)

    @property
    def segment_name(self) -> str:
        return self.steps[-1][0]

    def with_locator(self, locator: Union[str, Locator, None]) -> "Path":
        if isinstance(locator, str):
            locator = Locator.parse(locator)
        return Path(self.steps, locator)

    def __str__(self) -> str:
        parts = [f"{name}({rep})" if rep else name for name, rep in self.steps]
        out = "/".join(parts)
        if self.locator is not None:
            out += f"-{self.locator}"
        return out


@lru_cache(maxsize=2048)
def _parse_path(text: str) -> Path:
    if not isinstance(text, str) or not text.strip():
        raise PathError("Path must be a non-empty string")
    body = text.strip()
    if body.startswith("/."):
        body = body[2:]
    body = body.lstrip("/")

    *group_parts, last = body.split("/") if body else [""]
    seg_part, _, loc_part = last.partition("-")

    steps: List[Tuple[str, int]] = []
    for part in [*group_parts, seg_part]:
        m = _STEP_RE.match(part)
        if not m:
            raise PathError(f"Invalid path step {part!r} in {text!r}")
        steps.append((m.group(1), int(m.group(2)) if m.group(2) else 0))

    locator = _parse_locator(loc_part) if loc_part else None
    return Path(tuple(steps), locator)


def _as_path(path: Union[str, Path]) -> Path:
    return path if isinstance(path, Path) else Path.parse(path)


def _as_locator(locator: Union[str, Locator]) -> Locator:
    return locator if isinstance(locator, Locator) else Locator.parse(locator)


# ------------------------------------------------------------------------------
# escaping
# ------------------------------------------------------------------------------


def escape(value: str, d: Delimiters = DEFAULT_DELIMITERS) -> str:
    """Escape delimiter characters in a leaf value."""
    e = d.escape
    out = value.replace(e, f"{e}E{e}")
    for char, code in (
        (d.field, "F"),
        (d.component, "S"),
        (d.subcomponent, "T"),
        (d.repetition, "R"),
    ):
        out = out.replace(char, f"{e}{code}{e}")
    return out


def unescape(value: str, d: Delimiters = DEFAULT_DELIMITERS) -> str:
    """Reverse :func:`escape`; unknown escape sequences are left as-is."""
    e = d.escape
    if e not in value:
        return value
    table = {
        "F": d.field,
        "S": d.component,
        "T": d.subcomponent,
        "R": d.repetition,
        "E": d.escape,
    }
    pattern = re.escape(e) + r"([FSTRE])" + re.escape(e)
    return re.sub(pattern, lambda m: table[m.group(1)], value)


# ------------------------------------------------------------------------------
# nodes
# ------------------------------------------------------------------------------


class Segment:
    """
    One segment: ``fields[0]`` is the segment name and ``fields[n]`` the raw
    (escaped) text of field n. For MSH, ``fields[1]`` is the field separator
    and ``fields[2]`` the encoding characters.
    """

    is_group = False

    def __init__(
        self,
        name: str,
        fields: Optional[List[str]] = None,
        delimiters: Delimiters = DEFAULT_DELIMITERS,
    ) -> None:
        self.name = name
        self.delimiters = delimiters
        self.parent: Optional[Group] = None
        if fields is None:
            fields = [name]
            if name == "MSH":
                fields += [delimiters.field, delimiters.encoding_characters]
        self.fields = fields

    @classmethod
    def from_er7(cls, line: str, delimiters: Delimiters = DEFAULT_DELIMITERS) -> "Segment":
        parts = line.split(delimiters.field)
        name = parts[0]
        if name == "MSH":
            fields = [name, delimiters.field] + parts[1:]
        else:
            fields = parts
        return cls(name, fields, delimiters)

    def __repr__(self) -> str:
        return f"<Segment {self.name}>"

    # ---- read ---------------------------------------------------------------

    def raw(self, field: int) -> str:
        """Escaped ER7 text of a whole field, repetitions included."""
        if field < len(self.fields):
            return self.fields[field]
        return ""

    def repetition_text(self, field: int, rep: int = 0) -> str:
        """Escaped text of one field repetition, components included."""
        raw = self.raw(field)
        if self.name == "MSH" and field in (1, 2):
            return raw if rep == 0 else ""
        reps = raw.split(self.delimiters.repetition) if raw else []
        return reps[rep] if rep < len(reps) else ""

    def repetition_count(self, field: int) -> int:
        raw = self.raw(field)
        if raw == "":
            return 0
        if self.name == "MSH" and field in (1, 2):
            return 1
        return len(raw.split(self.delimiters.repetition))

    def get(self, locator: Union[str, Locator]) -> str:
        """
        Return the unescaped leaf value at ``locator`` or "" when absent.

        Without a component the first component is returned, so ``get("8")``
        on ``PID`` yields ``M`` for ``M^Male``.
        """
        loc = _as_locator(locator)
        raw = self.raw(loc.field)
        if raw == "":
            return ""
        if self.name == "MSH" and loc.field in (1, 2):
            return raw
        d = self.delimiters
        reps = raw.split(d.repetition)
        if loc.repetition >= len(reps):
            return ""
        comps = reps[loc.repetition].split(d.component)
        comp_index = (loc.component or 1) - 1
        if comp_index >= len(comps):
            return ""
        subs = comps[comp_index].split(d.subcomponent)
        sub_index = (loc.subcomponent or 1) - 1
        if sub_index >= len(subs):
            return ""
        return unescape(subs[sub_index], d)

    # ---- write --------------------------------------------------------------

    def set(self, locator: Union[str, Locator], value: str) -> None:
        """Write one leaf value, padding fields/repetitions/components as needed."""
        loc = _as_locator(locator)
        if self.name == "MSH" and loc.field in (1, 2):
            raise PathError("MSH-1 and MSH-2 are fixed by the delimiters")
        d = self.delimiters
        while len(self.fields) <= loc.field:
            self.fields.append("")

        reps = self.fields[loc.field].split(d.repetition)
        while len(reps) <= loc.repetition:
            reps.append("")
        comps = reps[loc.repetition].split(d.component)
        comp_index = (loc.component or 1) - 1
        while len(comps) <= comp_index:
            comps.append("")
        subs = comps[comp_index].split(d.subcomponent)
        sub_index = (loc.subcomponent or 1) - 1
        while len(subs) <= sub_index:
            subs.append("")

        subs[sub_index] = escape(value, d)
        comps[comp_index] = d.subcomponent.join(subs)
        reps[loc.repetition] = d.component.join(comps)
        self.fields[loc.field] = d.repetition.join(reps)

    def to_er7(self) -> str:
        d = self.delimiters
        if self.name == "MSH":
            return "MSH" + d.field + d.field.join(self.fields[2:])
        fields = list(self.fields)
        while len(fields) > 1 and fields[-1] == "":
            fields.pop()
        return d.field.join(fields)


Node = Union["Group", Segment]


class Group:
    """Named, ordered container of segments and nested groups."""

    is_group = True

    def __init__(self, name: str) -> None:
        self.name = name
        self.parent: Optional[Group] = None
        self.children: List[Node] = []

    def __repr__(self) -> str:
        return f"<Group {self.name} children={len(self.children)}>"

    @property
    def is_root(self) -> bool:
        return self.parent is None

    def append(self, node: Node) -> Node:
        node.parent = self
        self.children.append(node)
        return node

    def children_named(self, name: str) -> List[Node]:
        return [c for c in self.children if c.name == name]

    def child(self, name: str, rep: int = 0) -> Optional[Node]:
        found = self.children_named(name)
        return found[rep] if rep < len(found) else None

    def ensure_child(self, name: str, rep: int, group: bool, delimiters: Delimiters) -> Node:
        """Return repetition ``rep`` of ``name``, creating missing repetitions."""
        existing = self.children_named(name)
        while len(existing) <= rep:
            node: Node = Group(name) if group else Segment(name, delimiters=delimiters)
            node.parent = self
            if existing:
                pos = self.children.index(existing[-1]) + 1
                self.children.insert(pos, node)
            else:
                self.children.append(node)
            existing.append(node)
        node = existing[rep]
        if node.is_group != group:
            kind = "group" if group else "segment"
            raise PathError(f"{name} exists in {self.name} but is not a {kind}")
        return node

    def segments(self, name: Optional[str] = None) -> Iterator[Segment]:
        """Depth-first iteration over every segment below this group."""
        for child in self.children:
            if isinstance(child, Group):
                yield from child.segments(name)
            elif name is None or child.name == name:
                yield child

    def trailing(self, node: Node, name: str) -> List[Segment]:
        """Consecutive ``name`` segments directly following ``node``."""
        out: List[Segment] = []
        start = self.children.index(node) + 1
        for sibling in self.children[start:]:
            if sibling.is_group or sibling.name != name:
                break
            out.append(sibling)  # type: ignore[arg-type]
        return out

    def preceding(self, node: Node, name: str) -> Optional[Segment]:
        """Nearest ``name`` segment before ``node`` among its siblings."""
        end = self.children.index(node)
        for sibling in reversed(self.children[:end]):
            if not sibling.is_group and sibling.name == name:
                return sibling  # type: ignore[return-value]
        return None

    def locate(self, path: Union[str, Path]) -> Optional[Segment]:
        """Resolve a path relative to this group; None when any step is missing."""
        p = _as_path(path)
        node: Node = self
        for i, (name, rep) in enumerate(p.steps):
            if not isinstance(node, Group):
                return None
            nxt = node.child(name, rep)
            if nxt is None:
                return None
            last = i == len(p.steps) - 1
            if last and nxt.is_group:
                return None
            if not last and not nxt.is_group:
                return None
            node = nxt
        return node  # type: ignore[return-value]


class MessageTree(Group):
    """Root group of a message plus its delimiters."""

    def __init__(self, name: str, delimiters: Delimiters = DEFAULT_DELIMITERS) -> None:
        super().__init__(name)
        self.delimiters = delimiters

    # ---- construction -------------------------------------------------------

    @classmethod
    def parse(cls, raw: str) -> "MessageTree":
        """
        Parse ER7 text into a tree.

        Raises
        ------
        ParseError
            If the text is empty, not a string, or hl7apy cannot parse it.
        """
        try:
            msg = parse_hl7_structured(raw)
        except (TypeError, ValueError) as e:
            raise ParseError(f"Failed to parse HL7 v2 message: {e}") from e
        return cls.from_message(msg)

    @classmethod
    def from_message(cls, msg: Message) -> "MessageTree":
        first = next(iter(msg.children), None)
        msh_line = first.to_er7() if isinstance(first, HL7Segment) else ""
        delimiters = Delimiters.from_msh(msh_line)
        tree = cls(getattr(msg, "name", None) or "MESSAGE", delimiters)
        _copy_children(msg, tree, delimiters)
        return tree

    @classmethod
    def new(cls, structure: str, delimiters: Delimiters = DEFAULT_DELIMITERS) -> "MessageTree":
        """Empty tree holding only an MSH segment."""
        tree = cls(structure, delimiters)
        tree.append(Segment("MSH", delimiters=delimiters))
        return tree

    # ---- path access --------------------------------------------------------

    def get(self, path: Union[str, Path]) -> str:
        p = _as_path(path)
        seg = self.locate(p)
        if seg is None:
            return ""
        return seg.get(p.locator or Locator(1))

    def exists(self, path: Union[str, Path]) -> bool:
        p = _as_path(path)
        seg = self.locate(p)
        if seg is None:
            return False
        if p.locator is None:
            return True
        return seg.get(p.locator) != ""

    def set(self, path: Union[str, Path], value: str) -> None:
        """
        Write ``value`` at ``path``, creating groups, segments and repetitions
        on the way. Nothing outside the addressed leaf is touched.
        """
        p = _as_path(path)
        if p.locator is None:
            raise PathError(f"Cannot set a value without a field locator: {p}")
        node: Group = self
        for name, rep in p.steps[:-1]:
            node = node.ensure_child(name, rep, True, self.delimiters)  # type: ignore[assignment]
        name, rep = p.steps[-1]
        seg = node.ensure_child(name, rep, False, self.delimiters)
        seg.set(p.locator, value)  # type: ignore[union-attr]

    def group_names(self) -> List[str]:
        """Distinct group and segment names in depth-first order."""
        seen: List[str] = []

        def walk(group: Group) -> None:
            for child in group.children:
                if child.name not in seen:
                    seen.append(child.name)
                if isinstance(child, Group):
                    walk(child)

        walk(self)
        return seen

    @property
    def msh(self) -> Optional[Segment]:
        return next(self.segments("MSH"), None)

    def to_er7(self, separator: str = "\r") -> str:
        return separator.join(seg.to_er7() for seg in self.segments()) + separator


def _strip_structure_prefix(name: str) -> str:
    return _GROUP_PREFIX_RE.sub("", name or "")


def _copy_children(element, group: Group, delimiters: Delimiters) -> None:
    for child in element.children:
        if isinstance(child, HL7Segment):
            group.append(Segment.from_er7(child.to_er7(), delimiters))
        elif (child.name or "").endswith(_CHOICE_GROUP_SUFFIX):
            # choice groups are inlined so ORDER_DETAIL/OBR stays addressable
            _copy_children(child, group, delimiters)
        else:
            sub = Group(_strip_structure_prefix(child.name))
            group.append(sub)
            _copy_children(child, sub, delimiters)
