# src/hl7_fhir_bridge/paths.py
"""
Path resolution over variable group nestings.

The same segment kind sits at different places depending on the message
structure that produced the tree (root level, ``ORDER``, ``PATIENT_RESULT/
ORDER_OBSERVATION`` ...). Each kind declares a ``SegmentPolicy``: the ordered
candidate path templates, the discriminator field that tells a real
repetition from an empty one, and a safety cap.

Enumeration of repetition ``i`` resolves the first candidate that exists and
stops when

1. no candidate resolves,
2. the discriminator is empty (``ABSENT`` at index 0, ``TRUNCATED`` later), or
3. the cap is reached (``CAPPED``).
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, replace
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from .message_tree import Group, Locator, MessageTree, Path, Segment

LOG = logging.getLogger(__name__)

DEFAULT_FIELD_REPETITION_CAP = 10

# Z segments have no fixed name; they share one cap under this key
CUSTOM_SEGMENT_KIND = "Z"
DEFAULT_CUSTOM_SEGMENT_CAP = 20


class StopReason(enum.Enum):
    """Why an enumeration ended."""

    RUNNING = "running"
    EXHAUSTED = "exhausted"  # no candidate resolved
    ABSENT = "absent"  # discriminator empty at index 0
    TRUNCATED = "truncated"  # discriminator empty at index > 0
    CAPPED = "capped"  # safety cap reached


@dataclass(frozen=True)
class SegmentPolicy:
    """
    Where a segment kind may live and how to walk its repetitions.

    ``candidates`` are path templates tried in order; ``{i}`` is replaced with
    the repetition index. ``discriminator`` is a field locator such as
    ``"4-1"``; None means the segment's presence is enough.
    """

    kind: str
    candidates: Tuple[str, ...]
    discriminator: Optional[str] = None
    cap: int = 20

    def paths(self, index: int) -> List[Path]:
        return [Path.parse(c.format(i=index)) for c in self.candidates]


def _policy(kind: str, candidates: Sequence[str], discriminator=None, cap=20) -> SegmentPolicy:
    return SegmentPolicy(kind, tuple(candidates), discriminator, cap)


DEFAULT_POLICIES: Dict[str, SegmentPolicy] = {
    p.kind: p
    for p in (
        _policy(
            "PID",
            ["PID({i})", "PATIENT({i})/PID", "PATIENT_RESULT({i})/PATIENT/PID",
             "RESPONSE/PATIENT({i})/PID"],
            cap=1,
        ),
        _policy("PD1", ["PD1({i})", "PATIENT({i})/PD1", "PATIENT_RESULT({i})/PATIENT/PD1"], cap=1),
        _policy("NK1", ["NK1({i})", "PATIENT/NK1({i})"], "2-1", cap=10),
        _policy(
            "PV1",
            ["PV1({i})", "PATIENT_VISIT({i})/PV1", "VISIT({i})/PV1",
             "PATIENT/PATIENT_VISIT({i})/PV1", "PATIENT/VISIT({i})/PV1",
             "PATIENT_RESULT/PATIENT/VISIT({i})/PV1"],
            cap=1,
        ),
        _policy(
            "PV2",
            ["PV2({i})", "PATIENT_VISIT({i})/PV2", "VISIT({i})/PV2",
             "PATIENT/PATIENT_VISIT({i})/PV2", "PATIENT/VISIT({i})/PV2"],
            cap=1,
        ),
        _policy(
            "ORC",
            ["ORC({i})", "ORDER({i})/ORC", "ORDER_OBSERVATION({i})/ORC",
             "PATIENT_RESULT/ORDER_OBSERVATION({i})/ORC", "RESPONSE/ORDER({i})/ORC"],
            "1",
            cap=50,
        ),
        _policy(
            "OBR",
            ["OBR({i})", "ORDER({i})/OBR", "ORDER({i})/ORDER_DETAIL/OBR",
             "ORDER_OBSERVATION({i})/OBR", "PATIENT_RESULT/ORDER_OBSERVATION({i})/OBR",
             "RESPONSE/ORDER({i})/OBR"],
            "4-1",
            cap=50,
        ),
        _policy("OBX", ["OBX({i})", "OBSERVATION({i})/OBX"], "3-1", cap=50),
        _policy("NTE", ["NTE({i})"], "3", cap=20),
        _policy("DG1", ["DG1({i})", "DIAGNOSIS({i})/DG1"], "3-1"),
        _policy("AL1", ["AL1({i})", "ALLERGY({i})/AL1"], "3-1"),
        _policy("PR1", ["PR1({i})", "PROCEDURE({i})/PR1"], "3-1"),
        _policy(
            "RXE",
            ["RXE({i})", "ORDER({i})/RXE", "ORDER({i})/ENCODING/RXE",
             "ORDER({i})/ORDER_DETAIL/RXE"],
            "2-1",
        ),
        _policy(
            "RXA",
            ["RXA({i})", "ORDER({i})/RXA", "ORDER({i})/ADMINISTRATION/RXA"],
            "5-1",
        ),
        _policy(
            "SPM",
            ["SPM({i})", "SPECIMEN({i})/SPM",
             "PATIENT_RESULT/ORDER_OBSERVATION/SPECIMEN({i})/SPM"],
            "4-1",
        ),
        _policy("IN1", ["IN1({i})", "INSURANCE({i})/IN1"], "3-1", cap=10),
        _policy("GT1", ["GT1({i})"], "3-1", cap=10),
        _policy("ROL", ["ROL({i})"], "3-1"),
        _policy("TXA", ["TXA({i})"], "2"),
        _policy("SCH", ["SCH({i})"], "1-1", cap=10),
    )
}


def policy_for(kind: str, caps: Optional[Mapping[str, int]] = None) -> SegmentPolicy:
    """Return the policy for ``kind`` with an optional cap override applied."""
    policy = DEFAULT_POLICIES[kind]
    if caps and kind in caps:
        policy = replace(policy, cap=int(caps[kind]))
    return policy


@dataclass(frozen=True)
class Location:
    """A resolved segment repetition."""

    kind: str
    index: int
    path: Path
    segment: Segment

    @property
    def group(self) -> Group:
        return self.segment.parent  # type: ignore[return-value]

    @property
    def root(self) -> Group:
        node: Group = self.group
        while node.parent is not None:
            node = node.parent
        return node

    def get(self, locator: Union[str, Locator]) -> str:
        return self.segment.get(locator)

    def sibling(self, kind: str) -> Optional[Segment]:
        """First ``kind`` segment sharing this segment's group, if any."""
        found = self.group.child(kind)
        return found if isinstance(found, Segment) else None


def resolve(
    scope: Group, kind: str, index: int, candidates: Sequence[Path]
) -> Optional[Location]:
    """Return the first candidate path that exists below ``scope``."""
    for path in candidates:
        seg = scope.locate(path)
        if seg is not None:
            return Location(kind, index, path, seg)
    return None


class SegmentCursor:
    """
    Lazy, finite, non-restartable iterator of ``Location`` objects.

    After exhaustion ``stop_reason`` says which rule ended the walk.
    """

    def __init__(self, scope: Group, policy: SegmentPolicy) -> None:
        self.scope = scope
        self.policy = policy
        self.stop_reason = StopReason.RUNNING
        self._index = 0

    def __iter__(self) -> "SegmentCursor":
        return self

    def __next__(self) -> Location:
        if self.stop_reason is not StopReason.RUNNING:
            raise StopIteration
        index = self._index
        policy = self.policy

        loc = resolve(self.scope, policy.kind, index, policy.paths(index))
        if loc is None:
            self._stop(StopReason.EXHAUSTED)
            raise StopIteration

        if index >= policy.cap:
            self._stop(StopReason.CAPPED)
            LOG.warning(
                "%s enumeration stopped at safety cap %d", policy.kind, policy.cap
            )
            raise StopIteration

        if policy.discriminator and loc.get(policy.discriminator) == "":
            if index == 0:
                self._stop(StopReason.ABSENT)
                LOG.debug("%s present but empty; treating as absent", policy.kind)
            else:
                self._stop(StopReason.TRUNCATED)
                LOG.debug(
                    "%s repetition %d has empty %s-%s; stopping",
                    policy.kind,
                    index,
                    policy.kind,
                    policy.discriminator,
                )
            raise StopIteration

        self._index += 1
        return loc

    def _stop(self, reason: StopReason) -> None:
        self.stop_reason = reason

    @property
    def consumed(self) -> int:
        return self._index


def enumerate_segments(
    scope: Group, kind: str, caps: Optional[Mapping[str, int]] = None
) -> SegmentCursor:
    """Walk the repetitions of ``kind`` below ``scope`` (usually the tree root)."""
    return SegmentCursor(scope, policy_for(kind, caps))


def first_segment(
    scope: Group, kind: str, caps: Optional[Mapping[str, int]] = None
) -> Optional[Location]:
    return next(enumerate_segments(scope, kind, caps), None)


def field_repetitions(
    segment: Segment,
    field: int,
    discriminator_component: Optional[int] = 1,
    cap: int = DEFAULT_FIELD_REPETITION_CAP,
) -> Iterator[int]:
    """
    Yield repetition indexes of a repeating field under the same stop rules
    as segment enumeration: the first repetition whose discriminator component
    is empty ends the walk. With ``discriminator_component=None`` any content
    in the repetition counts.
    """
    count = segment.repetition_count(field)
    for rep in range(min(count, cap)):
        if discriminator_component is None:
            present = segment.repetition_text(field, rep).strip(
                segment.delimiters.component + segment.delimiters.subcomponent
            )
        else:
            present = segment.get(Locator(field, rep, discriminator_component))
        if present == "":
            return
        yield rep
    if count > cap:
        LOG.warning(
            "%s-%d has %d repetitions, only %d read", segment.name, field, count, cap
        )


def path_of(segment: Segment) -> Path:
    """The explicit path of ``segment`` from the root of its tree."""
    steps = []
    node = segment
    while node.parent is not None:
        rep = node.parent.children_named(node.name).index(node)
        steps.append(f"{node.name}({rep})")
        node = node.parent
    return Path.parse("/".join(reversed(steps)))


def segments_anywhere(
    scope: Group, kind: str, caps: Optional[Mapping[str, int]] = None
) -> Iterator[Location]:
    """
    Every ``kind`` segment below ``scope`` in message order, whatever group
    holds it. The policy discriminator and cap apply as for
    ``enumerate_segments``, except that an empty discriminator skips that
    segment instead of ending the walk.
    """
    policy = policy_for(kind, caps)
    index = 0
    for seg in scope.segments(kind):
        if policy.discriminator and seg.get(policy.discriminator) == "":
            LOG.debug("%s with empty %s-%s skipped", kind, kind, policy.discriminator)
            continue
        if index >= policy.cap:
            LOG.warning("%s enumeration stopped at safety cap %d", kind, policy.cap)
            return
        yield Location(kind, index, path_of(seg), seg)
        index += 1


def custom_segments(
    scope: Group,
    caps: Optional[Mapping[str, int]] = None,
    exclude: Sequence[str] = (),
) -> Iterator[Segment]:
    """
    Yield the site-defined Z segments below ``scope`` in message order, at
    most ``caps["Z"]`` of them (default ``DEFAULT_CUSTOM_SEGMENT_CAP``).
    """
    cap = int((caps or {}).get(CUSTOM_SEGMENT_KIND, DEFAULT_CUSTOM_SEGMENT_CAP))
    seen = 0
    for seg in scope.segments():
        if not seg.name.startswith("Z") or seg.name in exclude:
            continue
        if seen >= cap:
            LOG.warning("Z segment enumeration stopped at safety cap %d", cap)
            return
        seen += 1
        yield seg


def put_if_present(tree: MessageTree, path: Union[str, Path], value) -> bool:
    """
    Additive write: set ``value`` at ``path`` only when it is non-empty.

    Returns True when something was written. Absence never blanks an existing
    value.
    """
    if value is None:
        return False
    text = value if isinstance(value, str) else str(value)
    if text == "":
        return False
    tree.set(path, text)
    return True
