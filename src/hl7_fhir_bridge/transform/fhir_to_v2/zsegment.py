# src/hl7_fhir_bridge/transform/fhir_to_v2/zsegment.py
"""
Record extensions -> custom Z segments.

Matches any record carrying extensions whose URL addresses a Z segment
field:

- ``urn:hl7:zsegment:ZXX-N`` or ``urn:hl7:zsegment:ZXX-N-M``
- ``.../ZXX/N`` or ``.../ZXX/N/M``

Nested extensions whose URL is a bare number write component ``M`` of the
parent's field. Extensions holding a whole segment (``hl7-z-segment``, as
kept by the inbound Patient converter) are written back verbatim.

Value rendering: booleans as Y/N, dates and dateTimes in HL7 format,
codings as code^display^system, references as the referenced id.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Optional, Set, Tuple

from ... import codes
from ...context import ConversionContext
from ...message_tree import MessageTree, Segment
from ..base import OutboundConverter, as_list, attr, first_coding, reference_id
from ..registry import register_outbound
from ._datatypes import text

LOG = logging.getLogger(__name__)

_URN_RE = re.compile(r"^urn:hl7:zsegment:(?P<seg>Z[A-Z0-9]{2})-(?P<field>\d+)(?:-(?P<comp>\d+))?$", re.I)
_URL_RE = re.compile(r"/(?P<seg>Z[A-Z0-9]{2})/(?P<field>\d+)(?:/(?P<comp>\d+))?/?$")

_SCALAR_VALUES = (
    "valueString",
    "valueCode",
    "valueId",
    "valueUri",
    "valueUrl",
    "valueInteger",
    "valuePositiveInt",
    "valueUnsignedInt",
    "valueDecimal",
    "valueBoolean",
    "valueDate",
    "valueDateTime",
    "valueInstant",
)


def parse_url(url: Optional[str]) -> Optional[Tuple[str, int, Optional[int]]]:
    """(segment, field, component) addressed by an extension URL, or None."""
    if not url:
        return None
    m = _URN_RE.match(url) or _URL_RE.search(url)
    if not m:
        return None
    comp = m.group("comp")
    return m.group("seg").upper(), int(m.group("field")), int(comp) if comp else None


def render(ext: Any) -> Dict[int, str]:
    """Component number -> HL7 text for one extension value."""
    coding = attr(ext, "valueCoding") or first_coding(attr(ext, "valueCodeableConcept"))
    if coding is not None:
        system = attr(coding, "system")
        parts = {
            1: text(attr(coding, "code")),
            2: text(attr(coding, "display")),
            3: codes.hl7_system(system) or text(system),
        }
        return {k: v for k, v in parts.items() if v}
    ref = attr(ext, "valueReference")
    if ref is not None:
        value = reference_id(ref) or text(attr(ref, "display"))
        return {1: value} if value else {}
    for name in _SCALAR_VALUES:
        value = text(attr(ext, name))
        if value:
            return {1: value}
    return {}


def _is_z(ext: Any) -> bool:
    url = attr(ext, "url")
    return url == codes.EXT_HL7_Z_SEGMENT or parse_url(url) is not None


@register_outbound("extension-zsegment", order=900)
class ZSegmentWriter(OutboundConverter):
    """
    Writes Z segment fields from extensions of any record type.

    Each record gets its own repetition of every Z segment it addresses, so
    two records carrying ``ZPV-2`` produce ``ZPV(0)`` and ``ZPV(1)``.
    """

    def __init__(self) -> None:
        super().__init__()
        self._repetitions: Dict[str, int] = {}

    def reset(self) -> None:
        super().reset()
        self._repetitions.clear()

    def can_convert(self, record: Any) -> bool:
        return any(_is_z(ext) for ext in as_list(attr(record, "extension")))

    def convert(self, record: Any, tree: MessageTree, context: ConversionContext) -> None:
        used: Set[str] = set()
        for ext in as_list(attr(record, "extension")):
            url = attr(ext, "url")
            if url == codes.EXT_HL7_Z_SEGMENT:
                self._append_raw(tree, attr(ext, "valueString"))
                continue
            target = parse_url(url)
            if target is None:
                continue
            segment, field, comp = target
            self._write_values(tree, segment, field, comp, render(ext), used)
            for sub in as_list(attr(ext, "extension")):
                sub_url = str(attr(sub, "url") or "")
                if sub_url.isdigit():
                    self._write_values(tree, segment, field, int(sub_url), render(sub), used)
                else:
                    nested = parse_url(sub_url)
                    if nested is not None:
                        self._write_values(tree, *nested, render(sub), used)
        for segment in used:
            self._repetitions[segment] = self._repetitions.get(segment, 0) + 1

    def _write_values(
        self,
        tree: MessageTree,
        segment: str,
        field: int,
        comp: Optional[int],
        values: Dict[int, str],
        used: Set[str],
    ) -> None:
        if comp is not None:
            # the value of a component-addressed extension fills that component
            values = {comp: values[1]} if values.get(1) else {}
        locators: Dict[str, str] = {f"{field}-{c}": v for c, v in values.items()}
        rep = self._repetitions.get(segment, 0)
        if self.write(tree, f"{segment}({rep})", locators):
            used.add(segment)

    @staticmethod
    def _append_raw(tree: MessageTree, er7: Optional[str]) -> None:
        if not er7:
            return
        seg = Segment.from_er7(er7, tree.delimiters)
        if not seg.name.startswith("Z"):
            LOG.warning("Ignoring non-Z segment in %s extension: %s", codes.EXT_HL7_Z_SEGMENT, seg.name)
            return
        tree.append(seg)
