# src/hl7_fhir_bridge/transform/v2_to_fhir/communication.py
"""
Free-standing NTE -> Communication.

Notes that follow an order, result or history segment already end up in
that record's ``note``. Only NTEs that no such segment owns (for example
notes right after PID or PV1, in whatever group holds them) become
Communications.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterator, Optional

from ... import codes
from ...context import ConversionContext
from ...datetime_utils import hl7_to_fhir_datetime
from ...message_tree import Group, Locator, MessageTree, Segment
from ...paths import Location, path_of
from ..base import InboundConverter, codeable_concept, concept, put
from ..registry import register_inbound
from ._datatypes import practitioner

LOG = logging.getLogger(__name__)

# segments whose trailing NTEs are read by their own converter
NOTE_OWNERS = frozenset(
    {"OBR", "OBX", "ORC", "RXE", "RXO", "RXA", "PR1", "SPM", "AL1", "DG1", "IN1", "SCH"}
)


def _free_notes(group: Group) -> Iterator[Segment]:
    """NTE segments whose nearest preceding sibling is not a note owner."""
    owner = ""
    for node in group.children:
        if node.is_group:
            yield from _free_notes(node)
            owner = node.name
        elif node.name != "NTE":
            owner = node.name
        elif owner not in NOTE_OWNERS:
            yield node


def _text(nte: Segment) -> str:
    reps = range(max(nte.repetition_count(3), 1))
    return "\n".join(t for t in (nte.get(Locator(3, r)) for r in reps) if t)


@register_inbound("Communication", order=160)
class CommunicationConverter(InboundConverter):
    segment = "NTE"

    def locations(self, tree: MessageTree, context: ConversionContext) -> Iterator[Location]:
        cap = self.cap("NTE")
        for index, nte in enumerate(_free_notes(tree)):
            if index >= cap:
                LOG.warning("NTE enumeration stopped at safety cap %d", cap)
                return
            yield Location("NTE", index, path_of(nte), nte)

    def build(
        self, loc: Location, data: Dict[str, Any], context: ConversionContext
    ) -> Optional[Dict[str, Any]]:
        nte = loc.segment
        text = _text(nte)
        if not text:
            return None

        data["status"] = "completed"
        data["payload"] = [{"contentString": text}]
        put(data, "subject", self.subject(context))
        put(data, "encounter", self.encounter(context))
        put(data, "identifier.0.value", nte.get(Locator(1)))

        source = nte.get(Locator(2))
        categories = [
            concept(codes.SYSTEM_V2_0105, source, codes.NOTE_SOURCE_DISPLAY.get(source)),
            codeable_concept(nte, 4),
        ]
        put(data, "category", [c for c in categories if c])
        put(data, "sender", practitioner(nte, 5, 0, context))
        put(data, "sent", hl7_to_fhir_datetime(nte.get(Locator(6))))
        return data
