# src/hl7_fhir_bridge/transform/v2_to_fhir/_orders.py
"""
Order-level helpers shared by the request, result and medication converters.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from ... import codes
from ...message_tree import Locator, Node, Segment
from ...paths import Location


def governing(loc: Location, name: str) -> Optional[Segment]:
    """
    The ``name`` segment governing the segment at ``loc``: the nearest
    preceding one in its group, then in each enclosing group.
    """
    node: Node = loc.segment
    group = node.parent
    while group is not None:
        found = group.preceding(node, name)
        if found is not None:
            return found
        node, group = group, group.parent
    return None


def order_control(loc: Location) -> Optional[Segment]:
    return governing(loc, "ORC")


def order_numbers(
    detail: Optional[Segment], orc: Optional[Segment]
) -> Tuple[Optional[str], Optional[str]]:
    """
    (placer, filler) order numbers: field 2/3 of the detail segment (OBR, or
    any segment with the same layout), falling back to ORC-2/ORC-3.
    """
    placer = filler = ""
    if detail is not None and detail.name == "OBR":
        placer = detail.get(Locator(2, 0, 1))
        filler = detail.get(Locator(3, 0, 1))
    if orc is not None:
        placer = placer or orc.get(Locator(2, 0, 1))
        filler = filler or orc.get(Locator(3, 0, 1))
    return placer or None, filler or None


def order_identifiers(placer: Optional[str], filler: Optional[str]) -> List[Dict[str, Any]]:
    out = []
    for value, code, display in (
        (placer, "PLAC", "Placer Identifier"),
        (filler, "FILL", "Filler Identifier"),
    ):
        if value:
            out.append(
                {
                    "type": {
                        "coding": [
                            {"system": codes.SYSTEM_V2_0203, "code": code, "display": display}
                        ]
                    },
                    "value": value,
                }
            )
    return out
