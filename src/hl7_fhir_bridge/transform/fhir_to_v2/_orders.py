# src/hl7_fhir_bridge/transform/fhir_to_v2/_orders.py
"""
Order group bookkeeping for the outbound direction.

Each written request (and each report without a written request) gets its
own order group. The group index is registered in the conversion context
under the record id so results can be placed inside the group of the order
they belong to.
"""

from __future__ import annotations

from typing import Any, Optional

from ...context import ConversionContext
from ..base import as_list, attr, reference_id

ORDER_GROUP = "ORDER_GROUP"


def group_name(context: ConversionContext) -> str:
    """Order group name of the message structure being written."""
    if context.message_type.upper() == "ORU":
        return "ORDER_OBSERVATION"
    return "ORDER"


def allocate_group(context: ConversionContext, record_id: Optional[str]) -> int:
    index = context.next_sequence(ORDER_GROUP)
    if record_id:
        context.register(ORDER_GROUP, record_id, str(index))
    return index


def group_of(context: ConversionContext, record_id: Optional[str]) -> Optional[int]:
    if not record_id:
        return None
    found = context.lookup(ORDER_GROUP, record_id)
    return int(found) if found is not None else None


def based_on_group(context: ConversionContext, record: Any) -> Optional[int]:
    """Group of the first ``basedOn`` request that has been written."""
    for ref in as_list(attr(record, "basedOn")):
        index = group_of(context, reference_id(ref))
        if index is not None:
            return index
    return None


def group_path(context: ConversionContext, index: int, segment: str) -> str:
    return f"{group_name(context)}({index})/{segment}"


def order_numbers(record: Any):
    """(placer, filler) from identifiers typed PLAC/FILL; an untyped first
    identifier counts as the placer number."""
    placer = filler = None
    idents = as_list(attr(record, "identifier"))
    for ident in idents:
        code = attr(ident, "type", "coding", 0, "code")
        if code == "PLAC" and placer is None:
            placer = attr(ident, "value")
        elif code == "FILL" and filler is None:
            filler = attr(ident, "value")
    if placer is None and filler is None and idents:
        placer = attr(idents[0], "value")
    return placer, filler
