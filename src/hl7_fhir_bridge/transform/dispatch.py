# src/hl7_fhir_bridge/transform/dispatch.py
"""
Run the registered converters over one message tree (inbound) or one list of
records (outbound).

Inbound passes run in their declared order and are isolated from each
other: a failing pass is logged, recorded as an issue and skipped, unless it
is fatal (the Patient pass) or ``continue_on_error`` is off.
"""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional, Sequence, Tuple

from ..context import ConversionContext
from ..exceptions import MissingAnchorError, TransformError
from ..fhir_parser import resource_type_of
from ..message_tree import MessageTree
from .base import ConversionIssue, TransformResult
from .registry import inbound_converters, outbound_converters

LOG = logging.getLogger(__name__)


def run_inbound(
    tree: MessageTree,
    context: ConversionContext,
    *,
    caps: Optional[Mapping[str, int]] = None,
    options: Optional[Mapping[str, Any]] = None,
    continue_on_error: bool = True,
) -> Tuple[TransformResult, List[ConversionIssue]]:
    """
    Run every inbound converter over ``tree``.

    ``caps`` and ``options`` are handed to each converter instance.

    Returns
    -------
    (records, issues)
        Records in dispatch order, and one issue per failed pass.

    Raises
    ------
    MissingAnchorError
        If a fatal pass fails or produces nothing.
    TransformError
        If a pass fails and ``continue_on_error`` is False.
    """
    records: TransformResult = []
    issues: List[ConversionIssue] = []

    for cls in inbound_converters():
        converter = cls(caps, options)
        try:
            produced = converter.convert(tree, context)
        except Exception as e:
            LOG.error("%s pass failed: %s", cls.kind, e, exc_info=True)
            if cls.fatal:
                raise MissingAnchorError(f"{cls.kind} could not be converted: {e}") from e
            if not continue_on_error:
                raise TransformError(f"{cls.kind} conversion failed: {e}") from e
            issues.append(ConversionIssue("error", "CONVERTER_FAILED", str(e), converter.name))
            continue

        if cls.fatal and not produced:
            raise MissingAnchorError(f"No {cls.kind} could be produced from the message")
        records.extend(produced)

    return records, issues


def run_outbound(
    records: Sequence[Any],
    tree: MessageTree,
    context: ConversionContext,
) -> List[ConversionIssue]:
    """
    Feed every record, in order, to each outbound converter that accepts it.

    Converter instances are created here, once per conversion, so their
    repetition counters start at zero.
    """
    converters = [cls() for cls in outbound_converters()]
    issues: List[ConversionIssue] = []

    for record in records:
        kind = resource_type_of(record)
        matched = [c for c in converters if c.can_convert(record)]
        if not matched:
            LOG.warning("No outbound converter for %s", kind)
            issues.append(
                ConversionIssue("warning", "NO_CONVERTER", f"No converter for {kind}")
            )
            continue
        for converter in matched:
            try:
                converter.convert(record, tree, context)
            except Exception as e:
                LOG.error("%s failed on %s: %s", converter.name, kind, e, exc_info=True)
                issues.append(
                    ConversionIssue("error", "CONVERTER_FAILED", str(e), converter.name)
                )
    return issues
