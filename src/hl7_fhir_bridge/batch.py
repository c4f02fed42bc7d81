# src/hl7_fhir_bridge/batch.py
"""
Concurrent batch conversion.

Every item is converted independently on a fixed thread pool. A failing
item becomes an ``ItemError`` and never affects the others: each input index
ends up in exactly one of ``results`` or ``errors``.
"""

from __future__ import annotations

import logging
import os
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from .config import AppConfig
from .exceptions import ParseError
from .fhir_parser import bundle_id
from .service import convert_inbound, convert_outbound, message_control_id

LOG = logging.getLogger(__name__)

INBOUND = "inbound"
OUTBOUND = "outbound"
DIRECTIONS = (INBOUND, OUTBOUND)

PREVIEW_CHARS = 200
UNKNOWN_ID = "unknown"


@dataclass(frozen=True)
class ItemResult:
    index: int
    output: str
    elapsed_ms: float
    extracted_id: str = UNKNOWN_ID


@dataclass(frozen=True)
class ItemError:
    index: int
    message: str
    input_preview: str


@dataclass
class BatchResult:
    """
    Outcome of one batch.

    Attributes
    ----------
    results : list of ItemResult
        Successful items, sorted by input index.
    errors : list of ItemError
        Failed items, sorted by input index.
    elapsed_ms : float
        Wall time of the whole batch.
    """

    results: List[ItemResult] = field(default_factory=list)
    errors: List[ItemError] = field(default_factory=list)
    elapsed_ms: float = 0.0

    @property
    def success_count(self) -> int:
        return len(self.results)

    @property
    def failure_count(self) -> int:
        return len(self.errors)

    @property
    def total(self) -> int:
        return self.success_count + self.failure_count


def preview(text: object, limit: int = PREVIEW_CHARS) -> str:
    """First ``limit`` characters of an input, for error reports."""
    value = text if isinstance(text, str) else repr(text)
    return value[:limit]


def default_workers(config: AppConfig) -> int:
    if config.batch_workers:
        return config.batch_workers
    return max(4, os.cpu_count() or 1)


def _inbound(item: str, config: AppConfig) -> ItemResult:
    result = convert_inbound(item, config)
    try:
        extracted = bundle_id(result.bundle_json) or UNKNOWN_ID
    except ParseError:
        extracted = UNKNOWN_ID
    return ItemResult(-1, result.bundle_json, 0.0, extracted)


def _outbound(item: str, config: AppConfig) -> ItemResult:
    output = convert_outbound(item, config)
    return ItemResult(-1, output, 0.0, message_control_id(output) or UNKNOWN_ID)


_CONVERTERS: Dict[str, Callable[[str, AppConfig], ItemResult]] = {
    INBOUND: _inbound,
    OUTBOUND: _outbound,
}


def _run_item(
    index: int, item: str, convert: Callable[[str, AppConfig], ItemResult], config: AppConfig
) -> ItemResult:
    start = time.perf_counter()
    partial = convert(item, config)
    elapsed = (time.perf_counter() - start) * 1000.0
    return ItemResult(index, partial.output, elapsed, partial.extracted_id)


def convert_batch(
    items: Sequence[str],
    direction: str,
    config: Optional[AppConfig] = None,
) -> BatchResult:
    """
    Convert ``items`` concurrently.

    Parameters
    ----------
    items : sequence of str
        HL7 v2 messages (``direction="inbound"``) or Bundle JSON documents
        (``direction="outbound"``).
    direction : str
        "inbound" or "outbound".
    config : AppConfig, optional
        Shared by every item; ``batch_workers`` sizes the pool.

    Returns
    -------
    BatchResult
        Per-item results and errors, each sorted by input index.

    Raises
    ------
    ValueError
        If ``direction`` is not recognized.
    """
    if direction not in _CONVERTERS:
        raise ValueError(f"direction must be one of {DIRECTIONS}, got {direction!r}")
    cfg = config or AppConfig()
    convert = _CONVERTERS[direction]
    start = time.perf_counter()

    batch = BatchResult()
    if not items:
        return batch

    workers = default_workers(cfg)
    LOG.info("Converting %d item(s) %s with %d worker(s)", len(items), direction, workers)

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="hl7-fhir-batch") as pool:
        futures: Dict[Future, int] = {
            pool.submit(_run_item, i, item, convert, cfg): i for i, item in enumerate(items)
        }
        done, _ = wait(futures)

    for future in done:
        index = futures[future]
        try:
            batch.results.append(future.result())
        except Exception as e:
            LOG.warning("Batch item %d failed: %s", index, e)
            LOG.debug("Batch item %d traceback", index, exc_info=e)
            batch.errors.append(ItemError(index, str(e) or type(e).__name__, preview(items[index])))

    batch.results.sort(key=lambda r: r.index)
    batch.errors.sort(key=lambda e: e.index)
    batch.elapsed_ms = (time.perf_counter() - start) * 1000.0
    LOG.info(
        "Batch finished: %d succeeded, %d failed in %.1f ms",
        batch.success_count,
        batch.failure_count,
        batch.elapsed_ms,
    )
    return batch
