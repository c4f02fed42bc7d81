# src/hl7_fhir_bridge/hl7_parser.py
"""
HL7 v2 parsing utilities.

Provides:
- parse_hl7_v2: strict/lenient parsing into an hl7apy Message
- parse_hl7_structured: lenient parsing that asks hl7apy to infer groups and
  falls back to the flat segment list when the structure is not recognized
- iter_segments: depth-first segment iteration over grouped or flat messages
- to_pretty_segments: segment-per-line ER7 strings
"""

from __future__ import annotations

import logging
from typing import Iterator, List

from hl7apy.consts import VALIDATION_LEVEL
from hl7apy.core import Message, Segment
from hl7apy.exceptions import HL7apyException
from hl7apy.parser import parse_message

from .exceptions import ParseError

LOG = logging.getLogger(__name__)


def normalize_segments(raw: str) -> str:
    """Normalize line endings so \\n or \\r\\n are accepted (HL7 expects \\r)."""
    text = raw.replace("\r\n", "\r").replace("\n", "\r")
    # drop blank segments left by trailing separators
    return "\r".join(s for s in text.split("\r") if s.strip())


def parse_hl7_v2(raw: str, *, strict: bool = True, find_groups: bool = False) -> Message:
    """
    Parse an HL7 v2 message string into an hl7apy Message.

    Parameters
    ----------
    raw : str
        Raw HL7 v2 message in ER7 format (segments separated by CR/LF).
    strict : bool, default True
        If True, uses hl7apy STRICT validation. If False, uses TOLERANT validation.
    find_groups : bool, default False
        If True, hl7apy infers the message structure groups
        (e.g. ORU_R01_ORDER_OBSERVATION) from MSH-9.

    Returns
    -------
    Message
        Parsed HL7 message object.

    Raises
    ------
    TypeError
        If raw is not a string.
    ValueError
        If raw is an empty string.
    ParseError
        If the HL7 message cannot be parsed.
    """
    if not isinstance(raw, str):
        raise TypeError(f"raw must be str, got {type(raw).__name__}")
    if raw.strip() == "":
        raise ValueError("raw must be a non-empty HL7 v2 string")

    normalized = normalize_segments(raw)
    if not normalized.startswith("MSH"):
        raise ParseError("Failed to parse HL7 v2 message: first segment is not MSH")

    # Use hl7apy enum constants (do not pass bare ints)
    vlevel = VALIDATION_LEVEL.STRICT if strict else VALIDATION_LEVEL.TOLERANT
    try:
        return parse_message(
            normalized, find_groups=find_groups, validation_level=vlevel
        )
    except HL7apyException as e:
        raise ParseError(f"Failed to parse HL7 v2 message: {e}") from e
    except (IndexError, KeyError, ValueError, AttributeError) as e:
        # hl7apy surfaces some structural problems as plain Python errors
        raise ParseError(f"Failed to parse HL7 v2 message: {e}") from e


def parse_hl7_structured(raw: str) -> Message:
    """
    Parse leniently, preferring hl7apy's group inference.

    Group inference only works for message structures hl7apy knows
    (ADT_A01, ORU_R01, ORM_O01, ...). Unknown or out-of-order messages are
    parsed again as a flat list of segments. So are messages where the
    grouped parse kept fewer segments than the input holds: hl7apy drops
    segments it cannot place (Z segments, RXE in some ORM versions).

    Raises
    ------
    TypeError, ValueError
        As for parse_hl7_v2.
    ParseError
        If neither the grouped nor the flat parse succeeds.
    """
    try:
        msg = parse_hl7_v2(raw, strict=False, find_groups=True)
    except ParseError as e:
        LOG.debug("Group inference failed, parsing flat: %s", e)
    except Exception as e:  # hl7apy group inference is not exhaustive
        LOG.debug("Group inference raised %s, parsing flat", type(e).__name__)
    else:
        expected = len(normalize_segments(raw).split("\r"))
        kept = sum(1 for _ in iter_segments(msg))
        if kept == expected:
            return msg
        LOG.debug(
            "Group inference kept %d of %d segments, parsing flat", kept, expected
        )
    return parse_hl7_v2(raw, strict=False, find_groups=False)


def iter_segments(element) -> Iterator[Segment]:
    """Yield every segment below an hl7apy Message or Group, depth first."""
    for child in element.children:
        if isinstance(child, Segment):
            yield child
        else:
            yield from iter_segments(child)


def to_pretty_segments(msg: Message) -> List[str]:
    """
    Return a list of ER7 strings, one per segment, in message order.

    Parameters
    ----------
    msg : Message
        Parsed hl7apy message.

    Returns
    -------
    List[str]
        Segment strings (e.g., "PID|...").

    Raises
    ------
    TypeError
        If msg is not an hl7apy.core.Message.
    """
    if not isinstance(msg, Message):
        raise TypeError(f"msg must be hl7apy.core.Message, got {type(msg).__name__}")

    return [seg.to_er7() for seg in iter_segments(msg)]
