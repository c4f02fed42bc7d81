# src/hl7_fhir_bridge/context.py
"""
Per-conversion correlation state.

A ``ConversionContext`` is created at the start of one inbound or outbound
conversion, passed explicitly to every converter call and dropped afterwards.
It carries the anchor identifiers of the conversion and the correlation maps
that let a later pass point at records produced by an earlier one.

Lookup keys are ``"PLACER:<number>"``, ``"FILLER:<number>"`` or the order's
positional index as a string. A key, once registered, is never replaced.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

LOG = logging.getLogger(__name__)

PLACER = "PLACER"
FILLER = "FILLER"


def placer_key(number: str) -> str:
    return f"{PLACER}:{number}"


def filler_key(number: str) -> str:
    return f"{FILLER}:{number}"


def order_keys(
    placer: Optional[str], filler: Optional[str], index: Optional[int]
) -> List[str]:
    """Lookup keys for an order in linking priority: placer, filler, index."""
    keys = []
    if placer:
        keys.append(placer_key(placer))
    if filler:
        keys.append(filler_key(filler))
    if index is not None:
        keys.append(str(index))
    return keys


class ConversionContext:
    """
    Scratch state for exactly one conversion.

    Parameters
    ----------
    transaction_id : str, optional
        Correlation identifier threaded through to the caller (MSH-10 or the
        Bundle id).
    patient_id : str, optional
        Id of the root Patient record.
    message_type, trigger_event : str, optional
        MSH-9 components of the message being converted or produced.
    """

    def __init__(
        self,
        transaction_id: Optional[str] = None,
        patient_id: Optional[str] = None,
        message_type: str = "",
        trigger_event: str = "",
    ) -> None:
        self._transaction_id = transaction_id
        self._patient_id = patient_id
        self._encounter_id: Optional[str] = None
        self.message_type = message_type
        self.trigger_event = trigger_event
        self._links: Dict[str, Dict[str, str]] = {}
        self._members: Dict[str, Dict[str, List[str]]] = {}
        self._sequences: Dict[str, int] = {}

    # ------------------------------------------------------------------------------
    # anchor identifiers (set once)
    # ------------------------------------------------------------------------------

    @property
    def transaction_id(self) -> Optional[str]:
        return self._transaction_id

    @property
    def patient_id(self) -> Optional[str]:
        return self._patient_id

    @property
    def encounter_id(self) -> Optional[str]:
        return self._encounter_id

    def bind_transaction(self, value: str) -> None:
        self._transaction_id = self._bind("transaction_id", self._transaction_id, value)

    def bind_patient(self, value: str) -> None:
        self._patient_id = self._bind("patient_id", self._patient_id, value)

    def bind_encounter(self, value: str) -> None:
        self._encounter_id = self._bind("encounter_id", self._encounter_id, value)

    @staticmethod
    def _bind(name: str, current: Optional[str], value: str) -> str:
        if not value:
            raise ValueError(f"{name} must be a non-empty string")
        if current is not None and current != value:
            raise RuntimeError(f"{name} is already set for this conversion")
        return value

    # ------------------------------------------------------------------------------
    # correlation maps
    # ------------------------------------------------------------------------------

    def register(self, kind: str, key: str, record_id: str) -> bool:
        """
        Map ``key`` to ``record_id`` for ``kind``.

        Returns False, leaving the existing target in place, when ``key`` is
        already registered.
        """
        table = self._links.setdefault(kind, {})
        if key in table:
            if table[key] != record_id:
                LOG.warning(
                    "Duplicate %s key %r ignored; keeping first registration",
                    kind,
                    key,
                )
            return False
        table[key] = record_id
        return True

    def lookup(self, kind: str, key: str) -> Optional[str]:
        return self._links.get(kind, {}).get(key)

    def register_order(
        self,
        kind: str,
        record_id: str,
        placer: Optional[str] = None,
        filler: Optional[str] = None,
        index: Optional[int] = None,
    ) -> List[str]:
        """Register an order-like record under every key it can be found by."""
        keys = order_keys(placer, filler, index)
        return [key for key in keys if self.register(kind, key, record_id)]

    def link(
        self,
        kind: str,
        placer: Optional[str] = None,
        filler: Optional[str] = None,
        index: Optional[int] = None,
    ) -> Optional[str]:
        """First hit in priority order placer, filler, index; None on a miss."""
        for key in order_keys(placer, filler, index):
            found = self.lookup(kind, key)
            if found is not None:
                return found
        return None

    def add_member(self, kind: str, key: str, record_id: str) -> None:
        """Append ``record_id`` to the one-to-many list under ``key``."""
        bucket = self._members.setdefault(kind, {}).setdefault(key, [])
        if record_id not in bucket:
            bucket.append(record_id)

    def members(
        self,
        kind: str,
        placer: Optional[str] = None,
        filler: Optional[str] = None,
        index: Optional[int] = None,
    ) -> Tuple[str, ...]:
        """Members of the first populated key in placer, filler, index order."""
        table = self._members.get(kind, {})
        for key in order_keys(placer, filler, index):
            if table.get(key):
                return tuple(table[key])
        return ()

    def registered_kinds(self) -> List[str]:
        return sorted(self._links)

    def next_sequence(self, name: str) -> int:
        """0, 1, 2 ... per ``name``; shared by every converter of the conversion."""
        value = self._sequences.get(name, 0)
        self._sequences[name] = value + 1
        return value
