# src/hl7_fhir_bridge/transform/registry.py
"""
Registries for inbound (HL7 v2 -> FHIR) and outbound (FHIR -> HL7 v2)
converters.

Provides:
- @register_inbound(kind, order=..., fatal=...) binding a resource type to the
  converter class that produces it, with its declared dispatch position,
- @register_outbound(key, order=...) for record -> segment converters,
- ordered listings used by dispatch and the CLI,
- freeze(), after which the registries are read-only.

The registries are populated once at import time (see
``hl7_fhir_bridge.transform``) and only read afterwards, so concurrent
conversions can share them.
"""

from __future__ import annotations

import importlib
import pkgutil
from typing import Dict, Iterable, List, Set, Type

from .base import InboundConverter, OutboundConverter

# Map resource type (e.g., "Patient") to the inbound converter class.
_INBOUND: Dict[str, Type[InboundConverter]] = {}

# Map converter key (e.g., "patient-pid") to the outbound converter class.
_OUTBOUND: Dict[str, Type[OutboundConverter]] = {}

_FROZEN = False


def _check_open() -> None:
    if _FROZEN:
        raise RuntimeError("Converter registry is frozen; register at import time")


def register_inbound(kind: str, *, order: int, fatal: bool = False):
    """
    Decorator to register an inbound converter class for a resource type.

    Parameters
    ----------
    kind : str
        FHIR resource type produced, e.g., "Patient".
    order : int
        Dispatch position; lower runs first. Must be unique.
    fatal : bool, default False
        If True, a failure (or an empty result) aborts the whole conversion.

    Raises
    ------
    ValueError
        If the kind or the order is already registered.
    TypeError
        If the decorated object is not an InboundConverter subclass.
    RuntimeError
        If the registry has been frozen.

    Returns
    -------
    callable
        A class decorator that registers the converter.
    """

    def _wrap(cls: Type[InboundConverter]) -> Type[InboundConverter]:
        _check_open()
        if kind in _INBOUND:
            raise ValueError(f"Inbound converter already registered for {kind!r}")
        if not isinstance(cls, type):
            raise TypeError(
                f"Only classes can be registered as converters, got {type(cls)}"
            )
        if not issubclass(cls, InboundConverter) or not callable(
            getattr(cls, "convert", None)
        ):
            raise TypeError(f"Class {cls.__name__} is not an InboundConverter")
        taken = {c.order: k for k, c in _INBOUND.items()}
        if order in taken:
            raise ValueError(
                f"Dispatch order {order} already used by {taken[order]!r}"
            )

        cls.kind = kind
        cls.order = order
        cls.fatal = fatal
        _INBOUND[kind] = cls
        return cls

    return _wrap


def register_outbound(key: str, *, order: int):
    """
    Decorator to register an outbound converter class.

    Parameters
    ----------
    key : str
        Unique converter name, e.g., "patient-pid".
    order : int
        Position among converters matching the same record; lower runs first.

    Raises
    ------
    ValueError
        If the key is already registered.
    TypeError
        If the decorated object is not an OutboundConverter subclass.
    RuntimeError
        If the registry has been frozen.
    """

    def _wrap(cls: Type[OutboundConverter]) -> Type[OutboundConverter]:
        _check_open()
        if key in _OUTBOUND:
            raise ValueError(f"Outbound converter already registered for {key!r}")
        if not isinstance(cls, type) or not issubclass(cls, OutboundConverter):
            raise TypeError(f"{cls!r} is not an OutboundConverter subclass")
        if not callable(getattr(cls, "can_convert", None)):
            raise TypeError(f"Class {cls.__name__} does not implement can_convert")

        cls.key = key
        cls.order = order
        _OUTBOUND[key] = cls
        return cls

    return _wrap


def freeze() -> None:
    """Make both registries read-only."""
    global _FROZEN
    _FROZEN = True


def is_frozen() -> bool:
    return _FROZEN


def inbound_converters() -> List[Type[InboundConverter]]:
    """Inbound converter classes in dispatch order."""
    return sorted(_INBOUND.values(), key=lambda c: c.order)


def outbound_converters() -> List[Type[OutboundConverter]]:
    """Outbound converter classes in dispatch order (order, then key)."""
    return sorted(_OUTBOUND.values(), key=lambda c: (c.order, c.key))


def available_kinds() -> List[str]:
    """Resource types with an inbound converter, in dispatch order."""
    return [c.kind for c in inbound_converters()]


def available_outbound() -> List[str]:
    return [c.key for c in outbound_converters()]


def get_inbound(kind: str) -> Type[InboundConverter] | None:
    return _INBOUND.get(kind)


# ------------------------------------------------------------------------------
# auto-discovery
# ------------------------------------------------------------------------------

_DISCOVERED: Set[str] = set()


def _iter_modules(pkg_name: str) -> Iterable[str]:
    """
    Yield fully-qualified module names under the given package.

    Only direct Python modules and subpackages beneath pkg_name are returned.
    """
    pkg = importlib.import_module(pkg_name)
    pkg_path = getattr(pkg, "__path__", None)
    if not pkg_path:
        return
    for _, name, _ in pkgutil.walk_packages(pkg_path, prefix=pkg_name + "."):
        yield name


def discover(pkg_name: str) -> List[str]:
    """
    Import every public converter module under ``pkg_name`` so that its
    registration decorators run. Idempotent: safe to call multiple times.

    Returns
    -------
    List[str]
        Modules imported by this call.
    """
    imported = []
    for modname in _iter_modules(pkg_name):
        if modname in _DISCOVERED:
            continue
        short = modname.rsplit(".", 1)[-1]
        if short.startswith("_"):
            continue
        importlib.import_module(modname)
        _DISCOVERED.add(modname)
        imported.append(modname)
    return imported
