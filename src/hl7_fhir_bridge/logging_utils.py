# src/hl7_fhir_bridge/logging_utils.py
"""
Logging utilities for hl7_fhir_bridge.

Provides a single entry point to configure root logging for CLI and library use.
Library modules only create loggers (``logging.getLogger(__name__)``); handlers
are attached here by the application.
"""

import logging
import sys
from typing import IO, Optional


_VERBOSITY_LEVELS = {
    0: logging.WARNING,
    1: logging.INFO,
    2: logging.DEBUG,  # any value >= 2 maps to DEBUG
}

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(
    verbosity: int = 0, stream: Optional[IO[str]] = None
) -> logging.Logger:
    """
    Configure application-wide logging.

    Parameters
    ----------
    verbosity : int, default=0
        Verbosity level:
        - 0 -> WARNING
        - 1 -> INFO
        - 2 or higher -> DEBUG
        Must be a non-negative integer.
    stream : IO[str] or None, default=None
        Target stream for the StreamHandler. Defaults to sys.stderr if None so
        that converted output written to stdout stays machine-readable.

    Returns
    -------
    logging.Logger
        The configured root logger.

    Raises
    ------
    TypeError
        If verbosity is not an int, or if a stream is provided that does not
        have a write method.
    ValueError
        If verbosity is negative.
    """
    if not isinstance(verbosity, int) or isinstance(verbosity, bool):
        raise TypeError(f"verbosity must be int, got {type(verbosity).__name__}")
    if verbosity < 0:
        raise ValueError(f"verbosity must be non-negative, got {verbosity}")

    level = _VERBOSITY_LEVELS.get(verbosity, logging.DEBUG)

    if stream is None:
        stream = sys.stderr
    elif not hasattr(stream, "write"):
        raise TypeError("stream must be file-like (support .write(...))")

    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root = logging.getLogger()
    # Replace only existing StreamHandlers; leave other handlers intact (e.g.,
    #   FileHandler)
    root.handlers = [
        h
        for h in root.handlers
        if not isinstance(h, logging.StreamHandler)
        or isinstance(h, logging.FileHandler)
    ]
    root.addHandler(handler)
    root.setLevel(level)

    return root
