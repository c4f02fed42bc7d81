# tests/test_logging_utils.py
"""
tests for hl7_fhir_bridge.logging_utils
"""

import io
import logging

import pytest

from hl7_fhir_bridge.logging_utils import configure_logging


def test_configure_logging_rejects_non_int_verbosity():
    with pytest.raises(TypeError, match=r"^verbosity must be int"):
        configure_logging("load")


def test_configure_logging_rejects_bool_verbosity():
    with pytest.raises(TypeError, match=r"^verbosity must be int"):
        configure_logging(True)


def test_configure_logging_rejects_negative_verbosity():
    with pytest.raises(ValueError, match=r"^verbosity must be non-negative"):
        configure_logging(-1)


def test_configure_logging_defaults_to_warning_on_stderr(capsys):
    logger = configure_logging(verbosity=0)
    logger.warning("hello warning")
    logger.info("hidden info")

    out, err = capsys.readouterr()
    assert out == ""
    assert "hello warning" in err
    assert "hidden info" not in err


def test_configure_logging_sets_info_level(capsys):
    logger = configure_logging(verbosity=1)
    assert logger.level == logging.INFO
    logging.getLogger("hl7_fhir_bridge.service").info("visible info")

    _, err = capsys.readouterr()
    assert "INFO hl7_fhir_bridge.service: visible info" in err


@pytest.mark.parametrize("verbosity", [2, 5])
def test_configure_logging_sets_debug_level(verbosity):
    assert configure_logging(verbosity=verbosity).level == logging.DEBUG


def test_configure_logging_accepts_custom_stream():
    buf = io.StringIO()
    logger = configure_logging(verbosity=0, stream=buf)
    logger.warning("routed message")

    contents = buf.getvalue()
    assert "routed message" in contents


def test_configure_logging_replaces_previous_stream_handler():
    first, second = io.StringIO(), io.StringIO()
    configure_logging(0, stream=first)
    logger = configure_logging(0, stream=second)
    logger.warning("only once")

    assert first.getvalue() == ""
    assert second.getvalue().count("only once") == 1


def test_configure_logging_rejects_bad_stream():
    class NotAStream:
        pass

    with pytest.raises(
        TypeError, match=r"^stream must be file-like \(support .write\(...\)\)"
    ):
        configure_logging(0, stream=NotAStream())
