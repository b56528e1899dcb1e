from __future__ import annotations

import logging

import pytest

from chat_bridge.core.logging_utils import format_event, log_event


def test_format_event_renders_fields_and_skips_none() -> None:
    line = format_event("chat.test", thread_id="gchat:spaces/A", count=2, empty=None)
    assert line == 'event=chat.test thread_id="gchat:spaces/A" count=2'


def test_format_event_renders_exception_type_and_message() -> None:
    line = format_event("chat.failed", exc=ValueError("boom"))
    assert "error_type=ValueError" in line
    assert 'error="boom"' in line
    assert "exc=" not in line


def test_log_event_attaches_traceback_at_warning(
    caplog: pytest.LogCaptureFixture,
) -> None:
    logger = logging.getLogger("chat_bridge.test.logging")
    try:
        raise RuntimeError("kaput")
    except RuntimeError as exc:
        with caplog.at_level(logging.WARNING, logger=logger.name):
            log_event(logger, logging.WARNING, "chat.test.failed", exc=exc)

    record = caplog.records[-1]
    assert record.getMessage().startswith("event=chat.test.failed")
    assert record.exc_info is not None


def test_log_event_skips_disabled_levels(caplog: pytest.LogCaptureFixture) -> None:
    logger = logging.getLogger("chat_bridge.test.logging.quiet")
    with caplog.at_level(logging.INFO, logger=logger.name):
        log_event(logger, logging.DEBUG, "chat.test.debug")
    assert not caplog.records


def test_format_event_falls_back_to_str_for_unserializable_values() -> None:
    class Marker:
        def __str__(self) -> str:
            return "marker-1"

    line = format_event("chat.test", value=Marker())
    assert line == 'event=chat.test value="marker-1"'


def test_log_event_propagates_handler_failures() -> None:
    class ExplodingHandler(logging.Handler):
        def emit(self, record: logging.LogRecord) -> None:
            raise RuntimeError("handler down")

    logger = logging.getLogger("chat_bridge.test.logging.exploding")
    logger.propagate = False
    logger.setLevel(logging.INFO)
    handler = ExplodingHandler()
    logger.addHandler(handler)
    try:
        with pytest.raises(RuntimeError):
            log_event(logger, logging.INFO, "chat.test.emit")
    finally:
        logger.removeHandler(handler)
