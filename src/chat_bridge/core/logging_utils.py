from __future__ import annotations

import json
import logging
from typing import Any

_RESERVED_FIELDS = {"exc"}


def _format_value(value: Any) -> str:
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    try:
        return json.dumps(value, ensure_ascii=False, default=str, sort_keys=True)
    except (TypeError, ValueError):
        return json.dumps(repr(value))


def format_event(event: str, **fields: Any) -> str:
    parts = [f"event={event}"]
    for key, value in fields.items():
        if key in _RESERVED_FIELDS or value is None:
            continue
        parts.append(f"{key}={_format_value(value)}")
    exc = fields.get("exc")
    if isinstance(exc, BaseException):
        parts.append(f"error_type={type(exc).__name__}")
        parts.append(f"error={_format_value(str(exc))}")
    return " ".join(parts)


def log_event(
    logger: logging.Logger,
    level: int,
    event: str,
    **fields: Any,
) -> None:
    """Emit a structured ``event=... key=value`` log line.

    ``exc`` is rendered as type and message; for WARNING and above the
    traceback is attached too. Values that are not JSON serializable are
    rendered through ``str``.
    """
    if not logger.isEnabledFor(level):
        return
    exc = fields.get("exc")
    exc_info: Any = None
    if isinstance(exc, BaseException) and level >= logging.WARNING:
        exc_info = (type(exc), exc, exc.__traceback__)
    logger.log(level, format_event(event, **fields), exc_info=exc_info)


def setup_logging(level: str = "INFO") -> None:
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        resolved = logging.INFO
    logging.basicConfig(
        level=resolved,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


__all__ = ["format_event", "log_event", "setup_logging"]
