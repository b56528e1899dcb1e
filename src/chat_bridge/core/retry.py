from __future__ import annotations

import logging
from functools import wraps
from typing import Any, Callable, Coroutine, ParamSpec, TypeVar, cast

from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .exceptions import TransientError
from .logging_utils import log_event

P = ParamSpec("P")
T = TypeVar("T")

logger = logging.getLogger(__name__)


def _log_backoff(event: str) -> Callable[[RetryCallState], None]:
    def _emit(state: RetryCallState) -> None:
        outcome = state.outcome
        exc = outcome.exception() if outcome is not None else None
        log_event(
            logger,
            logging.WARNING,
            event,
            attempt=state.attempt_number,
            delay=round(state.next_action.sleep, 2) if state.next_action else None,
            exc=exc,
        )

    return _emit


def retry_transient(
    max_attempts: int = 5,
    base_wait: float = 1.0,
    max_wait: float = 60.0,
    event: str = "retry.backoff",
) -> Callable[[Callable[P, Coroutine[Any, Any, T]]], Callable[P, Coroutine[Any, Any, T]]]:
    """
    Decorator for retrying transient errors with exponential backoff.

    Only ``TransientError`` subclasses are retried; everything else, including
    rate-limit errors that carry their own retry-after, propagates on the
    first failure. The last transient error is re-raised once attempts run out.

    Args:
        max_attempts: Total attempts including the first call (default: 5)
        base_wait: Multiplier for the exponential wait in seconds (default: 1.0)
        max_wait: Cap on a single wait in seconds (default: 60.0)
        event: Log event name emitted before each backoff sleep
    """

    def decorator(
        func: Callable[P, Coroutine[Any, Any, T]],
    ) -> Callable[P, Coroutine[Any, Any, T]]:
        @wraps(func)
        @retry(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=base_wait, max=max_wait, exp_base=2),
            retry=retry_if_exception_type(TransientError),
            before_sleep=_log_backoff(event),
            reraise=True,
        )
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            return cast(T, await func(*args, **kwargs))

        return wrapper

    return decorator
