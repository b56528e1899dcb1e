"""Adapter-layer error hierarchy for platform chat integrations.

Composes the shared core error types so retry and severity behavior stays
consistent across adapters, the dispatcher and the webhook surface.
"""

from __future__ import annotations

from typing import Optional

from ...core.exceptions import ChatBridgeError, PermanentError, TransientError


class ChatAdapterError(ChatBridgeError):
    """Base chat adapter error."""


class ChatAdapterTransientError(ChatAdapterError, TransientError):
    """Retryable adapter failure (network/transient backend state)."""


class ChatAdapterPermanentError(ChatAdapterError, PermanentError):
    """Non-retryable adapter failure (validation/auth/config)."""

    recoverable = PermanentError.recoverable
    severity = PermanentError.severity


class ChatAdapterTimeoutError(ChatAdapterTransientError):
    """Timeout while talking to a platform API."""

    def __init__(self, message: str, *, user_message: Optional[str] = None) -> None:
        if user_message is None:
            user_message = "Chat platform timed out. Retrying with backoff..."
        super().__init__(message, user_message=user_message)


class ChatNotFoundError(ChatAdapterPermanentError):
    """Requested message, space or subscription does not exist."""


class ChatNotImplementedError(ChatAdapterPermanentError):
    """Optional adapter feature is not available on this platform."""

    def __init__(self, platform: str, feature: str) -> None:
        super().__init__(f"{platform} does not support {feature}")
        self.platform = platform
        self.feature = feature


class ChatConfigError(ChatAdapterPermanentError):
    """Adapter configuration error."""


class RateLimitedError(ChatAdapterError):
    """Backend rejected the call with a rate limit.

    Not a ``TransientError``: the generic retry decorator must not retry it
    blindly. Handlers decide using ``retry_after`` (seconds).
    """

    recoverable = True
    severity = "warning"

    def __init__(
        self,
        message: str,
        *,
        retry_after: Optional[float] = None,
        user_message: Optional[str] = None,
    ) -> None:
        if user_message is None:
            user_message = "Chat platform rate limit reached. Try again shortly."
        super().__init__(message, user_message=user_message)
        self.retry_after = retry_after


class AuthError(ChatAdapterPermanentError):
    """Webhook signature/verification failure or rejected API credentials."""


class MalformedIdentityError(ChatAdapterPermanentError):
    """Thread identity string cannot be decoded."""

    def __init__(self, value: str, reason: str) -> None:
        super().__init__(f"Malformed thread id {value!r}: {reason}")
        self.value = value
        self.reason = reason


class DecodeError(ChatAdapterPermanentError):
    """Inbound payload cannot be turned into an event.

    ``acknowledge`` selects the webhook answer: True means reply 2xx so the
    backend stops redelivering, False means reply 400.
    """

    def __init__(self, message: str, *, acknowledge: bool = False) -> None:
        super().__init__(message)
        self.acknowledge = acknowledge


class LockHeldError(ChatAdapterTransientError):
    """Another delivery currently owns the thread lock."""

    def __init__(self, thread_id: str) -> None:
        super().__init__(f"Lock already held for thread {thread_id}")
        self.thread_id = thread_id


class SubscriptionCreationFailed(ChatAdapterPermanentError):
    """Push subscription could not be discovered or created."""

    def __init__(self, resource_id: str, message: str) -> None:
        super().__init__(f"Subscription for {resource_id} failed: {message}")
        self.resource_id = resource_id


__all__ = [
    "AuthError",
    "ChatAdapterError",
    "ChatAdapterPermanentError",
    "ChatAdapterTimeoutError",
    "ChatAdapterTransientError",
    "ChatConfigError",
    "ChatNotFoundError",
    "ChatNotImplementedError",
    "DecodeError",
    "LockHeldError",
    "MalformedIdentityError",
    "RateLimitedError",
    "SubscriptionCreationFailed",
]
