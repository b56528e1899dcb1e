"""Shared error base types.

Integrations compose these so retry decisions (``TransientError``) and
user-facing severity stay consistent across adapters.
"""

from __future__ import annotations

from typing import Optional


class ChatBridgeError(Exception):
    """Base error for chat-bridge."""

    recoverable: bool = False
    severity: str = "error"

    def __init__(self, message: str, *, user_message: Optional[str] = None) -> None:
        super().__init__(message)
        self.user_message = user_message


class TransientError(ChatBridgeError):
    """Failure that may succeed when retried."""

    recoverable = True
    severity = "warning"


class PermanentError(ChatBridgeError):
    """Failure that will not succeed when retried."""

    recoverable = False
    severity = "error"


class ConfigError(PermanentError):
    """Invalid or unreadable configuration."""


__all__ = ["ChatBridgeError", "TransientError", "PermanentError", "ConfigError"]
