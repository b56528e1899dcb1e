"""Platform-agnostic state coordination contract.

Every adapter and the dispatcher depend only on this interface: a JSON
key/value store with TTLs, a per-thread lock with token ownership, and the
set of threads the bot is following. One backing store (memory for tests,
SQLite for a single host) satisfies the whole system.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Optional, Protocol, runtime_checkable

from ...core.time_utils import now_ms

Clock = Callable[[], int]
"""Returns the current time in epoch milliseconds."""


@dataclass(frozen=True)
class Lock:
    """Ownership proof for a thread lock."""

    thread_id: str
    token: str
    expires_at_ms: int


def new_lock_token() -> str:
    return secrets.token_hex(16)


def system_clock() -> int:
    return now_ms()


@runtime_checkable
class StateAdapter(Protocol):
    """State coordination contract consumed by chat-core."""

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    async def get(self, key: str) -> Any: ...

    async def set(self, key: str, value: Any, ttl_ms: Optional[int] = None) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def subscribe(self, thread_id: str) -> None: ...

    async def unsubscribe(self, thread_id: str) -> None: ...

    async def is_subscribed(self, thread_id: str) -> bool: ...

    def list_subscriptions(self, prefix: Optional[str] = None) -> AsyncIterator[str]:
        """Enumerate followed threads; each call starts a fresh enumeration."""
        ...

    async def acquire_lock(self, thread_id: str, ttl_ms: int) -> Lock:
        """Atomically take the thread lock or raise ``LockHeldError``."""
        ...

    async def extend_lock(self, lock: Lock, ttl_ms: int) -> bool:
        """Push the expiry out; False when the token no longer owns the lock."""
        ...

    async def release_lock(self, lock: Lock) -> None: ...


def is_expired(expires_at_ms: Optional[int], now: int) -> bool:
    return expires_at_ms is not None and expires_at_ms <= now


__all__ = [
    "Clock",
    "Lock",
    "StateAdapter",
    "is_expired",
    "new_lock_token",
    "system_clock",
]
