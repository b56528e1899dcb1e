"""In-process state adapter.

Suitable for tests and single-process development. Expiry is lazy: entries
are dropped when read after their deadline.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Optional

from ...core.logging_utils import log_event
from .errors import ChatAdapterPermanentError, LockHeldError
from .state_store import Clock, Lock, is_expired, new_lock_token, system_clock

logger = logging.getLogger(__name__)


class MemoryStateAdapter:
    def __init__(self, *, clock: Optional[Clock] = None) -> None:
        self._clock = clock or system_clock
        self._values: dict[str, tuple[str, Optional[int]]] = {}
        self._subscriptions: set[str] = set()
        self._locks: dict[str, Lock] = {}
        self._connected = False

    async def connect(self) -> None:
        if self._connected:
            return
        self._connected = True
        log_event(logger, logging.DEBUG, "chat.state.connected", backend="memory")

    async def disconnect(self) -> None:
        if not self._connected:
            return
        self._connected = False
        self._values.clear()
        self._subscriptions.clear()
        self._locks.clear()

    def _ensure_connected(self) -> None:
        if not self._connected:
            raise ChatAdapterPermanentError(
                "MemoryStateAdapter is not connected. Call connect() first."
            )

    async def get(self, key: str) -> Any:
        self._ensure_connected()
        entry = self._values.get(key)
        if entry is None:
            return None
        payload, expires_at = entry
        if is_expired(expires_at, self._clock()):
            self._values.pop(key, None)
            return None
        return json.loads(payload)

    async def set(self, key: str, value: Any, ttl_ms: Optional[int] = None) -> None:
        self._ensure_connected()
        payload = json.dumps(value)
        expires_at = self._clock() + ttl_ms if ttl_ms else None
        self._values[key] = (payload, expires_at)

    async def delete(self, key: str) -> None:
        self._ensure_connected()
        self._values.pop(key, None)

    async def subscribe(self, thread_id: str) -> None:
        self._ensure_connected()
        self._subscriptions.add(thread_id)

    async def unsubscribe(self, thread_id: str) -> None:
        self._ensure_connected()
        self._subscriptions.discard(thread_id)

    async def is_subscribed(self, thread_id: str) -> bool:
        self._ensure_connected()
        return thread_id in self._subscriptions

    async def list_subscriptions(self, prefix: Optional[str] = None) -> AsyncIterator[str]:
        self._ensure_connected()
        for thread_id in sorted(self._subscriptions):
            if prefix is None or thread_id.startswith(prefix):
                yield thread_id

    async def acquire_lock(self, thread_id: str, ttl_ms: int) -> Lock:
        self._ensure_connected()
        now = self._clock()
        existing = self._locks.get(thread_id)
        if existing is not None and not is_expired(existing.expires_at_ms, now):
            raise LockHeldError(thread_id)
        lock = Lock(
            thread_id=thread_id, token=new_lock_token(), expires_at_ms=now + ttl_ms
        )
        self._locks[thread_id] = lock
        return lock

    async def extend_lock(self, lock: Lock, ttl_ms: int) -> bool:
        self._ensure_connected()
        now = self._clock()
        existing = self._locks.get(lock.thread_id)
        if existing is None or existing.token != lock.token:
            return False
        if is_expired(existing.expires_at_ms, now):
            self._locks.pop(lock.thread_id, None)
            return False
        self._locks[lock.thread_id] = Lock(
            thread_id=lock.thread_id, token=lock.token, expires_at_ms=now + ttl_ms
        )
        return True

    async def release_lock(self, lock: Lock) -> None:
        self._ensure_connected()
        existing = self._locks.get(lock.thread_id)
        if existing is not None and existing.token == lock.token:
            self._locks.pop(lock.thread_id, None)


__all__ = ["MemoryStateAdapter"]
