"""Provider-side push subscription lifecycle.

Some backends only deliver @mention events unless a "send me everything for
this resource" subscription exists, and those subscriptions expire. The
manager keeps one alive per resource:

1. Cached info whose expiry is further away than the refresh buffer is
   returned without any backend call.
2. Concurrent callers for the same resource in this process share one
   in-flight creation task.
3. Creation first asks the backend for an existing active subscription
   (another replica, or an earlier create whose cache write failed), and only
   creates a new one when none is found.
4. Failures are logged and yield None so the caller degrades to
   mentions-only delivery.

Refresh is opportunistic: callers invoke ``ensure_subscription`` whenever a
thread under the resource is subscribed or receives an event.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from ...core.logging_utils import log_event
from .errors import SubscriptionCreationFailed
from .state_store import Clock, StateAdapter, system_clock

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_BUFFER_MS = 60 * 60 * 1000
DEFAULT_CACHE_TTL_MS = 25 * 60 * 60 * 1000


@dataclass(frozen=True)
class PushSubscriptionInfo:
    subscription_name: str
    expire_time_ms: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "subscriptionName": self.subscription_name,
            "expireTime": self.expire_time_ms,
        }

    @classmethod
    def from_dict(cls, payload: Any) -> Optional["PushSubscriptionInfo"]:
        if not isinstance(payload, dict):
            return None
        name = payload.get("subscriptionName")
        expire = payload.get("expireTime")
        if not isinstance(name, str) or not name:
            return None
        if isinstance(expire, bool) or not isinstance(expire, int):
            return None
        return cls(subscription_name=name, expire_time_ms=expire)


class PushSubscriptionBackend(Protocol):
    """Backend calls the manager needs; adapters implement these over REST."""

    async def find_active(self, resource_id: str) -> Optional[PushSubscriptionInfo]:
        """Return an existing non-expired subscription for the resource."""
        ...

    async def create(self, resource_id: str) -> PushSubscriptionInfo:
        """Create a subscription; raise on failure."""
        ...


class PushSubscriptionManager:
    def __init__(
        self,
        state: StateAdapter,
        backend: PushSubscriptionBackend,
        *,
        key_prefix: str,
        refresh_buffer_ms: int = DEFAULT_REFRESH_BUFFER_MS,
        cache_ttl_ms: int = DEFAULT_CACHE_TTL_MS,
        clock: Optional[Clock] = None,
    ) -> None:
        self._state = state
        self._backend = backend
        self._key_prefix = key_prefix
        self._refresh_buffer_ms = refresh_buffer_ms
        self._cache_ttl_ms = cache_ttl_ms
        self._clock = clock or system_clock
        self._in_flight: dict[str, asyncio.Task[Optional[PushSubscriptionInfo]]] = {}

    def cache_key(self, resource_id: str) -> str:
        return f"{self._key_prefix}{resource_id}"

    def is_fresh(self, info: PushSubscriptionInfo) -> bool:
        if info.expire_time_ms is None:
            return False
        return info.expire_time_ms - self._clock() > self._refresh_buffer_ms

    async def ensure_subscription(
        self, resource_id: str
    ) -> Optional[PushSubscriptionInfo]:
        cached = await self._read_cache(resource_id)
        if cached is not None and self.is_fresh(cached):
            log_event(
                logger,
                logging.DEBUG,
                "chat.push_subscription.cache_hit",
                resource_id=resource_id,
                subscription_name=cached.subscription_name,
            )
            return cached

        # No await between the lookup and the insert below.
        pending = self._in_flight.get(resource_id)
        if pending is None:
            pending = asyncio.get_running_loop().create_task(
                self._create_or_discover(resource_id)
            )
            self._in_flight[resource_id] = pending
        else:
            log_event(
                logger,
                logging.DEBUG,
                "chat.push_subscription.in_flight",
                resource_id=resource_id,
            )
        return await asyncio.shield(pending)

    def in_flight_count(self) -> int:
        return len(self._in_flight)

    async def _create_or_discover(
        self, resource_id: str
    ) -> Optional[PushSubscriptionInfo]:
        try:
            info = await self._discover(resource_id)
            if info is None:
                info = await self._create(resource_id)
            if info.expire_time_ms is not None:
                await self._write_cache(resource_id, info)
            return info
        except Exception as exc:
            log_event(
                logger,
                logging.ERROR,
                "chat.push_subscription.failed",
                resource_id=resource_id,
                exc=exc,
            )
            return None
        finally:
            if self._in_flight.get(resource_id) is asyncio.current_task():
                self._in_flight.pop(resource_id, None)

    async def _discover(self, resource_id: str) -> Optional[PushSubscriptionInfo]:
        try:
            existing = await self._backend.find_active(resource_id)
        except Exception as exc:
            log_event(
                logger,
                logging.WARNING,
                "chat.push_subscription.discovery_failed",
                resource_id=resource_id,
                exc=exc,
            )
            return None
        if existing is None or not self.is_fresh(existing):
            return None
        log_event(
            logger,
            logging.INFO,
            "chat.push_subscription.discovered",
            resource_id=resource_id,
            subscription_name=existing.subscription_name,
        )
        return existing

    async def _create(self, resource_id: str) -> PushSubscriptionInfo:
        try:
            info = await self._backend.create(resource_id)
        except SubscriptionCreationFailed:
            raise
        except Exception as exc:
            raise SubscriptionCreationFailed(resource_id, str(exc)) from exc
        log_event(
            logger,
            logging.INFO,
            "chat.push_subscription.created",
            resource_id=resource_id,
            subscription_name=info.subscription_name,
            expire_time_ms=info.expire_time_ms,
        )
        return info

    async def _read_cache(self, resource_id: str) -> Optional[PushSubscriptionInfo]:
        try:
            payload = await self._state.get(self.cache_key(resource_id))
        except Exception as exc:
            log_event(
                logger,
                logging.WARNING,
                "chat.push_subscription.cache_read_failed",
                resource_id=resource_id,
                exc=exc,
            )
            return None
        return PushSubscriptionInfo.from_dict(payload)

    async def _write_cache(self, resource_id: str, info: PushSubscriptionInfo) -> None:
        try:
            await self._state.set(
                self.cache_key(resource_id), info.to_dict(), self._cache_ttl_ms
            )
        except Exception as exc:
            log_event(
                logger,
                logging.WARNING,
                "chat.push_subscription.cache_write_failed",
                resource_id=resource_id,
                exc=exc,
            )

    async def invalidate(self, resource_id: str) -> None:
        await self._state.delete(self.cache_key(resource_id))


__all__ = [
    "DEFAULT_CACHE_TTL_MS",
    "DEFAULT_REFRESH_BUFFER_MS",
    "PushSubscriptionBackend",
    "PushSubscriptionInfo",
    "PushSubscriptionManager",
]
