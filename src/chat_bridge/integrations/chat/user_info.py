"""Display-name cache for senders whose events omit their names.

Push-delivered events typically carry only the sender id. Names seen on
direct webhooks are cached here (in memory and in the state adapter) so later
events can be attributed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ...core.logging_utils import log_event
from .state_store import StateAdapter

logger = logging.getLogger(__name__)

DEFAULT_USER_CACHE_TTL_MS = 24 * 60 * 60 * 1000
PLACEHOLDER_NAMES = frozenset({"unknown", ""})


@dataclass(frozen=True)
class CachedUserInfo:
    display_name: str
    email: Optional[str] = None


def is_placeholder_name(name: Optional[str]) -> bool:
    return name is None or name.strip().lower() in PLACEHOLDER_NAMES


class UserInfoCache:
    def __init__(
        self,
        state: StateAdapter,
        platform: str,
        *,
        ttl_ms: int = DEFAULT_USER_CACHE_TTL_MS,
    ) -> None:
        self._state = state
        self._platform = platform
        self._ttl_ms = ttl_ms
        self._memory: dict[str, CachedUserInfo] = {}

    def _key(self, user_id: str) -> str:
        return f"{self._platform}:user:{user_id}"

    async def set(
        self, user_id: str, display_name: Optional[str], email: Optional[str] = None
    ) -> None:
        if not user_id or is_placeholder_name(display_name):
            return
        info = CachedUserInfo(display_name=str(display_name), email=email)
        self._memory[user_id] = info
        payload = {"displayName": info.display_name}
        if email:
            payload["email"] = email
        try:
            await self._state.set(self._key(user_id), payload, self._ttl_ms)
        except Exception as exc:
            log_event(
                logger,
                logging.WARNING,
                "chat.user_info.persist_failed",
                platform=self._platform,
                user_id=user_id,
                exc=exc,
            )

    async def get(self, user_id: str) -> Optional[CachedUserInfo]:
        cached = self._memory.get(user_id)
        if cached is not None:
            return cached
        try:
            payload = await self._state.get(self._key(user_id))
        except Exception as exc:
            log_event(
                logger,
                logging.WARNING,
                "chat.user_info.load_failed",
                platform=self._platform,
                user_id=user_id,
                exc=exc,
            )
            return None
        if not isinstance(payload, dict):
            return None
        name = payload.get("displayName")
        if not isinstance(name, str) or is_placeholder_name(name):
            return None
        email = payload.get("email")
        info = CachedUserInfo(
            display_name=name, email=email if isinstance(email, str) else None
        )
        self._memory[user_id] = info
        return info

    async def resolve_display_name(
        self,
        user_id: str,
        provided: Optional[str] = None,
        *,
        bot_user_id: Optional[str] = None,
        bot_user_name: Optional[str] = None,
    ) -> str:
        if not is_placeholder_name(provided):
            await self.set(user_id, provided)
            return str(provided)
        if bot_user_id and user_id == bot_user_id and bot_user_name:
            return bot_user_name
        cached = await self.get(user_id)
        if cached is not None:
            return cached.display_name
        suffix = user_id.rsplit("/", 1)[-1] if user_id else ""
        return f"User {suffix[-4:]}" if suffix else "unknown"


__all__ = [
    "CachedUserInfo",
    "DEFAULT_USER_CACHE_TTL_MS",
    "UserInfoCache",
    "is_placeholder_name",
]
