"""Bot self-identity resolution.

The bot's backend id is often unknown at cold start. It is learned from the
first event that reliably carries it (e.g. a BOT mention annotation), kept in
memory for the process and persisted through the state adapter so other
replicas and later invocations can read it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from ...core.logging_utils import log_event
from .models import Delivery
from .state_store import StateAdapter

logger = logging.getLogger(__name__)

WaitUntil = Callable[[Awaitable[Any]], None]


def bot_id_key(platform: str) -> str:
    return f"{platform}:botId"


class BotIdentityResolver:
    def __init__(
        self,
        state: StateAdapter,
        platform: str,
        *,
        key: Optional[str] = None,
        assume_bot_is_self: bool = False,
    ) -> None:
        self._state = state
        self._platform = platform
        self._key = key or bot_id_key(platform)
        self._assume_bot_is_self = assume_bot_is_self
        self._bot_id: Optional[str] = None
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def bot_id(self) -> Optional[str]:
        return self._bot_id

    async def load(self) -> Optional[str]:
        """Read the persisted id until one is known.

        A missing value is not cached: another replica may learn the id at any
        time, so callers invoke this at the start of every inbound event.
        """

        if self._bot_id is not None:
            return self._bot_id
        try:
            stored = await self._state.get(self._key)
        except Exception as exc:
            log_event(
                logger,
                logging.WARNING,
                "chat.identity.load_failed",
                platform=self._platform,
                exc=exc,
            )
            return self._bot_id
        if isinstance(stored, str) and stored:
            self._bot_id = stored
            log_event(
                logger,
                logging.DEBUG,
                "chat.identity.loaded",
                platform=self._platform,
                bot_id=stored,
            )
        return self._bot_id

    def learn(self, candidate: Optional[str], *, wait_until: Optional[WaitUntil] = None) -> bool:
        """Adopt ``candidate`` as the bot id; returns True when it changed.

        Persistence runs in the background; the in-memory value is authoritative
        for this process even if the write fails.
        """

        if not candidate or candidate == self._bot_id:
            return False
        previous = self._bot_id
        self._bot_id = candidate
        log_event(
            logger,
            logging.INFO if previous is None else logging.WARNING,
            "chat.identity.learned" if previous is None else "chat.identity.changed",
            platform=self._platform,
            bot_id=candidate,
            previous_bot_id=previous,
        )
        task = asyncio.get_running_loop().create_task(self._persist(candidate))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        if wait_until is not None:
            wait_until(task)
        return True

    async def _persist(self, bot_id: str) -> None:
        try:
            await self._state.set(self._key, bot_id)
        except Exception as exc:
            log_event(
                logger,
                logging.WARNING,
                "chat.identity.persist_failed",
                platform=self._platform,
                bot_id=bot_id,
                exc=exc,
            )

    async def flush(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending))

    def resolve_is_me(
        self,
        sender_id: Optional[str],
        sender_is_bot: bool,
        *,
        delivery: Delivery = Delivery.DIRECT,
    ) -> bool:
        if self._bot_id is not None:
            return bool(sender_id) and sender_id == self._bot_id
        if (
            self._assume_bot_is_self
            and sender_is_bot
            and delivery is Delivery.DIRECT
        ):
            return True
        return False


__all__ = ["BotIdentityResolver", "WaitUntil", "bot_id_key"]
