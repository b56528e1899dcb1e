"""Thread handle given to handlers."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterable, AsyncIterator, Awaitable, Optional, Union

from ...core.logging_utils import log_event
from .adapter import AdapterTransport, ChatAdapter
from .identity import WaitUntil
from .models import CanonicalMessage, EmojiValue, FetchOptions, SentMessage
from .state_store import Lock, StateAdapter
from .streaming import StreamingDeliveryController

logger = logging.getLogger(__name__)

THREAD_STATE_KEY_PREFIX = "thread-state:"
THREAD_STATE_TTL_MS = 30 * 24 * 60 * 60 * 1000
FORWARD_PAGE_SIZE = 100


class ChatThread:
    def __init__(
        self,
        *,
        thread_id: str,
        adapter: ChatAdapter,
        state: StateAdapter,
        lock: Optional[Lock] = None,
        lock_ttl_ms: int = 30_000,
        wait_until: Optional[WaitUntil] = None,
        stream_update_interval_seconds: float = 0.0,
        is_subscribed_context: bool = False,
    ) -> None:
        self.id = thread_id
        self.adapter = adapter
        self._state = state
        self._lock = lock
        self._lock_ttl_ms = lock_ttl_ms
        self._wait_until = wait_until
        self._stream_interval = stream_update_interval_seconds
        self._is_subscribed_context = is_subscribed_context
        self._deferred: list[asyncio.Task[Any]] = []

    def __repr__(self) -> str:
        return f"ChatThread(id={self.id!r}, adapter={self.adapter.name!r})"

    @property
    def channel_id(self) -> str:
        return self.adapter.channel_id_from_thread_id(self.id)

    @property
    def is_dm(self) -> bool:
        return self.adapter.is_dm(self.id)

    async def post(self, text: str) -> SentMessage:
        return await self.adapter.post_message(self.id, text)

    async def post_stream(self, chunks: AsyncIterable[str]) -> Optional[SentMessage]:
        """Stream a reply; the thread lock is extended after every edit."""

        controller = StreamingDeliveryController(
            AdapterTransport(self.adapter),
            min_update_interval_seconds=self._stream_interval,
            on_progress=self.extend_lock if self._lock is not None else None,
        )
        return await controller.deliver(self.id, chunks)

    async def edit(self, message_id: str, text: str) -> SentMessage:
        return await self.adapter.edit_message(self.id, message_id, text)

    async def delete(self, message_id: str) -> None:
        await self.adapter.delete_message(self.id, message_id)

    async def react(self, message_id: str, emoji: Union[str, EmojiValue]) -> None:
        await self.adapter.add_reaction(self.id, message_id, _emoji(emoji))

    async def unreact(self, message_id: str, emoji: Union[str, EmojiValue]) -> None:
        await self.adapter.remove_reaction(self.id, message_id, _emoji(emoji))

    async def start_typing(self) -> None:
        await self.adapter.start_typing(self.id)

    async def subscribe(self) -> None:
        await self._state.subscribe(self.id)
        try:
            await self.adapter.on_thread_subscribe(self.id)
        except Exception as exc:
            log_event(
                logger,
                logging.WARNING,
                "chat.thread.subscribe_hook_failed",
                thread_id=self.id,
                platform=self.adapter.name,
                exc=exc,
            )

    async def unsubscribe(self) -> None:
        await self._state.unsubscribe(self.id)

    async def is_subscribed(self) -> bool:
        if self._is_subscribed_context:
            return True
        return await self._state.is_subscribed(self.id)

    async def state(self) -> Optional[dict[str, Any]]:
        value = await self._state.get(f"{THREAD_STATE_KEY_PREFIX}{self.id}")
        return value if isinstance(value, dict) else None

    async def set_state(self, value: dict[str, Any], *, replace: bool = False) -> None:
        key = f"{THREAD_STATE_KEY_PREFIX}{self.id}"
        merged = dict(value)
        if not replace:
            existing = await self._state.get(key)
            if isinstance(existing, dict):
                merged = {**existing, **value}
        await self._state.set(key, merged, THREAD_STATE_TTL_MS)

    async def messages(self) -> AsyncIterator[CanonicalMessage]:
        """Newest first, paging backwards through history."""

        cursor: Optional[str] = None
        while True:
            result = await self.adapter.fetch_messages(
                self.id, FetchOptions(direction="backward", cursor=cursor)
            )
            for message in reversed(result.messages):
                yield message
            if not result.next_cursor or not result.messages:
                return
            cursor = result.next_cursor

    async def all_messages(self) -> AsyncIterator[CanonicalMessage]:
        """Oldest first, paging forwards."""

        cursor: Optional[str] = None
        while True:
            result = await self.adapter.fetch_messages(
                self.id,
                FetchOptions(
                    limit=FORWARD_PAGE_SIZE, direction="forward", cursor=cursor
                ),
            )
            for message in result.messages:
                yield message
            if not result.next_cursor or not result.messages:
                return
            cursor = result.next_cursor

    async def extend_lock(self) -> bool:
        if self._lock is None:
            return False
        extended = await self._state.extend_lock(self._lock, self._lock_ttl_ms)
        if not extended:
            log_event(
                logger,
                logging.WARNING,
                "chat.lock.extend_failed",
                thread_id=self.id,
            )
        return extended

    def defer(self, work: Awaitable[Any]) -> "asyncio.Task[Any]":
        """Run ``work`` in the background; the thread lock is held until it ends."""

        task = asyncio.ensure_future(work)
        self._deferred.append(task)
        if self._wait_until is not None:
            self._wait_until(task)
        return task

    async def drain(self) -> None:
        while self._deferred:
            pending = list(self._deferred)
            self._deferred.clear()
            results = await asyncio.gather(*pending, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    log_event(
                        logger,
                        logging.WARNING,
                        "chat.thread.deferred_failed",
                        thread_id=self.id,
                        exc=result,
                    )


def _emoji(value: Union[str, EmojiValue]) -> EmojiValue:
    if isinstance(value, EmojiValue):
        return value
    return EmojiValue(name=value, raw=value)


__all__ = ["ChatThread", "THREAD_STATE_KEY_PREFIX", "THREAD_STATE_TTL_MS"]
