"""Testing utilities for chat adapter contracts (adapter-layer test support)."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from .adapter import WebhookOptions, WebhookRequest, WebhookResponse
from .models import (
    Author,
    CanonicalMessage,
    EmojiValue,
    FetchOptions,
    FetchResult,
    SentMessage,
)
from .thread_ids import ThreadIdCodec

if TYPE_CHECKING:
    from .dispatcher import ChatDispatcher


class ManualClock:
    """Millisecond clock advanced explicitly by tests."""

    def __init__(self, start_ms: int = 1_700_000_000_000) -> None:
        self.now_ms = start_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, delta_ms: int) -> None:
        self.now_ms += delta_ms


class AllowAllVerifier:
    async def verify(self, request: WebhookRequest) -> bool:
        return True


@dataclass
class RecordedCall:
    kind: str
    thread_id: str
    message_id: Optional[str] = None
    text: Optional[str] = None
    extra: Any = None


@dataclass
class FakeChatTransport:
    """Records create/update calls; optional delay and in-flight tracking."""

    delay_seconds: float = 0.0
    fail_on_update: Optional[int] = None
    calls: list[RecordedCall] = field(default_factory=list)
    in_flight: int = 0
    max_in_flight: int = 0
    _next_id: int = 1

    async def _enter(self) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        else:
            await asyncio.sleep(0)

    async def create(self, thread_id: str, text: str) -> SentMessage:
        await self._enter()
        try:
            message_id = f"msg-{self._next_id}"
            self._next_id += 1
            self.calls.append(RecordedCall("create", thread_id, message_id, text))
            return SentMessage(id=message_id, thread_id=thread_id, text=text)
        finally:
            self.in_flight -= 1

    async def update(self, thread_id: str, message_id: str, text: str) -> SentMessage:
        await self._enter()
        try:
            updates = sum(1 for call in self.calls if call.kind == "update")
            if self.fail_on_update is not None and updates + 1 == self.fail_on_update:
                raise RuntimeError("update failed")
            self.calls.append(RecordedCall("update", thread_id, message_id, text))
            return SentMessage(id=message_id, thread_id=thread_id, text=text)
        finally:
            self.in_flight -= 1

    def texts(self, kind: str) -> list[str]:
        return [call.text or "" for call in self.calls if call.kind == kind]


class FakeAdapter:
    """In-memory adapter used to validate dispatcher behavior in tests."""

    def __init__(
        self,
        *,
        name: str = "fake",
        user_name: str = "bot",
        bot_user_id: Optional[str] = None,
        history: Optional[list[CanonicalMessage]] = None,
        page_size: int = 2,
    ) -> None:
        self._name = name
        self._user_name = user_name
        self._bot_user_id = bot_user_id
        self.codec = ThreadIdCodec(name)
        self.verifier: Any = AllowAllVerifier()
        self.transport = FakeChatTransport()
        self.history = list(history or [])
        self.page_size = page_size
        self.calls: list[RecordedCall] = []
        self.subscribed_threads: list[str] = []
        self.dispatcher: Optional["ChatDispatcher"] = None
        self.webhooks: list[WebhookRequest] = []
        self.shutdown_called = False

    @property
    def name(self) -> str:
        return self._name

    @property
    def user_name(self) -> str:
        return self._user_name

    @property
    def bot_user_id(self) -> Optional[str]:
        return self._bot_user_id

    async def initialize(self, dispatcher: "ChatDispatcher") -> None:
        self.dispatcher = dispatcher

    async def shutdown(self) -> None:
        self.shutdown_called = True

    async def handle_webhook(
        self, request: WebhookRequest, options: WebhookOptions
    ) -> WebhookResponse:
        self.webhooks.append(request)
        return WebhookResponse.ok()

    def encode_thread_id(
        self, primary: str, sub_scope: Optional[str] = None, *, is_dm: bool = False
    ) -> str:
        return self.codec.encode_parts(primary, sub_scope, is_dm=is_dm)

    def channel_id_from_thread_id(self, thread_id: str) -> str:
        return self.codec.channel_id(thread_id)

    def is_dm(self, thread_id: str) -> bool:
        return self.codec.is_dm(thread_id)

    async def post_message(self, thread_id: str, text: str) -> SentMessage:
        return await self.transport.create(thread_id, text)

    async def edit_message(
        self, thread_id: str, message_id: str, text: str
    ) -> SentMessage:
        return await self.transport.update(thread_id, message_id, text)

    async def delete_message(self, thread_id: str, message_id: str) -> None:
        self.calls.append(RecordedCall("delete", thread_id, message_id))

    async def add_reaction(
        self, thread_id: str, message_id: str, emoji: EmojiValue
    ) -> None:
        self.calls.append(RecordedCall("react", thread_id, message_id, extra=emoji))

    async def remove_reaction(
        self, thread_id: str, message_id: str, emoji: EmojiValue
    ) -> None:
        self.calls.append(RecordedCall("unreact", thread_id, message_id, extra=emoji))

    async def fetch_messages(
        self, thread_id: str, options: FetchOptions
    ) -> FetchResult:
        messages = [m for m in self.history if m.thread_id == thread_id]
        size = options.limit or self.page_size
        if options.direction == "forward":
            start = int(options.cursor or 0)
            page = messages[start : start + size]
            end = start + len(page)
            return FetchResult(
                messages=tuple(page),
                next_cursor=str(end) if end < len(messages) else None,
            )
        end = len(messages) - int(options.cursor or 0)
        start = max(0, end - size)
        page = messages[start:end]
        consumed = len(messages) - start
        return FetchResult(
            messages=tuple(page),
            next_cursor=str(consumed) if start > 0 else None,
        )

    async def start_typing(self, thread_id: str) -> None:
        self.calls.append(RecordedCall("typing", thread_id))

    async def on_thread_subscribe(self, thread_id: str) -> None:
        self.subscribed_threads.append(thread_id)


def make_message(
    thread_id: str,
    text: str,
    *,
    message_id: str = "m-1",
    user_id: str = "users/human",
    user_name: str = "Human",
    is_bot: bool = False,
    is_me: bool = False,
) -> CanonicalMessage:
    return CanonicalMessage(
        id=message_id,
        thread_id=thread_id,
        text=text,
        formatted=text,
        author=Author(
            user_id=user_id,
            user_name=user_name,
            full_name=user_name,
            is_bot=is_bot,
            is_me=is_me,
        ),
        sent_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


__all__ = [
    "AllowAllVerifier",
    "FakeAdapter",
    "FakeChatTransport",
    "ManualClock",
    "RecordedCall",
    "make_message",
]
