"""Adapter contract between the dispatcher and platform integrations.

Protocol-only: platform packages (for example ``integrations.gchat``)
implement the behavior. Webhook request/response types are framework-neutral
so the web surface can translate them to and from FastAPI.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    Any,
    Mapping,
    Optional,
    Protocol,
    runtime_checkable,
)

from .identity import WaitUntil
from .models import EmojiValue, FetchOptions, FetchResult, SentMessage

if TYPE_CHECKING:
    from .dispatcher import ChatDispatcher


@dataclass(frozen=True)
class WebhookRequest:
    """Raw inbound webhook; header names are lower-cased."""

    body: bytes
    headers: Mapping[str, str] = field(default_factory=dict)
    method: str = "POST"
    path: str = "/"
    query: Mapping[str, str] = field(default_factory=dict)

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())


@dataclass(frozen=True)
class WebhookResponse:
    status_code: int = 200
    body: Any = None

    @classmethod
    def ok(cls, body: Any = None) -> "WebhookResponse":
        return cls(status_code=200, body=body if body is not None else {"success": True})

    @classmethod
    def error(cls, status_code: int, message: str) -> "WebhookResponse":
        return cls(status_code=status_code, body={"error": message})


@dataclass(frozen=True)
class WebhookOptions:
    """Hosting hooks passed through to background work."""

    wait_until: Optional[WaitUntil] = None


@runtime_checkable
class RequestVerifier(Protocol):
    async def verify(self, request: WebhookRequest) -> bool:
        """Return False to reject the request before any decoding."""


@runtime_checkable
class ChatAdapter(Protocol):
    """Protocol implemented by each platform adapter."""

    @property
    def name(self) -> str:
        """Stable platform id, also the thread id prefix (e.g. ``gchat``)."""

    @property
    def user_name(self) -> str:
        """Canonical @handle used for mention matching."""

    @property
    def bot_user_id(self) -> Optional[str]:
        """Learned backend id of this bot, if known."""

    @property
    def verifier(self) -> RequestVerifier: ...

    async def initialize(self, dispatcher: "ChatDispatcher") -> None: ...

    async def shutdown(self) -> None: ...

    async def handle_webhook(
        self, request: WebhookRequest, options: WebhookOptions
    ) -> WebhookResponse:
        """Decode a verified request and hand events to the dispatcher."""

    def encode_thread_id(
        self, primary: str, sub_scope: Optional[str] = None, *, is_dm: bool = False
    ) -> str: ...

    def channel_id_from_thread_id(self, thread_id: str) -> str: ...

    def is_dm(self, thread_id: str) -> bool: ...

    async def post_message(self, thread_id: str, text: str) -> SentMessage: ...

    async def edit_message(
        self, thread_id: str, message_id: str, text: str
    ) -> SentMessage: ...

    async def delete_message(self, thread_id: str, message_id: str) -> None: ...

    async def add_reaction(
        self, thread_id: str, message_id: str, emoji: EmojiValue
    ) -> None: ...

    async def remove_reaction(
        self, thread_id: str, message_id: str, emoji: EmojiValue
    ) -> None: ...

    async def fetch_messages(
        self, thread_id: str, options: FetchOptions
    ) -> FetchResult: ...

    async def start_typing(self, thread_id: str) -> None: ...

    async def on_thread_subscribe(self, thread_id: str) -> None:
        """Called after a thread is followed; may ensure push delivery."""


class AdapterTransport:
    """Exposes an adapter's post/edit calls as a streaming transport."""

    def __init__(self, adapter: ChatAdapter) -> None:
        self._adapter = adapter

    async def create(self, thread_id: str, text: str) -> SentMessage:
        return await self._adapter.post_message(thread_id, text)

    async def update(self, thread_id: str, message_id: str, text: str) -> SentMessage:
        return await self._adapter.edit_message(thread_id, message_id, text)


__all__ = [
    "AdapterTransport",
    "ChatAdapter",
    "RequestVerifier",
    "WebhookOptions",
    "WebhookRequest",
    "WebhookResponse",
]
