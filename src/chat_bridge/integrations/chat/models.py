"""Normalized chat-domain models shared by adapters, dispatcher and handlers.

Everything here is platform-agnostic; adapters translate backend payloads into
these types before the dispatcher sees them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union


class Delivery(str, Enum):
    """How an inbound event reached us."""

    DIRECT = "direct"
    PUSH = "push"


@dataclass(frozen=True)
class Author:
    user_id: str
    user_name: str
    full_name: str
    is_bot: bool = False
    is_me: bool = False


@dataclass(frozen=True)
class Attachment:
    """Normalized attachment metadata attached to an inbound message."""

    kind: str
    url: Optional[str] = None
    name: Optional[str] = None
    mime_type: Optional[str] = None
    fetch: Optional[Callable[[], Awaitable[bytes]]] = field(
        default=None, compare=False, repr=False
    )


def attachment_kind(mime_type: Optional[str]) -> str:
    if not mime_type:
        return "file"
    major = mime_type.split("/", 1)[0].lower()
    if major in {"image", "video", "audio"}:
        return major
    return "file"


@dataclass(frozen=True)
class MentionSpan:
    """A mention annotation as reported by the backend decoder."""

    start: Optional[int]
    length: Optional[int]
    entity_id: Optional[str] = None
    entity_is_bot: bool = False
    display_name: Optional[str] = None


@dataclass(frozen=True)
class CanonicalMessage:
    """Platform-agnostic view of an inbound or fetched message."""

    id: str
    thread_id: str
    text: str
    author: Author
    sent_at: datetime
    formatted: Any = None
    edited: bool = False
    edited_at: Optional[datetime] = None
    attachments: tuple[Attachment, ...] = field(default_factory=tuple)
    is_mention: bool = False
    raw: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class SentMessage:
    """Result of a create/update call on a backend."""

    id: str
    thread_id: str
    text: str = ""
    raw: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class ActionEvent:
    """Button/menu interaction normalized by an adapter."""

    action_id: str
    thread_id: str
    message_id: Optional[str]
    user: Author
    value: Optional[str] = None
    trigger_id: Optional[str] = None
    raw: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class EmojiValue:
    name: str
    raw: str


@dataclass(frozen=True)
class ReactionEvent:
    emoji: EmojiValue
    thread_id: str
    message_id: str
    user: Author
    added: bool = True
    raw: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class ModalSubmitEvent:
    callback_id: str
    view_id: str
    user: Author
    values: dict[str, Any] = field(default_factory=dict)
    private_metadata: Optional[str] = None
    raw: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class ModalCloseEvent:
    callback_id: str
    view_id: str
    user: Author
    private_metadata: Optional[str] = None
    raw: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class ModalResponse:
    """What a modal submit handler asks the platform to do next."""

    action: str = "close"
    errors: dict[str, str] = field(default_factory=dict)
    view: Any = None


@dataclass(frozen=True)
class FetchOptions:
    limit: Optional[int] = None
    direction: str = "backward"
    cursor: Optional[str] = None


@dataclass(frozen=True)
class FetchResult:
    messages: tuple[CanonicalMessage, ...]
    next_cursor: Optional[str] = None


InboundEvent = Union[
    CanonicalMessage, ActionEvent, ReactionEvent, ModalSubmitEvent, ModalCloseEvent
]
