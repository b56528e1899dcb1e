"""Canonical message construction from decoder output.

Decoders hand over a ``RawMessage`` regardless of whether the event arrived
directly or through a push envelope; nothing below this point branches on the
delivery shape.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from .identity import BotIdentityResolver, WaitUntil
from .mentions import normalize_bot_mentions
from .models import (
    Attachment,
    Author,
    CanonicalMessage,
    Delivery,
    MentionSpan,
    attachment_kind,
)
from .renderer import FormatConverter, PlainTextConverter


@dataclass(frozen=True)
class AttachmentDescriptor:
    url: Optional[str] = None
    name: Optional[str] = None
    mime_type: Optional[str] = None


@dataclass(frozen=True)
class RawMessage:
    """Fields every backend decoder must expose per message."""

    message_id: str
    sender_id: str
    text: str
    sender_name: Optional[str] = None
    sender_is_bot: bool = False
    sent_at: Optional[datetime] = None
    edited_at: Optional[datetime] = None
    mentions: tuple[MentionSpan, ...] = field(default_factory=tuple)
    attachments: tuple[AttachmentDescriptor, ...] = field(default_factory=tuple)
    raw: Any = field(default=None, compare=False, repr=False)


AttachmentFetcher = Callable[[AttachmentDescriptor], Optional[Callable[[], Awaitable[bytes]]]]


class MessageNormalizer:
    """Turns ``RawMessage`` into ``CanonicalMessage`` for one adapter."""

    def __init__(
        self,
        *,
        identity: BotIdentityResolver,
        user_name: str,
        bot_display_names: tuple[str, ...] = (),
        converter: Optional[FormatConverter] = None,
        attachment_fetcher: Optional[AttachmentFetcher] = None,
    ) -> None:
        self._identity = identity
        self._user_name = user_name
        self._bot_display_names = bot_display_names
        self._converter = converter or PlainTextConverter()
        self._attachment_fetcher = attachment_fetcher

    def learn_from_mentions(
        self, raw: RawMessage, *, wait_until: Optional[WaitUntil] = None
    ) -> None:
        if self._identity.bot_id is not None:
            return
        for span in raw.mentions:
            if span.entity_is_bot and span.entity_id:
                self._identity.learn(span.entity_id, wait_until=wait_until)
                return

    def normalize(
        self,
        raw: RawMessage,
        *,
        thread_id: str,
        delivery: Delivery,
        author_name: Optional[str] = None,
        wait_until: Optional[WaitUntil] = None,
    ) -> CanonicalMessage:
        self.learn_from_mentions(raw, wait_until=wait_until)
        bot_id = self._identity.bot_id
        text = normalize_bot_mentions(
            raw.text or "",
            raw.mentions,
            canonical_handle=self._user_name,
            bot_id=bot_id,
            bot_display_names=self._bot_display_names,
        )
        name = author_name or raw.sender_name or "unknown"
        author = Author(
            user_id=raw.sender_id,
            user_name=name,
            full_name=name,
            is_bot=raw.sender_is_bot,
            is_me=self._identity.resolve_is_me(
                raw.sender_id, raw.sender_is_bot, delivery=delivery
            ),
        )
        attachments = tuple(
            Attachment(
                kind=attachment_kind(item.mime_type),
                url=item.url,
                name=item.name,
                mime_type=item.mime_type,
                fetch=(
                    self._attachment_fetcher(item)
                    if self._attachment_fetcher is not None
                    else None
                ),
            )
            for item in raw.attachments
        )
        return CanonicalMessage(
            id=raw.message_id,
            thread_id=thread_id,
            text=self._converter.to_plain_text(text),
            formatted=self._converter.to_canonical(text),
            author=author,
            sent_at=raw.sent_at or datetime.now(timezone.utc),
            edited=raw.edited_at is not None,
            edited_at=raw.edited_at,
            attachments=attachments,
            raw=raw.raw,
        )


__all__ = ["AttachmentDescriptor", "MessageNormalizer", "RawMessage"]
