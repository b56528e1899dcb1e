from __future__ import annotations

from datetime import datetime, timezone

import pytest

from chat_bridge.integrations.chat.identity import BotIdentityResolver
from chat_bridge.integrations.chat.memory_state import MemoryStateAdapter
from chat_bridge.integrations.chat.models import Delivery, MentionSpan
from chat_bridge.integrations.chat.normalize import (
    AttachmentDescriptor,
    MessageNormalizer,
    RawMessage,
)


async def _normalizer(**kwargs) -> MessageNormalizer:
    state = MemoryStateAdapter()
    await state.connect()
    identity = BotIdentityResolver(state, "gchat", **kwargs)
    return MessageNormalizer(identity=identity, user_name="helper")


@pytest.mark.anyio
async def test_bot_mention_teaches_identity_and_marks_self_messages() -> None:
    normalizer = await _normalizer()
    mention = RawMessage(
        message_id="spaces/A/messages/1",
        sender_id="users/human",
        sender_name="Alice",
        text="@Helper hi",
        mentions=(
            MentionSpan(start=0, length=7, entity_id="users/bot", entity_is_bot=True),
        ),
    )

    message = normalizer.normalize(
        mention, thread_id="gchat:spaces/A", delivery=Delivery.DIRECT
    )

    assert message.text == "@helper hi"
    assert message.author.user_name == "Alice"
    assert not message.author.is_me

    own = RawMessage(
        message_id="spaces/A/messages/2",
        sender_id="users/bot",
        sender_is_bot=True,
        text="working on it",
    )
    pushed = normalizer.normalize(own, thread_id="gchat:spaces/A", delivery=Delivery.PUSH)
    assert pushed.author.is_me
    assert pushed.author.user_name == "unknown"


@pytest.mark.anyio
async def test_normalize_prefers_resolved_author_name_and_timestamps() -> None:
    normalizer = await _normalizer()
    sent = datetime(2024, 5, 1, tzinfo=timezone.utc)
    edited = datetime(2024, 5, 2, tzinfo=timezone.utc)
    raw = RawMessage(
        message_id="m",
        sender_id="users/1",
        text="hello",
        sent_at=sent,
        edited_at=edited,
    )

    message = normalizer.normalize(
        raw, thread_id="gchat:spaces/A", delivery=Delivery.PUSH, author_name="Bob"
    )

    assert message.author.user_name == "Bob"
    assert message.sent_at == sent
    assert message.edited and message.edited_at == edited
    assert message.formatted == "hello"


@pytest.mark.anyio
async def test_attachments_get_kind_and_lazy_fetch() -> None:
    state = MemoryStateAdapter()
    await state.connect()

    def fetcher(descriptor: AttachmentDescriptor):
        async def _fetch() -> bytes:
            return f"bytes:{descriptor.url}".encode()

        return _fetch

    normalizer = MessageNormalizer(
        identity=BotIdentityResolver(state, "gchat"),
        user_name="helper",
        attachment_fetcher=fetcher,
    )
    raw = RawMessage(
        message_id="m",
        sender_id="users/1",
        text="",
        attachments=(
            AttachmentDescriptor(url="https://x/a.png", name="a.png", mime_type="image/png"),
        ),
    )

    message = normalizer.normalize(raw, thread_id="gchat:spaces/A", delivery=Delivery.DIRECT)

    attachment = message.attachments[0]
    assert attachment.kind == "image"
    assert attachment.name == "a.png"
    assert attachment.fetch is not None
    assert await attachment.fetch() == b"bytes:https://x/a.png"
