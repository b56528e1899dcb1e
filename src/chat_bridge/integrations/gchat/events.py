"""Google Chat webhook decoding.

A request body is either a direct Chat app event (Add-ons shape with a
``chat`` object) or a Pub/Sub push envelope carrying a Workspace Events
notification. ``decode_webhook`` resolves it into one of the tagged types
below; the adapter then builds canonical events from them.
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Union

from ...core.time_utils import parse_iso_ms
from ..chat.errors import DecodeError
from ..chat.models import MentionSpan
from ..chat.normalize import AttachmentDescriptor, RawMessage
from .constants import CHAT_RESOURCE_PREFIX, HANDLED_PUSH_EVENT_TYPES


@dataclass(frozen=True)
class CardClick:
    action_id: str
    value: Optional[str]
    space: dict[str, Any]
    message: Optional[dict[str, Any]]
    user: Optional[dict[str, Any]]


@dataclass(frozen=True)
class DirectEvent:
    """Event posted straight to the app endpoint by Google Chat."""

    space: Optional[dict[str, Any]] = None
    message: Optional[dict[str, Any]] = None
    added_to_space: Optional[dict[str, Any]] = None
    removed_from_space: Optional[dict[str, Any]] = None
    card_click: Optional[CardClick] = None
    card_click_invalid: bool = False
    raw: Any = field(default=None, compare=False, repr=False)

    @property
    def is_dm(self) -> bool:
        return is_dm_space(self.space)


@dataclass(frozen=True)
class PushEnvelope:
    """Workspace Events notification delivered through a Pub/Sub push."""

    subscription: str
    message_id: str
    event_type: str
    target_resource: str
    event_time: str
    message: Optional[dict[str, Any]] = None
    reaction: Optional[dict[str, Any]] = None
    raw: Any = field(default=None, compare=False, repr=False)

    @property
    def space_name(self) -> Optional[str]:
        if self.target_resource.startswith(CHAT_RESOURCE_PREFIX):
            return self.target_resource[len(CHAT_RESOURCE_PREFIX) :] or None
        if self.message and isinstance(self.message.get("space"), dict):
            return self.message["space"].get("name")
        return None


@dataclass(frozen=True)
class IgnoredPush:
    """Push envelope for an event type this adapter does not handle."""

    event_type: str


WebhookEvent = Union[DirectEvent, PushEnvelope, IgnoredPush]


def is_dm_space(space: Optional[dict[str, Any]]) -> bool:
    if not isinstance(space, dict):
        return False
    return space.get("type") == "DM" or space.get("spaceType") == "DIRECT_MESSAGE"


def _dict(value: Any) -> Optional[dict[str, Any]]:
    return value if isinstance(value, dict) else None


def decode_webhook(body: bytes) -> WebhookEvent:
    try:
        parsed = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise DecodeError(f"Invalid JSON: {exc}", acknowledge=False) from exc
    if not isinstance(parsed, dict):
        raise DecodeError("Webhook body must be a JSON object", acknowledge=False)

    push_message = _dict(parsed.get("message"))
    if push_message is not None and push_message.get("data") and parsed.get(
        "subscription"
    ):
        return decode_push_envelope(parsed)
    return decode_direct_event(parsed)


def decode_push_envelope(parsed: dict[str, Any]) -> Union[PushEnvelope, IgnoredPush]:
    message = _dict(parsed.get("message")) or {}
    attributes = _dict(message.get("attributes")) or {}
    event_type = str(attributes.get("ce-type") or "")
    # Filter before base64 decoding.
    if event_type and event_type not in HANDLED_PUSH_EVENT_TYPES:
        return IgnoredPush(event_type=event_type)
    try:
        data = base64.b64decode(str(message.get("data", "")), validate=True)
        payload = json.loads(data.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise DecodeError(
            f"Undecodable Pub/Sub payload: {exc}", acknowledge=True
        ) from exc
    if not isinstance(payload, dict):
        raise DecodeError("Pub/Sub payload must be a JSON object", acknowledge=True)
    return PushEnvelope(
        subscription=str(parsed.get("subscription") or ""),
        message_id=str(message.get("messageId") or ""),
        event_type=event_type,
        target_resource=str(attributes.get("ce-subject") or ""),
        event_time=str(attributes.get("ce-time") or message.get("publishTime") or ""),
        message=_dict(payload.get("message")),
        reaction=_dict(payload.get("reaction")),
        raw=parsed,
    )


def decode_direct_event(parsed: dict[str, Any]) -> DirectEvent:
    chat = _dict(parsed.get("chat")) or {}
    common = _dict(parsed.get("commonEventObject")) or {}

    added = _dict(chat.get("addedToSpacePayload"))
    removed = _dict(chat.get("removedFromSpacePayload"))
    button = _dict(chat.get("buttonClickedPayload"))
    invoked = common.get("invokedFunction")

    card_click: Optional[CardClick] = None
    card_click_invalid = False
    if button is not None or invoked:
        parameters = _dict(common.get("parameters")) or {}
        action_id = parameters.get("actionId") or invoked
        space = _dict((button or {}).get("space"))
        if not action_id or space is None:
            card_click_invalid = True
        else:
            value = parameters.get("value")
            card_click = CardClick(
                action_id=str(action_id),
                value=str(value) if value is not None else None,
                space=space,
                message=_dict((button or {}).get("message")),
                user=_dict((button or {}).get("user")) or _dict(chat.get("user")),
            )

    message_payload = _dict(chat.get("messagePayload"))
    space = None
    message = None
    if message_payload is not None:
        space = _dict(message_payload.get("space"))
        message = _dict(message_payload.get("message"))
        if space is None or message is None:
            raise DecodeError(
                "messagePayload requires space and message", acknowledge=False
            )

    return DirectEvent(
        space=space,
        message=message,
        added_to_space=_dict((added or {}).get("space")),
        removed_from_space=_dict((removed or {}).get("space")),
        card_click=card_click,
        card_click_invalid=card_click_invalid,
        raw=parsed,
    )


def _timestamp(value: Any) -> Optional[datetime]:
    parsed = parse_iso_ms(value)
    if parsed is None:
        return None
    return datetime(1970, 1, 1, tzinfo=timezone.utc) + timedelta(milliseconds=parsed)


def mention_spans(message: dict[str, Any]) -> tuple[MentionSpan, ...]:
    spans: list[MentionSpan] = []
    for annotation in message.get("annotations") or []:
        if not isinstance(annotation, dict):
            continue
        if annotation.get("type") != "USER_MENTION":
            continue
        user = _dict((_dict(annotation.get("userMention")) or {}).get("user")) or {}
        start = annotation.get("startIndex")
        length = annotation.get("length")
        spans.append(
            MentionSpan(
                start=start if isinstance(start, int) else None,
                length=length if isinstance(length, int) else None,
                entity_id=user.get("name") or None,
                entity_is_bot=user.get("type") == "BOT",
                display_name=user.get("displayName") or None,
            )
        )
    return tuple(spans)


def to_raw_message(message: dict[str, Any], *, raw: Any = None) -> RawMessage:
    """Extract decoder-boundary fields from a Chat API message resource."""

    name = message.get("name")
    if not name:
        raise DecodeError("Message resource has no name", acknowledge=True)
    sender = _dict(message.get("sender")) or {}
    attachments = tuple(
        AttachmentDescriptor(
            url=item.get("downloadUri") or None,
            name=item.get("contentName") or None,
            mime_type=item.get("contentType") or None,
        )
        for item in message.get("attachment") or []
        if isinstance(item, dict)
    )
    return RawMessage(
        message_id=str(name),
        sender_id=str(sender.get("name") or "unknown"),
        sender_name=sender.get("displayName") or None,
        sender_is_bot=sender.get("type") == "BOT",
        text=str(message.get("text") or ""),
        sent_at=_timestamp(message.get("createTime")),
        edited_at=_timestamp(message.get("lastUpdateTime")),
        mentions=mention_spans(message),
        attachments=attachments,
        raw=raw if raw is not None else message,
    )


def thread_name_of(message: Optional[dict[str, Any]]) -> Optional[str]:
    if not message:
        return None
    thread = _dict(message.get("thread")) or {}
    return thread.get("name") or message.get("name") or None


__all__ = [
    "CardClick",
    "DirectEvent",
    "IgnoredPush",
    "PushEnvelope",
    "WebhookEvent",
    "decode_webhook",
    "is_dm_space",
    "mention_spans",
    "thread_name_of",
    "to_raw_message",
]
