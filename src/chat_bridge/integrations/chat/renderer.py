"""Formatting and emoji conversion contracts.

Markup dialect conversion is platform-specific; adapters plug in their own
converters. The defaults here treat text as plain text and emoji names as
already canonical.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol, runtime_checkable

from .models import EmojiValue


@runtime_checkable
class FormatConverter(Protocol):
    """Pure conversion between a platform's raw text and canonical content."""

    def to_canonical(self, raw_text: str) -> Any:
        """Parse platform markup into the canonical formatted-content handle."""

    def from_canonical(self, content: Any) -> str:
        """Render canonical content back into platform markup."""

    def to_plain_text(self, raw_text: str) -> str:
        """Strip platform markup for mention matching and logging."""


class PlainTextConverter:
    """Identity converter: canonical content is the text itself."""

    def to_canonical(self, raw_text: str) -> Any:
        return raw_text

    def from_canonical(self, content: Any) -> str:
        return "" if content is None else str(content)

    def to_plain_text(self, raw_text: str) -> str:
        return raw_text


@runtime_checkable
class EmojiConverter(Protocol):
    def normalize_emoji(self, raw_name: str) -> EmojiValue:
        """Map a platform emoji (unicode or short name) to a canonical value."""

    def to_platform(self, emoji: EmojiValue) -> str:
        """Render a canonical emoji for the platform API."""


class PassthroughEmojiConverter:
    """Uses the platform's emoji string as the canonical name."""

    def normalize_emoji(self, raw_name: str) -> EmojiValue:
        return EmojiValue(name=raw_name, raw=raw_name)

    def to_platform(self, emoji: EmojiValue) -> str:
        return emoji.raw or emoji.name


def emoji_matches(emoji: EmojiValue, wanted: Optional[str]) -> bool:
    if wanted is None:
        return True
    return wanted in {emoji.name, emoji.raw}


__all__ = [
    "EmojiConverter",
    "FormatConverter",
    "PassthroughEmojiConverter",
    "PlainTextConverter",
    "emoji_matches",
]
