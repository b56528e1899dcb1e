"""Bot mention normalization.

Backends render self-mentions with the bot's display name and do not always
include the bot id (push-delivered events omit fields present on direct
webhooks). Rewriting the span to ``@<canonical handle>`` lets downstream
mention matching work the same regardless of delivery path.
"""

from __future__ import annotations

import re
from typing import Iterable, Optional, Sequence

from .models import MentionSpan


def _names_bot(span: MentionSpan, bot_id: Optional[str]) -> bool:
    if not span.entity_is_bot:
        return False
    if bot_id is None or span.entity_id is None:
        return True
    return span.entity_id == bot_id


def normalize_bot_mentions(
    text: str,
    spans: Sequence[MentionSpan],
    *,
    canonical_handle: str,
    bot_id: Optional[str] = None,
    bot_display_names: Iterable[str] = (),
) -> str:
    if not text:
        return text
    replacement = f"@{canonical_handle}"
    bot_spans = [span for span in spans if _names_bot(span, bot_id)]

    applied = False
    offset_spans = [
        span
        for span in bot_spans
        if span.start is not None
        and span.length is not None
        and span.start >= 0
        and span.length > 0
        and span.start + span.length <= len(text)
    ]
    # Descending so earlier offsets remain valid after each replacement.
    for span in sorted(offset_spans, key=lambda item: item.start or 0, reverse=True):
        start = span.start or 0
        end = start + (span.length or 0)
        text = text[:start] + replacement + text[end:]
        applied = True
    if applied:
        return text

    names = {name for name in bot_display_names if name}
    names.update(span.display_name for span in bot_spans if span.display_name)
    names.discard(canonical_handle)
    for name in sorted(names, key=len, reverse=True):
        text = re.sub(rf"@{re.escape(name)}(?!\w)", replacement, text)
    return text


def mention_pattern(user_name: str, bot_id: Optional[str] = None) -> re.Pattern[str]:
    alternatives = [rf"@{re.escape(user_name)}\b"]
    if bot_id:
        alternatives.append(rf"@{re.escape(bot_id)}(?![\w/])")
        alternatives.append(rf"<@!?{re.escape(bot_id)}>")
    return re.compile("|".join(alternatives), re.IGNORECASE)


def detect_mention(text: str, user_name: str, bot_id: Optional[str] = None) -> bool:
    if not text:
        return False
    return mention_pattern(user_name, bot_id).search(text) is not None


__all__ = ["detect_mention", "mention_pattern", "normalize_bot_mentions"]
