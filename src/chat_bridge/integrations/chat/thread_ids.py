"""Reversible thread identity codec.

Thread ids have the shape ``<platform>:<primary>[:<sub>][:dm]`` where ``sub`` is
the backend thread/message path encoded as unpadded base64url, so structured
names containing ``/`` or ``:`` become a single segment. The base64url
encoder never emits ``dm`` for a sub-scope, so the trailing DM marker is
unambiguous.
"""

from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass
from typing import Optional

from .errors import MalformedIdentityError

DM_MARKER = "dm"
SEPARATOR = ":"
_BASE64URL_RE = re.compile(r"^[A-Za-z0-9_-]+$")


@dataclass(frozen=True)
class ThreadScope:
    """Decoded components of a thread id."""

    platform: str
    primary: str
    sub_scope: Optional[str] = None
    is_dm: bool = False


def b64url_encode(value: str) -> str:
    return base64.urlsafe_b64encode(value.encode("utf-8")).decode("ascii").rstrip("=")


def b64url_decode(segment: str) -> str:
    if not _BASE64URL_RE.match(segment):
        raise ValueError("invalid base64url alphabet")
    padded = segment + "=" * (-len(segment) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"invalid base64url: {exc}") from exc
    decoded = raw.decode("utf-8")
    if b64url_encode(decoded) != segment:
        raise ValueError("non-canonical base64url")
    return decoded


class ThreadIdCodec:
    """Encode and decode thread ids for one platform.

    ``primary_segments`` is the number of ``:``-separated segments that make up
    the primary scope (1 for flat container ids such as ``spaces/AAA``).
    """

    def __init__(self, platform: str, *, primary_segments: int = 1) -> None:
        if not platform or SEPARATOR in platform:
            raise ValueError(f"Invalid platform name {platform!r}")
        if primary_segments < 1:
            raise ValueError("primary_segments must be >= 1")
        self.platform = platform
        self._primary_segments = primary_segments
        self._prefix = f"{platform}{SEPARATOR}"

    def encode(self, scope: ThreadScope) -> str:
        if scope.platform != self.platform:
            raise MalformedIdentityError(
                f"{scope.platform}:{scope.primary}",
                f"expected platform {self.platform!r}",
            )
        parts = scope.primary.split(SEPARATOR)
        if len(parts) != self._primary_segments or any(not part for part in parts):
            raise MalformedIdentityError(
                scope.primary,
                f"primary scope must have {self._primary_segments} non-empty segment(s)",
            )
        segments = [self.platform, scope.primary]
        if scope.sub_scope is not None:
            if not scope.sub_scope:
                raise MalformedIdentityError(scope.primary, "empty sub-scope")
            segments.append(b64url_encode(scope.sub_scope))
        if scope.is_dm:
            segments.append(DM_MARKER)
        return SEPARATOR.join(segments)

    def encode_parts(
        self, primary: str, sub_scope: Optional[str] = None, *, is_dm: bool = False
    ) -> str:
        return self.encode(
            ThreadScope(
                platform=self.platform,
                primary=primary,
                sub_scope=sub_scope or None,
                is_dm=is_dm,
            )
        )

    def decode(self, value: str) -> ThreadScope:
        if not isinstance(value, str) or not value.startswith(self._prefix):
            raise MalformedIdentityError(
                str(value), f"missing {self.platform!r} platform prefix"
            )
        segments = value.split(SEPARATOR)
        minimum = 1 + self._primary_segments
        if len(segments) < minimum:
            raise MalformedIdentityError(value, "too few segments")
        primary_parts = segments[1:minimum]
        if any(not part for part in primary_parts):
            raise MalformedIdentityError(value, "empty primary scope")
        rest = segments[minimum:]
        is_dm = False
        if rest and rest[-1] == DM_MARKER:
            is_dm = True
            rest = rest[:-1]
        if len(rest) > 1:
            raise MalformedIdentityError(value, "too many segments")
        sub_scope: Optional[str] = None
        if rest:
            try:
                sub_scope = b64url_decode(rest[0])
            except (ValueError, UnicodeDecodeError) as exc:
                raise MalformedIdentityError(value, str(exc)) from exc
        return ThreadScope(
            platform=self.platform,
            primary=SEPARATOR.join(primary_parts),
            sub_scope=sub_scope,
            is_dm=is_dm,
        )

    def channel_id(self, thread_id: str) -> str:
        scope = self.decode(thread_id)
        return f"{self.platform}{SEPARATOR}{scope.primary}"

    def is_dm(self, thread_id: str) -> bool:
        return self.decode(thread_id).is_dm


def platform_of(thread_id: str) -> str:
    """Return the platform prefix of any thread id."""

    platform, sep, rest = thread_id.partition(SEPARATOR)
    if not sep or not platform or not rest:
        raise MalformedIdentityError(thread_id, "missing platform prefix")
    return platform


__all__ = [
    "DM_MARKER",
    "ThreadIdCodec",
    "ThreadScope",
    "b64url_decode",
    "b64url_encode",
    "platform_of",
]
