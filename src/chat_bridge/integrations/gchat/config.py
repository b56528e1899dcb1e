from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Optional

from ..chat.errors import ChatConfigError
from .constants import (
    GCHAT_API_BASE_URL,
    SUBSCRIPTION_CACHE_TTL_MS,
    SUBSCRIPTION_REFRESH_BUFFER_MS,
    SUBSCRIPTION_TTL_SECONDS,
    USER_CACHE_TTL_MS,
    WORKSPACE_EVENTS_API_BASE_URL,
)

DEFAULT_ACCESS_TOKEN_ENV = "GCHAT_ACCESS_TOKEN"
DEFAULT_VERIFICATION_TOKEN_ENV = "GCHAT_VERIFICATION_TOKEN"
DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_MAX_RETRIES = 3


@dataclass(frozen=True)
class GChatConfig:
    enabled: bool
    user_name: Optional[str]
    pubsub_topic: Optional[str]
    project_number: Optional[str]
    access_token_env: str
    verification_token_env: str
    access_token: Optional[str]
    verification_token: Optional[str]
    api_base_url: str = GCHAT_API_BASE_URL
    events_api_base_url: str = WORKSPACE_EVENTS_API_BASE_URL
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    max_retries: int = DEFAULT_MAX_RETRIES
    subscription_refresh_buffer_ms: int = SUBSCRIPTION_REFRESH_BUFFER_MS
    subscription_cache_ttl_ms: int = SUBSCRIPTION_CACHE_TTL_MS
    subscription_ttl_seconds: int = SUBSCRIPTION_TTL_SECONDS
    user_cache_ttl_ms: int = USER_CACHE_TTL_MS
    assume_bot_is_self: bool = False

    @classmethod
    def from_raw(cls, raw: dict[str, Any]) -> "GChatConfig":
        cfg: dict[str, Any] = raw if isinstance(raw, dict) else {}
        access_token_env = str(
            cfg.get("access_token_env", DEFAULT_ACCESS_TOKEN_ENV)
        ).strip()
        verification_token_env = str(
            cfg.get("verification_token_env", DEFAULT_VERIFICATION_TOKEN_ENV)
        ).strip()
        if not access_token_env:
            raise ChatConfigError("gchat.access_token_env must be non-empty")
        if not verification_token_env:
            raise ChatConfigError("gchat.verification_token_env must be non-empty")

        timeout_value = cfg.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS)
        if isinstance(timeout_value, bool) or not isinstance(
            timeout_value, (int, float)
        ):
            raise ChatConfigError("gchat.timeout_seconds must be a number")
        if timeout_value <= 0:
            raise ChatConfigError("gchat.timeout_seconds must be > 0")

        subscription_ttl = _parse_int_or_default(
            cfg, "subscription_ttl_seconds", SUBSCRIPTION_TTL_SECONDS, minimum=1
        )
        cache_ttl = _parse_int_or_default(
            cfg, "subscription_cache_ttl_ms", SUBSCRIPTION_CACHE_TTL_MS, minimum=1
        )
        if cache_ttl <= subscription_ttl * 1000:
            raise ChatConfigError(
                "gchat.subscription_cache_ttl_ms must exceed the subscription lifetime"
            )

        return cls(
            enabled=bool(cfg.get("enabled", False)),
            user_name=_optional_str(cfg.get("user_name")),
            pubsub_topic=_optional_str(cfg.get("pubsub_topic")),
            project_number=_optional_str(cfg.get("project_number")),
            access_token_env=access_token_env,
            verification_token_env=verification_token_env,
            access_token=os.environ.get(access_token_env),
            verification_token=os.environ.get(verification_token_env),
            api_base_url=_optional_str(cfg.get("api_base_url")) or GCHAT_API_BASE_URL,
            events_api_base_url=_optional_str(cfg.get("events_api_base_url"))
            or WORKSPACE_EVENTS_API_BASE_URL,
            timeout_seconds=float(timeout_value),
            max_retries=_parse_int_or_default(
                cfg, "max_retries", DEFAULT_MAX_RETRIES, minimum=0
            ),
            subscription_refresh_buffer_ms=_parse_int_or_default(
                cfg,
                "subscription_refresh_buffer_ms",
                SUBSCRIPTION_REFRESH_BUFFER_MS,
                minimum=0,
            ),
            subscription_cache_ttl_ms=cache_ttl,
            subscription_ttl_seconds=subscription_ttl,
            user_cache_ttl_ms=_parse_int_or_default(
                cfg, "user_cache_ttl_ms", USER_CACHE_TTL_MS, minimum=1
            ),
            assume_bot_is_self=bool(cfg.get("assume_bot_is_self", False)),
        )


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_int_or_default(
    cfg: dict[str, Any], key: str, default: int, *, minimum: int
) -> int:
    value = cfg.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ChatConfigError(f"gchat.{key} must be an integer")
    if value < minimum:
        raise ChatConfigError(f"gchat.{key} must be >= {minimum}")
    return value
