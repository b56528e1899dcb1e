from __future__ import annotations

from typing import Any

import pytest

from chat_bridge.integrations.chat.errors import ChatConfigError
from chat_bridge.integrations.gchat.config import GChatConfig
from chat_bridge.integrations.gchat.constants import (
    GCHAT_API_BASE_URL,
    SUBSCRIPTION_CACHE_TTL_MS,
    USER_CACHE_TTL_MS,
)


def test_defaults_and_env_tokens(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GCHAT_ACCESS_TOKEN", "access")
    monkeypatch.delenv("GCHAT_VERIFICATION_TOKEN", raising=False)

    config = GChatConfig.from_raw({})

    assert config.enabled is False
    assert config.access_token == "access"
    assert config.verification_token is None
    assert config.api_base_url == GCHAT_API_BASE_URL
    assert config.subscription_cache_ttl_ms == SUBSCRIPTION_CACHE_TTL_MS
    assert config.user_cache_ttl_ms == USER_CACHE_TTL_MS
    assert config.assume_bot_is_self is False


def test_custom_env_names_and_fields(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MY_TOKEN", "abc")
    monkeypatch.setenv("MY_VERIFY", "shh")

    config = GChatConfig.from_raw(
        {
            "enabled": True,
            "user_name": "  helper ",
            "pubsub_topic": "projects/p/topics/chat",
            "access_token_env": "MY_TOKEN",
            "verification_token_env": "MY_VERIFY",
            "timeout_seconds": 5,
            "max_retries": 0,
            "assume_bot_is_self": True,
        }
    )

    assert config.enabled is True
    assert config.user_name == "helper"
    assert config.pubsub_topic == "projects/p/topics/chat"
    assert config.access_token == "abc"
    assert config.verification_token == "shh"
    assert config.timeout_seconds == 5.0
    assert config.max_retries == 0
    assert config.assume_bot_is_self is True


def test_non_mapping_is_treated_as_empty() -> None:
    assert GChatConfig.from_raw(None).enabled is False  # type: ignore[arg-type]


@pytest.mark.parametrize(
    "raw",
    [
        {"access_token_env": "  "},
        {"verification_token_env": ""},
        {"timeout_seconds": "fast"},
        {"timeout_seconds": 0},
        {"timeout_seconds": True},
        {"max_retries": -1},
        {"max_retries": 1.5},
        {"user_cache_ttl_ms": 0},
        {"subscription_ttl_seconds": 3600, "subscription_cache_ttl_ms": 3_600_000},
    ],
)
def test_invalid_values_raise(raw: dict[str, Any]) -> None:
    with pytest.raises(ChatConfigError):
        GChatConfig.from_raw(raw)


def test_cache_ttl_must_outlive_subscription() -> None:
    config = GChatConfig.from_raw(
        {"subscription_ttl_seconds": 3600, "subscription_cache_ttl_ms": 3_600_001}
    )
    assert config.subscription_ttl_seconds == 3600
