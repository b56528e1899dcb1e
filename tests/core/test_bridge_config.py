from __future__ import annotations

from pathlib import Path

import pytest

from chat_bridge.core.config import (
    CONFIG_FILENAME,
    BridgeConfig,
    load_bridge_config,
)
from chat_bridge.core.exceptions import ConfigError


def test_defaults_when_config_missing(tmp_path: Path) -> None:
    config = load_bridge_config(tmp_path)

    assert config.state.backend == "sqlite"
    assert config.state.path == tmp_path / ".chat-bridge" / "state.sqlite3"
    assert config.dispatcher.user_name == "bot"
    assert config.dispatcher.lock_ttl_ms == 30_000
    assert config.server.port == 8080
    assert config.platforms["gchat"] == {}


def test_loads_yaml_sections(tmp_path: Path) -> None:
    (tmp_path / CONFIG_FILENAME).write_text(
        "\n".join(
            [
                "state:",
                "  backend: memory",
                "dispatcher:",
                "  user_name: helper",
                "  lock_ttl_ms: 5000",
                "streaming:",
                "  update_interval_seconds: 1.5",
                "server:",
                "  host: 0.0.0.0",
                "  port: 9000",
                "gchat:",
                "  enabled: true",
                "  pubsub_topic: projects/p/topics/t",
            ]
        ),
        encoding="utf-8",
    )

    config = load_bridge_config(tmp_path)

    assert config.state.backend == "memory"
    assert config.dispatcher.user_name == "helper"
    assert config.dispatcher.lock_ttl_ms == 5000
    assert config.streaming.update_interval_seconds == 1.5
    assert config.server.host == "0.0.0.0"
    assert config.server.port == 9000
    assert config.platforms["gchat"]["pubsub_topic"] == "projects/p/topics/t"


def test_absolute_state_path_is_kept(tmp_path: Path) -> None:
    target = tmp_path / "elsewhere" / "db.sqlite3"
    config = BridgeConfig.from_raw(
        root=tmp_path, raw={"state": {"path": str(target)}}
    )
    assert config.state.path == target


@pytest.mark.parametrize(
    "raw",
    [
        {"state": {"backend": "redis"}},
        {"state": "sqlite"},
        {"dispatcher": {"lock_ttl_ms": 0}},
        {"dispatcher": {"lock_ttl_ms": True}},
        {"dispatcher": {"user_name": "  "}},
        {"streaming": {"update_interval_seconds": -1}},
        {"server": {"port": "80"}},
        {"gchat": ["not", "a", "mapping"]},
    ],
)
def test_invalid_values_raise_config_error(tmp_path: Path, raw: dict) -> None:
    with pytest.raises(ConfigError):
        BridgeConfig.from_raw(root=tmp_path, raw=raw)


def test_invalid_yaml_raises_config_error(tmp_path: Path) -> None:
    (tmp_path / CONFIG_FILENAME).write_text("state: [unclosed", encoding="utf-8")
    with pytest.raises(ConfigError, match="Invalid YAML"):
        load_bridge_config(tmp_path)


def test_non_mapping_yaml_raises_config_error(tmp_path: Path) -> None:
    (tmp_path / CONFIG_FILENAME).write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="must be a mapping"):
        load_bridge_config(tmp_path)
