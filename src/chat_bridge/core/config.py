from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .exceptions import ConfigError

CONFIG_FILENAME = "chat-bridge.yml"
DEFAULT_STATE_PATH = ".chat-bridge/state.sqlite3"
DEFAULT_USER_NAME = "bot"
DEFAULT_LOCK_TTL_MS = 30_000
DEFAULT_UPDATE_INTERVAL_SECONDS = 0.5
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8080
STATE_BACKENDS = ("memory", "sqlite")


@dataclass(frozen=True)
class StateConfig:
    backend: str = "sqlite"
    path: Optional[Path] = None


@dataclass(frozen=True)
class DispatcherConfig:
    user_name: str = DEFAULT_USER_NAME
    lock_ttl_ms: int = DEFAULT_LOCK_TTL_MS


@dataclass(frozen=True)
class StreamingConfig:
    update_interval_seconds: float = DEFAULT_UPDATE_INTERVAL_SECONDS


@dataclass(frozen=True)
class ServerConfig:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT


@dataclass(frozen=True)
class BridgeConfig:
    root: Path
    state: StateConfig
    dispatcher: DispatcherConfig
    streaming: StreamingConfig
    server: ServerConfig
    platforms: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @classmethod
    def from_raw(cls, *, root: Path, raw: dict[str, Any]) -> "BridgeConfig":
        cfg: dict[str, Any] = raw if isinstance(raw, dict) else {}

        state_cfg = _section(cfg, "state")
        backend = str(state_cfg.get("backend", "sqlite")).strip().lower()
        if backend not in STATE_BACKENDS:
            raise ConfigError(
                f"state.backend must be one of {', '.join(STATE_BACKENDS)}"
            )
        path_value = state_cfg.get("path", DEFAULT_STATE_PATH)
        if not isinstance(path_value, str) or not path_value.strip():
            raise ConfigError("state.path must be a string path")
        state_path = Path(path_value)
        if not state_path.is_absolute():
            state_path = root / state_path

        dispatcher_cfg = _section(cfg, "dispatcher")
        user_name = str(dispatcher_cfg.get("user_name", DEFAULT_USER_NAME)).strip()
        if not user_name:
            raise ConfigError("dispatcher.user_name must be non-empty")
        lock_ttl_ms = _parse_positive_int_or_default(
            dispatcher_cfg, "lock_ttl_ms", DEFAULT_LOCK_TTL_MS, "dispatcher"
        )

        streaming_cfg = _section(cfg, "streaming")
        interval = streaming_cfg.get(
            "update_interval_seconds", DEFAULT_UPDATE_INTERVAL_SECONDS
        )
        if isinstance(interval, bool) or not isinstance(interval, (int, float)):
            raise ConfigError("streaming.update_interval_seconds must be a number")
        if interval < 0:
            raise ConfigError("streaming.update_interval_seconds must be >= 0")

        server_cfg = _section(cfg, "server")
        host = str(server_cfg.get("host", DEFAULT_HOST)).strip() or DEFAULT_HOST
        port = _parse_positive_int_or_default(server_cfg, "port", DEFAULT_PORT, "server")

        platforms: Dict[str, Dict[str, Any]] = {}
        for name in ("gchat",):
            section = cfg.get(name)
            if section is not None and not isinstance(section, dict):
                raise ConfigError(f"{name} must be a mapping")
            platforms[name] = dict(section or {})

        return cls(
            root=root,
            state=StateConfig(backend=backend, path=state_path),
            dispatcher=DispatcherConfig(user_name=user_name, lock_ttl_ms=lock_ttl_ms),
            streaming=StreamingConfig(update_interval_seconds=float(interval)),
            server=ServerConfig(host=host, port=port),
            platforms=platforms,
        )


def _section(cfg: dict[str, Any], name: str) -> dict[str, Any]:
    value = cfg.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{name} must be a mapping")
    return value


def _parse_positive_int_or_default(
    cfg: dict[str, Any], key: str, default: int, section: str
) -> int:
    value = cfg.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{section}.{key} must be an integer")
    if value <= 0:
        raise ConfigError(f"{section}.{key} must be > 0")
    return value


def _load_yaml_dict(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Failed to read config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config file must be a mapping: {path}")
    return data


def load_bridge_config(root: Path, path: Optional[Path] = None) -> BridgeConfig:
    config_path = path if path is not None else root / CONFIG_FILENAME
    return BridgeConfig.from_raw(root=root, raw=_load_yaml_dict(config_path))


__all__ = [
    "BridgeConfig",
    "CONFIG_FILENAME",
    "DispatcherConfig",
    "ServerConfig",
    "StateConfig",
    "StreamingConfig",
    "load_bridge_config",
]
