from __future__ import annotations

from ...core.config import StateConfig
from ...core.exceptions import ConfigError
from .memory_state import MemoryStateAdapter
from .sqlite_state import SqliteStateAdapter
from .state_store import StateAdapter


def create_state_adapter(config: StateConfig) -> StateAdapter:
    if config.backend == "memory":
        return MemoryStateAdapter()
    if config.backend == "sqlite":
        if config.path is None:
            raise ConfigError("state.path is required for the sqlite backend")
        return SqliteStateAdapter(config.path)
    raise ConfigError(f"Unknown state backend: {config.backend}")
