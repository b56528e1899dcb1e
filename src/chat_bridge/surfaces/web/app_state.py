from __future__ import annotations

import logging
from typing import Optional

from ...core.config import BridgeConfig
from ...core.logging_utils import log_event
from ...integrations.chat.dispatcher import ChatDispatcher
from ...integrations.chat.factory import create_state_adapter
from ...integrations.chat.state_store import Clock
from ...integrations.gchat.adapter import GChatAdapter
from ...integrations.gchat.config import GChatConfig
from ...integrations.gchat.constants import GCHAT_PLATFORM

logger = logging.getLogger(__name__)


def build_dispatcher(
    config: BridgeConfig, *, clock: Optional[Clock] = None
) -> ChatDispatcher:
    """Wire the state store, dispatcher and enabled platform adapters."""

    dispatcher = ChatDispatcher(
        create_state_adapter(config.state),
        user_name=config.dispatcher.user_name,
        lock_ttl_ms=config.dispatcher.lock_ttl_ms,
        stream_update_interval_seconds=config.streaming.update_interval_seconds,
    )
    gchat_config = GChatConfig.from_raw(config.platforms.get(GCHAT_PLATFORM, {}))
    if gchat_config.enabled:
        dispatcher.register_adapter(
            GChatAdapter.from_config(
                gchat_config, user_name=config.dispatcher.user_name, clock=clock
            )
        )
    log_event(
        logger,
        logging.INFO,
        "chat.app.built",
        state_backend=config.state.backend,
        adapters=[adapter.name for adapter in dispatcher.adapters],
    )
    return dispatcher
