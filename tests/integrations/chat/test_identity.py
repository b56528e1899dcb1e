from __future__ import annotations

import asyncio
from typing import Any

import pytest

from chat_bridge.integrations.chat.identity import BotIdentityResolver, bot_id_key
from chat_bridge.integrations.chat.memory_state import MemoryStateAdapter
from chat_bridge.integrations.chat.models import Delivery


class _FailingSetState(MemoryStateAdapter):
    async def set(self, key: str, value: Any, ttl_ms: Any = None) -> None:
        raise RuntimeError("state unavailable")


async def _connected(state: MemoryStateAdapter) -> MemoryStateAdapter:
    await state.connect()
    return state


@pytest.mark.anyio
async def test_learned_id_is_persisted_and_loaded_by_a_new_resolver() -> None:
    state = await _connected(MemoryStateAdapter())
    resolver = BotIdentityResolver(state, "gchat")
    assert await resolver.load() is None

    assert resolver.learn("users/bot-1")
    await resolver.flush()
    assert await state.get(bot_id_key("gchat")) == "users/bot-1"

    fresh = BotIdentityResolver(state, "gchat")
    assert await fresh.load() == "users/bot-1"
    assert fresh.resolve_is_me("users/bot-1", True)


@pytest.mark.anyio
async def test_missing_id_is_reread_until_another_replica_learns_it() -> None:
    state = await _connected(MemoryStateAdapter())
    replica = BotIdentityResolver(state, "gchat")
    assert await replica.load() is None

    learner = BotIdentityResolver(state, "gchat")
    learner.learn("users/bot-1")
    await learner.flush()

    assert await replica.load() == "users/bot-1"
    assert replica.resolve_is_me("users/bot-1", True, delivery=Delivery.PUSH)


@pytest.mark.anyio
async def test_learn_is_noop_for_same_or_empty_candidate() -> None:
    state = await _connected(MemoryStateAdapter())
    resolver = BotIdentityResolver(state, "gchat")
    assert resolver.learn("users/bot-1")
    assert not resolver.learn("users/bot-1")
    assert not resolver.learn(None)
    assert not resolver.learn("")
    await resolver.flush()


@pytest.mark.anyio
async def test_learn_reports_background_task_to_wait_until() -> None:
    state = await _connected(MemoryStateAdapter())
    resolver = BotIdentityResolver(state, "gchat")
    tracked: list[asyncio.Future[Any]] = []

    resolver.learn("users/bot-1", wait_until=tracked.append)

    assert len(tracked) == 1
    await tracked[0]
    assert await state.get("gchat:botId") == "users/bot-1"


@pytest.mark.anyio
async def test_persist_failure_keeps_in_memory_identity() -> None:
    state = await _connected(_FailingSetState())
    resolver = BotIdentityResolver(state, "gchat")

    assert resolver.learn("users/bot-1")
    await resolver.flush()

    assert resolver.bot_id == "users/bot-1"
    assert resolver.resolve_is_me("users/bot-1", True)


@pytest.mark.anyio
async def test_known_id_resolves_only_exact_matches() -> None:
    state = await _connected(MemoryStateAdapter())
    resolver = BotIdentityResolver(state, "gchat", assume_bot_is_self=True)
    resolver.learn("users/bot-1")
    await resolver.flush()

    assert resolver.resolve_is_me("users/bot-1", True, delivery=Delivery.PUSH)
    assert not resolver.resolve_is_me("users/other-bot", True)
    assert not resolver.resolve_is_me(None, True)


@pytest.mark.anyio
async def test_unknown_id_never_assumes_self_by_default() -> None:
    state = await _connected(MemoryStateAdapter())
    resolver = BotIdentityResolver(state, "gchat")
    assert not resolver.resolve_is_me("users/some-bot", True)
    assert not resolver.resolve_is_me("users/some-bot", True, delivery=Delivery.PUSH)


@pytest.mark.anyio
async def test_assume_bot_is_self_applies_to_direct_delivery_only() -> None:
    state = await _connected(MemoryStateAdapter())
    resolver = BotIdentityResolver(state, "gchat", assume_bot_is_self=True)

    assert resolver.resolve_is_me("users/some-bot", True, delivery=Delivery.DIRECT)
    assert not resolver.resolve_is_me(
        "users/some-bot", True, delivery=Delivery.PUSH
    )
    assert not resolver.resolve_is_me("users/human", False)
