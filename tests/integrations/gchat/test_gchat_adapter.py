from __future__ import annotations

import asyncio
import base64
import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import httpx
import pytest

from chat_bridge.integrations.chat.adapter import WebhookOptions, WebhookRequest
from chat_bridge.integrations.chat.dispatcher import ChatDispatcher
from chat_bridge.integrations.chat.errors import ChatAdapterPermanentError
from chat_bridge.integrations.chat.identity import BotIdentityResolver
from chat_bridge.integrations.chat.memory_state import MemoryStateAdapter
from chat_bridge.integrations.chat.models import EmojiValue, FetchOptions
from chat_bridge.integrations.chat.testing import ManualClock
from chat_bridge.integrations.gchat import GChatAdapter, GChatRestClient
from chat_bridge.integrations.gchat.constants import (
    EVENT_MESSAGE_CREATED,
    EVENT_REACTION_CREATED,
)
from chat_bridge.integrations.gchat.rest import static_token_provider
from chat_bridge.integrations.gchat.workspace_events import WorkspaceEventsClient

CHAT_URL = "https://chat.test/v1"
EVENTS_URL = "https://events.test/v1"
START_MS = 1_700_000_000_000
ALICE = {"name": "users/111", "displayName": "Alice", "type": "HUMAN"}
BOT_USER = {"name": "users/bot", "displayName": "Helper", "type": "BOT"}

MENTION = {
    "name": "spaces/AAA/messages/m1",
    "sender": ALICE,
    "text": "@Helper status?",
    "createTime": "2023-11-14T22:13:20Z",
    "thread": {"name": "spaces/AAA/threads/t1"},
    "space": {"name": "spaces/AAA", "type": "ROOM"},
    "annotations": [
        {
            "type": "USER_MENTION",
            "startIndex": 0,
            "length": 7,
            "userMention": {"user": BOT_USER},
        }
    ],
}


class FakeGoogle:
    """Routes Chat and Workspace Events API calls to in-memory fixtures."""

    def __init__(self) -> None:
        self.requests: list[tuple[str, str, str]] = []
        self.created: list[dict[str, Any]] = []
        self.deleted: list[str] = []
        self.subscription_posts: list[dict[str, Any]] = []
        self.messages: dict[str, dict[str, Any]] = {}
        self.listing: dict[str, Any] = {"messages": []}
        self.reactions: list[dict[str, Any]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/v1")
        self.requests.append((request.url.host, request.method, path))
        body = json.loads(request.content) if request.content else None
        if request.url.host == "events.test":
            return self._events(request.method, path, body)
        return self._chat(request, path, body)

    def _events(self, method: str, path: str, body: Any) -> httpx.Response:
        if method == "GET" and path == "/subscriptions":
            return httpx.Response(200, json={})
        if method == "POST" and path == "/subscriptions":
            self.subscription_posts.append(body)
            return httpx.Response(
                200,
                json={
                    "name": "operations/op-1",
                    "done": True,
                    "response": {
                        "name": f"subscriptions/sub-{len(self.subscription_posts)}",
                        "expireTime": "2023-11-15T22:13:20Z",
                    },
                },
            )
        return httpx.Response(404, json={})

    def _chat(self, request: httpx.Request, path: str, body: Any) -> httpx.Response:
        method = request.method
        if path == "/spaces:findDirectMessage":
            return httpx.Response(404, json={})
        if path == "/spaces:setup":
            return httpx.Response(200, json={"name": "spaces/DMNEW"})
        if path.endswith("/reactions"):
            if method == "GET":
                return httpx.Response(200, json={"reactions": self.reactions})
            return httpx.Response(200, json={"name": f"{path[1:]}/r-new"})
        if method == "DELETE":
            self.deleted.append(path[1:])
            return httpx.Response(200)
        if path.endswith("/messages") and method == "POST":
            space = path[1:].removesuffix("/messages")
            self.created.append(
                {"space": space, "params": dict(request.url.params), "body": body}
            )
            return httpx.Response(
                200,
                json={
                    "name": f"{space}/messages/sent-{len(self.created)}",
                    **body,
                },
            )
        if path.endswith("/messages") and method == "GET":
            return httpx.Response(200, json=self.listing)
        if method == "GET" and path[1:] in self.messages:
            return httpx.Response(200, json=self.messages[path[1:]])
        return httpx.Response(404, json={})


class Harness:
    def __init__(
        self,
        dispatcher: ChatDispatcher,
        adapter: GChatAdapter,
        google: FakeGoogle,
        clock: ManualClock,
    ) -> None:
        self.dispatcher = dispatcher
        self.adapter = adapter
        self.google = google
        self.clock = clock
        self.tracked: list[Any] = []

    async def deliver(self, body: bytes) -> Any:
        response = await self.dispatcher.handle_webhook(
            "gchat",
            WebhookRequest(body=body),
            WebhookOptions(wait_until=self.tracked.append),
        )
        await self.settle()
        return response

    async def settle(self) -> None:
        while self.tracked:
            pending = list(self.tracked)
            self.tracked.clear()
            await asyncio.gather(*pending)
        await self.dispatcher.wait_idle()


def _mocked(client: Any, base_url: str, google: FakeGoogle) -> None:
    client._client = httpx.AsyncClient(
        base_url=base_url, transport=httpx.MockTransport(google), timeout=5.0
    )


@asynccontextmanager
async def _harness(
    *, with_events: bool = True, assume_bot_is_self: bool = False
) -> AsyncIterator[Harness]:
    google = FakeGoogle()
    clock = ManualClock(START_MS)
    token_provider = static_token_provider("tok")
    rest = GChatRestClient(
        token_provider=token_provider, base_url=CHAT_URL, max_retries=0
    )
    await rest._client.aclose()
    _mocked(rest, CHAT_URL, google)
    events: Optional[WorkspaceEventsClient] = None
    if with_events:
        events = WorkspaceEventsClient(
            token_provider=token_provider,
            pubsub_topic="projects/p/topics/chat",
            base_url=EVENTS_URL,
            max_retries=0,
            operation_poll_wait=0,
            clock=clock,
        )
        await events._client.aclose()
        _mocked(events, EVENTS_URL, google)
    adapter = GChatAdapter(
        rest=rest,
        events=events,
        user_name="helper",
        assume_bot_is_self=assume_bot_is_self,
        clock=clock,
    )
    dispatcher = ChatDispatcher(MemoryStateAdapter(clock=clock), user_name="helper")
    dispatcher.register_adapter(adapter)
    await dispatcher.initialize()
    harness = Harness(dispatcher, adapter, google, clock)
    try:
        yield harness
    finally:
        await harness.settle()
        await dispatcher.shutdown()


def _direct(message: dict[str, Any], space: Optional[dict[str, Any]] = None) -> bytes:
    payload = {
        "chat": {
            "user": message.get("sender") or {},
            "messagePayload": {
                "space": space or {"name": "spaces/AAA", "type": "ROOM"},
                "message": message,
            },
        }
    }
    return json.dumps(payload).encode("utf-8")


def _push(event_type: str, data: dict[str, Any]) -> bytes:
    encoded = base64.b64encode(json.dumps(data).encode("utf-8")).decode("ascii")
    envelope = {
        "subscription": "projects/p/subscriptions/chat",
        "message": {
            "messageId": "pubsub-1",
            "data": encoded,
            "attributes": {
                "ce-type": event_type,
                "ce-subject": "//chat.googleapis.com/spaces/AAA",
                "ce-time": "2023-11-14T22:13:20Z",
            },
        },
    }
    return json.dumps(envelope).encode("utf-8")


@pytest.mark.anyio
async def test_direct_mention_learns_bot_id_and_replies_in_thread() -> None:
    async with _harness() as harness:
        seen: list[Any] = []

        @harness.dispatcher.on_new_mention
        async def _on_mention(thread: Any, message: Any) -> None:
            seen.append(message)
            await thread.post("on it")

        response = await harness.deliver(_direct(MENTION))

        assert response.status_code == 200
        assert response.body == {}
        assert len(seen) == 1
        message = seen[0]
        assert message.text == "@helper status?"
        assert message.thread_id == harness.adapter.encode_thread_id(
            "spaces/AAA", "spaces/AAA/threads/t1"
        )
        assert message.author.user_name == "Alice"
        assert not message.author.is_me
        assert harness.adapter.bot_user_id == "users/bot"
        assert await harness.dispatcher.state.get("gchat:botId") == "users/bot"
        assert harness.google.created == [
            {
                "space": "spaces/AAA",
                "params": {
                    "messageReplyOption": "REPLY_MESSAGE_FALLBACK_TO_NEW_THREAD"
                },
                "body": {"text": "on it", "thread": {"name": "spaces/AAA/threads/t1"}},
            }
        ]
        assert not harness.google.subscription_posts


@pytest.mark.anyio
async def test_subscribed_thread_refreshes_space_subscription_once() -> None:
    async with _harness() as harness:
        texts: list[tuple[str, str]] = []

        @harness.dispatcher.on_subscribed_message
        async def _on_subscribed(thread: Any, message: Any) -> None:
            texts.append((message.text, message.author.user_name))

        thread_id = harness.adapter.encode_thread_id(
            "spaces/AAA", "spaces/AAA/threads/t1"
        )
        await harness.dispatcher.state.subscribe(thread_id)

        await harness.deliver(_direct(MENTION))
        follow_up = {
            "name": "spaces/AAA/messages/m2",
            "sender": {"name": "users/111", "type": "HUMAN"},
            "text": "any news?",
            "thread": {"name": "spaces/AAA/threads/t1"},
        }
        push_response = await harness.deliver(
            _push(EVENT_MESSAGE_CREATED, {"message": follow_up})
        )

        assert push_response.body == {"success": True}
        assert texts == [("@helper status?", "Alice"), ("any news?", "Alice")]
        assert len(harness.google.subscription_posts) == 1
        posted = harness.google.subscription_posts[0]
        assert posted["targetResource"] == "//chat.googleapis.com/spaces/AAA"
        assert await harness.dispatcher.state.get("gchat:space-sub:spaces/AAA") == {
            "subscriptionName": "subscriptions/sub-1",
            "expireTime": START_MS + 24 * 60 * 60 * 1000,
        }


@pytest.mark.anyio
async def test_dm_uses_space_only_thread_id() -> None:
    async with _harness() as harness:
        seen: list[str] = []

        async def _on_hi(thread: Any, message: Any) -> None:
            seen.append(thread.id)
            await thread.post("hello")

        harness.dispatcher.on_new_message(r"^hi", _on_hi)

        dm_message = {
            "name": "spaces/DM1/messages/d1",
            "sender": ALICE,
            "text": "hi there",
            "thread": {"name": "spaces/DM1/threads/x"},
        }
        await harness.deliver(
            _direct(dm_message, {"name": "spaces/DM1", "spaceType": "DIRECT_MESSAGE"})
        )

        expected = harness.adapter.encode_thread_id("spaces/DM1", is_dm=True)
        assert seen == [expected]
        assert harness.adapter.is_dm(expected)
        assert harness.google.created == [
            {"space": "spaces/DM1", "params": {}, "body": {"text": "hello"}}
        ]


@pytest.mark.anyio
async def test_push_reaction_resolves_thread_from_message() -> None:
    async with _harness() as harness:
        harness.google.messages["spaces/AAA/messages/m1"] = MENTION
        seen: list[Any] = []

        @harness.dispatcher.on_reaction
        async def _on_reaction(thread: Any, event: Any) -> None:
            seen.append(event)

        response = await harness.deliver(
            _push(
                EVENT_REACTION_CREATED,
                {
                    "reaction": {
                        "name": "spaces/AAA/messages/m1/reactions/r1",
                        "emoji": {"unicode": "👍"},
                        "user": ALICE,
                    }
                },
            )
        )

        assert response.body == {"success": True}
        assert len(seen) == 1
        event = seen[0]
        assert event.added
        assert event.emoji == EmojiValue(name="👍", raw="👍")
        assert event.message_id == "spaces/AAA/messages/m1"
        assert event.thread_id == harness.adapter.encode_thread_id(
            "spaces/AAA", "spaces/AAA/threads/t1"
        )
        assert event.user.user_name == "Alice"


@pytest.mark.anyio
async def test_card_click_routes_to_action_handlers() -> None:
    async with _harness() as harness:
        seen: list[Any] = []

        async def _on_approve(thread: Any, event: Any) -> None:
            seen.append((thread.id, event.action_id, event.value))

        harness.dispatcher.on_action(_on_approve, action_ids=["approve"])
        body = {
            "commonEventObject": {
                "invokedFunction": "approve",
                "parameters": {"value": "42"},
            },
            "chat": {
                "buttonClickedPayload": {
                    "space": {"name": "spaces/AAA"},
                    "message": MENTION,
                    "user": ALICE,
                }
            },
        }
        await harness.deliver(json.dumps(body).encode("utf-8"))

        assert seen == [
            (
                harness.adapter.encode_thread_id("spaces/AAA", "spaces/AAA/threads/t1"),
                "approve",
                "42",
            )
        ]


@pytest.mark.anyio
async def test_added_to_space_creates_subscription() -> None:
    async with _harness() as harness:
        body = {"chat": {"addedToSpacePayload": {"space": {"name": "spaces/AAA"}}}}
        await harness.deliver(json.dumps(body).encode("utf-8"))

        assert len(harness.google.subscription_posts) == 1
        assert harness.adapter.subscriptions is not None


@pytest.mark.anyio
async def test_added_to_space_without_topic_skips_subscription() -> None:
    async with _harness(with_events=False) as harness:
        body = {"chat": {"addedToSpacePayload": {"space": {"name": "spaces/AAA"}}}}
        response = await harness.deliver(json.dumps(body).encode("utf-8"))

        assert response.status_code == 200
        assert harness.adapter.subscriptions is None
        assert all(host != "events.test" for host, _, _ in harness.google.requests)


@pytest.mark.anyio
async def test_own_push_messages_are_skipped_once_bot_id_is_known() -> None:
    async with _harness() as harness:
        texts: list[str] = []

        @harness.dispatcher.on_new_mention
        async def _on_mention(thread: Any, message: Any) -> None:
            texts.append(message.text)

        await harness.deliver(_direct(MENTION))
        own = {
            "name": "spaces/AAA/messages/m9",
            "sender": BOT_USER,
            "text": "@helper echo",
            "thread": {"name": "spaces/AAA/threads/t1"},
        }
        await harness.deliver(_push(EVENT_MESSAGE_CREATED, {"message": own}))

        assert texts == ["@helper status?"]


@pytest.mark.anyio
async def test_assume_bot_is_self_only_applies_to_direct_delivery() -> None:
    async with _harness(assume_bot_is_self=True) as harness:
        texts: list[str] = []

        async def _on_ping(thread: Any, message: Any) -> None:
            texts.append(message.id)

        harness.dispatcher.on_new_message(r"ping", _on_ping)

        other_bot = {
            "sender": {"name": "users/other-bot", "type": "BOT"},
            "text": "ping",
            "thread": {"name": "spaces/AAA/threads/t2"},
        }
        await harness.deliver(_direct({**other_bot, "name": "spaces/AAA/messages/b1"}))
        await harness.deliver(
            _push(
                EVENT_MESSAGE_CREATED,
                {"message": {**other_bot, "name": "spaces/AAA/messages/b2"}},
            )
        )

        assert texts == ["spaces/AAA/messages/b2"]


@pytest.mark.anyio
async def test_open_dm_falls_back_to_setup() -> None:
    async with _harness() as harness:
        thread_id = await harness.adapter.open_dm("users/111")

        assert thread_id == harness.adapter.encode_thread_id("spaces/DMNEW", is_dm=True)
        methods = [(method, path) for _, method, path in harness.google.requests]
        assert methods == [
            ("GET", "/spaces:findDirectMessage"),
            ("POST", "/spaces:setup"),
        ]


@pytest.mark.anyio
async def test_fetch_backward_returns_oldest_first() -> None:
    async with _harness() as harness:
        harness.google.listing = {
            "messages": [
                {"name": "spaces/AAA/messages/m3", "sender": ALICE, "text": "third"},
                {"name": "spaces/AAA/messages/m2", "sender": ALICE, "text": "second"},
            ],
            "nextPageToken": "older",
        }
        thread_id = harness.adapter.encode_thread_id(
            "spaces/AAA", "spaces/AAA/threads/t1"
        )

        result = await harness.adapter.fetch_messages(thread_id, FetchOptions(limit=2))

        assert [message.text for message in result.messages] == ["second", "third"]
        assert result.next_cursor == "older"


@pytest.mark.anyio
async def test_remove_reaction_deletes_matching_reaction() -> None:
    async with _harness() as harness:
        harness.google.reactions = [
            {"name": "spaces/AAA/messages/m1/reactions/r1", "emoji": {"unicode": "x"}},
            {"name": "spaces/AAA/messages/m1/reactions/r2", "emoji": {"unicode": "y"}},
        ]
        thread_id = harness.adapter.encode_thread_id("spaces/AAA")

        await harness.adapter.remove_reaction(
            thread_id, "spaces/AAA/messages/m1", EmojiValue(name="y", raw="y")
        )

        assert harness.google.deleted == ["spaces/AAA/messages/m1/reactions/r2"]


@pytest.mark.anyio
async def test_push_message_without_space_is_acknowledged_and_dropped() -> None:
    async with _harness() as harness:
        handled: list[str] = []

        @harness.dispatcher.on_new_mention
        async def _on_mention(thread: Any, message: Any) -> None:
            handled.append(message.id)

        orphan = {
            "name": "messages/orphan",
            "sender": ALICE,
            "text": "@helper hi",
        }
        data = base64.b64encode(
            json.dumps({"message": orphan}).encode("utf-8")
        ).decode("ascii")
        envelope = {
            "subscription": "projects/p/subscriptions/chat",
            "message": {
                "messageId": "pubsub-9",
                "data": data,
                "attributes": {"ce-type": EVENT_MESSAGE_CREATED},
            },
        }

        response = await harness.deliver(json.dumps(envelope).encode("utf-8"))

        assert response.status_code == 200
        assert handled == []
        assert not harness.google.subscription_posts


@pytest.mark.anyio
async def test_direct_message_without_space_name_is_rejected() -> None:
    async with _harness() as harness:
        handled: list[str] = []

        @harness.dispatcher.on_new_mention
        async def _on_mention(thread: Any, message: Any) -> None:
            handled.append(message.id)

        response = await harness.deliver(_direct(MENTION, {"type": "ROOM"}))

        assert response.status_code == 400
        assert handled == []


@pytest.mark.anyio
async def test_message_seen_on_direct_and_push_paths_is_handled_once() -> None:
    async with _harness() as harness:
        handled: list[str] = []

        @harness.dispatcher.on_subscribed_message
        async def _on_subscribed(thread: Any, message: Any) -> None:
            handled.append(message.id)

        thread_id = harness.adapter.encode_thread_id(
            "spaces/AAA", "spaces/AAA/threads/t1"
        )
        await harness.dispatcher.state.subscribe(thread_id)

        await harness.deliver(_direct(MENTION))
        push_response = await harness.deliver(
            _push(EVENT_MESSAGE_CREATED, {"message": MENTION})
        )

        assert push_response.status_code == 200
        assert handled == ["spaces/AAA/messages/m1"]


@pytest.mark.anyio
async def test_bot_id_learned_by_another_replica_marks_own_push_messages() -> None:
    async with _harness() as harness:
        handled: list[str] = []

        @harness.dispatcher.on_subscribed_message
        async def _on_subscribed(thread: Any, message: Any) -> None:
            handled.append(message.id)

        thread_id = harness.adapter.encode_thread_id(
            "spaces/AAA", "spaces/AAA/threads/t1"
        )
        await harness.dispatcher.state.subscribe(thread_id)
        assert harness.adapter.bot_user_id is None

        other_replica = BotIdentityResolver(harness.dispatcher.state, "gchat")
        other_replica.learn("users/bot")
        await other_replica.flush()

        own = {
            "name": "spaces/AAA/messages/m9",
            "sender": BOT_USER,
            "text": "working on it",
            "thread": {"name": "spaces/AAA/threads/t1"},
        }
        await harness.deliver(_push(EVENT_MESSAGE_CREATED, {"message": own}))

        assert harness.adapter.bot_user_id == "users/bot"
        assert handled == []


@pytest.mark.anyio
async def test_uninitialized_adapter_rejects_webhooks() -> None:
    rest = GChatRestClient(token_provider=static_token_provider("tok"), base_url=CHAT_URL)
    adapter = GChatAdapter(rest=rest, user_name="helper")
    try:
        with pytest.raises(ChatAdapterPermanentError):
            await adapter.handle_webhook(
                WebhookRequest(body=_direct(MENTION)), WebhookOptions()
            )
    finally:
        await rest.close()
