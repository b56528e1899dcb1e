"""Google Chat adapter.

Direct events (mentions, DMs, card clicks, membership changes) arrive on the
app endpoint; once a space has a Workspace Events subscription, every
message and reaction also arrives as a Pub/Sub push. Both shapes are resolved
into canonical events here, so the dispatcher never sees which path was used.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import TYPE_CHECKING, Any, Awaitable, Optional

from ...core.logging_utils import log_event
from ..chat.adapter import (
    RequestVerifier,
    WebhookOptions,
    WebhookRequest,
    WebhookResponse,
)
from ..chat.errors import (
    ChatAdapterPermanentError,
    ChatNotFoundError,
    DecodeError,
    MalformedIdentityError,
)
from ..chat.identity import BotIdentityResolver
from ..chat.models import (
    ActionEvent,
    Author,
    CanonicalMessage,
    Delivery,
    EmojiValue,
    FetchOptions,
    FetchResult,
    ReactionEvent,
    SentMessage,
)
from ..chat.normalize import AttachmentDescriptor, MessageNormalizer
from ..chat.push_subscriptions import PushSubscriptionInfo, PushSubscriptionManager
from ..chat.renderer import (
    EmojiConverter,
    FormatConverter,
    PassthroughEmojiConverter,
    PlainTextConverter,
)
from ..chat.state_store import Clock, StateAdapter
from ..chat.thread_ids import ThreadIdCodec
from ..chat.user_info import UserInfoCache
from .config import GChatConfig
from .constants import (
    DEFAULT_FETCH_LIMIT,
    FORWARD_FETCH_PAGE_SIZE,
    GCHAT_PLATFORM,
    SPACE_SUBSCRIPTION_KEY_PREFIX,
    SUBSCRIPTION_CACHE_TTL_MS,
    SUBSCRIPTION_REFRESH_BUFFER_MS,
    USER_CACHE_TTL_MS,
)
from .events import (
    CardClick,
    DirectEvent,
    IgnoredPush,
    PushEnvelope,
    decode_webhook,
    thread_name_of,
    to_raw_message,
)
from .rest import GChatRestClient, static_token_provider
from .verify import AllowAllVerifier, SharedTokenVerifier
from .workspace_events import WorkspaceEventsClient

if TYPE_CHECKING:
    from ..chat.dispatcher import ChatDispatcher

logger = logging.getLogger(__name__)

_MESSAGE_NAME_RE = re.compile(r"(spaces/[^/]+/messages/[^/]+)")


class GChatAdapter:
    def __init__(
        self,
        *,
        rest: GChatRestClient,
        user_name: str,
        events: Optional[WorkspaceEventsClient] = None,
        verifier: Optional[RequestVerifier] = None,
        bot_display_names: tuple[str, ...] = (),
        assume_bot_is_self: bool = False,
        converter: Optional[FormatConverter] = None,
        emoji: Optional[EmojiConverter] = None,
        subscription_refresh_buffer_ms: int = SUBSCRIPTION_REFRESH_BUFFER_MS,
        subscription_cache_ttl_ms: int = SUBSCRIPTION_CACHE_TTL_MS,
        user_cache_ttl_ms: int = USER_CACHE_TTL_MS,
        clock: Optional[Clock] = None,
    ) -> None:
        self._rest = rest
        self._events = events
        self._user_name = user_name
        self._verifier: RequestVerifier = verifier or AllowAllVerifier()
        self._bot_display_names = bot_display_names
        self._assume_bot_is_self = assume_bot_is_self
        self._converter = converter or PlainTextConverter()
        self._emoji = emoji or PassthroughEmojiConverter()
        self._refresh_buffer_ms = subscription_refresh_buffer_ms
        self._cache_ttl_ms = subscription_cache_ttl_ms
        self._user_cache_ttl_ms = user_cache_ttl_ms
        self._clock = clock
        self.codec = ThreadIdCodec(GCHAT_PLATFORM)
        self._dispatcher: Optional["ChatDispatcher"] = None
        self._state: Optional[StateAdapter] = None
        self._identity: Optional[BotIdentityResolver] = None
        self._users: Optional[UserInfoCache] = None
        self._normalizer: Optional[MessageNormalizer] = None
        self._subscriptions: Optional[PushSubscriptionManager] = None
        self._tasks: set[asyncio.Task[Any]] = set()

    @classmethod
    def from_config(
        cls, config: GChatConfig, *, user_name: str, clock: Optional[Clock] = None
    ) -> "GChatAdapter":
        if not config.access_token:
            raise ChatAdapterPermanentError(
                f"Missing Google Chat access token in ${config.access_token_env}"
            )
        token_provider = static_token_provider(config.access_token)
        rest = GChatRestClient(
            token_provider=token_provider,
            base_url=config.api_base_url,
            timeout_seconds=config.timeout_seconds,
            max_retries=config.max_retries,
        )
        events = None
        if config.pubsub_topic:
            events = WorkspaceEventsClient(
                token_provider=token_provider,
                pubsub_topic=config.pubsub_topic,
                base_url=config.events_api_base_url,
                ttl_seconds=config.subscription_ttl_seconds,
                timeout_seconds=config.timeout_seconds,
                max_retries=config.max_retries,
                clock=clock,
            )
        verifier: RequestVerifier
        if config.verification_token:
            verifier = SharedTokenVerifier(config.verification_token)
        else:
            log_event(
                logger,
                logging.WARNING,
                "gchat.verify.disabled",
                env=config.verification_token_env,
            )
            verifier = AllowAllVerifier()
        return cls(
            rest=rest,
            events=events,
            user_name=config.user_name or user_name,
            verifier=verifier,
            assume_bot_is_self=config.assume_bot_is_self,
            subscription_refresh_buffer_ms=config.subscription_refresh_buffer_ms,
            subscription_cache_ttl_ms=config.subscription_cache_ttl_ms,
            user_cache_ttl_ms=config.user_cache_ttl_ms,
            clock=clock,
        )

    # Identity

    @property
    def name(self) -> str:
        return GCHAT_PLATFORM

    @property
    def user_name(self) -> str:
        return self._user_name

    @property
    def bot_user_id(self) -> Optional[str]:
        return self._identity.bot_id if self._identity is not None else None

    @property
    def verifier(self) -> RequestVerifier:
        return self._verifier

    @property
    def subscriptions(self) -> Optional[PushSubscriptionManager]:
        return self._subscriptions

    # Lifecycle

    async def initialize(self, dispatcher: "ChatDispatcher") -> None:
        self._dispatcher = dispatcher
        self._state = dispatcher.state
        self._identity = BotIdentityResolver(
            self._state,
            GCHAT_PLATFORM,
            assume_bot_is_self=self._assume_bot_is_self,
        )
        await self._identity.load()
        self._users = UserInfoCache(
            self._state, GCHAT_PLATFORM, ttl_ms=self._user_cache_ttl_ms
        )
        self._normalizer = MessageNormalizer(
            identity=self._identity,
            user_name=self._user_name,
            bot_display_names=self._bot_display_names,
            converter=self._converter,
            attachment_fetcher=self._attachment_fetcher,
        )
        if self._events is not None:
            self._subscriptions = PushSubscriptionManager(
                self._state,
                self._events,
                key_prefix=SPACE_SUBSCRIPTION_KEY_PREFIX,
                refresh_buffer_ms=self._refresh_buffer_ms,
                cache_ttl_ms=self._cache_ttl_ms,
                clock=self._clock,
            )
        log_event(
            logger,
            logging.INFO,
            "gchat.adapter.initialized",
            user_name=self._user_name,
            bot_user_id=self.bot_user_id,
            push_subscriptions=self._subscriptions is not None,
        )

    async def shutdown(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        if self._identity is not None:
            await self._identity.flush()
        await self._rest.close()
        if self._events is not None:
            await self._events.close()

    def _require_ready(self) -> "ChatDispatcher":
        if self._dispatcher is None or self._normalizer is None:
            raise ChatAdapterPermanentError("GChatAdapter is not initialized")
        return self._dispatcher

    def _require_normalizer(self) -> MessageNormalizer:
        if self._normalizer is None:
            raise ChatAdapterPermanentError("GChatAdapter is not initialized")
        return self._normalizer

    def _require_users(self) -> UserInfoCache:
        if self._users is None:
            raise ChatAdapterPermanentError("GChatAdapter is not initialized")
        return self._users

    def _require_state(self) -> StateAdapter:
        if self._state is None:
            raise ChatAdapterPermanentError("GChatAdapter is not initialized")
        return self._state

    def _track(
        self, work: Awaitable[Any], options: WebhookOptions, *, event: str
    ) -> "asyncio.Task[Any]":
        task = asyncio.ensure_future(self._guard(work, event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        if options.wait_until is not None:
            options.wait_until(task)
        return task

    async def _guard(self, work: Awaitable[Any], event: str) -> Any:
        try:
            return await work
        except Exception as exc:
            log_event(logger, logging.ERROR, event, exc=exc)
            return None

    # Webhooks

    async def handle_webhook(
        self, request: WebhookRequest, options: WebhookOptions
    ) -> WebhookResponse:
        self._require_ready()
        event = decode_webhook(request.body)
        if isinstance(event, IgnoredPush):
            log_event(
                logger,
                logging.DEBUG,
                "gchat.push.ignored",
                event_type=event.event_type,
            )
            return WebhookResponse.ok({"success": True})
        if self._identity is not None:
            await self._identity.load()
        push = isinstance(event, PushEnvelope)
        try:
            if isinstance(event, PushEnvelope):
                await self._handle_push(event, options)
            else:
                await self._handle_direct(event, options)
        except MalformedIdentityError as exc:
            # Pub/Sub redelivers anything it does not see acknowledged.
            raise DecodeError(
                f"Event does not identify a thread: {exc}", acknowledge=push
            ) from exc
        return WebhookResponse.ok({"success": True} if push else {})

    async def _handle_direct(self, event: DirectEvent, options: WebhookOptions) -> None:
        if event.added_to_space is not None:
            space_name = event.added_to_space.get("name")
            log_event(
                logger,
                logging.INFO,
                "gchat.space.added",
                space=space_name,
                space_type=event.added_to_space.get("type"),
            )
            if space_name:
                self._track(
                    self.ensure_space_subscription(str(space_name)),
                    options,
                    event="gchat.subscription.ensure_failed",
                )
        if event.removed_from_space is not None:
            log_event(
                logger,
                logging.INFO,
                "gchat.space.removed",
                space=event.removed_from_space.get("name"),
            )
        if event.card_click_invalid:
            log_event(logger, logging.INFO, "gchat.card_click.invalid")
            return
        if event.card_click is not None:
            self._handle_card_click(event.card_click, event.raw, options)
            return
        if event.message is not None and event.space is not None:
            await self._handle_direct_message(event, event.message, event.space, options)

    def _handle_card_click(
        self, click: CardClick, raw: Any, options: WebhookOptions
    ) -> None:
        dispatcher = self._require_ready()
        thread_id = self.codec.encode_parts(
            str(click.space.get("name") or ""), thread_name_of(click.message)
        )
        user = click.user or {}
        action = ActionEvent(
            action_id=click.action_id,
            value=click.value,
            thread_id=thread_id,
            message_id=(click.message or {}).get("name") or None,
            user=self._author_from_user(user, Delivery.DIRECT),
            raw=raw,
        )
        dispatcher.process_action(self, action, options)

    async def _handle_direct_message(
        self,
        event: DirectEvent,
        payload: dict[str, Any],
        space: dict[str, Any],
        options: WebhookOptions,
    ) -> None:
        dispatcher = self._require_ready()
        space_name = str(space.get("name") or "")
        is_dm = event.is_dm
        # A DM is one conversation: space-only thread id.
        thread_name = None if is_dm else thread_name_of(payload)
        thread_id = self.codec.encode_parts(space_name, thread_name, is_dm=is_dm)
        raw = to_raw_message(payload, raw=event.raw)
        sender = payload.get("sender") or {}
        await self._require_users().set(
            raw.sender_id, raw.sender_name, sender.get("email")
        )
        message = self._require_normalizer().normalize(
            raw,
            thread_id=thread_id,
            delivery=Delivery.DIRECT,
            wait_until=options.wait_until,
        )
        if self._subscriptions is not None and not is_dm:
            if await self._is_subscribed(thread_id):
                self._track(
                    self.ensure_space_subscription(space_name),
                    options,
                    event="gchat.subscription.refresh_failed",
                )
        dispatcher.process_message(self, thread_id, message, options)

    async def _handle_push(self, envelope: PushEnvelope, options: WebhookOptions) -> None:
        if envelope.message is not None:
            await self._handle_push_message(envelope, envelope.message, options)
        if envelope.reaction is not None:
            self._track(
                self._handle_push_reaction(envelope, options),
                options,
                event="gchat.push.reaction_failed",
            )

    async def _handle_push_message(
        self, envelope: PushEnvelope, payload: dict[str, Any], options: WebhookOptions
    ) -> None:
        dispatcher = self._require_ready()
        space_name = envelope.space_name or ""
        thread_id = self.codec.encode_parts(space_name, thread_name_of(payload))
        self._track(
            self.ensure_space_subscription(space_name),
            options,
            event="gchat.subscription.refresh_failed",
        )
        raw = to_raw_message(payload, raw=envelope.raw)
        author_name = await self._resolve_name(raw.sender_id, raw.sender_name)
        message = self._require_normalizer().normalize(
            raw,
            thread_id=thread_id,
            delivery=Delivery.PUSH,
            author_name=author_name,
            wait_until=options.wait_until,
        )
        dispatcher.process_message(self, thread_id, message, options)

    async def _handle_push_reaction(
        self, envelope: PushEnvelope, options: WebhookOptions
    ) -> None:
        dispatcher = self._require_ready()
        reaction = envelope.reaction or {}
        unicode = str((reaction.get("emoji") or {}).get("unicode") or "")
        match = _MESSAGE_NAME_RE.search(str(reaction.get("name") or ""))
        message_name = match.group(1) if match else ""
        space_name = envelope.space_name or ""
        thread_id = await self._thread_for_message(space_name, message_name)
        user = reaction.get("user") or {}
        event = ReactionEvent(
            emoji=self._emoji.normalize_emoji(unicode),
            thread_id=thread_id,
            message_id=message_name,
            user=self._author_from_user(user, Delivery.PUSH),
            added="created" in envelope.event_type,
            raw=envelope.raw,
        )
        await dispatcher.handle_reaction(self, event, options)

    async def _thread_for_message(self, space_name: str, message_name: str) -> str:
        if not message_name:
            return self.codec.encode_parts(space_name)
        try:
            message = await self._rest.get_message(message_name)
        except Exception as exc:
            log_event(
                logger,
                logging.WARNING,
                "gchat.reaction.thread_lookup_failed",
                message=message_name,
                exc=exc,
            )
            return self.codec.encode_parts(space_name)
        thread_name = (message.get("thread") or {}).get("name")
        return self.codec.encode_parts(space_name, thread_name)

    def _author_from_user(self, user: dict[str, Any], delivery: Delivery) -> Author:
        user_id = str(user.get("name") or "unknown")
        display = str(user.get("displayName") or "unknown")
        is_bot = user.get("type") == "BOT"
        is_me = (
            self._identity.resolve_is_me(user_id, is_bot, delivery=delivery)
            if self._identity is not None
            else False
        )
        return Author(
            user_id=user_id,
            user_name=display,
            full_name=display,
            is_bot=is_bot,
            is_me=is_me,
        )

    async def _resolve_name(self, user_id: str, provided: Optional[str]) -> str:
        return await self._require_users().resolve_display_name(
            user_id,
            provided,
            bot_user_id=self.bot_user_id,
            bot_user_name=self._user_name,
        )

    async def _is_subscribed(self, thread_id: str) -> bool:
        state = self._require_state()
        try:
            return await state.is_subscribed(thread_id)
        except Exception as exc:
            log_event(
                logger,
                logging.WARNING,
                "gchat.subscription.lookup_failed",
                thread_id=thread_id,
                exc=exc,
            )
            return False

    def _attachment_fetcher(self, descriptor: AttachmentDescriptor) -> Any:
        url = descriptor.url
        if not url:
            return None

        async def _fetch() -> bytes:
            return await self._rest.download(url)

        return _fetch

    # Subscriptions

    async def ensure_space_subscription(
        self, space_name: str
    ) -> Optional[PushSubscriptionInfo]:
        if self._subscriptions is None:
            log_event(
                logger,
                logging.DEBUG,
                "gchat.subscription.skipped",
                space=space_name,
                reason="no pubsub topic configured",
            )
            return None
        return await self._subscriptions.ensure_subscription(space_name)

    async def on_thread_subscribe(self, thread_id: str) -> None:
        scope = self.codec.decode(thread_id)
        await self.ensure_space_subscription(scope.primary)

    # Thread ids

    def encode_thread_id(
        self, primary: str, sub_scope: Optional[str] = None, *, is_dm: bool = False
    ) -> str:
        return self.codec.encode_parts(primary, sub_scope, is_dm=is_dm)

    def channel_id_from_thread_id(self, thread_id: str) -> str:
        return self.codec.channel_id(thread_id)

    def is_dm(self, thread_id: str) -> bool:
        return self.codec.is_dm(thread_id)

    # Outbound

    async def post_message(self, thread_id: str, text: str) -> SentMessage:
        scope = self.codec.decode(thread_id)
        payload = await self._rest.create_message(
            scope.primary,
            self._converter.from_canonical(text),
            thread_name=scope.sub_scope,
        )
        return SentMessage(
            id=str(payload.get("name") or ""), thread_id=thread_id, text=text, raw=payload
        )

    async def edit_message(
        self, thread_id: str, message_id: str, text: str
    ) -> SentMessage:
        payload = await self._rest.update_message(
            message_id, self._converter.from_canonical(text)
        )
        return SentMessage(
            id=str(payload.get("name") or message_id),
            thread_id=thread_id,
            text=text,
            raw=payload,
        )

    async def delete_message(self, thread_id: str, message_id: str) -> None:
        await self._rest.delete_message(message_id)

    async def add_reaction(
        self, thread_id: str, message_id: str, emoji: EmojiValue
    ) -> None:
        await self._rest.create_reaction(message_id, self._emoji.to_platform(emoji))

    async def remove_reaction(
        self, thread_id: str, message_id: str, emoji: EmojiValue
    ) -> None:
        unicode = self._emoji.to_platform(emoji)
        for reaction in await self._rest.list_reactions(message_id):
            if (reaction.get("emoji") or {}).get("unicode") == unicode and reaction.get(
                "name"
            ):
                await self._rest.delete_reaction(str(reaction["name"]))
                return
        log_event(
            logger,
            logging.DEBUG,
            "gchat.reaction.not_found",
            message=message_id,
            emoji=unicode,
        )

    async def start_typing(self, thread_id: str) -> None:
        # Google Chat has no typing indicator for apps.
        return None

    async def open_dm(self, user_id: str) -> str:
        space = await self._rest.find_direct_message(user_id)
        if space is None:
            space = await self._rest.setup_direct_message(user_id)
        space_name = space.get("name")
        if not space_name:
            raise ChatNotFoundError(f"Could not open a DM with {user_id}")
        return self.codec.encode_parts(str(space_name), is_dm=True)

    async def fetch_messages(
        self, thread_id: str, options: FetchOptions
    ) -> FetchResult:
        scope = self.codec.decode(thread_id)
        limit = options.limit or DEFAULT_FETCH_LIMIT
        if options.direction == "forward":
            return await self._fetch_forward(
                scope.primary, scope.sub_scope, limit, options.cursor
            )
        payload = await self._rest.list_messages(
            scope.primary,
            page_size=limit,
            page_token=options.cursor,
            thread_name=scope.sub_scope,
            order_by="createTime desc",
        )
        # Newest first from the API; pages are returned oldest first.
        raw_messages = [
            item
            for item in reversed(payload.get("messages") or [])
            if isinstance(item, dict)
        ]
        messages = [
            await self._parse_listed(item, scope.primary) for item in raw_messages
        ]
        return FetchResult(
            messages=tuple(messages), next_cursor=payload.get("nextPageToken") or None
        )

    async def _fetch_forward(
        self,
        space_name: str,
        thread_name: Optional[str],
        limit: int,
        cursor: Optional[str],
    ) -> FetchResult:
        everything: list[dict[str, Any]] = []
        page_token: Optional[str] = None
        while True:
            payload = await self._rest.list_messages(
                space_name,
                page_size=FORWARD_FETCH_PAGE_SIZE,
                page_token=page_token,
                thread_name=thread_name,
            )
            everything.extend(
                item
                for item in payload.get("messages") or []
                if isinstance(item, dict)
            )
            page_token = payload.get("nextPageToken") or None
            if not page_token:
                break
        start = 0
        if cursor:
            for index, item in enumerate(everything):
                if item.get("name") == cursor:
                    start = index + 1
                    break
        selected = everything[start : start + limit]
        messages = [await self._parse_listed(item, space_name) for item in selected]
        next_cursor = None
        if start + limit < len(everything) and selected:
            next_cursor = selected[-1].get("name") or None
        return FetchResult(messages=tuple(messages), next_cursor=next_cursor)

    async def _parse_listed(
        self, item: dict[str, Any], space_name: str
    ) -> CanonicalMessage:
        thread_id = self.codec.encode_parts(
            space_name, (item.get("thread") or {}).get("name")
        )
        raw = to_raw_message(item)
        author_name = await self._resolve_name(raw.sender_id, raw.sender_name)
        return self._require_normalizer().normalize(
            raw,
            thread_id=thread_id,
            delivery=Delivery.PUSH,
            author_name=author_name,
        )


__all__ = ["GChatAdapter"]
