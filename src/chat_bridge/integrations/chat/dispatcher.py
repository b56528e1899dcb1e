"""Platform-agnostic event dispatcher.

Adapters decode webhooks into canonical events and hand them here. Message
handling takes the per-thread lock from the state adapter, so concurrent
deliveries for one thread (including replicas sharing a store) are processed
one at a time, then routes: subscribed thread -> subscribed handlers, else
mention -> mention handlers, else pattern handlers.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import re
from dataclasses import dataclass, replace
from typing import (
    Any,
    Awaitable,
    Callable,
    Coroutine,
    Dict,
    Iterable,
    Optional,
    Protocol,
    Union,
)

from ...core.logging_utils import log_event
from .adapter import ChatAdapter, WebhookOptions, WebhookRequest, WebhookResponse
from .errors import DecodeError, LockHeldError
from .mentions import detect_mention
from .models import (
    ActionEvent,
    CanonicalMessage,
    ModalCloseEvent,
    ModalResponse,
    ModalSubmitEvent,
    ReactionEvent,
)
from .renderer import emoji_matches
from .state_store import StateAdapter
from .thread import ChatThread

DEFAULT_LOCK_TTL_MS = 30_000
DEFAULT_DEDUPE_TTL_MS = 60_000
DEDUPE_KEY_PREFIX = "dedupe:"

MessageHandler = Callable[[ChatThread, CanonicalMessage], Awaitable[None]]
ActionHandler = Callable[[ChatThread, ActionEvent], Awaitable[None]]
ReactionHandler = Callable[[ChatThread, ReactionEvent], Awaitable[None]]
ModalSubmitHandler = Callable[[ModalSubmitEvent], Awaitable[Optional[ModalResponse]]]
ModalCloseHandler = Callable[[ModalCloseEvent], Awaitable[None]]


@dataclass(frozen=True)
class DispatchResult:
    """Outcome of handling one inbound event."""

    status: str
    thread_id: Optional[str] = None
    handlers: int = 0
    failed: int = 0


class DispatchPredicate(Protocol):
    """Hook deciding whether a message should be processed (e.g. dedupe)."""

    def __call__(
        self, message: CanonicalMessage
    ) -> Union[bool, Awaitable[bool]]: ...


@dataclass(frozen=True)
class _PatternHandler:
    pattern: re.Pattern[str]
    handler: MessageHandler


@dataclass(frozen=True)
class _FilteredHandler:
    keys: Optional[frozenset[str]]
    handler: Callable[..., Awaitable[Any]]


class ChatDispatcher:
    def __init__(
        self,
        state: StateAdapter,
        *,
        user_name: str,
        lock_ttl_ms: int = DEFAULT_LOCK_TTL_MS,
        stream_update_interval_seconds: float = 0.0,
        dedupe_predicate: Optional[DispatchPredicate] = None,
        dedupe_ttl_ms: int = DEFAULT_DEDUPE_TTL_MS,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.state = state
        self.user_name = user_name
        self._lock_ttl_ms = lock_ttl_ms
        self._stream_interval = stream_update_interval_seconds
        self._dedupe_predicate = dedupe_predicate
        self._dedupe_ttl_ms = dedupe_ttl_ms
        self._logger = logger or logging.getLogger(__name__)
        self._adapters: Dict[str, ChatAdapter] = {}
        self._mention_handlers: list[MessageHandler] = []
        self._pattern_handlers: list[_PatternHandler] = []
        self._subscribed_handlers: list[MessageHandler] = []
        self._reaction_handlers: list[_FilteredHandler] = []
        self._action_handlers: list[_FilteredHandler] = []
        self._modal_submit_handlers: list[_FilteredHandler] = []
        self._modal_close_handlers: list[_FilteredHandler] = []
        self._tasks: set[asyncio.Task[Any]] = set()
        self._init_lock = asyncio.Lock()
        self._initialized = False

    # Registration

    def register_adapter(self, adapter: ChatAdapter) -> None:
        if adapter.name in self._adapters:
            raise ValueError(f"Adapter already registered: {adapter.name}")
        self._adapters[adapter.name] = adapter

    def get_adapter(self, name: str) -> Optional[ChatAdapter]:
        return self._adapters.get(name)

    @property
    def adapters(self) -> tuple[ChatAdapter, ...]:
        return tuple(self._adapters.values())

    def on_new_mention(self, handler: MessageHandler) -> MessageHandler:
        self._mention_handlers.append(handler)
        return handler

    def on_new_message(
        self, pattern: Union[str, re.Pattern[str]], handler: MessageHandler
    ) -> MessageHandler:
        compiled = re.compile(pattern) if isinstance(pattern, str) else pattern
        self._pattern_handlers.append(_PatternHandler(compiled, handler))
        return handler

    def on_subscribed_message(self, handler: MessageHandler) -> MessageHandler:
        self._subscribed_handlers.append(handler)
        return handler

    def on_reaction(
        self, handler: ReactionHandler, *, emoji: Optional[Iterable[str]] = None
    ) -> ReactionHandler:
        self._reaction_handlers.append(_FilteredHandler(_keys(emoji), handler))
        return handler

    def on_action(
        self, handler: ActionHandler, *, action_ids: Optional[Iterable[str]] = None
    ) -> ActionHandler:
        self._action_handlers.append(_FilteredHandler(_keys(action_ids), handler))
        return handler

    def on_modal_submit(
        self,
        handler: ModalSubmitHandler,
        *,
        callback_ids: Optional[Iterable[str]] = None,
    ) -> ModalSubmitHandler:
        self._modal_submit_handlers.append(
            _FilteredHandler(_keys(callback_ids), handler)
        )
        return handler

    def on_modal_close(
        self,
        handler: ModalCloseHandler,
        *,
        callback_ids: Optional[Iterable[str]] = None,
    ) -> ModalCloseHandler:
        self._modal_close_handlers.append(
            _FilteredHandler(_keys(callback_ids), handler)
        )
        return handler

    # Lifecycle

    async def initialize(self) -> None:
        async with self._init_lock:
            if self._initialized:
                return
            await self.state.connect()
            for adapter in self._adapters.values():
                await adapter.initialize(self)
            self._initialized = True
            log_event(
                self._logger,
                logging.INFO,
                "chat.dispatch.initialized",
                adapters=sorted(self._adapters),
            )

    async def shutdown(self) -> None:
        async with self._init_lock:
            if not self._initialized:
                return
            await self.wait_idle()
            for adapter in self._adapters.values():
                try:
                    await adapter.shutdown()
                except Exception as exc:
                    log_event(
                        self._logger,
                        logging.WARNING,
                        "chat.dispatch.adapter_shutdown_failed",
                        platform=adapter.name,
                        exc=exc,
                    )
            await self.state.disconnect()
            self._initialized = False

    async def wait_idle(self) -> None:
        """Wait until every scheduled handler task has finished."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # Webhook entry

    async def handle_webhook(
        self,
        platform: str,
        request: WebhookRequest,
        options: Optional[WebhookOptions] = None,
    ) -> WebhookResponse:
        adapter = self._adapters.get(platform)
        if adapter is None:
            log_event(
                self._logger,
                logging.WARNING,
                "chat.webhook.unknown_platform",
                platform=platform,
            )
            return WebhookResponse.error(404, f"Unknown platform: {platform}")
        await self.initialize()
        try:
            verified = await adapter.verifier.verify(request)
        except Exception as exc:
            log_event(
                self._logger,
                logging.WARNING,
                "chat.webhook.verify_failed",
                platform=platform,
                exc=exc,
            )
            verified = False
        if not verified:
            log_event(
                self._logger,
                logging.WARNING,
                "chat.webhook.unauthorized",
                platform=platform,
            )
            return WebhookResponse.error(401, "Unauthorized")
        try:
            return await adapter.handle_webhook(request, options or WebhookOptions())
        except DecodeError as exc:
            log_event(
                self._logger,
                logging.WARNING,
                "chat.webhook.decode_failed",
                platform=platform,
                acknowledge=exc.acknowledge,
                exc=exc,
            )
            if exc.acknowledge:
                return WebhookResponse.ok()
            return WebhookResponse.error(400, str(exc))

    # Scheduling

    def _schedule(
        self,
        work: Coroutine[Any, Any, Any],
        options: Optional[WebhookOptions],
        *,
        event: str,
        thread_id: Optional[str],
    ) -> "asyncio.Task[Any]":
        task = asyncio.get_running_loop().create_task(
            self._run_guarded(work, event=event, thread_id=thread_id)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        if options is not None and options.wait_until is not None:
            options.wait_until(task)
        return task

    async def _run_guarded(
        self,
        work: Coroutine[Any, Any, Any],
        *,
        event: str,
        thread_id: Optional[str],
    ) -> Any:
        try:
            return await work
        except LockHeldError as exc:
            log_event(
                self._logger,
                logging.INFO,
                "chat.lock.held",
                kind=event,
                thread_id=exc.thread_id,
            )
        except Exception as exc:
            log_event(
                self._logger,
                logging.ERROR,
                "chat.dispatch.task.failed",
                kind=event,
                thread_id=thread_id,
                exc=exc,
            )
        return None

    def process_message(
        self,
        adapter: ChatAdapter,
        thread_id: str,
        message: CanonicalMessage,
        options: Optional[WebhookOptions] = None,
    ) -> "asyncio.Task[Any]":
        wait_until = options.wait_until if options is not None else None
        return self._schedule(
            self.handle_incoming_message(
                adapter, thread_id, message, wait_until=wait_until
            ),
            options,
            event="message",
            thread_id=thread_id,
        )

    def process_action(
        self,
        adapter: ChatAdapter,
        event: ActionEvent,
        options: Optional[WebhookOptions] = None,
    ) -> "asyncio.Task[Any]":
        return self._schedule(
            self.handle_action(adapter, event, options),
            options,
            event="action",
            thread_id=event.thread_id,
        )

    def process_reaction(
        self,
        adapter: ChatAdapter,
        event: ReactionEvent,
        options: Optional[WebhookOptions] = None,
    ) -> "asyncio.Task[Any]":
        return self._schedule(
            self.handle_reaction(adapter, event, options),
            options,
            event="reaction",
            thread_id=event.thread_id,
        )

    def process_modal_close(
        self,
        adapter: ChatAdapter,
        event: ModalCloseEvent,
        options: Optional[WebhookOptions] = None,
    ) -> "asyncio.Task[Any]":
        return self._schedule(
            self.handle_modal_close(adapter, event),
            options,
            event="modal_close",
            thread_id=None,
        )

    # Handling

    def _thread(
        self,
        adapter: ChatAdapter,
        thread_id: str,
        *,
        wait_until: Any = None,
        lock: Any = None,
        is_subscribed_context: bool = False,
    ) -> ChatThread:
        return ChatThread(
            thread_id=thread_id,
            adapter=adapter,
            state=self.state,
            lock=lock,
            lock_ttl_ms=self._lock_ttl_ms,
            wait_until=wait_until,
            stream_update_interval_seconds=self._stream_interval,
            is_subscribed_context=is_subscribed_context,
        )

    async def handle_incoming_message(
        self,
        adapter: ChatAdapter,
        thread_id: str,
        message: CanonicalMessage,
        *,
        wait_until: Any = None,
    ) -> DispatchResult:
        """Route one message; raises ``LockHeldError`` if the thread is busy."""

        log_event(
            self._logger,
            logging.INFO,
            "chat.dispatch.received",
            platform=adapter.name,
            thread_id=thread_id,
            message_id=message.id,
            user_id=message.author.user_id,
            is_bot=message.author.is_bot,
        )
        if message.author.is_me:
            log_event(
                self._logger,
                logging.DEBUG,
                "chat.dispatch.self_message",
                thread_id=thread_id,
                message_id=message.id,
            )
            return DispatchResult(status="self", thread_id=thread_id)

        if self._dedupe_predicate is not None:
            should_process = await _resolve_predicate(self._dedupe_predicate, message)
        else:
            should_process = await self._first_delivery(adapter.name, message.id)
        if not should_process:
            log_event(
                self._logger,
                logging.INFO,
                "chat.dispatch.duplicate",
                thread_id=thread_id,
                message_id=message.id,
            )
            return DispatchResult(status="duplicate", thread_id=thread_id)

        lock = await self.state.acquire_lock(thread_id, self._lock_ttl_ms)
        try:
            subscribed = await self.state.is_subscribed(thread_id)
            thread = self._thread(
                adapter,
                thread_id,
                wait_until=wait_until,
                lock=lock,
                is_subscribed_context=subscribed,
            )
            is_mention = message.is_mention or detect_mention(
                message.text, adapter.user_name, adapter.bot_user_id
            )
            message = replace(message, is_mention=is_mention)

            if subscribed:
                status = "subscribed"
                handlers: list[MessageHandler] = list(self._subscribed_handlers)
            elif is_mention:
                status = "mention"
                handlers = list(self._mention_handlers)
            else:
                status = "pattern"
                handlers = [
                    entry.handler
                    for entry in self._pattern_handlers
                    if entry.pattern.search(message.text or "")
                ]
            if not handlers:
                status = "unhandled"
            failed = 0
            for handler in handlers:
                if not await self._invoke(handler, thread, message, thread_id=thread_id):
                    failed += 1
            await thread.drain()
        finally:
            try:
                await self.state.release_lock(lock)
            except Exception as exc:
                log_event(
                    self._logger,
                    logging.WARNING,
                    "chat.lock.release_failed",
                    thread_id=thread_id,
                    exc=exc,
                )
        log_event(
            self._logger,
            logging.INFO,
            "chat.dispatch.handled",
            thread_id=thread_id,
            message_id=message.id,
            status=status,
            handlers=len(handlers),
            failed=failed,
        )
        return DispatchResult(
            status=status, thread_id=thread_id, handlers=len(handlers), failed=failed
        )

    async def _first_delivery(self, platform: str, message_id: str) -> bool:
        """Mark a message as seen; False when another delivery path got it first.

        Backends such as Google Chat deliver one message over both the direct
        webhook and the push channel, so the marker is shared through the
        state store.
        """
        if not message_id:
            return True
        key = f"{DEDUPE_KEY_PREFIX}{platform}:{message_id}"
        if await self.state.get(key) is not None:
            return False
        await self.state.set(key, True, self._dedupe_ttl_ms)
        return True

    async def _invoke(
        self, handler: Callable[..., Awaitable[Any]], *args: Any, thread_id: Optional[str]
    ) -> bool:
        try:
            await handler(*args)
        except Exception as exc:
            log_event(
                self._logger,
                logging.WARNING,
                "chat.dispatch.handler.failed",
                thread_id=thread_id,
                handler=getattr(handler, "__name__", repr(handler)),
                exc=exc,
            )
            return False
        return True

    async def handle_action(
        self,
        adapter: ChatAdapter,
        event: ActionEvent,
        options: Optional[WebhookOptions] = None,
    ) -> DispatchResult:
        if event.user.is_me:
            return DispatchResult(status="self", thread_id=event.thread_id)
        thread = self._thread(
            adapter,
            event.thread_id,
            wait_until=options.wait_until if options is not None else None,
        )
        matched = [
            entry.handler
            for entry in self._action_handlers
            if entry.keys is None or event.action_id in entry.keys
        ]
        failed = 0
        for handler in matched:
            if not await self._invoke(handler, thread, event, thread_id=event.thread_id):
                failed += 1
        await thread.drain()
        log_event(
            self._logger,
            logging.INFO,
            "chat.dispatch.action",
            thread_id=event.thread_id,
            action_id=event.action_id,
            handlers=len(matched),
        )
        return DispatchResult(
            status="action" if matched else "unhandled",
            thread_id=event.thread_id,
            handlers=len(matched),
            failed=failed,
        )

    async def handle_reaction(
        self,
        adapter: ChatAdapter,
        event: ReactionEvent,
        options: Optional[WebhookOptions] = None,
    ) -> DispatchResult:
        if event.user.is_me:
            return DispatchResult(status="self", thread_id=event.thread_id)
        thread = self._thread(
            adapter,
            event.thread_id,
            wait_until=options.wait_until if options is not None else None,
        )
        matched = [
            entry.handler
            for entry in self._reaction_handlers
            if entry.keys is None
            or any(emoji_matches(event.emoji, key) for key in entry.keys)
        ]
        failed = 0
        for handler in matched:
            if not await self._invoke(handler, thread, event, thread_id=event.thread_id):
                failed += 1
        await thread.drain()
        return DispatchResult(
            status="reaction" if matched else "unhandled",
            thread_id=event.thread_id,
            handlers=len(matched),
            failed=failed,
        )

    async def process_modal_submit(
        self, adapter: ChatAdapter, event: ModalSubmitEvent
    ) -> Optional[ModalResponse]:
        """Run submit handlers inline; the first non-None response wins."""

        for entry in self._modal_submit_handlers:
            if entry.keys is not None and event.callback_id not in entry.keys:
                continue
            try:
                result = await entry.handler(event)
            except Exception as exc:
                log_event(
                    self._logger,
                    logging.WARNING,
                    "chat.dispatch.handler.failed",
                    platform=adapter.name,
                    callback_id=event.callback_id,
                    exc=exc,
                )
                continue
            if result is not None:
                return result
        return None

    async def handle_modal_close(
        self, adapter: ChatAdapter, event: ModalCloseEvent
    ) -> DispatchResult:
        matched = [
            entry.handler
            for entry in self._modal_close_handlers
            if entry.keys is None or event.callback_id in entry.keys
        ]
        failed = 0
        for handler in matched:
            if not await self._invoke(handler, event, thread_id=None):
                failed += 1
        return DispatchResult(
            status="modal_close" if matched else "unhandled",
            handlers=len(matched),
            failed=failed,
        )


def _keys(values: Optional[Iterable[str]]) -> Optional[frozenset[str]]:
    if values is None:
        return None
    if isinstance(values, str):
        return frozenset({values})
    return frozenset(values)


async def _resolve_predicate(
    predicate: DispatchPredicate, message: CanonicalMessage
) -> bool:
    result = predicate(message)
    if inspect.isawaitable(result):
        result = await result
    return bool(result)


__all__ = [
    "ChatDispatcher",
    "DEDUPE_KEY_PREFIX",
    "DEFAULT_DEDUPE_TTL_MS",
    "DEFAULT_LOCK_TTL_MS",
    "DispatchPredicate",
    "DispatchResult",
]
