"""Platform-agnostic chat layer: models, state contract and dispatcher."""

from .adapter import (
    AdapterTransport,
    ChatAdapter,
    RequestVerifier,
    WebhookOptions,
    WebhookRequest,
    WebhookResponse,
)
from .dispatcher import ChatDispatcher, DispatchResult
from .errors import (
    AuthError,
    ChatAdapterError,
    ChatAdapterPermanentError,
    ChatAdapterTimeoutError,
    ChatAdapterTransientError,
    DecodeError,
    LockHeldError,
    MalformedIdentityError,
    RateLimitedError,
    SubscriptionCreationFailed,
)
from .identity import BotIdentityResolver
from .memory_state import MemoryStateAdapter
from .models import (
    ActionEvent,
    Attachment,
    Author,
    CanonicalMessage,
    Delivery,
    EmojiValue,
    FetchOptions,
    FetchResult,
    MentionSpan,
    ModalCloseEvent,
    ModalResponse,
    ModalSubmitEvent,
    ReactionEvent,
    SentMessage,
)
from .push_subscriptions import PushSubscriptionInfo, PushSubscriptionManager
from .sqlite_state import SqliteStateAdapter
from .state_store import Lock, StateAdapter
from .streaming import StreamingDeliveryController
from .thread import ChatThread
from .thread_ids import ThreadIdCodec, ThreadScope

__all__ = [
    "ActionEvent",
    "AdapterTransport",
    "Attachment",
    "AuthError",
    "Author",
    "BotIdentityResolver",
    "CanonicalMessage",
    "ChatAdapter",
    "ChatAdapterError",
    "ChatAdapterPermanentError",
    "ChatAdapterTimeoutError",
    "ChatAdapterTransientError",
    "ChatDispatcher",
    "ChatThread",
    "DecodeError",
    "Delivery",
    "DispatchResult",
    "EmojiValue",
    "FetchOptions",
    "FetchResult",
    "Lock",
    "LockHeldError",
    "MalformedIdentityError",
    "MemoryStateAdapter",
    "MentionSpan",
    "ModalCloseEvent",
    "ModalResponse",
    "ModalSubmitEvent",
    "PushSubscriptionInfo",
    "PushSubscriptionManager",
    "RateLimitedError",
    "ReactionEvent",
    "RequestVerifier",
    "SentMessage",
    "SqliteStateAdapter",
    "StateAdapter",
    "StreamingDeliveryController",
    "SubscriptionCreationFailed",
    "ThreadIdCodec",
    "ThreadScope",
    "WebhookOptions",
    "WebhookRequest",
    "WebhookResponse",
]
