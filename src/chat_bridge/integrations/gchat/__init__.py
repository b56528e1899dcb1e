from .adapter import GChatAdapter
from .config import GChatConfig
from .constants import GCHAT_PLATFORM
from .events import (
    CardClick,
    DirectEvent,
    IgnoredPush,
    PushEnvelope,
    decode_webhook,
)
from .rest import GChatRestClient, GoogleApiClient, static_token_provider
from .verify import AllowAllVerifier, SharedTokenVerifier
from .workspace_events import WorkspaceEventsClient

__all__ = [
    "AllowAllVerifier",
    "CardClick",
    "DirectEvent",
    "GCHAT_PLATFORM",
    "GChatAdapter",
    "GChatConfig",
    "GChatRestClient",
    "GoogleApiClient",
    "IgnoredPush",
    "PushEnvelope",
    "SharedTokenVerifier",
    "WorkspaceEventsClient",
    "decode_webhook",
    "static_token_provider",
]
