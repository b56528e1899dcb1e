GCHAT_PLATFORM = "gchat"
GCHAT_API_BASE_URL = "https://chat.googleapis.com/v1"
WORKSPACE_EVENTS_API_BASE_URL = "https://workspaceevents.googleapis.com/v1"
CHAT_RESOURCE_PREFIX = "//chat.googleapis.com/"

EVENT_MESSAGE_CREATED = "google.workspace.chat.message.v1.created"
EVENT_MESSAGE_UPDATED = "google.workspace.chat.message.v1.updated"
EVENT_REACTION_CREATED = "google.workspace.chat.reaction.v1.created"
EVENT_REACTION_DELETED = "google.workspace.chat.reaction.v1.deleted"

# Requested when creating a space subscription.
SUBSCRIPTION_EVENT_TYPES = (
    EVENT_MESSAGE_CREATED,
    EVENT_MESSAGE_UPDATED,
    EVENT_REACTION_CREATED,
    EVENT_REACTION_DELETED,
)
# Handled when delivered over Pub/Sub; anything else is acknowledged and dropped.
HANDLED_PUSH_EVENT_TYPES = frozenset(
    {EVENT_MESSAGE_CREATED, EVENT_REACTION_CREATED, EVENT_REACTION_DELETED}
)

SPACE_SUBSCRIPTION_KEY_PREFIX = "gchat:space-sub:"
SUBSCRIPTION_REFRESH_BUFFER_MS = 60 * 60 * 1000
SUBSCRIPTION_CACHE_TTL_MS = 25 * 60 * 60 * 1000
SUBSCRIPTION_TTL_SECONDS = 24 * 60 * 60
USER_CACHE_TTL_MS = 24 * 60 * 60 * 1000

REPLY_OPTION_FALLBACK = "REPLY_MESSAGE_FALLBACK_TO_NEW_THREAD"
FORWARD_FETCH_PAGE_SIZE = 1000
DEFAULT_FETCH_LIMIT = 100
