"""Google Workspace Events subscriptions for Chat spaces.

Implements the push subscription backend used by
``PushSubscriptionManager``: subscriptions route every message and reaction
in a space to a Pub/Sub topic, which pushes to the webhook endpoint.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from ...core.exceptions import TransientError
from ...core.logging_utils import log_event
from ...core.retry import retry_transient
from ...core.time_utils import now_ms, parse_iso_ms
from ..chat.errors import ChatAdapterPermanentError, ChatConfigError
from ..chat.push_subscriptions import PushSubscriptionInfo
from ..chat.state_store import Clock
from .constants import (
    CHAT_RESOURCE_PREFIX,
    SUBSCRIPTION_EVENT_TYPES,
    SUBSCRIPTION_TTL_SECONDS,
    WORKSPACE_EVENTS_API_BASE_URL,
)
from .rest import GoogleApiClient, TokenProvider

logger = logging.getLogger(__name__)


class OperationPendingError(TransientError):
    """Long-running subscription operation has not completed yet."""


@dataclass(frozen=True)
class SpaceSubscription:
    name: str
    expire_time_ms: Optional[int]
    event_types: tuple[str, ...] = ()


def target_resource(space_name: str) -> str:
    return f"{CHAT_RESOURCE_PREFIX}{space_name}"


class WorkspaceEventsClient(GoogleApiClient):
    service_name = "Workspace Events API"

    def __init__(
        self,
        *,
        token_provider: TokenProvider,
        pubsub_topic: Optional[str],
        base_url: str = WORKSPACE_EVENTS_API_BASE_URL,
        ttl_seconds: int = SUBSCRIPTION_TTL_SECONDS,
        timeout_seconds: float = 10.0,
        max_retries: int = 3,
        operation_poll_attempts: int = 3,
        operation_poll_wait: float = 1.0,
        clock: Optional[Clock] = None,
    ) -> None:
        super().__init__(
            token_provider=token_provider,
            base_url=base_url,
            timeout_seconds=timeout_seconds,
            max_retries=max_retries,
        )
        self._pubsub_topic = pubsub_topic
        self._ttl_seconds = ttl_seconds
        self._clock = clock or now_ms
        self._poll_operation = retry_transient(
            max_attempts=operation_poll_attempts,
            base_wait=operation_poll_wait,
            max_wait=operation_poll_wait * 4,
            event="gchat.events.operation_pending",
        )(self._get_completed_operation)

    async def list_subscriptions(self, space_name: str) -> list[SpaceSubscription]:
        payload = await self._request(
            "GET",
            "/subscriptions",
            params={"filter": f'target_resource="{target_resource(space_name)}"'},
        )
        items = payload.get("subscriptions") if isinstance(payload, dict) else None
        subscriptions = []
        for item in items or []:
            if not isinstance(item, dict) or not item.get("name"):
                continue
            subscriptions.append(
                SpaceSubscription(
                    name=str(item["name"]),
                    expire_time_ms=parse_iso_ms(item.get("expireTime")),
                    event_types=tuple(item.get("eventTypes") or ()),
                )
            )
        return subscriptions

    async def delete_subscription(self, subscription_name: str) -> None:
        await self._request("DELETE", f"/{subscription_name}", expect_json=False)

    async def find_active(self, resource_id: str) -> Optional[PushSubscriptionInfo]:
        now = self._clock()
        best: Optional[SpaceSubscription] = None
        for subscription in await self.list_subscriptions(resource_id):
            if subscription.expire_time_ms is None or subscription.expire_time_ms <= now:
                continue
            if best is None or subscription.expire_time_ms > (best.expire_time_ms or 0):
                best = subscription
        if best is None:
            return None
        return PushSubscriptionInfo(
            subscription_name=best.name, expire_time_ms=best.expire_time_ms
        )

    async def create(self, resource_id: str) -> PushSubscriptionInfo:
        if not self._pubsub_topic:
            raise ChatConfigError("gchat.pubsub_topic is required for space subscriptions")
        operation = await self._request(
            "POST",
            "/subscriptions",
            payload={
                "targetResource": target_resource(resource_id),
                "eventTypes": list(SUBSCRIPTION_EVENT_TYPES),
                "notificationEndpoint": {"pubsubTopic": self._pubsub_topic},
                "payloadOptions": {"includeResource": True},
                "ttl": f"{self._ttl_seconds}s",
            },
        )
        if not isinstance(operation, dict):
            operation = {}
        if not operation.get("done") and operation.get("name"):
            try:
                operation = await self._poll_operation(str(operation["name"]))
            except OperationPendingError:
                log_event(
                    logger,
                    logging.WARNING,
                    "gchat.subscription.operation_pending",
                    space=resource_id,
                    operation=operation.get("name"),
                )
                return PushSubscriptionInfo(
                    subscription_name=str(operation.get("name")), expire_time_ms=None
                )
        return _info_from_operation(operation)

    async def _get_completed_operation(self, operation_name: str) -> dict[str, Any]:
        payload = await self._request("GET", f"/{operation_name}")
        if not isinstance(payload, dict) or not payload.get("done"):
            raise OperationPendingError(f"Operation {operation_name} still running")
        return payload


def _info_from_operation(operation: dict[str, Any]) -> PushSubscriptionInfo:
    error = operation.get("error")
    if isinstance(error, dict):
        raise ChatAdapterPermanentError(
            f"Subscription creation failed: {error.get('message') or error}"
        )
    response = operation.get("response")
    if not isinstance(response, dict) or not response.get("name"):
        return PushSubscriptionInfo(
            subscription_name=str(operation.get("name") or "pending"),
            expire_time_ms=None,
        )
    return PushSubscriptionInfo(
        subscription_name=str(response["name"]),
        expire_time_ms=parse_iso_ms(response.get("expireTime")),
    )


__all__ = ["SpaceSubscription", "WorkspaceEventsClient", "target_resource"]
