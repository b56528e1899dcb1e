"""Webhook request verification.

Google signs Chat app and Pub/Sub push requests with a bearer token. Full JWT
validation is delegated to whatever fronts the endpoint; here the request must
present the shared verification token, either as the bearer credential or as
the ``token`` query parameter configured on the Pub/Sub push subscription.
"""

from __future__ import annotations

import hmac
import logging
from typing import Optional

from ...core.logging_utils import log_event
from ..chat.adapter import WebhookRequest

logger = logging.getLogger(__name__)


class SharedTokenVerifier:
    def __init__(self, expected_token: str) -> None:
        if not expected_token:
            raise ValueError("expected_token must be non-empty")
        self._expected = expected_token.encode("utf-8")

    def _presented(self, request: WebhookRequest) -> Optional[str]:
        authorization = request.header("authorization") or ""
        scheme, _, credential = authorization.partition(" ")
        if scheme.lower() == "bearer" and credential.strip():
            return credential.strip()
        token = request.query.get("token")
        return token or None

    async def verify(self, request: WebhookRequest) -> bool:
        if request.method.upper() != "POST":
            return False
        presented = self._presented(request)
        if presented is None:
            log_event(logger, logging.INFO, "gchat.verify.missing_token")
            return False
        return hmac.compare_digest(presented.encode("utf-8"), self._expected)


class AllowAllVerifier:
    """Accepts every POST; for local development behind a trusted proxy."""

    async def verify(self, request: WebhookRequest) -> bool:
        return request.method.upper() == "POST"


__all__ = ["AllowAllVerifier", "SharedTokenVerifier"]
