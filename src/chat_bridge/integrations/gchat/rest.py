from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Optional

import httpx

from ...core.logging_utils import log_event
from ..chat.errors import (
    AuthError,
    ChatAdapterPermanentError,
    ChatAdapterTimeoutError,
    ChatAdapterTransientError,
    ChatNotFoundError,
    RateLimitedError,
)
from .constants import GCHAT_API_BASE_URL, REPLY_OPTION_FALLBACK

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Awaitable[str]]


def static_token_provider(token: str) -> TokenProvider:
    async def _provide() -> str:
        return token

    return _provide


class GoogleApiClient:
    """httpx client with Google API error mapping and retry/backoff."""

    service_name = "Google API"

    def __init__(
        self,
        *,
        token_provider: TokenProvider,
        base_url: str,
        timeout_seconds: float = 10.0,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        retry_max_delay: float = 30.0,
    ) -> None:
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout_seconds)
        self._token_provider = token_provider
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._retry_max_delay = retry_max_delay

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "GoogleApiClient":
        return self

    async def __aexit__(self, *_exc_info: object) -> None:
        await self.close()

    def _calculate_retry_delay(self, attempt: int) -> float:
        delay = self._retry_base_delay * (2**attempt) + random.uniform(0, 1)
        return float(min(delay, self._retry_max_delay))

    def _is_retryable_error(self, exc: Exception) -> bool:
        return isinstance(
            exc,
            (
                httpx.ConnectError,
                httpx.ReadError,
                httpx.WriteError,
                httpx.ConnectTimeout,
                httpx.ReadTimeout,
                httpx.WriteTimeout,
            ),
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict[str, Any]] = None,
        payload: Optional[dict[str, Any]] = None,
        expect_json: bool = True,
    ) -> Any:
        rate_limit_retries = 0
        retry_attempt = 0
        query = {key: value for key, value in (params or {}).items() if value is not None}

        while True:
            token = await self._token_provider()
            try:
                response = await self._client.request(
                    method,
                    path,
                    params=query or None,
                    json=payload,
                    headers={"Authorization": f"Bearer {token}"},
                )
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                status_code = exc.response.status_code
                body_preview = (
                    (exc.response.text or "").strip().replace("\n", " ")[:200]
                )
                if status_code == 429:
                    retry_after = _parse_retry_after(
                        exc.response.headers.get("Retry-After")
                    )
                    if (
                        retry_after is not None
                        and rate_limit_retries < self._max_retries
                    ):
                        rate_limit_retries += 1
                        log_event(
                            logger,
                            logging.INFO,
                            "gchat.api.rate_limited",
                            service=self.service_name,
                            method=method,
                            path=path,
                            retry_after=retry_after,
                            attempt=rate_limit_retries,
                        )
                        await asyncio.sleep(retry_after)
                        continue
                    raise RateLimitedError(
                        f"{self.service_name} rate limit exceeded for {method} {path}",
                        retry_after=retry_after,
                    ) from exc
                if 500 <= status_code < 600:
                    if retry_attempt < self._max_retries:
                        retry_attempt += 1
                        delay = self._calculate_retry_delay(retry_attempt)
                        log_event(
                            logger,
                            logging.WARNING,
                            "gchat.api.server_error",
                            service=self.service_name,
                            method=method,
                            path=path,
                            status=status_code,
                            delay=round(delay, 2),
                            attempt=retry_attempt,
                        )
                        await asyncio.sleep(delay)
                        continue
                    raise ChatAdapterTransientError(
                        f"{self.service_name} server error for {method} {path}: "
                        f"status={status_code} body={body_preview!r}"
                    ) from exc
                if status_code in {401, 403}:
                    raise AuthError(
                        f"{self.service_name} authentication failure for {method} {path}: "
                        f"status={status_code} body={body_preview!r}"
                    ) from exc
                if status_code == 404:
                    raise ChatNotFoundError(
                        f"{self.service_name} resource not found for {method} {path}"
                    ) from exc
                raise ChatAdapterPermanentError(
                    f"{self.service_name} request failed for {method} {path}: "
                    f"status={status_code} body={body_preview!r}"
                ) from exc
            except httpx.HTTPError as exc:
                if self._is_retryable_error(exc) and retry_attempt < self._max_retries:
                    retry_attempt += 1
                    delay = self._calculate_retry_delay(retry_attempt)
                    log_event(
                        logger,
                        logging.WARNING,
                        "gchat.api.network_error",
                        service=self.service_name,
                        method=method,
                        path=path,
                        error_type=type(exc).__name__,
                        delay=round(delay, 2),
                        attempt=retry_attempt,
                    )
                    await asyncio.sleep(delay)
                    continue
                if isinstance(exc, httpx.TimeoutException):
                    raise ChatAdapterTimeoutError(
                        f"{self.service_name} timeout for {method} {path}: {exc}"
                    ) from exc
                raise ChatAdapterTransientError(
                    f"{self.service_name} network error for {method} {path}: {exc}"
                ) from exc

            if not expect_json or not response.content:
                return {}
            try:
                return response.json()
            except ValueError as exc:
                raise ChatAdapterPermanentError(
                    f"{self.service_name} returned non-JSON success response for {method} {path}"
                ) from exc


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


class GChatRestClient(GoogleApiClient):
    """Google Chat REST calls used by the adapter."""

    service_name = "Google Chat API"

    def __init__(
        self,
        *,
        token_provider: TokenProvider,
        base_url: str = GCHAT_API_BASE_URL,
        timeout_seconds: float = 10.0,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        retry_max_delay: float = 30.0,
    ) -> None:
        super().__init__(
            token_provider=token_provider,
            base_url=base_url,
            timeout_seconds=timeout_seconds,
            max_retries=max_retries,
            retry_base_delay=retry_base_delay,
            retry_max_delay=retry_max_delay,
        )

    async def create_message(
        self, space_name: str, text: str, *, thread_name: Optional[str] = None
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"text": text}
        if thread_name:
            body["thread"] = {"name": thread_name}
        payload = await self._request(
            "POST",
            f"/{space_name}/messages",
            params={"messageReplyOption": REPLY_OPTION_FALLBACK if thread_name else None},
            payload=body,
        )
        return payload if isinstance(payload, dict) else {}

    async def update_message(self, message_name: str, text: str) -> dict[str, Any]:
        payload = await self._request(
            "PATCH",
            f"/{message_name}",
            params={"updateMask": "text"},
            payload={"text": text},
        )
        return payload if isinstance(payload, dict) else {}

    async def delete_message(self, message_name: str) -> None:
        await self._request("DELETE", f"/{message_name}", expect_json=False)

    async def get_message(self, message_name: str) -> dict[str, Any]:
        payload = await self._request("GET", f"/{message_name}")
        return payload if isinstance(payload, dict) else {}

    async def list_messages(
        self,
        space_name: str,
        *,
        page_size: Optional[int] = None,
        page_token: Optional[str] = None,
        thread_name: Optional[str] = None,
        order_by: Optional[str] = None,
    ) -> dict[str, Any]:
        payload = await self._request(
            "GET",
            f"/{space_name}/messages",
            params={
                "pageSize": page_size,
                "pageToken": page_token,
                "filter": f'thread.name = "{thread_name}"' if thread_name else None,
                "orderBy": order_by,
            },
        )
        return payload if isinstance(payload, dict) else {}

    async def create_reaction(self, message_name: str, unicode: str) -> dict[str, Any]:
        payload = await self._request(
            "POST",
            f"/{message_name}/reactions",
            payload={"emoji": {"unicode": unicode}},
        )
        return payload if isinstance(payload, dict) else {}

    async def list_reactions(self, message_name: str) -> list[dict[str, Any]]:
        payload = await self._request("GET", f"/{message_name}/reactions")
        reactions = payload.get("reactions") if isinstance(payload, dict) else None
        return [item for item in reactions or [] if isinstance(item, dict)]

    async def delete_reaction(self, reaction_name: str) -> None:
        await self._request("DELETE", f"/{reaction_name}", expect_json=False)

    async def get_space(self, space_name: str) -> dict[str, Any]:
        payload = await self._request("GET", f"/{space_name}")
        return payload if isinstance(payload, dict) else {}

    async def find_direct_message(self, user_name: str) -> Optional[dict[str, Any]]:
        try:
            payload = await self._request(
                "GET", "/spaces:findDirectMessage", params={"name": user_name}
            )
        except ChatNotFoundError:
            return None
        return payload if isinstance(payload, dict) and payload else None

    async def setup_direct_message(self, user_name: str) -> dict[str, Any]:
        payload = await self._request(
            "POST",
            "/spaces:setup",
            payload={
                "space": {"spaceType": "DIRECT_MESSAGE"},
                "memberships": [{"member": {"name": user_name, "type": "HUMAN"}}],
            },
        )
        return payload if isinstance(payload, dict) else {}

    async def download(self, url: str) -> bytes:
        token = await self._token_provider()
        try:
            response = await self._client.get(
                url, headers={"Authorization": f"Bearer {token}"}
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code in {401, 403}:
                raise AuthError(f"Attachment download denied: {url}") from exc
            raise ChatAdapterPermanentError(
                f"Attachment download failed: status={exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ChatAdapterTransientError(f"Attachment download failed: {exc}") from exc
        return response.content
