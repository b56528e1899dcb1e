import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ... import __version__
from ...core.logging_utils import log_event
from ...integrations.chat.adapter import WebhookOptions, WebhookRequest
from ...integrations.chat.dispatcher import ChatDispatcher

logger = logging.getLogger(__name__)


def _app_lifespan(dispatcher: ChatDispatcher, pending: set):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await dispatcher.initialize()
        try:
            yield
        finally:
            if pending:
                await asyncio.gather(*list(pending), return_exceptions=True)
            await dispatcher.shutdown()
            log_event(logger, logging.INFO, "chat.app.stopped")

    return lifespan


def create_app(dispatcher: ChatDispatcher) -> FastAPI:
    """HTTP surface: one webhook route per registered platform."""

    pending: set[asyncio.Task[Any]] = set()
    app = FastAPI(
        redirect_slashes=False, lifespan=_app_lifespan(dispatcher, pending)
    )
    app.state.dispatcher = dispatcher
    app.state.pending_tasks = pending

    def _wait_until(task: "asyncio.Task[Any]") -> None:
        pending.add(task)
        task.add_done_callback(pending.discard)

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "version": __version__,
            "adapters": [adapter.name for adapter in dispatcher.adapters],
        }

    @app.post("/api/webhooks/{platform}")
    async def webhook(platform: str, request: Request):
        body = await request.body()
        inbound = WebhookRequest(
            body=body,
            headers={key.lower(): value for key, value in request.headers.items()},
            method=request.method,
            path=request.url.path,
            query=dict(request.query_params),
        )
        response = await dispatcher.handle_webhook(
            platform, inbound, WebhookOptions(wait_until=_wait_until)
        )
        return JSONResponse(status_code=response.status_code, content=response.body)

    return app


__all__ = ["create_app"]
