"""Streamed reply delivery as one create followed by serialized edits.

The chunk source is pulled one item at a time. The first non-empty chunk is
posted with ``create`` and awaited so its message id is known; later chunks
only grow a buffer. A single writer task owns the in-flight edit slot and
always sends the whole buffer, so chunks that arrive while an edit is in
flight are batched into the next edit and edits can never overtake each other.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterable, Awaitable, Callable, Optional, Protocol

from ...core.logging_utils import log_event
from .models import SentMessage

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[], Awaitable[Any]]


class MessageTransport(Protocol):
    async def create(self, thread_id: str, text: str) -> SentMessage: ...

    async def update(self, thread_id: str, message_id: str, text: str) -> SentMessage: ...


@dataclass
class StreamStats:
    creates: int = 0
    updates: int = 0
    text: str = ""


class _StreamSession:
    def __init__(
        self,
        transport: MessageTransport,
        thread_id: str,
        message: SentMessage,
        *,
        initial_text: str,
        min_interval: float,
        on_progress: Optional[ProgressCallback],
        stats: StreamStats,
    ) -> None:
        self._transport = transport
        self._thread_id = thread_id
        self.message = message
        self.buffer = initial_text
        self._last_sent = initial_text
        self._min_interval = min_interval
        self._on_progress = on_progress
        self._stats = stats
        self._wake = asyncio.Event()
        self._finished = asyncio.Event()
        self._aborted = False
        self._last_update_at = asyncio.get_running_loop().time()

    def append(self, chunk: str) -> None:
        self.buffer += chunk
        self._wake.set()

    def finish(self) -> None:
        self._finished.set()
        self._wake.set()

    def abort(self) -> None:
        self._aborted = True
        self._finished.set()
        self._wake.set()

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            if self._aborted:
                return
            if self.buffer == self._last_sent:
                if self._finished.is_set():
                    return
                await self._wake.wait()
                self._wake.clear()
                continue
            remaining = self._last_update_at + self._min_interval - loop.time()
            if remaining > 0 and not self._finished.is_set():
                try:
                    await asyncio.wait_for(self._finished.wait(), timeout=remaining)
                except asyncio.TimeoutError:
                    pass
                if self._aborted:
                    return
            text = self.buffer
            self.message = await self._transport.update(
                self._thread_id, self.message.id, text
            )
            self._last_sent = text
            self._last_update_at = loop.time()
            self._stats.updates += 1
            await self._progress()

    async def _progress(self) -> None:
        if self._on_progress is None:
            return
        try:
            await self._on_progress()
        except Exception as exc:
            log_event(
                logger,
                logging.WARNING,
                "chat.stream.progress_failed",
                thread_id=self._thread_id,
                exc=exc,
            )


class StreamingDeliveryController:
    def __init__(
        self,
        transport: MessageTransport,
        *,
        min_update_interval_seconds: float = 0.0,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        self._transport = transport
        self._min_interval = max(0.0, min_update_interval_seconds)
        self._on_progress = on_progress
        self.stats = StreamStats()

    async def deliver(
        self, thread_id: str, chunks: AsyncIterable[str]
    ) -> Optional[SentMessage]:
        """Post ``chunks`` as one message; returns the final message or None.

        An empty stream makes no backend calls. Errors from the chunk source or
        from the transport propagate after any in-flight edit completes; text
        already posted stays as it is.
        """

        iterator = chunks.__aiter__()
        first = ""
        while not first:
            try:
                chunk = await iterator.__anext__()
            except StopAsyncIteration:
                return None
            first = chunk or ""

        message = await self._transport.create(thread_id, first)
        self.stats.creates += 1
        self.stats.text = first
        session = _StreamSession(
            self._transport,
            thread_id,
            message,
            initial_text=first,
            min_interval=self._min_interval,
            on_progress=self._on_progress,
            stats=self.stats,
        )
        writer = asyncio.get_running_loop().create_task(session.run())
        try:
            while True:
                if writer.done():
                    # Surface an update failure without draining the stream.
                    writer.result()
                    break
                try:
                    chunk = await iterator.__anext__()
                except StopAsyncIteration:
                    break
                except Exception as exc:
                    session.abort()
                    await self._settle_after_error(writer, thread_id)
                    log_event(
                        logger,
                        logging.WARNING,
                        "chat.stream.source_failed",
                        thread_id=thread_id,
                        message_id=session.message.id,
                        exc=exc,
                    )
                    raise
                if chunk:
                    session.append(chunk)
            session.finish()
            await writer
        finally:
            if not writer.done():
                writer.cancel()
        self.stats.text = session.buffer
        log_event(
            logger,
            logging.DEBUG,
            "chat.stream.completed",
            thread_id=thread_id,
            message_id=session.message.id,
            updates=self.stats.updates,
            length=len(session.buffer),
        )
        return session.message

    async def _settle_after_error(
        self, writer: "asyncio.Task[None]", thread_id: str
    ) -> None:
        try:
            await writer
        except Exception as exc:
            log_event(
                logger,
                logging.WARNING,
                "chat.stream.update_failed",
                thread_id=thread_id,
                exc=exc,
            )


__all__ = ["MessageTransport", "StreamStats", "StreamingDeliveryController"]
