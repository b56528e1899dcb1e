"""SQLite-backed state adapter.

All statements run on a single worker thread. Lock acquisition is one
conditional upsert so two processes sharing the database file cannot both
win the same thread lock.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Optional

from ...core.logging_utils import log_event
from ...core.sqlite_utils import connect_sqlite
from .errors import ChatAdapterPermanentError, LockHeldError
from .state_store import Clock, Lock, new_lock_token, system_clock

logger = logging.getLogger(__name__)

_ACQUIRE_LOCK_SQL = """
INSERT INTO locks (thread_id, token, expires_at_ms)
VALUES (:thread_id, :token, :expires_at_ms)
ON CONFLICT(thread_id) DO UPDATE SET
    token = excluded.token,
    expires_at_ms = excluded.expires_at_ms
WHERE locks.expires_at_ms <= :now
"""


class SqliteStateAdapter:
    def __init__(self, db_path: Path, *, clock: Optional[Clock] = None) -> None:
        self._db_path = db_path
        self._clock = clock or system_clock
        self._executor: Optional[ThreadPoolExecutor] = None
        self._connection: Optional[sqlite3.Connection] = None

    @property
    def path(self) -> Path:
        return self._db_path

    async def connect(self) -> None:
        if self._executor is not None:
            return
        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="chat-state"
        )
        await self._run(self._connection_sync)
        log_event(
            logger,
            logging.DEBUG,
            "chat.state.connected",
            backend="sqlite",
            path=str(self._db_path),
        )

    async def disconnect(self) -> None:
        if self._executor is None:
            return
        try:
            await self._run(self._close_sync)
        finally:
            self._executor.shutdown(wait=False)
            self._executor = None

    async def _run(self, func: Callable[..., Any], *args: Any) -> Any:
        if self._executor is None:
            raise ChatAdapterPermanentError(
                "SqliteStateAdapter is not connected. Call connect() first."
            )
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, func, *args)

    def _connection_sync(self) -> sqlite3.Connection:
        if self._connection is None:
            self._connection = connect_sqlite(self._db_path)
            self._ensure_schema(self._connection)
        return self._connection

    def _close_sync(self) -> None:
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                expires_at_ms INTEGER
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS subscriptions (
                thread_id TEXT PRIMARY KEY
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS locks (
                thread_id TEXT PRIMARY KEY,
                token TEXT NOT NULL,
                expires_at_ms INTEGER NOT NULL
            )
            """
        )

    async def get(self, key: str) -> Any:
        payload = await self._run(self._get_sync, key, self._clock())
        if payload is None:
            return None
        return json.loads(payload)

    def _get_sync(self, key: str, now: int) -> Optional[str]:
        conn = self._connection_sync()
        row = conn.execute(
            "SELECT value, expires_at_ms FROM kv WHERE key = ?", (key,)
        ).fetchone()
        if row is None:
            return None
        expires_at = row["expires_at_ms"]
        if expires_at is not None and expires_at <= now:
            conn.execute(
                "DELETE FROM kv WHERE key = ? AND expires_at_ms <= ?", (key, now)
            )
            return None
        return str(row["value"])

    async def set(self, key: str, value: Any, ttl_ms: Optional[int] = None) -> None:
        payload = json.dumps(value)
        expires_at = self._clock() + ttl_ms if ttl_ms else None
        await self._run(self._set_sync, key, payload, expires_at)

    def _set_sync(self, key: str, payload: str, expires_at: Optional[int]) -> None:
        conn = self._connection_sync()
        conn.execute(
            """
            INSERT INTO kv (key, value, expires_at_ms) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                expires_at_ms = excluded.expires_at_ms
            """,
            (key, payload, expires_at),
        )

    async def delete(self, key: str) -> None:
        await self._run(self._execute_sync, "DELETE FROM kv WHERE key = ?", (key,))

    def _execute_sync(self, sql: str, params: tuple[Any, ...]) -> int:
        conn = self._connection_sync()
        cursor = conn.execute(sql, params)
        return int(cursor.rowcount)

    async def subscribe(self, thread_id: str) -> None:
        await self._run(
            self._execute_sync,
            "INSERT OR IGNORE INTO subscriptions (thread_id) VALUES (?)",
            (thread_id,),
        )

    async def unsubscribe(self, thread_id: str) -> None:
        await self._run(
            self._execute_sync,
            "DELETE FROM subscriptions WHERE thread_id = ?",
            (thread_id,),
        )

    async def is_subscribed(self, thread_id: str) -> bool:
        return bool(await self._run(self._is_subscribed_sync, thread_id))

    def _is_subscribed_sync(self, thread_id: str) -> bool:
        conn = self._connection_sync()
        row = conn.execute(
            "SELECT 1 FROM subscriptions WHERE thread_id = ?", (thread_id,)
        ).fetchone()
        return row is not None

    async def list_subscriptions(self, prefix: Optional[str] = None) -> AsyncIterator[str]:
        thread_ids = await self._run(self._list_subscriptions_sync, prefix)
        for thread_id in thread_ids:
            yield thread_id

    def _list_subscriptions_sync(self, prefix: Optional[str]) -> list[str]:
        conn = self._connection_sync()
        rows = conn.execute(
            "SELECT thread_id FROM subscriptions ORDER BY thread_id"
        ).fetchall()
        thread_ids = [str(row["thread_id"]) for row in rows]
        if prefix is None:
            return thread_ids
        return [thread_id for thread_id in thread_ids if thread_id.startswith(prefix)]

    async def acquire_lock(self, thread_id: str, ttl_ms: int) -> Lock:
        now = self._clock()
        lock = Lock(
            thread_id=thread_id, token=new_lock_token(), expires_at_ms=now + ttl_ms
        )
        acquired = await self._run(self._acquire_lock_sync, lock, now)
        if not acquired:
            raise LockHeldError(thread_id)
        return lock

    def _acquire_lock_sync(self, lock: Lock, now: int) -> bool:
        conn = self._connection_sync()
        cursor = conn.execute(
            _ACQUIRE_LOCK_SQL,
            {
                "thread_id": lock.thread_id,
                "token": lock.token,
                "expires_at_ms": lock.expires_at_ms,
                "now": now,
            },
        )
        return cursor.rowcount == 1

    async def extend_lock(self, lock: Lock, ttl_ms: int) -> bool:
        now = self._clock()
        changed = await self._run(
            self._execute_sync,
            """
            UPDATE locks SET expires_at_ms = ?
            WHERE thread_id = ? AND token = ? AND expires_at_ms > ?
            """,
            (now + ttl_ms, lock.thread_id, lock.token, now),
        )
        return changed == 1

    async def release_lock(self, lock: Lock) -> None:
        await self._run(
            self._execute_sync,
            "DELETE FROM locks WHERE thread_id = ? AND token = ?",
            (lock.thread_id, lock.token),
        )


__all__ = ["SqliteStateAdapter"]
