from __future__ import annotations

import asyncio
import inspect
import json
import logging
import sqlite3
import threading
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Generic, Protocol, TypeVar

from .models import MenuSession
from .serializer import DictSerializer, MenuSessionSerializer, clone_session, clone_with

_log = logging.getLogger(__name__)

R = TypeVar("R")

KeyBuilder = Callable[[Any], "str | Awaitable[str]"]


class StorageAdapter(Protocol):
    async def read(self, key: str) -> Any | None: ...

    async def write(self, key: str, value: Any) -> None: ...

    async def delete(self, key: str) -> None: ...


class MemoryStorageAdapter:
    def __init__(self) -> None:
        self.data: dict[str, Any] = {}

    async def read(self, key: str) -> Any | None:
        return self.data.get(key)

    async def write(self, key: str, value: Any) -> None:
        self.data[key] = value

    async def delete(self, key: str) -> None:
        self.data.pop(key, None)


class _LockingConnection:
    def __init__(self, raw_conn: sqlite3.Connection, lock: threading.RLock) -> None:
        self._conn = raw_conn
        self._lock = lock

    def execute(self, *args: Any, **kwargs: Any) -> sqlite3.Cursor:
        with self._lock:
            return self._conn.execute(*args, **kwargs)

    def commit(self) -> None:
        with self._lock:
            self._conn.commit()

    def __getattr__(self, name: str) -> Any:
        return getattr(self._conn, name)


class SQLiteStorageAdapter:
    """Stores JSON-compatible session values in a single sqlite table."""

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        raw_conn = sqlite3.connect(db_path, check_same_thread=False)
        raw_conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._conn = _LockingConnection(raw_conn, self._lock)
        self._create_schema()

    def _create_schema(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS menu_sessions (
                key TEXT PRIMARY KEY,
                value_json TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        self._conn.commit()

    async def read(self, key: str) -> Any | None:
        row = self._conn.execute(
            "SELECT value_json FROM menu_sessions WHERE key = ?",
            (key,),
        ).fetchone()
        if row is None:
            return None
        return json.loads(row["value_json"])

    async def write(self, key: str, value: Any) -> None:
        ts_utc = datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")
        self._conn.execute(
            """
            INSERT INTO menu_sessions(key, value_json, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET value_json = excluded.value_json, updated_at = excluded.updated_at
            """,
            (key, json.dumps(value, ensure_ascii=True), ts_utc),
        )
        self._conn.commit()

    async def delete(self, key: str) -> None:
        self._conn.execute("DELETE FROM menu_sessions WHERE key = ?", (key,))
        self._conn.commit()

    def keys(self) -> list[str]:
        rows = self._conn.execute("SELECT key FROM menu_sessions ORDER BY key").fetchall()
        return [str(row["key"]) for row in rows]

    def close(self) -> None:
        self._conn.close()


class KeyedLocks:
    """One asyncio.Lock per segmentation key. Not reentrant.

    A key's lock is dropped once its last holder or waiter leaves.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def active_keys(self) -> list[str]:
        return list(self._locks)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]


@dataclass(slots=True)
class SessionOutcome(Generic[R]):
    key: str
    session: MenuSession
    result: R


@asynccontextmanager
async def _no_lock() -> AsyncIterator[None]:
    yield


class MenuStorage:
    def __init__(
        self,
        adapter: StorageAdapter,
        key_builder: KeyBuilder,
        serializer: MenuSessionSerializer | None = None,
        history_limit: int | None = None,
        key_locks: KeyedLocks | None = None,
    ) -> None:
        self._adapter = adapter
        self._key_builder = key_builder
        self._serializer: MenuSessionSerializer = serializer or DictSerializer()
        self._history_limit = history_limit
        self._key_locks = key_locks

    async def key(self, update: Any) -> str:
        key = self._key_builder(update)
        if inspect.isawaitable(key):
            key = await key
        return str(key)

    async def _resolve_key(self, target: Any) -> str:
        if isinstance(target, str):
            return target
        return await self.key(target)

    async def read(self, target: Any) -> tuple[str, MenuSession]:
        """Never fails on a missing key; returns an empty session instead."""
        key = await self._resolve_key(target)
        raw = await self._adapter.read(key)
        if raw is None:
            return key, MenuSession()
        return key, clone_session(self._serializer.deserialize(raw))

    async def write(self, key: str, session: MenuSession) -> None:
        self._enforce_history_limit(session)
        await self._adapter.write(key, self._serializer.serialize(session))

    async def clear(self, target: Any) -> None:
        key = await self._resolve_key(target)
        await self._adapter.delete(key)

    async def with_session(
        self,
        target: Any,
        mutator: Callable[[MenuSession], "R | Awaitable[R]"],
    ) -> SessionOutcome[R]:
        """Read, clone, mutate, then write the draft or delete the key when it ends up empty.

        Without ``key_locks`` there is no guard: two concurrent calls on one key
        race and the later write wins.
        """
        key = await self._resolve_key(target)
        guard = self._key_locks.hold(key) if self._key_locks is not None else _no_lock()
        async with guard:
            _, session = await self.read(key)
            draft = clone_with(self._serializer, session)
            result = mutator(draft)
            if inspect.isawaitable(result):
                result = await result
            if draft.is_empty:
                await self._adapter.delete(key)
            else:
                await self.write(key, draft)
        return SessionOutcome(key=key, session=draft, result=result)

    def _enforce_history_limit(self, session: MenuSession) -> None:
        limit = self._history_limit
        if not limit or limit < 1:
            return
        overflow = len(session.history) - limit
        if overflow > 0:
            _log.debug("trimming %d menu history entries", overflow)
            del session.history[:overflow]
