from __future__ import annotations

import asyncio
import tempfile
import unittest
from pathlib import Path

from menumessage.models import MenuHistoryEntry, MenuSession, MenuState
from menumessage.serializer import JsonSerializer
from menumessage.storage import KeyedLocks, MemoryStorageAdapter, MenuStorage, SQLiteStorageAdapter


def _entry(menu_id: str) -> MenuHistoryEntry:
    return MenuHistoryEntry(menu_id=menu_id, text=f"menu:{menu_id}", path=[menu_id], render_id=f"r-{menu_id}")


def _key_builder(update: object) -> str:
    return f"key:{update}"


class MenuStorageTest(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.adapter = MemoryStorageAdapter()
        self.storage = MenuStorage(self.adapter, _key_builder, history_limit=3)

    async def test_read_missing_key_returns_empty_session(self) -> None:
        key, session = await self.storage.read("absent")
        self.assertEqual("absent", key)
        self.assertTrue(session.is_empty)

    async def test_read_derives_key_from_update(self) -> None:
        key, _ = await self.storage.read(42)
        self.assertEqual("key:42", key)

    async def test_write_trims_oldest_history_first(self) -> None:
        session = MenuSession(history=[_entry(str(idx)) for idx in range(5)])
        await self.storage.write("k", session)
        _, stored = await self.storage.read("k")
        self.assertEqual(["2", "3", "4"], [item.menu_id for item in stored.history])

    async def test_zero_limit_disables_trimming(self) -> None:
        storage = MenuStorage(self.adapter, _key_builder, history_limit=0)
        await storage.write("k", MenuSession(history=[_entry(str(idx)) for idx in range(5)]))
        _, stored = await storage.read("k")
        self.assertEqual(5, len(stored.history))

    async def test_with_session_writes_draft_and_returns_result(self) -> None:
        def mutate(draft: MenuSession) -> str:
            draft.active = MenuState(menu_id="main", path=["main"])
            return "done"

        outcome = await self.storage.with_session("k", mutate)
        self.assertEqual("done", outcome.result)
        self.assertEqual("main", outcome.session.active.menu_id)
        self.assertIn("k", self.adapter.data)

    async def test_with_session_accepts_async_mutator(self) -> None:
        async def mutate(draft: MenuSession) -> int:
            await asyncio.sleep(0)
            draft.history.append(_entry("a"))
            return len(draft.history)

        outcome = await self.storage.with_session("k", mutate)
        self.assertEqual(1, outcome.result)

    async def test_with_session_deletes_empty_draft(self) -> None:
        await self.storage.write("k", MenuSession(history=[_entry("a")]))

        def empty(draft: MenuSession) -> None:
            draft.history.clear()
            draft.active = None

        await self.storage.with_session("k", empty)
        self.assertNotIn("k", self.adapter.data)

    async def test_failing_mutator_leaves_store_untouched(self) -> None:
        await self.storage.write("k", MenuSession(history=[_entry("a")]))

        def broken(draft: MenuSession) -> None:
            draft.history.clear()
            raise RuntimeError("boom")

        with self.assertRaises(RuntimeError):
            await self.storage.with_session("k", broken)
        _, stored = await self.storage.read("k")
        self.assertEqual(1, len(stored.history))

    async def test_clear_deletes_key(self) -> None:
        await self.storage.write("key:7", MenuSession(history=[_entry("a")]))
        await self.storage.clear(7)
        self.assertNotIn("key:7", self.adapter.data)


class ConcurrencyTest(unittest.IsolatedAsyncioTestCase):
    @staticmethod
    def _appender(menu_id: str):
        async def mutate(draft: MenuSession) -> None:
            await asyncio.sleep(0)
            draft.history.append(_entry(menu_id))

        return mutate

    async def test_unguarded_concurrent_updates_last_write_wins(self) -> None:
        storage = MenuStorage(MemoryStorageAdapter(), _key_builder)
        await asyncio.gather(
            storage.with_session("k", self._appender("a")),
            storage.with_session("k", self._appender("b")),
        )
        _, stored = await storage.read("k")
        self.assertEqual(1, len(stored.history))

    async def test_keyed_locks_serialize_updates(self) -> None:
        storage = MenuStorage(MemoryStorageAdapter(), _key_builder, key_locks=KeyedLocks())
        await asyncio.gather(
            storage.with_session("k", self._appender("a")),
            storage.with_session("k", self._appender("b")),
        )
        _, stored = await storage.read("k")
        self.assertEqual(["a", "b"], [item.menu_id for item in stored.history])

    async def test_keyed_locks_are_released_after_use(self) -> None:
        locks = KeyedLocks()
        storage = MenuStorage(MemoryStorageAdapter(), _key_builder, key_locks=locks)
        await asyncio.gather(
            storage.with_session("k", self._appender("a")),
            storage.with_session("k", self._appender("b")),
            storage.with_session("other", self._appender("c")),
        )
        self.assertEqual([], locks.active_keys())

    async def test_keyed_lock_survives_while_waiters_remain(self) -> None:
        locks = KeyedLocks()
        async with locks.hold("k"):
            waiter = asyncio.create_task(self._hold_once(locks, "k"))
            await asyncio.sleep(0)
            self.assertEqual(["k"], locks.active_keys())
        await waiter
        self.assertEqual([], locks.active_keys())

    @staticmethod
    async def _hold_once(locks: KeyedLocks, key: str) -> None:
        async with locks.hold(key):
            pass


class SQLiteStorageAdapterTest(unittest.IsolatedAsyncioTestCase):
    async def test_round_trip_and_delete(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            adapter = SQLiteStorageAdapter(str(Path(tmpdir) / "menus" / "menu.sqlite3"))
            storage = MenuStorage(adapter, _key_builder)
            session = MenuSession(active=MenuState(menu_id="main", payload={"n": 1}, path=["main"]), history=[_entry("main")])

            await storage.write("k", session)
            _, stored = await storage.read("k")
            self.assertEqual(session, stored)
            self.assertEqual(["k"], adapter.keys())

            await storage.write("k", MenuSession(history=[_entry("other")]))
            _, stored = await storage.read("k")
            self.assertEqual("other", stored.history[0].menu_id)

            await storage.clear("k")
            self.assertIsNone(await adapter.read("k"))
            adapter.close()

    async def test_json_serializer_values_are_stored(self) -> None:
        adapter = SQLiteStorageAdapter(":memory:")
        storage = MenuStorage(adapter, _key_builder, serializer=JsonSerializer())
        await storage.with_session("k", lambda draft: draft.history.append(_entry("a")))
        raw = await adapter.read("k")
        self.assertIsInstance(raw, str)
        _, stored = await storage.read("k")
        self.assertEqual("a", stored.history[0].menu_id)
