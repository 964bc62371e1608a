"""Tests for the progress stores and snapshot reconstruction."""

import asyncio
import json
from unittest.mock import AsyncMock

from promptvault.models import Completed, Failed, ProgressSnapshot, SessionStatus
from promptvault.progress.store import (
    MemoryProgressStore,
    RedisProgressStore,
    progress_channel,
    progress_key,
    snapshot_from_session,
)
from tests.fixtures import create_processing_session, create_session


def _snapshot(progress=10, status=SessionStatus.PROCESSING, session_id="s1", **kw):
    return ProgressSnapshot(
        session_id=session_id, status=status, progress=progress, message="Working...", **kw
    )


class TestMemoryProgressStore:
    async def test_read_absent(self):
        assert await MemoryProgressStore().read("s1") is None

    async def test_write_overwrites(self):
        store = MemoryProgressStore()
        await store.write(_snapshot(10))
        await store.write(_snapshot(40, metadata={"total": 4}))
        snapshot = await store.read("s1")
        assert snapshot.progress == 40
        assert snapshot.metadata == {"total": 4}

    async def test_expired_snapshot_is_absent(self):
        store = MemoryProgressStore(ttl_seconds=0)
        await store.write(_snapshot())
        assert await store.read("s1") is None

    async def test_expired_entries_are_dropped_on_write(self):
        store = MemoryProgressStore(ttl_seconds=0)
        for i in range(200):
            await store.write(_snapshot(session_id=f"s{i}"))
        await store.write(_snapshot(session_id="last"))
        assert list(store._entries) == ["last"]

    async def test_live_entries_survive_purge(self):
        store = MemoryProgressStore()
        await store.write(_snapshot(session_id="a"))
        await store.write(_snapshot(session_id="b"))
        assert sorted(store._entries) == ["a", "b"]

    async def test_clear(self):
        store = MemoryProgressStore()
        await store.write(_snapshot())
        await store.clear("s1")
        assert await store.read("s1") is None

    async def test_sessions_are_independent(self):
        store = MemoryProgressStore()
        await store.write(_snapshot(10, session_id="a"))
        await store.write(_snapshot(90, session_id="b"))
        assert (await store.read("a")).progress == 10

    async def test_subscribe_receives_writes(self):
        store = MemoryProgressStore()
        updates = store.subscribe("s1")
        pending = asyncio.create_task(anext(updates))
        await asyncio.sleep(0)
        await store.write(_snapshot(55))
        received = await asyncio.wait_for(pending, timeout=1)
        assert received.progress == 55
        await updates.aclose()


class TestRedisProgressStore:
    async def test_write_sets_ttl_and_publishes(self):
        redis = AsyncMock()
        store = RedisProgressStore(redis, ttl_seconds=3600)
        snapshot = _snapshot(25)
        await store.write(snapshot)
        redis.setex.assert_awaited_once_with(progress_key("s1"), 3600, snapshot.to_json())
        redis.publish.assert_awaited_once_with(progress_channel("s1"), snapshot.to_json())

    async def test_read_decodes_camel_case(self):
        redis = AsyncMock()
        redis.get.return_value = json.dumps(
            {"sessionId": "s1", "status": "processing", "progress": 30, "message": "Parsing file..."}
        )
        snapshot = await RedisProgressStore(redis).read("s1")
        redis.get.assert_awaited_once_with("import:progress:s1")
        assert snapshot.progress == 30
        assert snapshot.status == SessionStatus.PROCESSING

    async def test_unreadable_value_is_absent(self):
        redis = AsyncMock()
        redis.get.return_value = "not json"
        assert await RedisProgressStore(redis).read("s1") is None

    async def test_missing_key(self):
        redis = AsyncMock()
        redis.get.return_value = None
        assert await RedisProgressStore(redis).read("s1") is None

    async def test_clear_deletes_key(self):
        redis = AsyncMock()
        await RedisProgressStore(redis).clear("s1")
        redis.delete.assert_awaited_once_with("import:progress:s1")

    def test_key_formats(self):
        assert progress_key("abc") == "import:progress:abc"
        assert progress_channel("abc") == "import:abc"


class TestSnapshotFromSession:
    async def test_completed(self, registry):
        session_id = await create_processing_session(registry)
        await registry.finalize(session_id, Completed(total=3, processed=2, failed=1))
        snapshot = snapshot_from_session(await registry.get(session_id))
        assert snapshot.status == SessionStatus.COMPLETED
        assert snapshot.progress == 100
        assert snapshot.metadata == {"total": 3, "processed": 2, "failed": 1}

    async def test_failed(self, registry):
        session_id = await create_processing_session(registry)
        await registry.finalize(session_id, Failed("Failed to download file: HTTP 404"))
        snapshot = snapshot_from_session(await registry.get(session_id))
        assert snapshot.status == SessionStatus.FAILED
        assert snapshot.progress == 0
        assert snapshot.message == "Failed to download file: HTTP 404"

    async def test_pending(self, registry):
        snapshot = snapshot_from_session(await registry.get(await create_session(registry)))
        assert snapshot.progress == 0
        assert not snapshot.is_terminal
