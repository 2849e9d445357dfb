"""Tests for the SQLAlchemy-backed cache store and queue storage."""

from datetime import timedelta

import pytest
import pytest_asyncio

from courier.datastore.engine import Database
from courier.datastore.stores import SqlCacheStore, SqlQueueStorage
from courier.services.cache import CacheEntry
from courier.services.events import CacheEvicted
from courier.services.models import Request
from courier.services.queue import RequestQueue


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path}/courier-test.db"


@pytest_asyncio.fixture
async def database(db_url):
    db = Database(db_url)
    await db.init()
    yield db
    await db.close()


class TestSqlCacheStore:
    """Tests for SqlCacheStore."""

    @pytest.mark.asyncio
    async def test_set_get_round_trip(self, database, clock):
        store = SqlCacheStore(database, clock=clock)
        entry = CacheEntry(
            data={"items": [1, 2]},
            created_at=clock(),
            ttl=timedelta(minutes=5),
            headers={"etag": "abc"},
        )

        await store.set("k", entry)
        loaded = await store.get("k")

        assert loaded.data == {"items": [1, 2]}
        assert loaded.ttl == timedelta(minutes=5)
        assert loaded.headers == {"etag": "abc"}
        assert await store.get("missing") is None

    @pytest.mark.asyncio
    async def test_expired_entry_is_removed_on_lookup(self, database, clock):
        store = SqlCacheStore(database, clock=clock)
        await store.set(
            "k", CacheEntry(data=1, created_at=clock(), ttl=timedelta(seconds=30))
        )

        clock.advance(seconds=30)
        assert await store.get("k") is not None

        clock.advance(seconds=1)
        assert await store.get("k") is None
        assert await store.keys() == []

    @pytest.mark.asyncio
    async def test_capacity_evicts_oldest(self, database, clock, bus):
        store = SqlCacheStore(database, max_size=2, clock=clock, events=bus)
        sub = bus.subscribe()

        for key in ("a", "b", "a", "c"):
            await store.set(key, CacheEntry(data=key, created_at=clock()))

        assert await store.keys() == ["a", "c"]
        assert [e.key for e in sub.drain() if isinstance(e, CacheEvicted)] == ["b"]

    @pytest.mark.asyncio
    async def test_cleanup_remove_and_clear(self, database, clock):
        store = SqlCacheStore(database, clock=clock)
        await store.set(
            "old", CacheEntry(data=1, created_at=clock(), ttl=timedelta(seconds=1))
        )
        await store.set("keep", CacheEntry(data=2, created_at=clock()))
        clock.advance(seconds=5)

        assert await store.cleanup() == 1
        assert await store.remove("keep")
        assert not await store.remove("keep")

        await store.set("x", CacheEntry(data=3, created_at=clock()))
        await store.clear()
        assert await store.keys() == []

    @pytest.mark.asyncio
    async def test_survives_restart(self, db_url, clock):
        first = SqlCacheStore(Database(db_url), clock=clock)
        await first.set("k", CacheEntry(data={"v": 1}, created_at=clock()))
        await first.close()

        second = SqlCacheStore(Database(db_url), clock=clock)
        try:
            loaded = await second.get("k")
        finally:
            await second.close()

        assert loaded.data == {"v": 1}


class TestSqlQueueStorage:
    """Tests for SqlQueueStorage."""

    @pytest.mark.asyncio
    async def test_queue_survives_restart(self, db_url, bus):
        queue = RequestQueue(storage=SqlQueueStorage(Database(db_url)), events=bus)
        await queue.enqueue(
            Request.create("POST", "https://api.test/a", body={"n": 1})
        )
        await queue.enqueue(
            Request.create("PUT", "https://api.test/b", body=b"\x01\x02")
        )
        await queue.close()

        restored = RequestQueue(storage=SqlQueueStorage(Database(db_url)), events=bus)
        try:
            count = await restored.load()
            items = restored.requests
        finally:
            await restored.close()

        assert count == 2
        assert [i.request.url for i in items] == [
            "https://api.test/a",
            "https://api.test/b",
        ]
        assert items[1].request.body == b"\x01\x02"

    @pytest.mark.asyncio
    async def test_enqueue_after_restart_without_load(self, db_url, bus):
        queue = RequestQueue(storage=SqlQueueStorage(Database(db_url)), events=bus)
        await queue.enqueue(Request.create("POST", "https://api.test/1"))
        await queue.enqueue(Request.create("POST", "https://api.test/2"))
        await queue.close()

        restarted = RequestQueue(storage=SqlQueueStorage(Database(db_url)), events=bus)
        try:
            await restarted.enqueue(Request.create("POST", "https://api.test/3"))
            stored = await restarted.storage.load()
        finally:
            await restarted.close()

        assert [i.request.url for i in stored] == [
            "https://api.test/1",
            "https://api.test/2",
            "https://api.test/3",
        ]

    @pytest.mark.asyncio
    async def test_clear(self, database, bus):
        storage = SqlQueueStorage(database)
        queue = RequestQueue(storage=storage, events=bus)
        await queue.enqueue(Request.create("POST", "https://api.test/a"))

        await storage.clear()

        assert await storage.load() == []
