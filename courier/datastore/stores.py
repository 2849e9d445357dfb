"""
Durable cache store and queue storage backed by SQLAlchemy.

Both survive restarts and behave like their in-memory counterparts. Database
errors are raised as ``StorageError`` for the caller to log and absorb.
"""

import asyncio
from datetime import datetime
from typing import Callable

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from courier.datastore.engine import Database
from courier.datastore.repositories import CacheEntryRepository, QueuedRequestRepository
from courier.services.cache import CacheEntry, CacheStats, CacheStore
from courier.services.errors import StorageError
from courier.services.events import CacheEvicted, EventBus
from courier.services.queue import QueuedRequest, QueueStorage


class SqlCacheStore(CacheStore):
    """
    Usage:
        store = SqlCacheStore(Database("sqlite+aiosqlite:///./cache.db"))
        orchestrator = Orchestrator(transport, cache_store=store)
    """

    def __init__(
        self,
        database: Database,
        max_size: int | None = None,
        clock: Callable[[], datetime] = datetime.now,
        events: EventBus | None = None,
    ):
        self.database = database
        self._max_size = max_size
        self._clock = clock
        self._events = events
        self._lock = asyncio.Lock()
        self._stats = CacheStats()

    async def get(self, key: str) -> CacheEntry | None:
        async with self._lock:
            try:
                async with self.database.session() as session:
                    repo = CacheEntryRepository(session)
                    row = await repo.get(key)
                    if row is None:
                        self._stats.misses += 1
                        return None

                    entry = repo.to_entry(row)
                    if entry.is_expired(self._clock()):
                        await repo.delete(key)
                        self._stats.misses += 1
                        self._stats.expirations += 1
                        return None
            except (SQLAlchemyError, ValueError) as e:
                raise StorageError(f"Cache read failed: {e}") from e

            self._stats.hits += 1
            return entry

    async def set(self, key: str, entry: CacheEntry) -> None:
        async with self._lock:
            try:
                async with self.database.session() as session:
                    repo = CacheEntryRepository(session)
                    await repo.upsert(key, entry)
                    evicted = (
                        await repo.evict_oldest(self._max_size)
                        if self._max_size is not None
                        else []
                    )
            except (SQLAlchemyError, TypeError, ValueError) as e:
                raise StorageError(f"Cache write failed: {e}") from e

        for evicted_key in evicted:
            self._stats.evictions += 1
            if self._events is not None:
                self._events.publish(CacheEvicted(key=evicted_key))

    async def remove(self, key: str) -> bool:
        async with self._lock:
            try:
                async with self.database.session() as session:
                    return await CacheEntryRepository(session).delete(key)
            except SQLAlchemyError as e:
                raise StorageError(f"Cache delete failed: {e}") from e

    async def clear(self) -> None:
        async with self._lock:
            try:
                async with self.database.session() as session:
                    count = await CacheEntryRepository(session).delete_all()
            except SQLAlchemyError as e:
                raise StorageError(f"Cache clear failed: {e}") from e
            logger.debug(f"Cleared {count} durable cache entries")

    async def keys(self) -> list[str]:
        async with self._lock:
            try:
                async with self.database.session() as session:
                    return await CacheEntryRepository(session).keys()
            except SQLAlchemyError as e:
                raise StorageError(f"Cache key listing failed: {e}") from e

    async def cleanup(self) -> int:
        async with self._lock:
            try:
                async with self.database.session() as session:
                    removed = await CacheEntryRepository(session).delete_expired(
                        self._clock()
                    )
            except SQLAlchemyError as e:
                raise StorageError(f"Cache cleanup failed: {e}") from e
            self._stats.expirations += removed
            return removed

    def get_stats(self) -> CacheStats:
        self._stats.max_size = self._max_size
        return self._stats

    async def close(self) -> None:
        await self.database.close()


class SqlQueueStorage(QueueStorage):
    """Persists the request queue snapshot in the ``queued_requests`` table."""

    def __init__(self, database: Database):
        self.database = database
        self._lock = asyncio.Lock()

    async def save(self, requests: list[QueuedRequest]) -> None:
        async with self._lock:
            try:
                async with self.database.session() as session:
                    await QueuedRequestRepository(session).replace_all(requests)
            except (SQLAlchemyError, TypeError, ValueError) as e:
                raise StorageError(f"Queue save failed: {e}") from e

    async def load(self) -> list[QueuedRequest]:
        async with self._lock:
            try:
                async with self.database.session() as session:
                    return await QueuedRequestRepository(session).load_all()
            except SQLAlchemyError as e:
                raise StorageError(f"Queue load failed: {e}") from e

    async def clear(self) -> None:
        async with self._lock:
            try:
                async with self.database.session() as session:
                    await QueuedRequestRepository(session).delete_all()
            except SQLAlchemyError as e:
                raise StorageError(f"Queue clear failed: {e}") from e

    async def close(self) -> None:
        await self.database.close()
