"""
Repository layer - data access for cache entries and queued requests.
"""

import json
from datetime import datetime, timedelta

from loguru import logger
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from courier.datastore.models import CacheEntryDB, QueuedRequestDB
from courier.services.cache import CacheEntry
from courier.services.queue import QueuedRequest


class CacheEntryRepository:
    """Cache entry repository."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, key: str) -> CacheEntryDB | None:
        result = await self.session.execute(
            select(CacheEntryDB).where(CacheEntryDB.key == key)
        )
        return result.scalar_one_or_none()

    async def upsert(self, key: str, entry: CacheEntry) -> None:
        """Insert or replace; replacing moves the key to the newest position."""
        next_seq = (
            await self.session.execute(
                select(func.coalesce(func.max(CacheEntryDB.inserted_seq), 0))
            )
        ).scalar_one() + 1

        row = await self.get(key)
        if row is None:
            row = CacheEntryDB(key=key)
            self.session.add(row)

        row.data_json = json.dumps(entry.data)
        row.headers_json = json.dumps(dict(entry.headers))
        row.created_at = entry.created_at
        row.ttl_seconds = entry.ttl.total_seconds() if entry.ttl is not None else None
        row.inserted_seq = next_seq
        await self.session.flush()

    async def delete(self, key: str) -> bool:
        result = await self.session.execute(
            delete(CacheEntryDB).where(CacheEntryDB.key == key)
        )
        return result.rowcount > 0

    async def delete_all(self) -> int:
        result = await self.session.execute(delete(CacheEntryDB))
        return result.rowcount

    async def keys(self) -> list[str]:
        result = await self.session.execute(
            select(CacheEntryDB.key).order_by(CacheEntryDB.inserted_seq)
        )
        return list(result.scalars().all())

    async def count(self) -> int:
        result = await self.session.execute(select(func.count(CacheEntryDB.key)))
        return result.scalar_one()

    async def evict_oldest(self, keep: int) -> list[str]:
        """Delete the oldest-inserted rows until at most ``keep`` remain."""
        excess = await self.count() - keep
        if excess <= 0:
            return []
        result = await self.session.execute(
            select(CacheEntryDB.key).order_by(CacheEntryDB.inserted_seq).limit(excess)
        )
        keys = list(result.scalars().all())
        await self.session.execute(delete(CacheEntryDB).where(CacheEntryDB.key.in_(keys)))
        return keys

    async def delete_expired(self, now: datetime) -> int:
        result = await self.session.execute(
            select(CacheEntryDB).where(CacheEntryDB.ttl_seconds.is_not(None))
        )
        expired = [
            row.key
            for row in result.scalars().all()
            if now > row.created_at + timedelta(seconds=row.ttl_seconds)
        ]
        if expired:
            await self.session.execute(
                delete(CacheEntryDB).where(CacheEntryDB.key.in_(expired))
            )
            logger.debug(f"Deleted {len(expired)} expired cache rows")
        return len(expired)

    @staticmethod
    def to_entry(row: CacheEntryDB) -> CacheEntry:
        return CacheEntry(
            data=json.loads(row.data_json),
            created_at=row.created_at,
            ttl=(
                timedelta(seconds=row.ttl_seconds)
                if row.ttl_seconds is not None
                else None
            ),
            headers=json.loads(row.headers_json or "{}"),
        )


class QueuedRequestRepository:
    """Queued request repository."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def replace_all(self, items: list[QueuedRequest]) -> None:
        """Replace the stored snapshot with ``items`` in order."""
        await self.session.execute(delete(QueuedRequestDB))
        for position, item in enumerate(items):
            self.session.add(
                QueuedRequestDB(
                    id=item.id,
                    position=position,
                    payload_json=json.dumps(item.to_dict()),
                    queued_at=item.queued_at,
                )
            )
        await self.session.flush()

    async def load_all(self) -> list[QueuedRequest]:
        result = await self.session.execute(
            select(QueuedRequestDB).order_by(QueuedRequestDB.position)
        )
        items = []
        for row in result.scalars().all():
            try:
                items.append(QueuedRequest.from_dict(json.loads(row.payload_json)))
            except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping corrupted queued request {row.id}: {e}")
        return items

    async def delete_all(self) -> int:
        result = await self.session.execute(delete(QueuedRequestDB))
        return result.rowcount
