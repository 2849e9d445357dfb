"""
ORM models for durable cache entries and queued requests.
"""

from datetime import datetime

from sqlalchemy import DateTime, Float, Index, Integer, String, Text
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all models."""

    pass


class CacheEntryDB(Base):
    """Cached response payloads keyed by request signature."""

    __tablename__ = "cache_entries"

    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    data_json: Mapped[str] = mapped_column(Text, nullable=False)
    headers_json: Mapped[str] = mapped_column(Text, default="{}")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    ttl_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    # Insertion order for oldest-first eviction
    inserted_seq: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<CacheEntry(key={self.key[:16]}, created_at={self.created_at})>"


class QueuedRequestDB(Base):
    """Snapshot rows of the offline request queue."""

    __tablename__ = "queued_requests"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    payload_json: Mapped[str] = mapped_column(Text, nullable=False)
    queued_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (Index("idx_queue_position", "position"),)

    def __repr__(self) -> str:
        return f"<QueuedRequest(id={self.id}, position={self.position})>"
