"""
Cache policies and stores.

Policies decide whether a request may read from or write to the cache.
Stores hold ``CacheEntry`` values keyed by request signature:
- TTL expiry (``now > created_at + ttl``); entries without TTL never expire
- Lazy removal of expired entries on lookup, plus an explicit sweep
- Optional capacity with oldest-inserted eviction
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable

from loguru import logger

from courier.services.events import CacheEvicted, EventBus

DEFAULT_CACHE_METHODS = frozenset({"GET", "HEAD"})
DEFAULT_CACHE_STATUS_CODES = frozenset({200, 201, 204, 300, 301, 302, 404, 410})


# Policies


class CachePolicy(ABC):
    """Gates cache read and write eligibility."""

    ttl: timedelta | None = None
    # Consult the cache before the network (otherwise only as a fallback)
    prefer_cache: bool = False

    @abstractmethod
    def should_use_cache(self, method: str) -> bool: ...

    @abstractmethod
    def should_cache(self, method: str, status_code: int) -> bool: ...


@dataclass(frozen=True)
class NoCachePolicy(CachePolicy):
    """Never read, never write."""

    def should_use_cache(self, method: str) -> bool:
        return False

    def should_cache(self, method: str, status_code: int) -> bool:
        return False


@dataclass(frozen=True)
class NetworkFirstCachePolicy(CachePolicy):
    """Network first; the cache is a fallback when the network fails."""

    ttl: timedelta | None = timedelta(minutes=5)
    cache_methods: frozenset[str] = DEFAULT_CACHE_METHODS
    cache_status_codes: frozenset[int] = DEFAULT_CACHE_STATUS_CODES

    def should_use_cache(self, method: str) -> bool:
        return method.upper() in self.cache_methods

    def should_cache(self, method: str, status_code: int) -> bool:
        return (
            method.upper() in self.cache_methods
            and status_code in self.cache_status_codes
        )


@dataclass(frozen=True)
class CacheFirstCachePolicy(NetworkFirstCachePolicy):
    """Serve from cache when a fresh entry exists, otherwise go to network."""

    prefer_cache: bool = field(default=True, init=False)


@dataclass(frozen=True)
class CacheOnlyCachePolicy(CachePolicy):
    """Read from cache, never write to it."""

    prefer_cache: bool = field(default=True, init=False)

    def should_use_cache(self, method: str) -> bool:
        return True

    def should_cache(self, method: str, status_code: int) -> bool:
        return False


@dataclass(frozen=True)
class NetworkOnlyCachePolicy(CachePolicy):
    """Bypass the cache entirely."""

    def should_use_cache(self, method: str) -> bool:
        return False

    def should_cache(self, method: str, status_code: int) -> bool:
        return False


# Entries and stores


@dataclass
class CacheEntry:
    """A single cache entry with metadata."""

    data: Any
    created_at: datetime
    ttl: timedelta | None = None
    headers: Mapping[str, str] = field(default_factory=dict)

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check if entry is past its TTL."""
        if self.ttl is None:
            return False
        return (now or datetime.now()) > self.created_at + self.ttl

    def to_dict(self) -> dict[str, Any]:
        return {
            "data": self.data,
            "created_at": self.created_at.isoformat(),
            "ttl": self.ttl.total_seconds() if self.ttl is not None else None,
            "headers": dict(self.headers),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CacheEntry":
        ttl = data.get("ttl")
        return cls(
            data=data.get("data"),
            created_at=datetime.fromisoformat(data["created_at"]),
            ttl=timedelta(seconds=ttl) if ttl is not None else None,
            headers=dict(data.get("headers") or {}),
        )


class CacheStore(ABC):
    """Pluggable key -> ``CacheEntry`` store."""

    @abstractmethod
    async def get(self, key: str) -> CacheEntry | None:
        """Return the entry, or None when absent or expired."""
        ...

    @abstractmethod
    async def set(self, key: str, entry: CacheEntry) -> None: ...

    @abstractmethod
    async def remove(self, key: str) -> bool: ...

    @abstractmethod
    async def clear(self) -> None: ...

    @abstractmethod
    async def keys(self) -> list[str]: ...

    @abstractmethod
    async def cleanup(self) -> int:
        """Remove all expired entries. Returns count of removed entries."""
        ...

    async def close(self) -> None:
        return None

    def get_stats(self) -> "CacheStats":
        return CacheStats()


class MemoryCacheStore(CacheStore):
    """
    In-memory cache store, lost on restart.

    Usage:
        store = MemoryCacheStore(max_size=100)
        await store.set(request.signature, CacheEntry(data, datetime.now(), ttl))
        entry = await store.get(request.signature)
    """

    def __init__(
        self,
        max_size: int | None = None,
        clock: Callable[[], datetime] = datetime.now,
        events: EventBus | None = None,
        debug: bool = False,
    ):
        self._memory: dict[str, CacheEntry] = {}
        self._max_size = max_size
        self._clock = clock
        self._events = events
        self._debug = debug
        self._lock = asyncio.Lock()
        self._stats = CacheStats()

    async def get(self, key: str) -> CacheEntry | None:
        async with self._lock:
            entry = self._memory.get(key)
            if entry is None:
                self._stats.misses += 1
                self._log(f"MISS: {key[:16]}...")
                return None

            if entry.is_expired(self._clock()):
                del self._memory[key]
                self._stats.misses += 1
                self._stats.expirations += 1
                self._log(f"EXPIRED: {key[:16]}...")
                return None

            self._stats.hits += 1
            self._log(f"HIT: {key[:16]}...")
            return entry

    async def set(self, key: str, entry: CacheEntry) -> None:
        async with self._lock:
            # Re-inserting moves the key to the tail of insertion order
            self._memory.pop(key, None)
            self._memory[key] = entry

            if self._max_size is not None:
                while len(self._memory) > self._max_size:
                    self._evict_oldest()

            ttl = entry.ttl.total_seconds() if entry.ttl is not None else None
            self._log(f"SET: {key[:16]}... (TTL: {ttl}s)")

    async def remove(self, key: str) -> bool:
        async with self._lock:
            if key in self._memory:
                del self._memory[key]
                self._log(f"DELETE: {key[:16]}...")
                return True
            return False

    async def clear(self) -> None:
        async with self._lock:
            count = len(self._memory)
            self._memory.clear()
            self._log(f"CLEAR: {count} entries removed")

    async def keys(self) -> list[str]:
        async with self._lock:
            return list(self._memory.keys())

    async def cleanup(self) -> int:
        async with self._lock:
            now = self._clock()
            expired_keys = [k for k, v in self._memory.items() if v.is_expired(now)]
            for key in expired_keys:
                del self._memory[key]

            if expired_keys:
                self._stats.expirations += len(expired_keys)
                self._log(f"CLEANUP: {len(expired_keys)} expired entries removed")

            return len(expired_keys)

    def _evict_oldest(self) -> None:
        """Evict the oldest-inserted entry. Caller holds the lock."""
        oldest_key = next(iter(self._memory))
        del self._memory[oldest_key]
        self._stats.evictions += 1
        self._log(f"EVICT: {oldest_key[:16]}...")
        if self._events is not None:
            self._events.publish(CacheEvicted(key=oldest_key))

    def get_stats(self) -> "CacheStats":
        self._stats.size = len(self._memory)
        self._stats.max_size = self._max_size
        return self._stats

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[MemoryCacheStore] {message}")


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0
    size: int = 0
    max_size: int | None = None

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "size": self.size,
            "max_size": self.max_size,
            "hit_rate": f"{self.hit_rate:.2%}",
        }
