"""
RequestQueue - bounded, age-limited FIFO of mutating requests sent while offline.

States:
- IDLE: Accepting operations, nothing in progress
- PROCESSING: ``process()`` is walking the queue
- PAUSED: Processing is blocked until ``resume()``

Transitions:
- IDLE -> PROCESSING -> IDLE: ``process()``
- IDLE -> PAUSED -> IDLE: ``pause()`` / ``resume()``

The stored snapshot is merged in before the first access, so a fresh queue
never overwrites what an earlier run persisted. Every mutation persists
the full snapshot to storage afterwards. Storage failures are
reported as events and never roll back the in-memory change.
"""

import asyncio
import copy
import uuid
from abc import ABC, abstractmethod
from collections.abc import Awaitable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from courier.services.errors import QueueError
from courier.services.events import (
    Event,
    EventBus,
    QueueCleared,
    QueueItemAdded,
    QueueItemEvicted,
    QueueItemFailed,
    QueueItemRemoved,
    QueueItemRetried,
    QueueItemsExpired,
    QueueLoaded,
    QueuePaused,
    QueueResumed,
    QueueStorageError,
)
from courier.services.models import Request
from courier.utils import safe_job

DEFAULT_QUEUE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


class QueueStatus(str, Enum):
    """Request queue states."""

    IDLE = "idle"
    PROCESSING = "processing"
    PAUSED = "paused"


class QueueStorageType(str, Enum):
    """Where queued requests are kept."""

    MEMORY = "memory"  # lost on restart
    PERSISTENT = "persistent"  # survives restart
    NONE = "none"  # queueing disabled


class ProcessOutcome(str, Enum):
    """What ``process()`` should do with an item after the handler ran."""

    COMPLETED = "completed"  # remove it
    FAILED = "failed"  # keep it, move on to the next item
    STOP = "stop"  # keep it, stop processing


@dataclass
class QueuedRequest:
    """A request waiting to be sent, with queueing metadata."""

    id: str
    request: Request
    queued_at: datetime
    retry_count: int = 0
    last_attempt: datetime | None = None
    last_error: str | None = None

    def snapshot(self) -> "QueuedRequest":
        return copy.copy(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "request": self.request.to_dict(),
            "queued_at": self.queued_at.isoformat(),
            "retry_count": self.retry_count,
            "last_attempt": (
                self.last_attempt.isoformat() if self.last_attempt else None
            ),
            "last_error": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QueuedRequest":
        last_attempt = data.get("last_attempt")
        return cls(
            id=data["id"],
            request=Request.from_dict(data["request"]),
            queued_at=datetime.fromisoformat(data["queued_at"]),
            retry_count=data.get("retry_count", 0),
            last_attempt=(
                datetime.fromisoformat(last_attempt) if last_attempt else None
            ),
            last_error=data.get("last_error"),
        )


class QueueStorage(ABC):
    """Snapshot persistence for a request queue."""

    @abstractmethod
    async def save(self, requests: list[QueuedRequest]) -> None: ...

    @abstractmethod
    async def load(self) -> list[QueuedRequest]: ...

    @abstractmethod
    async def clear(self) -> None: ...

    async def close(self) -> None:
        return None


class MemoryQueueStorage(QueueStorage):
    """Keeps the last saved snapshot in memory."""

    def __init__(self):
        self._snapshot: list[dict[str, Any]] = []

    async def save(self, requests: list[QueuedRequest]) -> None:
        self._snapshot = [r.to_dict() for r in requests]

    async def load(self) -> list[QueuedRequest]:
        return [QueuedRequest.from_dict(r) for r in self._snapshot]

    async def clear(self) -> None:
        self._snapshot = []


ProcessHandler = Callable[[QueuedRequest], Awaitable[ProcessOutcome]]


class RequestQueue:
    """
    Persisted FIFO of requests deferred while offline.

    Usage:
        queue = RequestQueue(storage=MemoryQueueStorage(), max_size=100)
        await queue.load()
        await queue.enqueue(request)

        async def send(item: QueuedRequest) -> ProcessOutcome:
            ...

        sent = await queue.process(send)
    """

    def __init__(
        self,
        storage: QueueStorage | None = None,
        max_size: int = 100,
        max_age: timedelta = timedelta(days=7),
        queue_methods: frozenset[str] = DEFAULT_QUEUE_METHODS,
        sweep_interval: timedelta = timedelta(hours=1),
        clock: Callable[[], datetime] = datetime.now,
        events: EventBus | None = None,
        debug: bool = False,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")

        self.storage = storage
        self.max_size = max_size
        self.max_age = max_age
        self.queue_methods = frozenset(m.upper() for m in queue_methods)
        self.sweep_interval = sweep_interval
        self.events = events or EventBus()

        self._clock = clock
        self._debug = debug
        self._queue: list[QueuedRequest] = []
        self._status = QueueStatus.IDLE
        self._loaded = False
        self._lock = asyncio.Lock()
        self.scheduler = AsyncIOScheduler()
        self._is_running = False

    @property
    def status(self) -> QueueStatus:
        return self._status

    @property
    def length(self) -> int:
        return len(self._queue)

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def is_empty(self) -> bool:
        return not self._queue

    @property
    def requests(self) -> list[QueuedRequest]:
        """Snapshot of the queued items, head first."""
        return [item.snapshot() for item in self._queue]

    def should_queue(self, request: Request) -> bool:
        return request.method in self.queue_methods

    # Mutations

    async def enqueue(self, request: Request) -> QueuedRequest | None:
        """Append a request; evicts the head first when the queue is full."""
        if not self.should_queue(request):
            self._log(f"SKIP: {request.method} is not queueable")
            return None

        async with self._lock:
            await self._ensure_loaded()
            if len(self._queue) >= self.max_size:
                evicted = self._queue.pop(0)
                logger.warning(
                    f"Request queue full ({self.max_size}), evicted {evicted.id}"
                )
                self._emit(QueueItemEvicted(item=evicted))

            item = QueuedRequest(
                id=uuid.uuid4().hex,
                request=request,
                queued_at=self._clock(),
            )
            self._queue.append(item)
            self._log(f"ENQUEUE: {item.id} {request.method} {request.url}")
            self._emit(QueueItemAdded(item=item.snapshot()))
            await self._save()
            return item.snapshot()

    async def dequeue(self) -> QueuedRequest | None:
        """Remove and return the head."""
        async with self._lock:
            await self._ensure_loaded()
            if not self._queue:
                return None
            item = self._queue.pop(0)
            self._emit(QueueItemRemoved(item=item))
            await self._save()
            return item

    async def peek(self) -> QueuedRequest | None:
        async with self._lock:
            await self._ensure_loaded()
            return self._queue[0].snapshot() if self._queue else None

    async def get(self, item_id: str) -> QueuedRequest | None:
        async with self._lock:
            await self._ensure_loaded()
            index = self._index_of(item_id)
            return self._queue[index].snapshot() if index is not None else None

    async def remove(self, item_id: str) -> bool:
        async with self._lock:
            await self._ensure_loaded()
            index = self._index_of(item_id)
            if index is None:
                return False
            item = self._queue.pop(index)
            self._emit(QueueItemRemoved(item=item))
            await self._save()
            return True

    async def retry(self, item_id: str) -> QueuedRequest | None:
        """Count another attempt on an item and stamp the attempt time."""
        async with self._lock:
            await self._ensure_loaded()
            index = self._index_of(item_id)
            if index is None:
                return None
            item = self._queue[index]
            item.retry_count += 1
            item.last_attempt = self._clock()
            self._emit(QueueItemRetried(item=item.snapshot()))
            await self._save()
            return item.snapshot()

    async def mark_failed(self, item_id: str, error: Any) -> QueuedRequest | None:
        async with self._lock:
            await self._ensure_loaded()
            index = self._index_of(item_id)
            if index is None:
                return None
            item = self._queue[index]
            item.last_error = str(error)
            item.last_attempt = self._clock()
            self._emit(QueueItemFailed(item=item.snapshot(), error=str(error)))
            await self._save()
            return item.snapshot()

    async def clear(self) -> int:
        async with self._lock:
            await self._ensure_loaded()
            count = len(self._queue)
            self._queue.clear()
            self._emit(QueueCleared(count=count))
            await self._save()
            return count

    async def sweep(self) -> int:
        """Remove entries older than ``max_age``. Returns the count removed."""
        async with self._lock:
            await self._ensure_loaded()
            now = self._clock()
            kept = [item for item in self._queue if now - item.queued_at <= self.max_age]
            removed = len(self._queue) - len(kept)
            if removed:
                self._queue = kept
                logger.info(f"Request queue expired {removed} stale items")
                self._emit(QueueItemsExpired(count=removed))
                await self._save()
            return removed

    async def load(self) -> int:
        """Restore persisted items ahead of anything queued in this session."""
        async with self._lock:
            return await self._restore(announce=True)

    # State machine

    async def pause(self) -> None:
        async with self._lock:
            if self._status == QueueStatus.PROCESSING:
                raise QueueError("Cannot pause a queue while it is processing")
            if self._status == QueueStatus.PAUSED:
                return
            self._status = QueueStatus.PAUSED
            self._emit(QueuePaused())
            logger.info("Request queue paused")

    async def resume(self) -> None:
        async with self._lock:
            if self._status != QueueStatus.PAUSED:
                return
            self._status = QueueStatus.IDLE
            self._emit(QueueResumed())
            logger.info("Request queue resumed")

    async def process(self, handler: ProcessHandler) -> int:
        """
        Walk the queued items head first, calling ``handler`` for each.

        Items present when processing starts are visited once. Returns the
        number of items completed. Does nothing unless the queue is idle.
        """
        async with self._lock:
            await self._ensure_loaded()
            if self._status != QueueStatus.IDLE:
                self._log(f"PROCESS: skipped, queue is {self._status.value}")
                return 0
            self._status = QueueStatus.PROCESSING
            pending = [item.snapshot() for item in self._queue]

        completed = 0
        try:
            for item in pending:
                outcome = await handler(item)
                if outcome == ProcessOutcome.COMPLETED:
                    await self.remove(item.id)
                    completed += 1
                elif outcome == ProcessOutcome.STOP:
                    break
        finally:
            async with self._lock:
                self._status = QueueStatus.IDLE

        if pending:
            logger.info(
                f"Request queue processed {completed}/{len(pending)} items, "
                f"{len(self._queue)} remaining"
            )
        return completed

    # Periodic sweep

    @safe_job
    async def sweep_job(self) -> None:
        await self.sweep()

    def start(self) -> None:
        """Start the periodic age sweep."""
        if self._is_running:
            logger.warning("Request queue sweeper is already running")
            return

        self.scheduler.add_job(
            self.sweep_job,
            trigger="interval",
            seconds=self.sweep_interval.total_seconds(),
            id="request_queue_sweep",
            name="Request Queue Sweeper",
            replace_existing=True,
        )
        self.scheduler.start()
        self._is_running = True
        logger.info(
            f"Request queue sweeper started: every {self.sweep_interval.total_seconds()}s"
        )

    def stop(self) -> None:
        if not self._is_running:
            return
        self.scheduler.shutdown(wait=False)
        self._is_running = False
        logger.info("Request queue sweeper stopped")

    def is_running(self) -> bool:
        return self._is_running

    async def close(self) -> None:
        self.stop()
        if self.storage is not None:
            await self.storage.close()

    # Internals

    def _index_of(self, item_id: str) -> int | None:
        for index, item in enumerate(self._queue):
            if item.id == item_id:
                return index
        return None

    async def _ensure_loaded(self) -> None:
        """Merge the stored snapshot in before the first access. Caller holds the lock."""
        if not self._loaded:
            await self._restore()

    async def _restore(self, announce: bool = False) -> int:
        if self.storage is None:
            self._loaded = True
            return 0

        try:
            stored = await self.storage.load()
        except Exception as e:
            logger.error(f"Failed to load request queue: {e}")
            self._emit(QueueStorageError(error=str(e)))
            return 0

        known = {item.id for item in self._queue}
        restored = [item for item in stored if item.id not in known]
        self._queue = restored + self._queue
        while len(self._queue) > self.max_size:
            self._emit(QueueItemEvicted(item=self._queue.pop(0)))
        self._loaded = True
        if restored or announce:
            self._emit(QueueLoaded(count=len(restored)))
            logger.info(f"Request queue loaded {len(restored)} items from storage")
        return len(restored)

    async def _save(self) -> None:
        """Persist the snapshot. Caller holds the lock."""
        if self.storage is None:
            return
        try:
            await self.storage.save(list(self._queue))
        except Exception as e:
            logger.error(f"Failed to persist request queue: {e}")
            self._emit(QueueStorageError(error=str(e)))

    def _emit(self, event: Event) -> None:
        self.events.publish(event)

    def _log(self, message: str) -> None:
        if self._debug:
            logger.debug(f"[RequestQueue] {message}")
