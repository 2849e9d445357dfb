"""
EventBus - fire-and-forget publish/subscribe channel for observability.

Publishing never blocks and never raises: with no subscribers an event is
dropped, and a subscriber whose buffer is full simply misses it.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable

from loguru import logger

if TYPE_CHECKING:
    from courier.services.connectivity import ConnectivityInfo
    from courier.services.models import RequestMetrics
    from courier.services.queue import QueuedRequest


@dataclass(frozen=True)
class Event:
    """Base class for all published events."""

    timestamp: datetime = field(default_factory=datetime.now, kw_only=True)


# Cache events


@dataclass(frozen=True)
class CacheHit(Event):
    key: str
    correlation_id: str | None = None


@dataclass(frozen=True)
class CacheMiss(Event):
    key: str
    correlation_id: str | None = None


@dataclass(frozen=True)
class CacheEvicted(Event):
    key: str


# Queue events


@dataclass(frozen=True)
class QueueItemAdded(Event):
    item: "QueuedRequest"


@dataclass(frozen=True)
class QueueItemRemoved(Event):
    item: "QueuedRequest"


@dataclass(frozen=True)
class QueueItemRetried(Event):
    item: "QueuedRequest"


@dataclass(frozen=True)
class QueueItemFailed(Event):
    item: "QueuedRequest"
    error: str


@dataclass(frozen=True)
class QueueItemEvicted(Event):
    item: "QueuedRequest"


@dataclass(frozen=True)
class QueueItemsExpired(Event):
    count: int


@dataclass(frozen=True)
class QueueCleared(Event):
    count: int


@dataclass(frozen=True)
class QueuePaused(Event):
    pass


@dataclass(frozen=True)
class QueueResumed(Event):
    pass


@dataclass(frozen=True)
class QueueLoaded(Event):
    count: int


@dataclass(frozen=True)
class QueueStorageError(Event):
    error: str


# Connectivity and request events


@dataclass(frozen=True)
class ConnectivityChanged(Event):
    info: "ConnectivityInfo"


@dataclass(frozen=True)
class RequestCompleted(Event):
    metrics: "RequestMetrics"


class Subscription:
    """
    A buffered view on an ``EventBus``.

    Usage:
        sub = bus.subscribe()
        async for event in sub:
            ...
        sub.close()
    """

    def __init__(self, bus: "EventBus", maxsize: int):
        self._bus = bus
        self._queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def _offer(self, event: Event) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1

    async def get(self) -> Event:
        return await self._queue.get()

    def get_nowait(self) -> Event | None:
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def drain(self) -> list[Event]:
        """Return every buffered event without waiting."""
        events = []
        while (event := self.get_nowait()) is not None:
            events.append(event)
        return events

    def close(self) -> None:
        self._bus._unsubscribe(self)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Event:
        return await self.get()


class EventBus:
    """Multi-subscriber event channel with a drop-on-no-subscriber policy."""

    def __init__(self, debug: bool = False):
        self._subscriptions: list[Subscription] = []
        self._listeners: list[Callable[[Event], Any]] = []
        self._debug = debug
        self.published = 0
        self.dropped = 0

    def subscribe(self, maxsize: int = 1000) -> Subscription:
        subscription = Subscription(self, maxsize)
        self._subscriptions.append(subscription)
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def add_listener(self, listener: Callable[[Event], Any]) -> None:
        """Register a synchronous callback invoked for every event."""
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[Event], Any]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def has_subscribers(self) -> bool:
        return bool(self._subscriptions or self._listeners)

    def publish(self, event: Event) -> None:
        if not self.has_subscribers:
            self.dropped += 1
            return

        self.published += 1
        if self._debug:
            logger.debug(f"[EventBus] {type(event).__name__}")

        for subscription in list(self._subscriptions):
            subscription._offer(event)

        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.warning(
                    f"Event listener {listener!r} failed on "
                    f"{type(event).__name__}: {e}"
                )
