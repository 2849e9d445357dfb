"""
MetricsCollector - aggregates published events into request, cache and
queue statistics. A pure observer: it never blocks or feeds back into the
request path.
"""

from collections import deque
from datetime import datetime, timedelta
from typing import Any

from courier.services.events import (
    CacheEvicted,
    CacheHit,
    CacheMiss,
    Event,
    EventBus,
    QueueItemAdded,
    QueueItemEvicted,
    QueueItemFailed,
    QueueItemRemoved,
    QueueItemsExpired,
    RequestCompleted,
)
from courier.services.models import ErrorCategory, RequestMetrics


class MetricsCollector:
    """
    Usage:
        collector = MetricsCollector(orchestrator.events)
        ...
        print(collector.summary())
    """

    def __init__(self, bus: EventBus | None = None, history_size: int = 1000):
        self._history: deque[RequestMetrics] = deque(maxlen=history_size)
        self._bus = bus
        self.reset()
        if bus is not None:
            bus.add_listener(self.handle)

    def reset(self) -> None:
        self._history.clear()
        self.requests = 0
        self.successes = 0
        self.failures = 0
        self.queued = 0
        self.deduplicated = 0
        self.retries = 0
        self.failures_by_category: dict[str, int] = {}
        self.cache_hits = 0
        self.cache_misses = 0
        self.cache_evictions = 0
        self.queue_added = 0
        self.queue_removed = 0
        self.queue_failed = 0
        self.queue_evicted = 0
        self.queue_expired = 0
        self._total_duration = timedelta(0)
        self.last_reset = datetime.now()

    def detach(self) -> None:
        if self._bus is not None:
            self._bus.remove_listener(self.handle)
            self._bus = None

    def handle(self, event: Event) -> None:
        if isinstance(event, RequestCompleted):
            self._record_request(event.metrics)
        elif isinstance(event, CacheHit):
            self.cache_hits += 1
        elif isinstance(event, CacheMiss):
            self.cache_misses += 1
        elif isinstance(event, CacheEvicted):
            self.cache_evictions += 1
        elif isinstance(event, QueueItemAdded):
            self.queue_added += 1
        elif isinstance(event, QueueItemRemoved):
            self.queue_removed += 1
        elif isinstance(event, QueueItemFailed):
            self.queue_failed += 1
        elif isinstance(event, QueueItemEvicted):
            self.queue_evicted += 1
        elif isinstance(event, QueueItemsExpired):
            self.queue_expired += event.count

    def _record_request(self, metrics: RequestMetrics) -> None:
        self._history.append(metrics)
        self.requests += 1
        self.retries += metrics.retry_count
        self._total_duration += metrics.duration
        if metrics.deduplicated:
            self.deduplicated += 1

        if metrics.success:
            self.successes += 1
            return

        if metrics.error_category == ErrorCategory.QUEUED_FOR_LATER:
            self.queued += 1
            return

        self.failures += 1
        category = metrics.error_category.value if metrics.error_category else "unknown"
        self.failures_by_category[category] = (
            self.failures_by_category.get(category, 0) + 1
        )

    @property
    def success_rate(self) -> float:
        completed = self.successes + self.failures
        if completed == 0:
            return 0.0
        return self.successes / completed

    @property
    def cache_hit_rate(self) -> float:
        total = self.cache_hits + self.cache_misses
        if total == 0:
            return 0.0
        return self.cache_hits / total

    @property
    def average_duration(self) -> timedelta:
        if self.requests == 0:
            return timedelta(0)
        return self._total_duration / self.requests

    def recent(self, limit: int = 20) -> list[RequestMetrics]:
        return list(self._history)[-limit:]

    def summary(self) -> dict[str, Any]:
        return {
            "requests": {
                "total": self.requests,
                "successes": self.successes,
                "failures": self.failures,
                "queued": self.queued,
                "deduplicated": self.deduplicated,
                "retries": self.retries,
                "success_rate": f"{self.success_rate:.2%}",
                "average_duration_ms": round(
                    self.average_duration.total_seconds() * 1000, 2
                ),
                "failures_by_category": dict(self.failures_by_category),
            },
            "cache": {
                "hits": self.cache_hits,
                "misses": self.cache_misses,
                "evictions": self.cache_evictions,
                "hit_rate": f"{self.cache_hit_rate:.2%}",
            },
            "queue": {
                "added": self.queue_added,
                "removed": self.queue_removed,
                "failed": self.queue_failed,
                "evicted": self.queue_evicted,
                "expired": self.queue_expired,
            },
            "since": self.last_reset.isoformat(),
        }
