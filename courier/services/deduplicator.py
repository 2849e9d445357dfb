"""
RequestDeduplicator - Prevents duplicate concurrent requests.

When multiple callers issue the same signature simultaneously, only one
execution runs and every caller receives its result. The in-flight marker is
dropped when the execution finishes, or once the dedup window elapses,
whichever comes first.

The shared execution outlives any single caller: cancelling one waiter, the
owner included, leaves the others waiting. If the execution itself is
cancelled, every waiter gets ``RequestCancelledError``.
"""

import asyncio
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from courier.services.errors import RequestCancelledError

T = TypeVar("T")


class RequestDeduplicator:
    """
    Deduplicates concurrent async executions by key.

    Usage:
        dedup = RequestDeduplicator(window=timedelta(seconds=5))

        result, shared = await dedup.dedupe(
            key=request.signature,
            request_fn=lambda: run(request),
        )
    """

    def __init__(
        self,
        window: timedelta = timedelta(seconds=5),
        debug: bool = False,
    ):
        self._window = window
        self._in_flight: dict[str, asyncio.Task[Any]] = {}
        self._expiry: dict[str, asyncio.TimerHandle] = {}
        self._lock = asyncio.Lock()
        self._debug = debug
        self._stats = DeduplicatorStats()

    async def dedupe(
        self,
        key: str,
        request_fn: Callable[[], Awaitable[T]],
        window: timedelta | None = None,
    ) -> tuple[T, bool]:
        """
        Execute with deduplication.

        If an execution with the same key is already in flight, wait for
        and return its result instead of starting a new one.

        Args:
            key: Signature of the logical request
            request_fn: Async function to execute if no duplicate exists
            window: Override of the marker lifetime for a new execution

        Returns:
            (result, shared) where ``shared`` is True for deduplicated callers
        """
        async with self._lock:
            task = self._in_flight.get(key)
            if task is not None and not task.done():
                self._stats.deduplicated += 1
                self._log(f"DEDUPE: Waiting for in-flight request: {key[:16]}...")
                shared = True
            else:
                self._stats.executions += 1
                self._log(f"NEW: Starting request: {key[:16]}...")
                task = asyncio.create_task(self._execute_and_cleanup(key, request_fn))
                self._in_flight[key] = task
                if window is None:
                    window = self._window
                self._schedule_expiry(key, task, window)
                shared = False

        # Any single caller going away must not cancel the shared execution
        try:
            return await asyncio.shield(task), shared
        except asyncio.CancelledError:
            if task.cancelled():
                raise RequestCancelledError() from None
            raise

    def _schedule_expiry(
        self, key: str, task: asyncio.Task[Any], window: timedelta
    ) -> None:
        loop = asyncio.get_running_loop()

        def expire() -> None:
            if self._in_flight.get(key) is task:
                del self._in_flight[key]
                self._stats.window_expiries += 1
                self._log(f"WINDOW: Marker expired: {key[:16]}...")
            self._expiry.pop(key, None)

        previous = self._expiry.pop(key, None)
        if previous is not None:
            previous.cancel()
        self._expiry[key] = loop.call_later(window.total_seconds(), expire)

    async def _execute_and_cleanup(
        self,
        key: str,
        request_fn: Callable[[], Awaitable[T]],
    ) -> T:
        """Execute request and clean up when done."""
        try:
            return await request_fn()
        finally:
            current = asyncio.current_task()
            if self._in_flight.get(key) is current:
                del self._in_flight[key]
                handle = self._expiry.pop(key, None)
                if handle is not None:
                    handle.cancel()
            self._log(f"DONE: Request completed: {key[:16]}...")

    async def cancel_all(self) -> int:
        """Cancel all in-flight executions."""
        async with self._lock:
            count = len(self._in_flight)
            for task in self._in_flight.values():
                task.cancel()
            for handle in self._expiry.values():
                handle.cancel()
            self._in_flight.clear()
            self._expiry.clear()
            if count:
                self._log(f"CANCEL_ALL: {count} requests cancelled")
            return count

    def is_in_flight(self, key: str) -> bool:
        return key in self._in_flight

    def get_in_flight_count(self) -> int:
        """Get number of in-flight requests."""
        return len(self._in_flight)

    def get_in_flight_keys(self) -> list[str]:
        """Get keys of all in-flight requests."""
        return list(self._in_flight.keys())

    def get_stats(self) -> "DeduplicatorStats":
        """Get deduplication statistics."""
        self._stats.in_flight = len(self._in_flight)
        return self._stats

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[Deduplicator] {message}")


@dataclass
class DeduplicatorStats:
    """Counters for shared executions."""

    executions: int = 0
    deduplicated: int = 0
    window_expiries: int = 0
    in_flight: int = 0

    @property
    def dedup_rate(self) -> float:
        """Share of callers served by another caller's execution."""
        callers = self.executions + self.deduplicated
        return self.deduplicated / callers if callers else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "executions": self.executions,
            "deduplicated": self.deduplicated,
            "window_expiries": self.window_expiries,
            "in_flight": self.in_flight,
            "dedup_rate": f"{self.dedup_rate:.2%}",
        }
