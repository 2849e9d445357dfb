"""
ConnectivityMonitor - periodic reachability and quality probing.

Status is CONNECTED when at least one endpoint answers; the fastest
successful probe decides the quality tier. A manual offline override forces
DISCONNECTED and suspends probing until it is cleared.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Awaitable, Callable
from urllib.parse import urlparse

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from courier.services.events import ConnectivityChanged, EventBus, Subscription
from courier.utils import safe_job

DEFAULT_ENDPOINTS = (
    "https://www.google.com",
    "https://www.cloudflare.com",
    "1.1.1.1",
)

# Upper latency bounds (exclusive) for each quality tier
EXCELLENT_LATENCY = timedelta(milliseconds=100)
GOOD_LATENCY = timedelta(milliseconds=300)
POOR_LATENCY = timedelta(milliseconds=1000)


class ConnectivityStatus(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    UNKNOWN = "unknown"


class ConnectionQuality(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    POOR = "poor"
    NONE = "none"


@dataclass(frozen=True)
class ConnectivityInfo:
    """Snapshot of network reachability."""

    status: ConnectivityStatus
    quality: ConnectionQuality
    timestamp: datetime = field(default_factory=datetime.now)
    endpoint: str | None = None
    latency: timedelta | None = None

    @property
    def is_connected(self) -> bool:
        return self.status == ConnectivityStatus.CONNECTED

    @property
    def is_disconnected(self) -> bool:
        return self.status == ConnectivityStatus.DISCONNECTED

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "quality": self.quality.value,
            "timestamp": self.timestamp.isoformat(),
            "endpoint": self.endpoint,
            "latency_ms": (
                round(self.latency.total_seconds() * 1000, 2)
                if self.latency is not None
                else None
            ),
        }


# A probe resolves when the endpoint is reachable and raises otherwise
Probe = Callable[[str, float], Awaitable[None]]


def classify_quality(latency: timedelta | None) -> ConnectionQuality:
    if latency is None:
        return ConnectionQuality.NONE
    if latency < EXCELLENT_LATENCY:
        return ConnectionQuality.EXCELLENT
    if latency < GOOD_LATENCY:
        return ConnectionQuality.GOOD
    if latency < POOR_LATENCY:
        return ConnectionQuality.POOR
    return ConnectionQuality.NONE


async def default_probe(endpoint: str, timeout: float) -> None:
    """HTTP GET for URLs, TCP connect on port 443 for bare hosts."""
    if "://" in endpoint:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.get(endpoint)
            if response.status_code >= 400:
                raise ConnectionError(f"{endpoint} answered {response.status_code}")
        return

    parsed = urlparse(f"//{endpoint}")
    host = parsed.hostname or endpoint
    port = parsed.port or 443
    _, writer = await asyncio.wait_for(
        asyncio.open_connection(host, port), timeout=timeout
    )
    writer.close()
    await writer.wait_closed()


class ConnectivityMonitor:
    """
    Periodically probes endpoints and publishes connectivity changes.

    Usage:
        monitor = ConnectivityMonitor(interval=timedelta(seconds=10))
        monitor.start()  # first probe runs immediately

        if monitor.is_offline:
            ...

        monitor.set_manual_offline(True)  # tests / airplane mode
    """

    def __init__(
        self,
        endpoints: tuple[str, ...] | list[str] = DEFAULT_ENDPOINTS,
        interval: timedelta = timedelta(seconds=10),
        timeout: timedelta = timedelta(seconds=5),
        probe: Probe | None = None,
        allow_manual_override: bool = True,
        events: EventBus | None = None,
    ):
        self.endpoints = tuple(endpoints)
        self.interval = interval
        self.timeout = timeout
        self.allow_manual_override = allow_manual_override
        self.events = events or EventBus()

        self._probe = probe or default_probe
        self._current = ConnectivityInfo(
            status=ConnectivityStatus.UNKNOWN,
            quality=ConnectionQuality.NONE,
        )
        self._manual_offline = False
        self._check_lock = asyncio.Lock()
        self._pending_check: asyncio.Task | None = None
        self.scheduler = AsyncIOScheduler()
        self._is_running = False

    @property
    def current(self) -> ConnectivityInfo:
        return self._current

    @property
    def manual_offline(self) -> bool:
        return self._manual_offline

    @property
    def is_connected(self) -> bool:
        return not self._manual_offline and self._current.is_connected

    @property
    def is_offline(self) -> bool:
        return self._manual_offline or self._current.is_disconnected

    def subscribe(self, maxsize: int = 100) -> Subscription:
        return self.events.subscribe(maxsize=maxsize)

    async def check_connectivity(self) -> ConnectivityInfo:
        """Probe every endpoint once and update the current snapshot."""
        if self._manual_offline:
            return ConnectivityInfo(
                status=ConnectivityStatus.DISCONNECTED,
                quality=ConnectionQuality.NONE,
            )

        async with self._check_lock:
            results = await asyncio.gather(
                *(self._check_endpoint(endpoint) for endpoint in self.endpoints)
            )

            # The override may have been set while probes were in flight
            if self._manual_offline:
                return self._current

            reachable = [(ep, lat) for ep, lat in results if lat is not None]
            if not reachable:
                info = ConnectivityInfo(
                    status=ConnectivityStatus.DISCONNECTED,
                    quality=ConnectionQuality.NONE,
                )
            else:
                endpoint, latency = min(reachable, key=lambda r: r[1])
                info = ConnectivityInfo(
                    status=ConnectivityStatus.CONNECTED,
                    quality=classify_quality(latency),
                    endpoint=endpoint,
                    latency=latency,
                )

            self._update(info)
            return info

    async def _check_endpoint(self, endpoint: str) -> tuple[str, timedelta | None]:
        started = time.perf_counter()
        try:
            await asyncio.wait_for(
                self._probe(endpoint, self.timeout.total_seconds()),
                timeout=self.timeout.total_seconds(),
            )
        except Exception as e:
            logger.debug(f"Connectivity probe to {endpoint} failed: {e}")
            return endpoint, None
        return endpoint, timedelta(seconds=time.perf_counter() - started)

    def _update(self, info: ConnectivityInfo) -> None:
        """Replace the snapshot, publishing only on status or quality change."""
        previous = self._current
        self._current = info
        if previous.status == info.status and previous.quality == info.quality:
            return

        logger.info(
            f"Connectivity changed: {previous.status.value}/{previous.quality.value}"
            f" -> {info.status.value}/{info.quality.value}"
        )
        self.events.publish(ConnectivityChanged(info=info))

    def set_manual_offline(self, offline: bool) -> None:
        """Force offline mode; clearing it triggers an immediate probe."""
        if not self.allow_manual_override:
            logger.warning("Manual connectivity override is disabled")
            return

        self._manual_offline = offline
        if offline:
            self._update(
                ConnectivityInfo(
                    status=ConnectivityStatus.DISCONNECTED,
                    quality=ConnectionQuality.NONE,
                )
            )
            return

        self._update(
            ConnectivityInfo(
                status=ConnectivityStatus.UNKNOWN,
                quality=ConnectionQuality.NONE,
            )
        )
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._pending_check = loop.create_task(self.check_connectivity())

    async def wait_for_pending_check(self) -> None:
        """Await the probe triggered by clearing the manual override, if any."""
        if self._pending_check is not None:
            await self._pending_check
            self._pending_check = None

    @safe_job
    async def check_job(self) -> None:
        await self.check_connectivity()

    def start(self) -> None:
        """Start periodic probing; the first probe runs immediately."""
        if self._is_running:
            logger.warning("Connectivity monitor is already running")
            return

        self.scheduler.add_job(
            self.check_job,
            trigger="interval",
            seconds=self.interval.total_seconds(),
            next_run_time=datetime.now(),
            id="connectivity_check",
            name="Connectivity Monitor",
            replace_existing=True,
        )
        self.scheduler.start()
        self._is_running = True
        logger.info(
            f"Connectivity monitor started: probing {len(self.endpoints)} endpoints "
            f"every {self.interval.total_seconds()}s"
        )

    def stop(self) -> None:
        if not self._is_running:
            return
        self.scheduler.shutdown(wait=False)
        self._is_running = False
        if self._pending_check is not None and not self._pending_check.done():
            self._pending_check.cancel()
        logger.info("Connectivity monitor stopped")

    def is_running(self) -> bool:
        return self._is_running
