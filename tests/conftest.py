"""Shared fixtures and fakes for courier tests."""

import asyncio
from datetime import datetime, timedelta
from typing import Any

import pytest
import pytest_asyncio

from courier.services.connectivity import ConnectivityMonitor
from courier.services.events import EventBus
from courier.services.models import Request, ResponseDecoder, Result, Success
from courier.services.transport import Transport

HANG = object()


class FakeTransport(Transport):
    """
    Scripted transport.

    Each call consumes the next entry of ``responses``: an exception is
    raised, ``HANG`` never resolves, anything else becomes the payload of a
    200 ``Success``. Once the script runs out every call succeeds with
    ``default``.
    """

    def __init__(self, responses: list[Any] | None = None, default: Any = None):
        self.responses = list(responses or [])
        self.default = {"ok": True} if default is None else default
        self.calls: list[Request] = []
        self.gate: asyncio.Event | None = None
        self.closed = False

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def execute(self, request: Request, decoder: ResponseDecoder) -> Result:
        self.calls.append(request)
        if self.gate is not None:
            await self.gate.wait()

        outcome = self.responses.pop(0) if self.responses else self.default
        if outcome is HANG:
            await asyncio.Event().wait()
        if isinstance(outcome, BaseException):
            raise outcome

        return Success(
            data=decoder(outcome),
            status_code=200,
            correlation_id=request.correlation_id,
            headers={"content-type": "application/json"},
            raw_data=outcome,
        )

    async def close(self) -> None:
        self.closed = True


class FakeClock:
    """Manually advanced clock for TTL and age checks."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class ScriptedProbe:
    """Connectivity probe whose per-endpoint behaviour tests can change."""

    def __init__(
        self,
        reachable: bool = True,
        delays: dict[str, float] | None = None,
        failing: set[str] | None = None,
    ):
        self.reachable = reachable
        self.delays = delays or {}
        self.failing = failing or set()
        self.calls: list[str] = []

    async def __call__(self, endpoint: str, timeout: float) -> None:
        self.calls.append(endpoint)
        delay = self.delays.get(endpoint, 0.0)
        if delay:
            await asyncio.sleep(delay)
        if not self.reachable or endpoint in self.failing:
            raise ConnectionError(f"{endpoint} unreachable")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest_asyncio.fixture
async def monitor(bus):
    """Monitor that has never probed; its status stays UNKNOWN (online)."""
    monitor = ConnectivityMonitor(
        endpoints=["probe.test"], probe=ScriptedProbe(), events=bus
    )
    yield monitor
    monitor.stop()


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it holds, failing the test after ``timeout``."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)
