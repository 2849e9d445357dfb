"""Tests for connectivity probing and the manual offline override."""

import asyncio
from datetime import timedelta

import pytest

from courier.services.connectivity import (
    ConnectionQuality,
    ConnectivityMonitor,
    ConnectivityStatus,
    classify_quality,
)
from courier.services.events import ConnectivityChanged

from tests.conftest import ScriptedProbe


class TestClassifyQuality:
    """Tests for latency tiers."""

    def test_tiers(self):
        assert classify_quality(timedelta(milliseconds=40)) == ConnectionQuality.EXCELLENT
        assert classify_quality(timedelta(milliseconds=100)) == ConnectionQuality.GOOD
        assert classify_quality(timedelta(milliseconds=299)) == ConnectionQuality.GOOD
        assert classify_quality(timedelta(milliseconds=300)) == ConnectionQuality.POOR
        assert classify_quality(timedelta(milliseconds=1000)) == ConnectionQuality.NONE
        assert classify_quality(None) == ConnectionQuality.NONE


class TestConnectivityMonitor:
    """Tests for ConnectivityMonitor."""

    def test_initial_state_is_unknown(self, bus):
        monitor = ConnectivityMonitor(probe=ScriptedProbe(), events=bus)

        assert monitor.current.status == ConnectivityStatus.UNKNOWN
        assert not monitor.is_connected
        assert not monitor.is_offline

    @pytest.mark.asyncio
    async def test_connected_when_any_endpoint_answers(self, bus):
        probe = ScriptedProbe(failing={"a.test"})
        monitor = ConnectivityMonitor(endpoints=["a.test", "b.test"], probe=probe, events=bus)

        info = await monitor.check_connectivity()

        assert info.is_connected
        assert info.endpoint == "b.test"
        assert info.quality == ConnectionQuality.EXCELLENT
        assert monitor.is_connected
        assert sorted(probe.calls) == ["a.test", "b.test"]

    @pytest.mark.asyncio
    async def test_fastest_endpoint_decides_quality(self, bus):
        probe = ScriptedProbe(delays={"slow.test": 0.35, "fast.test": 0.15})
        monitor = ConnectivityMonitor(
            endpoints=["slow.test", "fast.test"], probe=probe, events=bus
        )

        info = await monitor.check_connectivity()

        assert info.endpoint == "fast.test"
        assert info.quality == ConnectionQuality.GOOD

    @pytest.mark.asyncio
    async def test_disconnected_when_nothing_answers(self, bus):
        monitor = ConnectivityMonitor(
            endpoints=["a.test", "b.test"],
            probe=ScriptedProbe(reachable=False),
            events=bus,
        )

        info = await monitor.check_connectivity()

        assert info.is_disconnected
        assert info.quality == ConnectionQuality.NONE
        assert monitor.is_offline

    @pytest.mark.asyncio
    async def test_probe_timeout_counts_as_unreachable(self, bus):
        monitor = ConnectivityMonitor(
            endpoints=["hang.test"],
            timeout=timedelta(milliseconds=50),
            probe=ScriptedProbe(delays={"hang.test": 5}),
            events=bus,
        )

        info = await monitor.check_connectivity()

        assert info.is_disconnected

    @pytest.mark.asyncio
    async def test_publishes_only_on_change(self, bus):
        """Repeated identical probes emit a single change event."""
        probe = ScriptedProbe()
        monitor = ConnectivityMonitor(endpoints=["a.test"], probe=probe, events=bus)
        sub = monitor.subscribe()

        await monitor.check_connectivity()
        await monitor.check_connectivity()
        await monitor.check_connectivity()
        probe.reachable = False
        await monitor.check_connectivity()

        changes = [e for e in sub.drain() if isinstance(e, ConnectivityChanged)]
        assert [e.info.status for e in changes] == [
            ConnectivityStatus.CONNECTED,
            ConnectivityStatus.DISCONNECTED,
        ]

    @pytest.mark.asyncio
    async def test_manual_offline_overrides_probes(self, bus):
        probe = ScriptedProbe()
        monitor = ConnectivityMonitor(endpoints=["a.test"], probe=probe, events=bus)
        await monitor.check_connectivity()

        monitor.set_manual_offline(True)
        info = await monitor.check_connectivity()

        assert monitor.is_offline
        assert monitor.manual_offline
        assert info.is_disconnected
        assert probe.calls == ["a.test"]

    @pytest.mark.asyncio
    async def test_clearing_override_triggers_probe(self, bus):
        probe = ScriptedProbe()
        monitor = ConnectivityMonitor(endpoints=["a.test"], probe=probe, events=bus)
        monitor.set_manual_offline(True)

        monitor.set_manual_offline(False)
        await monitor.wait_for_pending_check()

        assert monitor.is_connected
        assert probe.calls == ["a.test"]

    @pytest.mark.asyncio
    async def test_override_can_be_disabled(self, bus):
        monitor = ConnectivityMonitor(
            probe=ScriptedProbe(), allow_manual_override=False, events=bus
        )

        monitor.set_manual_offline(True)

        assert not monitor.manual_offline
        assert not monitor.is_offline

    @pytest.mark.asyncio
    async def test_start_runs_first_probe_immediately(self, bus):
        probe = ScriptedProbe()
        monitor = ConnectivityMonitor(
            endpoints=["a.test"], interval=timedelta(hours=1), probe=probe, events=bus
        )
        sub = monitor.subscribe()

        monitor.start()
        try:
            event = await asyncio.wait_for(sub.get(), timeout=2)
        finally:
            monitor.stop()

        assert isinstance(event, ConnectivityChanged)
        assert event.info.is_connected
        assert not monitor.is_running()
