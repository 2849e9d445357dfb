"""Tests for the event bus."""

import asyncio

import pytest

from courier.services.events import CacheEvicted, CacheHit, EventBus, QueueCleared


class TestEventBus:
    """Tests for EventBus and Subscription."""

    def test_events_without_subscribers_are_dropped(self):
        bus = EventBus()

        bus.publish(CacheEvicted(key="k"))

        assert bus.dropped == 1
        assert bus.published == 0

    @pytest.mark.asyncio
    async def test_every_subscriber_receives_every_event(self):
        bus = EventBus()
        first = bus.subscribe()
        second = bus.subscribe()

        bus.publish(CacheHit(key="a", correlation_id="c1"))
        bus.publish(CacheEvicted(key="b"))

        assert [type(e) for e in first.drain()] == [CacheHit, CacheEvicted]
        assert [type(e) for e in second.drain()] == [CacheHit, CacheEvicted]

    @pytest.mark.asyncio
    async def test_async_iteration(self):
        bus = EventBus()
        sub = bus.subscribe()
        bus.publish(QueueCleared(count=3))

        async for event in sub:
            assert event.count == 3
            break

    @pytest.mark.asyncio
    async def test_full_subscription_drops_instead_of_blocking(self):
        bus = EventBus()
        sub = bus.subscribe(maxsize=2)

        for n in range(5):
            bus.publish(QueueCleared(count=n))

        assert [e.count for e in sub.drain()] == [0, 1]
        assert sub.dropped == 3

    @pytest.mark.asyncio
    async def test_closed_subscription_stops_receiving(self):
        bus = EventBus()
        sub = bus.subscribe()
        sub.close()

        bus.publish(CacheEvicted(key="k"))

        assert sub.get_nowait() is None
        assert not bus.has_subscribers

    def test_failing_listener_does_not_affect_others(self):
        bus = EventBus()
        received = []

        def broken(event):
            raise RuntimeError("listener bug")

        bus.add_listener(broken)
        bus.add_listener(received.append)
        bus.publish(CacheEvicted(key="k"))

        assert len(received) == 1

        bus.remove_listener(broken)
        bus.remove_listener(received.append)
        assert not bus.has_subscribers

    @pytest.mark.asyncio
    async def test_get_waits_for_next_event(self):
        bus = EventBus()
        sub = bus.subscribe()

        waiter = asyncio.create_task(sub.get())
        await asyncio.sleep(0)
        bus.publish(CacheEvicted(key="late"))

        event = await asyncio.wait_for(waiter, timeout=1)
        assert event.key == "late"

    def test_events_are_timestamped(self):
        event = CacheEvicted(key="k")

        assert event.timestamp is not None
