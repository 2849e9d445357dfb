"""Tests for concurrent request deduplication."""

import asyncio
from datetime import timedelta

import pytest

from courier.services.deduplicator import RequestDeduplicator
from courier.services.errors import RequestCancelledError


class TestRequestDeduplicator:
    """Tests for RequestDeduplicator."""

    @pytest.mark.asyncio
    async def test_concurrent_duplicates_share_one_execution(self):
        dedup = RequestDeduplicator()
        gate = asyncio.Event()
        calls = 0

        async def fetch():
            nonlocal calls
            calls += 1
            await gate.wait()
            return {"value": 42}

        tasks = [asyncio.create_task(dedup.dedupe("k", fetch)) for _ in range(5)]
        await asyncio.sleep(0)
        gate.set()
        results = await asyncio.gather(*tasks)

        assert calls == 1
        assert all(value is results[0][0] for value, _ in results)
        assert sorted(shared for _, shared in results) == [False, True, True, True, True]
        stats = dedup.get_stats()
        assert stats.executions == 1
        assert stats.deduplicated == 4

    @pytest.mark.asyncio
    async def test_different_keys_run_independently(self):
        dedup = RequestDeduplicator()
        calls = []

        async def fetch(key):
            calls.append(key)
            return key

        a, b = await asyncio.gather(
            dedup.dedupe("a", lambda: fetch("a")),
            dedup.dedupe("b", lambda: fetch("b")),
        )

        assert a == ("a", False)
        assert b == ("b", False)
        assert sorted(calls) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_marker_cleared_after_completion(self):
        dedup = RequestDeduplicator()
        calls = 0

        async def fetch():
            nonlocal calls
            calls += 1
            return calls

        first, _ = await dedup.dedupe("k", fetch)
        second, shared = await dedup.dedupe("k", fetch)

        assert (first, second) == (1, 2)
        assert not shared
        assert dedup.get_in_flight_count() == 0

    @pytest.mark.asyncio
    async def test_marker_expires_after_window(self):
        """A long-running execution stops absorbing duplicates after the window."""
        dedup = RequestDeduplicator(window=timedelta(milliseconds=20))
        gate = asyncio.Event()
        calls = 0

        async def fetch():
            nonlocal calls
            calls += 1
            await gate.wait()
            return calls

        first = asyncio.create_task(dedup.dedupe("k", fetch))
        await asyncio.sleep(0.05)
        assert not dedup.is_in_flight("k")

        second = asyncio.create_task(dedup.dedupe("k", fetch))
        await asyncio.sleep(0)
        gate.set()

        assert (await first)[1] is False
        assert (await second)[1] is False
        assert calls == 2
        assert dedup.get_stats().window_expiries == 1

    @pytest.mark.asyncio
    async def test_errors_propagate_to_every_waiter(self):
        dedup = RequestDeduplicator()
        gate = asyncio.Event()

        async def fetch():
            await gate.wait()
            raise ValueError("boom")

        tasks = [asyncio.create_task(dedup.dedupe("k", fetch)) for _ in range(3)]
        await asyncio.sleep(0)
        gate.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert all(isinstance(r, ValueError) for r in results)
        assert not dedup.is_in_flight("k")

    @pytest.mark.asyncio
    async def test_cancelled_duplicate_does_not_cancel_shared_execution(self):
        dedup = RequestDeduplicator()
        gate = asyncio.Event()

        async def fetch():
            await gate.wait()
            return "done"

        owner = asyncio.create_task(dedup.dedupe("k", fetch))
        await asyncio.sleep(0)
        duplicate = asyncio.create_task(dedup.dedupe("k", fetch))
        await asyncio.sleep(0)

        duplicate.cancel()
        gate.set()

        assert await owner == ("done", False)
        with pytest.raises(asyncio.CancelledError):
            await duplicate

    @pytest.mark.asyncio
    async def test_cancelled_owner_does_not_cancel_shared_execution(self):
        """Duplicates still get the result when the first caller goes away."""
        dedup = RequestDeduplicator()
        gate = asyncio.Event()

        async def fetch():
            await gate.wait()
            return "done"

        owner = asyncio.create_task(dedup.dedupe("k", fetch))
        await asyncio.sleep(0)
        duplicate = asyncio.create_task(dedup.dedupe("k", fetch))
        await asyncio.sleep(0)

        owner.cancel()
        with pytest.raises(asyncio.CancelledError):
            await owner
        gate.set()

        assert await duplicate == ("done", True)

    @pytest.mark.asyncio
    async def test_cancel_all(self):
        dedup = RequestDeduplicator()

        async def fetch():
            await asyncio.Event().wait()

        task = asyncio.create_task(dedup.dedupe("k", fetch))
        await asyncio.sleep(0)

        assert await dedup.cancel_all() == 1
        with pytest.raises(RequestCancelledError):
            await task
        assert dedup.get_in_flight_keys() == []
