"""
Unit tests for bounded fan-out.
"""

import asyncio

import pytest

from pantry_admin.core.concurrency import gather_bounded


class Tracker:
    """Counts concurrent calls."""

    def __init__(self):
        self.in_flight = 0
        self.peak = 0

    async def call(self, value, fail=False):
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(0)
            await asyncio.sleep(0)
            if fail:
                raise RuntimeError(f"boom {value}")
            return value
        finally:
            self.in_flight -= 1


class TestGatherBounded:
    """Test gather_bounded ordering, isolation and limits."""

    @pytest.mark.asyncio
    async def test_results_keep_call_order(self):
        tracker = Tracker()
        results = await gather_bounded([lambda v=v: tracker.call(v) for v in range(5)], 2)
        assert results == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_limit_caps_in_flight_calls(self):
        tracker = Tracker()
        await gather_bounded([lambda v=v: tracker.call(v) for v in range(20)], 3)
        assert tracker.peak == 3

    @pytest.mark.asyncio
    async def test_failure_does_not_cancel_siblings(self):
        tracker = Tracker()
        results = await gather_bounded(
            [lambda v=v: tracker.call(v, fail=(v == 1)) for v in range(3)], 3
        )
        assert results[0] == 0
        assert isinstance(results[1], RuntimeError)
        assert results[2] == 2

    @pytest.mark.asyncio
    async def test_shared_semaphore_bounds_several_batches(self):
        tracker = Tracker()
        shared = asyncio.Semaphore(2)
        await asyncio.gather(
            gather_bounded([lambda v=v: tracker.call(v) for v in range(5)], 5, shared),
            gather_bounded([lambda v=v: tracker.call(v) for v in range(5)], 5, shared),
        )
        assert tracker.peak == 2

    @pytest.mark.asyncio
    async def test_empty(self):
        assert await gather_bounded([], 1) == []

    @pytest.mark.asyncio
    async def test_invalid_limit(self):
        with pytest.raises(ValueError):
            await gather_bounded([], 0)
