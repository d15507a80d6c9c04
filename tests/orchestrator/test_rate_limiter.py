"""Tests for the async rate limiter."""

from __future__ import annotations

import asyncio
import time

import pytest

from cardvault.orchestrator.rate_limiter import RateLimiter


class FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestRateLimiterValidation:
    def test_rejects_negative_interval(self):
        with pytest.raises(ValueError):
            RateLimiter(min_interval_seconds=-1)

    def test_rejects_empty_quota(self):
        with pytest.raises(ValueError):
            RateLimiter(max_calls_per_window=0)

    def test_rejects_empty_window(self):
        with pytest.raises(ValueError):
            RateLimiter(window_seconds=0)


class TestMinimumInterval:
    @pytest.mark.asyncio()
    async def test_consecutive_calls_are_spaced(self):
        """Three acquisitions take at least two full intervals."""
        limiter = RateLimiter(min_interval_seconds=0.05)
        started = time.monotonic()
        for _ in range(3):
            assert await limiter.acquire() is True
        assert time.monotonic() - started >= 0.09

    @pytest.mark.asyncio()
    async def test_time_until_available_tracks_last_call(self):
        clock = FakeClock()
        limiter = RateLimiter(min_interval_seconds=2.0, clock=clock)

        assert limiter.time_until_available() == 0.0
        await limiter.acquire()
        assert limiter.time_until_available() == pytest.approx(2.0)

        clock.now = 1.5
        assert limiter.time_until_available() == pytest.approx(0.5)
        clock.now = 2.0
        assert limiter.time_until_available() == 0.0


class TestRollingQuota:
    @pytest.mark.asyncio()
    async def test_quota_blocks_until_oldest_call_leaves_window(self):
        clock = FakeClock()
        limiter = RateLimiter(max_calls_per_window=2, window_seconds=10.0, clock=clock)

        await limiter.acquire()
        await limiter.acquire()
        assert limiter.time_until_available() == pytest.approx(10.0)

        clock.now = 4.0
        assert limiter.time_until_available() == pytest.approx(6.0)

        clock.now = 10.0
        assert limiter.time_until_available() == 0.0
        assert limiter.stats()["calls_in_window"] == 0


class TestBackoff:
    def test_penalties_double_up_to_cap(self):
        limiter = RateLimiter(backoff_base_seconds=1.0, backoff_max_seconds=4.0, clock=FakeClock())

        assert [limiter.penalize() for _ in range(4)] == [1.0, 2.0, 4.0, 4.0]
        assert limiter.consecutive_penalties == 4
        assert limiter.time_until_available() == pytest.approx(4.0)

    def test_reset_restarts_progression(self):
        limiter = RateLimiter(backoff_base_seconds=1.0, backoff_max_seconds=8.0, clock=FakeClock())
        limiter.penalize()
        limiter.penalize()

        limiter.reset_backoff()

        assert limiter.consecutive_penalties == 0
        assert limiter.penalize() == 1.0

    def test_retry_after_is_honoured_within_cap(self):
        limiter = RateLimiter(backoff_base_seconds=1.0, backoff_max_seconds=4.0, clock=FakeClock())
        assert limiter.penalize(retry_after=3.0) == 3.0

        capped = RateLimiter(backoff_base_seconds=1.0, backoff_max_seconds=4.0, clock=FakeClock())
        assert capped.penalize(retry_after=100.0) == 4.0


class TestStopEvent:
    @pytest.mark.asyncio()
    async def test_wait_is_interrupted_by_stop_event(self):
        limiter = RateLimiter(min_interval_seconds=10.0)
        assert await limiter.acquire() is True

        stop = asyncio.Event()
        asyncio.get_running_loop().call_later(0.02, stop.set)

        granted = await asyncio.wait_for(limiter.acquire(stop), timeout=1.0)

        assert granted is False
        assert limiter.stats()["total_calls"] == 1

    @pytest.mark.asyncio()
    async def test_already_set_event_returns_immediately(self):
        limiter = RateLimiter()
        stop = asyncio.Event()
        stop.set()

        assert await limiter.acquire(stop) is False
        assert limiter.stats()["total_calls"] == 0
