"""Tests for repo_fanout/utils/rate_limiter.py."""

import asyncio
import time

import pytest

from repo_fanout.utils.rate_limiter import RateLimiter


class FakeClock:
    """Manual clock whose sleep advances time instantly."""

    def __init__(self, start: float = 100.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay
        await asyncio.sleep(0)


class TestRateLimiterInit:
    def test_negative_interval_rejected(self):
        with pytest.raises(ValueError, match="interval"):
            RateLimiter(-1)

    def test_unlimited_has_zero_interval(self):
        limiter = RateLimiter.unlimited()
        assert limiter.interval == 0.0


class TestRateLimiterAcquire:
    @pytest.mark.asyncio
    async def test_first_acquire_does_not_wait(self):
        clock = FakeClock()
        limiter = RateLimiter(0.72, clock=clock, sleep=clock.sleep)

        await limiter.acquire()

        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_sequential_acquires_are_spaced(self):
        clock = FakeClock()
        limiter = RateLimiter(0.72, clock=clock, sleep=clock.sleep)

        await limiter.acquire()
        await limiter.acquire()

        assert clock.sleeps == [pytest.approx(0.72)]
        assert clock.now == pytest.approx(100.72)

    @pytest.mark.asyncio
    async def test_no_wait_after_interval_elapsed(self):
        clock = FakeClock()
        limiter = RateLimiter(0.5, clock=clock, sleep=clock.sleep)

        await limiter.acquire()
        clock.now += 2.0
        await limiter.acquire()

        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_concurrent_acquires_get_distinct_slots(self):
        """Permits handed to concurrent workers are at least one interval apart."""
        clock = FakeClock()
        limiter = RateLimiter(1.0, clock=clock, sleep=clock.sleep)
        granted: list[float] = []

        async def worker() -> None:
            await limiter.acquire()
            granted.append(clock.now)

        await asyncio.gather(*(worker() for _ in range(5)))

        assert granted == [pytest.approx(100.0 + i) for i in range(5)]

    @pytest.mark.asyncio
    async def test_zero_interval_never_sleeps(self):
        clock = FakeClock()
        limiter = RateLimiter(0, clock=clock, sleep=clock.sleep)

        await asyncio.gather(*(limiter.acquire() for _ in range(10)))

        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_real_clock_spacing(self):
        interval = 0.05
        limiter = RateLimiter(interval)
        granted: list[float] = []

        async def worker() -> None:
            await limiter.acquire()
            granted.append(time.monotonic())

        await asyncio.gather(*(worker() for _ in range(4)))

        granted.sort()
        gaps = [b - a for a, b in zip(granted, granted[1:], strict=False)]
        assert all(gap >= interval - 0.005 for gap in gaps)
