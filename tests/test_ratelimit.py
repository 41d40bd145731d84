"""Tests for callsifter.platforms.ratelimit."""

from __future__ import annotations

import pytest

from callsifter.errors import TransientError
from callsifter.platforms.ratelimit import DAY_SECONDS, RateLimiter


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


class TestSpacing:
    def test_first_request_does_not_wait(self, clock):
        limiter = RateLimiter(min_interval=0.5, clock=clock, sleep=clock.sleep)
        limiter.acquire()
        assert clock.sleeps == []

    def test_back_to_back_requests_are_spaced(self, clock):
        limiter = RateLimiter.per_second(4, clock=clock, sleep=clock.sleep)
        limiter.acquire()
        clock.now += 0.1
        limiter.acquire()
        assert clock.sleeps == [pytest.approx(0.15)]

    def test_no_wait_after_interval_passed(self, clock):
        limiter = RateLimiter(min_interval=1.0, clock=clock, sleep=clock.sleep)
        limiter.acquire()
        clock.now += 2
        limiter.acquire()
        assert clock.sleeps == []

    def test_unlimited(self, clock):
        limiter = RateLimiter(clock=clock, sleep=clock.sleep)
        for _ in range(10):
            limiter.acquire()
        assert clock.sleeps == []
        assert limiter.remaining_today is None


class TestDailyQuota:
    def test_quota_exhausted_raises_transient(self, clock):
        limiter = RateLimiter(daily_quota=2, clock=clock, sleep=clock.sleep)
        limiter.acquire()
        clock.now += 10
        limiter.acquire()
        assert limiter.remaining_today == 0

        with pytest.raises(TransientError) as exc_info:
            limiter.acquire()
        assert exc_info.value.retry_after == pytest.approx(DAY_SECONDS - 10)

    def test_quota_recovers_after_a_day(self, clock):
        limiter = RateLimiter(daily_quota=1, clock=clock, sleep=clock.sleep)
        limiter.acquire()
        clock.now += DAY_SECONDS + 1
        assert limiter.remaining_today == 1
        limiter.acquire()

    def test_remaining_counts_down(self, clock):
        limiter = RateLimiter(daily_quota=3, clock=clock, sleep=clock.sleep)
        assert limiter.remaining_today == 3
        limiter.acquire()
        assert limiter.remaining_today == 2
