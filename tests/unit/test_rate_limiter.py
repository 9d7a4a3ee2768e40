"""Unit tests for the sliding-window limiter and the 429 backoff state machine."""

import pytest
import random
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from seo_sentinel.audit.queue.rate_limiter import (
    BackoffPolicy,
    RateLimitState,
    RateLimitTracker,
    SlidingWindowRateLimiter
)


class FakeTime:
    """Clock whose sleep advances the clock instead of waiting."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class TestSlidingWindowRateLimiter:
    """Test cases for SlidingWindowRateLimiter."""

    @pytest.mark.asyncio
    async def test_allows_max_requests_without_waiting(self):
        fake = FakeTime()
        limiter = SlidingWindowRateLimiter(max_requests=5, window=2.0, clock=fake.clock, sleep=fake.sleep)

        for _ in range(5):
            await limiter.acquire()

        assert fake.sleeps == []
        assert limiter.in_window() == 5

    @pytest.mark.asyncio
    async def test_waits_for_oldest_to_leave_window(self):
        fake = FakeTime()
        limiter = SlidingWindowRateLimiter(max_requests=2, window=2.0, clock=fake.clock, sleep=fake.sleep)

        await limiter.acquire()
        fake.now = 0.5
        await limiter.acquire()
        fake.now = 1.0
        await limiter.acquire()

        assert fake.sleeps == [pytest.approx(1.0)]
        assert fake.now == pytest.approx(2.0)
        assert limiter.get_stats()["total_waits"] == 1

    @pytest.mark.asyncio
    async def test_never_more_than_max_in_any_window(self):
        fake = FakeTime()
        limiter = SlidingWindowRateLimiter(max_requests=3, window=1.0, clock=fake.clock, sleep=fake.sleep)
        acquired = []

        for _ in range(10):
            await limiter.acquire()
            acquired.append(fake.now)

        for start in acquired:
            in_window = [t for t in acquired if start <= t < start + 1.0]
            assert len(in_window) <= 3

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            SlidingWindowRateLimiter(max_requests=0)
        with pytest.raises(ValueError):
            SlidingWindowRateLimiter(window=0)


class TestBackoffPolicy:
    """Test cases for the exponential backoff policy."""

    def test_exponential_delay_is_capped(self):
        policy = BackoffPolicy(base_delay=30, max_delay=120, jitter=0)

        assert policy.calculate_delay(0) == 30
        assert policy.calculate_delay(1) == 60
        assert policy.calculate_delay(2) == 120
        assert policy.calculate_delay(5) == 120

    def test_jitter_is_additive(self):
        policy = BackoffPolicy(base_delay=30, max_delay=120, jitter=10)

        for _ in range(20):
            assert 30 <= policy.calculate_delay(0) <= 40

    def test_jitter_uses_injected_rng(self):
        first = BackoffPolicy(base_delay=30, jitter=10, rng=random.Random(42))
        second = BackoffPolicy(base_delay=30, jitter=10, rng=random.Random(42))

        delays = [first.calculate_delay(n) for n in range(3)]

        assert delays == [second.calculate_delay(n) for n in range(3)]
        expected = random.Random(42)
        assert delays[0] == 30 + expected.uniform(0, 10)


class TestRateLimitTracker:
    """Test cases for the per-URL 429 state machine."""

    @pytest.mark.asyncio
    async def test_retries_then_fails_permanently(self):
        tracker = RateLimitTracker(BackoffPolicy(base_delay=1, max_delay=10, jitter=0, max_retries=3))
        url = "https://example.com/"

        decisions = [await tracker.record_rate_limited(url) for _ in range(4)]

        assert [d.state for d in decisions] == [
            RateLimitState.RETRY,
            RateLimitState.RETRY,
            RateLimitState.RETRY,
            RateLimitState.PERMANENTLY_FAILED,
        ]
        assert [d.delay for d in decisions[:3]] == [1, 2, 4]
        assert decisions[-1].retry_count == 3
        assert not decisions[-1].should_retry
        assert tracker.state_of(url) == RateLimitState.PERMANENTLY_FAILED

    @pytest.mark.asyncio
    async def test_urls_are_tracked_independently(self):
        tracker = RateLimitTracker(BackoffPolicy(base_delay=0, jitter=0, max_retries=1))

        await tracker.record_rate_limited("https://example.com/a")

        assert tracker.state_of("https://example.com/a") == RateLimitState.RATE_LIMITED
        assert tracker.state_of("https://example.com/b") == RateLimitState.NORMAL
        assert tracker.retries("https://example.com/b") == 0

    @pytest.mark.asyncio
    async def test_stats(self):
        tracker = RateLimitTracker(BackoffPolicy(base_delay=0, jitter=0, max_retries=1))

        await tracker.record_rate_limited("https://example.com/a")
        await tracker.record_rate_limited("https://example.com/a")
        await tracker.record_rate_limited("https://example.com/b")

        stats = tracker.get_stats()
        assert stats["urls_rate_limited"] == 2
        assert stats["total_retries"] == 2
        assert stats["permanently_failed"] == 1
        assert stats["retry_distribution"] == {1: 2}
