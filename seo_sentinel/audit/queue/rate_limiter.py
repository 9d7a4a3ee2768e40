"""Politeness controls: sliding-window request limiter and 429 backoff state.

The sliding window limiter paces the crawler's page fetches. The
rate-limit tracker drives the dispatcher's HTTP 429 state machine:

    NORMAL -> RATE_LIMITED(n) -> RETRY (n < max_retries)
                              -> PERMANENTLY_FAILED (n == max_retries)
"""

import asyncio
import logging
import random
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict


logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter:
    """Allow at most ``max_requests`` acquisitions per ``window`` seconds.

    Waiters sleep until the oldest timestamp leaves the window instead of
    spinning.
    """

    def __init__(
        self,
        max_requests: int = 5,
        window: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        """Initialize the limiter.

        Args:
            max_requests: Requests allowed inside one window
            window: Window length in seconds
            clock: Monotonic clock, injectable for tests
            sleep: Async sleep function, injectable for tests
        """
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window <= 0:
            raise ValueError("window must be positive")

        self.max_requests = max_requests
        self.window = window
        self._clock = clock
        self._sleep = sleep
        self._timestamps: Deque[float] = deque()
        self._lock = asyncio.Lock()

        self._stats = {
            "total_acquired": 0,
            "total_waits": 0,
            "total_wait_time": 0.0,
        }

    def _prune(self, now: float) -> None:
        while self._timestamps and now - self._timestamps[0] >= self.window:
            self._timestamps.popleft()

    async def acquire(self) -> None:
        """Wait until a request slot is available, then take it."""
        async with self._lock:
            while True:
                now = self._clock()
                self._prune(now)

                if len(self._timestamps) < self.max_requests:
                    self._timestamps.append(now)
                    self._stats["total_acquired"] += 1
                    return

                wait_time = self.window - (now - self._timestamps[0])
                self._stats["total_waits"] += 1
                self._stats["total_wait_time"] += wait_time
                logger.debug(f"Rate limit reached, waiting {wait_time:.2f}s")
                await self._sleep(wait_time)

    def in_window(self) -> int:
        """Number of acquisitions currently inside the window."""
        self._prune(self._clock())
        return len(self._timestamps)

    def get_stats(self) -> Dict[str, Any]:
        stats = dict(self._stats)
        stats.update({
            "max_requests": self.max_requests,
            "window_seconds": self.window,
            "in_window": self.in_window(),
        })
        return stats


class RateLimitState(Enum):
    """States of the per-URL HTTP 429 state machine."""
    NORMAL = "normal"
    RATE_LIMITED = "rate_limited"
    RETRY = "retry"
    PERMANENTLY_FAILED = "permanently_failed"


@dataclass
class BackoffPolicy:
    """Exponential backoff with a cap and additive jitter."""
    base_delay: float = 30.0
    max_delay: float = 120.0
    jitter: float = 10.0
    max_retries: int = 3
    rng: random.Random = field(default_factory=random.Random, repr=False, compare=False)

    def calculate_delay(self, retry_count: int) -> float:
        """Delay before retry number ``retry_count + 1``: min(base * 2^n, max) + jitter."""
        delay = min(self.base_delay * (2 ** retry_count), self.max_delay)
        if self.jitter > 0:
            delay += self.rng.uniform(0, self.jitter)
        return delay


@dataclass
class RateLimitDecision:
    """What to do after a URL answered HTTP 429."""
    state: RateLimitState
    retry_count: int
    delay: float = 0.0

    @property
    def should_retry(self) -> bool:
        return self.state == RateLimitState.RETRY


class RateLimitTracker:
    """Per-URL 429 retry counts for the lifetime of one dispatcher."""

    def __init__(self, policy: BackoffPolicy):
        self.policy = policy
        self._retries: Dict[str, int] = {}
        self._exhausted: Dict[str, int] = {}
        self._lock = asyncio.Lock()

    async def record_rate_limited(self, url: str) -> RateLimitDecision:
        """Register a 429 for ``url`` and decide between retry and failure."""
        async with self._lock:
            retry_count = self._retries.get(url, 0)

            if retry_count >= self.policy.max_retries:
                self._exhausted[url] = retry_count
                logger.error(f"Rate limit retries exhausted for {url} after {retry_count} attempts")
                return RateLimitDecision(RateLimitState.PERMANENTLY_FAILED, retry_count)

            delay = self.policy.calculate_delay(retry_count)
            self._retries[url] = retry_count + 1
            logger.warning(
                f"Rate limited on {url}, retry {retry_count + 1}/{self.policy.max_retries} "
                f"in {delay:.1f}s"
            )
            return RateLimitDecision(RateLimitState.RETRY, retry_count + 1, delay)

    def state_of(self, url: str) -> RateLimitState:
        if url in self._exhausted:
            return RateLimitState.PERMANENTLY_FAILED
        if url in self._retries:
            return RateLimitState.RATE_LIMITED
        return RateLimitState.NORMAL

    def retries(self, url: str) -> int:
        return self._retries.get(url, 0)

    def get_stats(self) -> Dict[str, Any]:
        """Retry counts and distribution across URLs."""
        distribution: Dict[int, int] = {}
        for count in self._retries.values():
            distribution[count] = distribution.get(count, 0) + 1

        return {
            "urls_rate_limited": len(self._retries),
            "total_retries": sum(self._retries.values()),
            "permanently_failed": len(self._exhausted),
            "retry_distribution": distribution,
        }
