"""Crawl frontier and rate limiting."""

from .frontier_queue import CrawlFrontier, FrontierStats
from .rate_limiter import (
    BackoffPolicy,
    RateLimitDecision,
    RateLimitState,
    RateLimitTracker,
    SlidingWindowRateLimiter,
)

__all__ = [
    "CrawlFrontier",
    "FrontierStats",
    "BackoffPolicy",
    "RateLimitDecision",
    "RateLimitState",
    "RateLimitTracker",
    "SlidingWindowRateLimiter",
]
