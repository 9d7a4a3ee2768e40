"""Pydantic models for crawl configuration and crawl output.

This module defines the data models used by the crawler engine, including
configuration validation, frontier tasks, discovered-URL results and
statistics.
"""

import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..utils.scope_matcher import DEFAULT_BINARY_EXTENSIONS


class CrawlSource(str, Enum):
    """How a URL entered the crawl."""
    LANDING_PAGE = "landing-page"   # The seed URL
    DISCOVERED = "discovered"       # Found in a crawled page's links


class CrawlConfig(BaseModel):
    """Configuration for a crawling session.

    Timeouts and delays are in seconds.
    """

    # Limits
    max_depth: int = Field(
        default=3,
        ge=0,
        le=20,
        description="Maximum link depth from the seed URL"
    )

    max_urls: int = Field(
        default=100,
        ge=1,
        le=10000,
        description="Maximum number of URLs to discover"
    )

    # Scope filtering
    include_patterns: List[str] = Field(
        default_factory=list,
        description="Regex patterns for URLs to include in crawl"
    )

    exclude_patterns: List[str] = Field(
        default_factory=list,
        description="Regex patterns for URLs to exclude from crawl"
    )

    follow_external_links: bool = Field(
        default=False,
        description="Follow links to other hostnames than the seed's"
    )

    include_binary_urls: bool = Field(
        default=False,
        description="Keep links to documents, media and static assets"
    )

    binary_extensions: List[str] = Field(
        default_factory=lambda: list(DEFAULT_BINARY_EXTENSIONS),
        description="File extensions treated as binary resources"
    )

    # Page loading
    page_timeout: float = Field(
        default=120.0,
        gt=0,
        description="Navigation timeout per page in seconds"
    )

    page_load_delay: float = Field(
        default=12.0,
        ge=0,
        description="Settle delay after navigation before extracting links"
    )

    network_idle_timeout: float = Field(
        default=15.0,
        ge=0,
        description="Best-effort wait for network idle in seconds"
    )

    # Politeness
    rate_limit_requests: int = Field(
        default=5,
        ge=1,
        description="Requests allowed per rate limit window"
    )

    rate_limit_window: float = Field(
        default=2.0,
        gt=0,
        description="Rate limit sliding window in seconds"
    )

    # Link cache
    cache_ttl: float = Field(
        default=300.0,
        gt=0,
        description="Seconds extracted link lists stay cached"
    )

    cache_max_size: int = Field(
        default=1000,
        ge=1,
        description="Maximum number of cached link lists"
    )

    keep_pages_open: bool = Field(
        default=False,
        description="Keep crawled pages open until cleanup (debugging)"
    )

    @field_validator('include_patterns', 'exclude_patterns')
    @classmethod
    def validate_regex_patterns(cls, v):
        """Validate that regex patterns compile correctly."""
        for pattern in v:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f"Invalid regex pattern '{pattern}': {e}")
        return v


class DiscoveryOptions(BaseModel):
    """Per-call options for CrawlerEngine.discover()."""

    follow_external_links: Optional[bool] = Field(
        default=None,
        description="Override CrawlConfig.follow_external_links"
    )
    max_depth: Optional[int] = Field(default=None, ge=0)
    max_urls: Optional[int] = Field(default=None, ge=1)


class CrawlTask(BaseModel):
    """A URL waiting in the crawl frontier."""

    model_config = ConfigDict(frozen=True)

    url: str = Field(description="Normalized URL to crawl")
    depth: int = Field(ge=0, description="Link depth from the seed URL")
    parent_url: Optional[str] = Field(
        default=None,
        description="Page where this URL was found (None for the seed)"
    )
    discovered_at: datetime = Field(default_factory=datetime.utcnow)


class CrawlResult(BaseModel):
    """A URL discovered by the crawler, handed to the audit dispatcher."""

    url: str
    depth: int = Field(ge=0)
    source: CrawlSource = CrawlSource.DISCOVERED
    parent_url: Optional[str] = None
    discovered_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_landing_page(self) -> bool:
        return self.source == CrawlSource.LANDING_PAGE


class CrawlStats(BaseModel):
    """Statistics tracking for crawl progress."""

    urls_discovered: int = Field(default=0, description="Total URLs discovered")
    urls_visited: int = Field(default=0, description="URLs fetched or served from cache")
    urls_failed: int = Field(default=0, description="URLs that failed navigation")
    urls_excluded: int = Field(default=0, description="Links rejected by the inclusion policy")
    cache_hits: int = Field(default=0, description="Link lists served from cache")
    links_extracted: int = Field(default=0, description="Raw links extracted from pages")

    errors_by_kind: Dict[str, int] = Field(
        default_factory=dict,
        description="Navigation failures keyed by error kind"
    )

    start_time: Optional[datetime] = Field(default=None, description="Crawl start time")
    end_time: Optional[datetime] = Field(default=None, description="Crawl end time")

    @property
    def duration(self) -> Optional[float]:
        """Calculate crawl duration in seconds."""
        if self.start_time and self.end_time:
            return (self.end_time - self.start_time).total_seconds()
        return None


class CrawlMetrics(BaseModel):
    """Metrics for crawl monitoring and reporting."""

    config: CrawlConfig = Field(description="Configuration used for this crawl")
    stats: CrawlStats = Field(default_factory=CrawlStats, description="Current statistics")

    is_running: bool = Field(default=False, description="Whether a crawl is currently active")
    current_url: Optional[str] = Field(default=None, description="Currently processing URL")

    recent_errors: List[Dict[str, Any]] = Field(
        default_factory=list,
        description="Recent error details for debugging"
    )

    def add_error(self, url: str, error_type: str, error_message: str, host: str = None):
        """Add an error to recent errors list."""
        error_info = {
            "timestamp": datetime.utcnow().isoformat(),
            "url": url,
            "error_type": error_type,
            "error_message": error_message,
            "host": host or urlparse(url).netloc
        }

        self.recent_errors.append(error_info)
        self.stats.errors_by_kind[error_type] = self.stats.errors_by_kind.get(error_type, 0) + 1

        # Keep only last 100 errors to prevent memory bloat
        if len(self.recent_errors) > 100:
            self.recent_errors = self.recent_errors[-100:]

    def export_summary(self) -> Dict[str, Any]:
        """Export a summary of metrics for reporting."""
        return {
            "max_depth": self.config.max_depth,
            "max_urls": self.config.max_urls,
            "urls_discovered": self.stats.urls_discovered,
            "urls_visited": self.stats.urls_visited,
            "urls_failed": self.stats.urls_failed,
            "urls_excluded": self.stats.urls_excluded,
            "cache_hits": self.stats.cache_hits,
            "errors_by_kind": dict(self.stats.errors_by_kind),
            "duration_seconds": self.stats.duration,
            "total_errors": len(self.recent_errors),
            "is_running": self.is_running,
        }
