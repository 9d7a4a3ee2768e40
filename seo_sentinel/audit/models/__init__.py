"""Data models for crawling and auditing."""

from .crawl import (
    CrawlConfig,
    CrawlMetrics,
    CrawlResult,
    CrawlSource,
    CrawlStats,
    CrawlTask,
    DiscoveryOptions,
)
from .audit import (
    AuditConfig,
    AuditJob,
    AuditOptions,
    AuditorOutcome,
    AuditResult,
    Finding,
    ProgressEvent,
    Recommendation,
    Severity,
)

__all__ = [
    "CrawlConfig",
    "CrawlMetrics",
    "CrawlResult",
    "CrawlSource",
    "CrawlStats",
    "CrawlTask",
    "DiscoveryOptions",
    "AuditConfig",
    "AuditJob",
    "AuditOptions",
    "AuditorOutcome",
    "AuditResult",
    "Finding",
    "ProgressEvent",
    "Recommendation",
    "Severity",
]
