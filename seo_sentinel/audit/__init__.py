"""Audit engine package for SEO Sentinel.

This package provides landing page crawling, bounded-concurrency audit
dispatch and the structural and visual change detectors.
"""

from .aggregation import AuditSummary, ManipulationReport, build_summary, generate_manipulation_report
from .crawler import CrawlerEngine, CrawlerError
from .dispatch import AuditDispatcher
from .models.audit import AuditConfig, AuditJob, AuditOptions, AuditResult, Finding, Severity
from .models.crawl import CrawlConfig, CrawlResult, CrawlSource, DiscoveryOptions
from .runner import AuditRun, LandingPageAuditor
from .utils.url_normalizer import normalize, resolve
from .utils.scope_matcher import ScopeMatcher

__all__ = [
    # Engines
    'CrawlerEngine',
    'CrawlerError',
    'AuditDispatcher',
    'LandingPageAuditor',
    'AuditRun',

    # Models
    'AuditConfig',
    'AuditJob',
    'AuditOptions',
    'AuditResult',
    'Finding',
    'Severity',
    'CrawlConfig',
    'CrawlResult',
    'CrawlSource',
    'DiscoveryOptions',

    # Aggregation
    'AuditSummary',
    'ManipulationReport',
    'build_summary',
    'generate_manipulation_report',

    # Utilities
    'normalize',
    'resolve',
    'ScopeMatcher',
]
