"""Pydantic models for audit dispatch: configuration, jobs, findings and results."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .crawl import CrawlResult, CrawlSource


class Severity(str, Enum):
    """Severity levels for audit findings."""
    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


BLOCKING_SEVERITIES = (Severity.CRITICAL, Severity.ERROR)


class Finding(BaseModel):
    """An issue or warning raised by an auditor."""

    type: str = Field(description="Machine-readable finding type, e.g. title_changed")
    severity: Severity = Field(description="Severity level of the finding")
    message: str = Field(description="Human-readable description")
    auditor: Optional[str] = Field(default=None, description="Auditor that raised the finding")
    details: Dict[str, Any] = Field(default_factory=dict, description="Additional context")
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_blocking(self) -> bool:
        return self.severity in BLOCKING_SEVERITIES


class Recommendation(BaseModel):
    """A non-blocking suggestion raised by an auditor."""

    type: str
    message: str
    auditor: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class AuditConfig(BaseModel):
    """Configuration for the audit dispatch engine.

    Timeouts and delays are in seconds.
    """

    concurrent_limit: int = Field(
        default=2,
        ge=1,
        le=10,
        description="Maximum pages audited at the same time"
    )

    page_timeout: float = Field(
        default=90.0,
        gt=0,
        description="Navigation timeout per attempt"
    )

    page_load_delay: float = Field(
        default=12.0,
        ge=0,
        description="Settle delay after navigation before auditors run"
    )

    dom_content_timeout: float = Field(default=15.0, ge=0)
    network_idle_timeout: float = Field(default=10.0, ge=0)

    # Navigation retry
    navigation_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Extra navigation attempts for retryable errors"
    )
    retry_base_delay: float = Field(default=2.0, ge=0)
    retry_jitter: float = Field(default=2.0, ge=0)

    # Pacing between requests
    request_delay_min: float = Field(default=1.0, ge=0)
    request_delay_max: float = Field(default=3.0, ge=0)
    cooldown_every: int = Field(
        default=10,
        ge=0,
        description="Insert a cooldown every N requests (0 disables)"
    )
    cooldown_min: float = Field(default=5.0, ge=0)
    cooldown_max: float = Field(default=10.0, ge=0)

    # HTTP 429 handling
    rate_limit_base_delay: float = Field(default=30.0, ge=0)
    rate_limit_max_delay: float = Field(default=120.0, ge=0)
    rate_limit_jitter: float = Field(default=10.0, ge=0)
    rate_limit_max_retries: int = Field(default=3, ge=0)

    auditor_timeout: float = Field(
        default=90.0,
        gt=0,
        description="Default time budget for an auditor without its own timeout"
    )

    keep_pages_open: bool = Field(
        default=False,
        description="Keep audited pages open until cleanup (debugging)"
    )

    @model_validator(mode='after')
    def validate_ranges(self):
        """Validate that min/max delay pairs are ordered."""
        if self.request_delay_min > self.request_delay_max:
            raise ValueError("request_delay_min must not exceed request_delay_max")
        if self.cooldown_min > self.cooldown_max:
            raise ValueError("cooldown_min must not exceed cooldown_max")
        return self


class AuditOptions(BaseModel):
    """Per-run selection of auditors."""

    only: Optional[Set[str]] = Field(
        default=None,
        description="Run only these auditors (None = every enabled auditor)"
    )
    skip: Set[str] = Field(default_factory=set, description="Auditors to skip")

    def allows(self, name: str) -> bool:
        if name in self.skip:
            return False
        return self.only is None or name in self.only


class AuditJob(BaseModel):
    """A single URL queued for auditing."""

    model_config = ConfigDict(frozen=True)

    url: str
    crawl_depth: int = 0
    source: CrawlSource = CrawlSource.DISCOVERED

    @classmethod
    def from_crawl_result(cls, result: CrawlResult) -> "AuditJob":
        return cls(url=result.url, crawl_depth=result.depth, source=result.source)


class AuditorOutcome(BaseModel):
    """Outcome of one auditor on one page."""

    name: str
    success: bool
    report: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    timed_out: bool = False
    duration: float = 0.0


class AuditResult(BaseModel):
    """Compiled result of auditing one URL."""

    model_config = ConfigDict(frozen=True)

    url: str
    success: bool
    error: Optional[str] = None
    status_code: Optional[int] = None
    load_time: float = Field(default=0.0, description="Seconds from job start to compilation")
    crawl_depth: int = 0
    crawl_source: CrawlSource = CrawlSource.DISCOVERED

    auditors: Dict[str, Dict[str, Any]] = Field(
        default_factory=dict,
        description="Successful auditor reports keyed by auditor name"
    )
    failed_auditors: List[str] = Field(default_factory=list)

    issues: List[Finding] = Field(default_factory=list)
    warnings: List[Finding] = Field(default_factory=list)
    recommendations: List[Recommendation] = Field(default_factory=list)

    score: int = Field(default=0, ge=0, le=100)
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    @staticmethod
    def calculate_score(success: bool, issues: List[Finding], warnings: List[Finding]) -> int:
        """100 minus 15 per blocking issue and 5 per warning, 0 for failed pages."""
        if not success:
            return 0
        blocking = sum(1 for issue in issues if issue.is_blocking)
        score = 100 - blocking * 15 - len(warnings) * 5
        return max(0, min(100, score))

    @classmethod
    def failed(
        cls,
        job: AuditJob,
        error: str,
        status_code: Optional[int] = None,
        load_time: float = 0.0
    ) -> "AuditResult":
        return cls(
            url=job.url,
            success=False,
            error=error,
            status_code=status_code,
            load_time=load_time,
            crawl_depth=job.crawl_depth,
            crawl_source=job.source,
        )

    @property
    def critical_issue_count(self) -> int:
        return sum(1 for issue in self.issues if issue.is_blocking)

    def get_auditor_report(self, name: str) -> Optional[Dict[str, Any]]:
        return self.auditors.get(name)


class ProgressEvent(BaseModel):
    """Progress notification emitted once per completed URL."""

    current: int
    total: int
    url: str
    result: AuditResult
    success_count: int
    failure_count: int
