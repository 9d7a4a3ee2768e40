"""Run-level aggregation of audit results.

Builds the AuditSummary consumed by reporters and the manipulation report
that lists heading demotions and visual changes across all audited pages.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Sequence

from pydantic import BaseModel, Field

from .auditors.structure import STRUCTURE_AUDITOR_NAME
from .auditors.visual import VISUAL_AUDITOR_NAME, VisualSeverity, classify_visual_change
from .models.audit import AuditResult, Severity


H1_DEMOTION_PENALTY = 15
VISUAL_CHANGE_PENALTY = 2


def _hierarchy_changes(result: AuditResult) -> List[Dict[str, Any]]:
    report = result.get_auditor_report(STRUCTURE_AUDITOR_NAME) or {}
    comparison = report.get('structure_comparison') or {}
    return (comparison.get('heading_changes') or {}).get('hierarchy_changes') or []


def _correlations(result: AuditResult) -> List[Dict[str, Any]]:
    report = result.get_auditor_report(STRUCTURE_AUDITOR_NAME) or {}
    return report.get('correlations') or []


def _visual_changes(result: AuditResult) -> List[Dict[str, Any]]:
    report = result.get_auditor_report(VISUAL_AUDITOR_NAME) or {}
    return report.get('visual_changes') or []


def _is_h1_demotion(change: Dict[str, Any]) -> bool:
    return change.get('from_level') == 1 and change.get('to_level', 1) > 1


class AuditSummary(BaseModel):
    """Aggregate outcome of one landing page audit run."""

    audit_id: str = ""
    landing_url: str = ""
    start_time: datetime = Field(default_factory=datetime.utcnow)
    end_time: datetime = Field(default_factory=datetime.utcnow)
    total_urls: int = 0
    is_failure: bool = False
    error: Optional[str] = None

    successful_audits: int = 0
    failed_audits: int = 0
    success_rate: int = Field(default=0, description="Percentage of URLs audited successfully")

    critical_issues: int = 0
    total_warnings: int = 0
    audit_score: int = Field(default=0, ge=0, le=100)

    h1_manipulations: int = 0
    structure_manipulations: int = 0
    visual_changes: int = 0
    visual_regression_issues: int = 0
    pages_with_visual_changes: int = 0
    pages_with_h1_changes: int = 0

    avg_load_time: float = 0.0

    @property
    def duration(self) -> float:
        return (self.end_time - self.start_time).total_seconds()

    def get_visual_regression_summary(self) -> Dict[str, int]:
        return {
            'total_changes': self.visual_changes,
            'h1_manipulations': self.h1_manipulations,
            'structure_manipulations': self.structure_manipulations,
            'critical_visual_issues': self.visual_regression_issues,
            'pages_with_visual_changes': self.pages_with_visual_changes,
            'pages_with_h1_changes': self.pages_with_h1_changes,
        }


def calculate_overall_score(
    results: Sequence[AuditResult],
    total_urls: int,
    h1_manipulations: int,
    visual_changes: int
) -> int:
    """Mean page score minus run-level penalties, floored at 0."""
    if not results or total_urls == 0:
        return 0
    score = sum(result.score for result in results) / total_urls
    score -= h1_manipulations * H1_DEMOTION_PENALTY
    score -= visual_changes * VISUAL_CHANGE_PENALTY
    return max(0, round(score))


def build_summary(
    results: Sequence[AuditResult],
    audit_id: str = "",
    landing_url: str = "",
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
    total_urls: Optional[int] = None,
    error: Optional[str] = None
) -> AuditSummary:
    """Aggregate page results into an AuditSummary.

    The summary is a failure when no URL was audited successfully.
    """
    total = len(results) if total_urls is None else total_urls
    successful = [r for r in results if r.success]

    h1_manipulations = 0
    structure_manipulations = 0
    visual_changes = 0
    visual_issues = 0
    pages_with_visual = 0
    pages_with_h1 = 0

    for result in results:
        changes = _hierarchy_changes(result)
        h1_count = sum(1 for change in changes if _is_h1_demotion(change))
        h1_manipulations += h1_count
        if any(change.get('from_level') == 1 for change in changes):
            pages_with_h1 += 1

        structure_manipulations += sum(
            1 for issue in result.issues
            if issue.auditor == STRUCTURE_AUDITOR_NAME and issue.type == "seo_manipulation_detected"
        )

        page_visual_changes = len(_visual_changes(result))
        visual_changes += page_visual_changes
        if page_visual_changes:
            pages_with_visual += 1
        visual_issues += sum(
            1 for issue in result.issues
            if issue.auditor == VISUAL_AUDITOR_NAME and issue.severity == Severity.ERROR
        )

    load_times = [r.load_time for r in successful if r.load_time]

    return AuditSummary(
        audit_id=audit_id,
        landing_url=landing_url,
        start_time=start_time or datetime.utcnow(),
        end_time=end_time or datetime.utcnow(),
        total_urls=total,
        is_failure=not successful,
        error=error,
        successful_audits=len(successful),
        failed_audits=len(results) - len(successful),
        success_rate=round(len(successful) / total * 100) if total else 0,
        critical_issues=sum(result.critical_issue_count for result in results),
        total_warnings=sum(len(result.warnings) for result in results),
        audit_score=calculate_overall_score(results, total, h1_manipulations, visual_changes),
        h1_manipulations=h1_manipulations,
        structure_manipulations=structure_manipulations,
        visual_changes=visual_changes,
        visual_regression_issues=visual_issues,
        pages_with_visual_changes=pages_with_visual,
        pages_with_h1_changes=pages_with_h1,
        avg_load_time=sum(load_times) / len(load_times) if load_times else 0.0,
    )


# Manipulation report

class ManipulationSeverity(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"


class HeadingManipulation(BaseModel):
    url: str
    from_tag: str
    to_tag: str
    text: str
    impact: str
    has_compensation: bool
    severity: ManipulationSeverity
    structural_change: Dict[str, Any]
    compensating_styling: Optional[Dict[str, Any]] = None

    @property
    def is_h1_demotion(self) -> bool:
        return self.from_tag == "H1" and self.to_tag != "H1"


class VisualChange(BaseModel):
    url: str
    element: str
    viewport: str
    diff_percentage: float
    severity: VisualSeverity
    reason: str = "visual_difference"
    diff_image_ref: Optional[str] = None


class ManipulationReport(BaseModel):
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    total_urls: int = 0
    heading_manipulations: List[HeadingManipulation] = Field(default_factory=list)
    visual_changes: List[VisualChange] = Field(default_factory=list)
    summary: Dict[str, int] = Field(default_factory=dict)

    @property
    def h1_manipulations(self) -> List[HeadingManipulation]:
        return [m for m in self.heading_manipulations if m.is_h1_demotion]

    @property
    def has_findings(self) -> bool:
        return bool(self.heading_manipulations or self.visual_changes)


def _compensating_styling(result: AuditResult, change: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    for correlation in _correlations(result):
        matched = correlation.get('structural_change')
        if matched and matched.get('index') == change.get('index'):
            return correlation.get('style_change')
    return None


def detect_heading_manipulations(results: Sequence[AuditResult]) -> List[HeadingManipulation]:
    """Demoted headings; CRITICAL when compensating styling was correlated."""
    manipulations = []
    for result in results:
        for change in _hierarchy_changes(result):
            if change.get('impact') not in ("critical", "warning"):
                continue
            styling = _compensating_styling(result, change)
            manipulations.append(HeadingManipulation(
                url=result.url,
                from_tag=change['from_tag'],
                to_tag=change['to_tag'],
                text=change.get('text', ""),
                impact=change['impact'],
                has_compensation=styling is not None,
                severity=ManipulationSeverity.CRITICAL if styling is not None else ManipulationSeverity.HIGH,
                structural_change=change,
                compensating_styling=styling,
            ))
    return manipulations


def detect_visual_changes(results: Sequence[AuditResult]) -> List[VisualChange]:
    changes = []
    for result in results:
        for change in _visual_changes(result):
            percentage = change.get('diff_percentage', 0.0)
            changes.append(VisualChange(
                url=result.url,
                element=change['element'],
                viewport=change['viewport'],
                diff_percentage=percentage,
                severity=change.get('severity') or classify_visual_change(percentage),
                reason=change.get('reason', "visual_difference"),
                diff_image_ref=change.get('diff_image_ref'),
            ))
    return changes


def _manipulated_urls(manipulations: Sequence[HeadingManipulation]) -> Iterator[str]:
    for manipulation in manipulations:
        if manipulation.has_compensation or manipulation.is_h1_demotion:
            yield manipulation.url


def generate_manipulation_report(results: Sequence[AuditResult]) -> ManipulationReport:
    """Heading manipulations and visual changes across all results."""
    headings = detect_heading_manipulations(results)
    visual = detect_visual_changes(results)

    return ManipulationReport(
        total_urls=len(results),
        heading_manipulations=headings,
        visual_changes=visual,
        summary={
            'critical_manipulations': sum(1 for m in headings if m.severity == ManipulationSeverity.CRITICAL),
            'h1_demotions': sum(1 for m in headings if m.is_h1_demotion),
            'total_heading_changes': len(headings),
            'major_visual_changes': sum(1 for c in visual if c.severity == VisualSeverity.MAJOR),
            'urls_with_manipulation': len(set(_manipulated_urls(headings))),
        },
    )
