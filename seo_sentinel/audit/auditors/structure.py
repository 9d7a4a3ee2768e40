"""Structural manipulation detector.

Compares a page's heading hierarchy, meta tags, landmark elements and
computed heading styles with the baseline captured on first observation.
The signal it looks for is a heading demoted in markup (e.g. H1 -> H3)
while its styling is pushed up so visitors see no difference.

The comparison functions are module-level and pure; the auditor class only
extracts snapshots from the page and handles baselines.
"""

import json
import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .base import AuditorReport, BaseAuditor
from ..baselines.store import BaselineKey, BaselineKind, BaselineStore
from ..capture.render import PageHandle
from ..errors import BaselineUnreadable
from ..models.audit import Severity


STRUCTURE_AUDITOR_NAME = "html_structure"

DEFAULT_IMPORTANT_ELEMENTS = [
    "h1", "h2", "h3", "h4", "h5", "h6",
    "title",
    'meta[name="description"]',
    'meta[name="keywords"]',
    "header", "nav", "main", "section", "article", "aside", "footer",
]

DEFAULT_CONTAINER_SELECTORS = ["header", "nav", "main", "footer", ".hero", ".content"]

FONT_SIZE_GROWTH_THRESHOLD = 1.2

_IMPERSONATION_CANDIDATE = re.compile(r'^h[2-6]')

_FONT_WEIGHTS = {"normal": 400.0, "bold": 700.0}


EXTRACT_STRUCTURE_JS = """
(importantSelectors) => {
    const selectorFor = (el) => {
        if (el.id) return '#' + CSS.escape(el.id);
        const parts = [];
        let current = el;
        while (current && current !== document.body && current !== document.documentElement) {
            let part = current.tagName.toLowerCase();
            const parent = current.parentElement;
            if (parent) {
                const same = Array.from(parent.children).filter((e) => e.tagName === current.tagName);
                if (same.length > 1) part += `:nth-of-type(${same.indexOf(current) + 1})`;
            }
            parts.unshift(part);
            current = parent;
        }
        return parts.join(' > ');
    };

    const headings = Array.from(document.querySelectorAll('h1, h2, h3, h4, h5, h6')).map((h, index) => ({
        level: parseInt(h.tagName.substring(1), 10),
        text: (h.textContent || '').trim().slice(0, 200),
        selector: selectorFor(h),
        index,
    }));

    const importantElements = {};
    importantSelectors.forEach((selector) => {
        try {
            importantElements[selector] = document.querySelectorAll(selector).length;
        } catch (e) {
            importantElements[selector] = 0;
        }
    });

    const metaTags = Array.from(document.querySelectorAll('meta')).map((m) => ({
        name: m.getAttribute('name'),
        property: m.getAttribute('property'),
        http_equiv: m.getAttribute('http-equiv'),
        content: m.getAttribute('content'),
    }));

    return {
        title: document.title || '',
        headings,
        important_elements: importantElements,
        meta_tags: metaTags,
    };
}
"""

EXTRACT_STYLING_JS = """
(containerSelectors) => {
    const headingStyle = (cs) => ({
        font_size: cs.fontSize,
        font_weight: cs.fontWeight,
        font_family: cs.fontFamily,
        color: cs.color,
        margin: cs.margin,
        padding: cs.padding,
        line_height: cs.lineHeight,
        text_transform: cs.textTransform,
        display: cs.display,
    });
    const containerStyle = (cs) => ({
        display: cs.display,
        position: cs.position,
        width: cs.width,
        height: cs.height,
        margin: cs.margin,
        padding: cs.padding,
        background_color: cs.backgroundColor,
        border: cs.border,
    });

    const headings = Array.from(document.querySelectorAll('h1, h2, h3, h4, h5, h6')).map((h) => ({
        tag: h.tagName.toLowerCase(),
        style: headingStyle(window.getComputedStyle(h)),
    }));

    const containers = {};
    containerSelectors.forEach((selector) => {
        let el = null;
        try { el = document.querySelector(selector); } catch (e) { el = null; }
        if (el) containers[selector] = containerStyle(window.getComputedStyle(el));
    });

    return { headings, containers };
}
"""


# Computed-style snapshots keyed by heading style key or container selector
StyleSnapshot = Dict[str, Dict[str, Optional[str]]]


def heading_style_key(tag: str, ordinal: int) -> str:
    """Key of the ``ordinal``-th (1-based) heading with ``tag`` in document order."""
    return tag if ordinal == 1 else f"{tag}:nth-of-type({ordinal})"


def assign_style_keys(tags: Sequence[str]) -> List[str]:
    """Style keys for a document-ordered list of heading tags."""
    seen: Dict[str, int] = {}
    keys = []
    for tag in tags:
        seen[tag] = seen.get(tag, 0) + 1
        keys.append(heading_style_key(tag, seen[tag]))
    return keys


class HeadingSnapshot(BaseModel):
    level: int = Field(ge=1, le=6)
    text: str = ""
    selector: str = ""
    index: int = 0
    style_selector: str = Field(default="", description="Key into the style snapshot")

    @property
    def tag(self) -> str:
        return f"h{self.level}"


class MetaTagSnapshot(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    property_name: Optional[str] = Field(default=None, alias="property")
    http_equiv: Optional[str] = None
    content: Optional[str] = None

    @property
    def key(self) -> str:
        return self.name or self.property_name or self.http_equiv or "unnamed"


class PageStructure(BaseModel):
    """Structural snapshot of a page."""

    title: str = ""
    headings: List[HeadingSnapshot] = Field(default_factory=list)
    important_elements: Dict[str, int] = Field(default_factory=dict)
    meta_tags: List[MetaTagSnapshot] = Field(default_factory=list)

    @classmethod
    def from_raw(cls, raw: Dict[str, Any]) -> "PageStructure":
        """Build from the extraction script output, assigning style keys."""
        headings = raw.get('headings') or []
        keys = assign_style_keys([f"h{h['level']}" for h in headings])
        return cls(
            title=raw.get('title') or "",
            headings=[HeadingSnapshot(**h, style_selector=key) for h, key in zip(headings, keys)],
            important_elements=raw.get('important_elements') or {},
            meta_tags=[MetaTagSnapshot(**m) for m in raw.get('meta_tags') or []],
        )

    def meta_map(self) -> Dict[str, Optional[str]]:
        return {meta.key: meta.content for meta in self.meta_tags}


class HeadingImpact(str, Enum):
    """SEO impact of a heading level change."""
    CRITICAL = "critical"
    WARNING = "warning"
    IMPROVEMENT = "improvement"
    NEUTRAL = "neutral"


class HierarchyChange(BaseModel):
    index: int
    from_tag: str = Field(description="Baseline heading tag, e.g. H1")
    to_tag: str = Field(description="Current heading tag, e.g. H3")
    from_level: int
    to_level: int
    text: str
    selector: str
    style_selector: str = ""
    baseline_style_selector: str = ""
    impact: HeadingImpact


class HeadingTextChange(BaseModel):
    index: int
    level: int
    from_text: str
    to_text: str
    selector: str


class HeadingDiff(BaseModel):
    added: List[HeadingSnapshot] = Field(default_factory=list)
    removed: List[HeadingSnapshot] = Field(default_factory=list)
    modified: List[HeadingTextChange] = Field(default_factory=list)
    hierarchy_changes: List[HierarchyChange] = Field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.removed or self.modified or self.hierarchy_changes)


class MetaTagChange(BaseModel):
    key: str
    from_content: Optional[str] = None
    to_content: Optional[str] = None


class MetaTagDiff(BaseModel):
    added: List[MetaTagChange] = Field(default_factory=list)
    removed: List[MetaTagChange] = Field(default_factory=list)
    modified: List[MetaTagChange] = Field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.removed or self.modified)


class ElementChangeType(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    COUNT_CHANGED = "count_changed"


class ElementChange(BaseModel):
    selector: str
    change: ElementChangeType
    baseline_count: int
    current_count: int


class StructuralDiff(BaseModel):
    title_changed: bool = False
    baseline_title: str = ""
    current_title: str = ""
    heading_changes: HeadingDiff = Field(default_factory=HeadingDiff)
    meta_tag_changes: MetaTagDiff = Field(default_factory=MetaTagDiff)
    element_changes: List[ElementChange] = Field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return (
            self.title_changed
            or self.heading_changes.has_changes
            or self.meta_tag_changes.has_changes
            or bool(self.element_changes)
        )


class PropertyChange(BaseModel):
    property: str
    from_value: Optional[str] = None
    to_value: Optional[str] = None


class SuspiciousStyleChange(BaseModel):
    selector: str
    reason: str
    changes: List[PropertyChange] = Field(default_factory=list)
    baseline_selector: Optional[str] = None


class StyleDiff(BaseModel):
    per_selector_changes: Dict[str, List[PropertyChange]] = Field(default_factory=dict)
    suspicious_changes: List[SuspiciousStyleChange] = Field(default_factory=list)

    @property
    def has_compensation(self) -> bool:
        return bool(self.suspicious_changes)

    @property
    def has_changes(self) -> bool:
        return bool(self.per_selector_changes)


class ManipulationCorrelation(BaseModel):
    """A suspicious style change and the hierarchy change it compensates, if any."""

    style_change: SuspiciousStyleChange
    structural_change: Optional[HierarchyChange] = None

    @property
    def correlated(self) -> bool:
        return self.structural_change is not None


class StructureReport(AuditorReport):
    baseline_created: bool = False
    current_structure: PageStructure = Field(default_factory=PageStructure)
    structure_comparison: Optional[StructuralDiff] = None
    styling_comparison: Optional[StyleDiff] = None
    correlations: List[ManipulationCorrelation] = Field(default_factory=list)
    has_structural_changes: bool = False
    has_styling_compensation: bool = False


# Comparison

def assess_hierarchy_impact(from_level: int, to_level: int) -> HeadingImpact:
    if from_level == 1 and to_level != 1:
        return HeadingImpact.CRITICAL
    if to_level > from_level:
        return HeadingImpact.WARNING
    if to_level < from_level:
        return HeadingImpact.IMPROVEMENT
    return HeadingImpact.NEUTRAL


def compare_headings(baseline: List[HeadingSnapshot], current: List[HeadingSnapshot]) -> HeadingDiff:
    """Positional heading comparison."""
    diff = HeadingDiff()

    for index, before in enumerate(baseline):
        if index >= len(current):
            diff.removed.append(before)
            continue

        after = current[index]
        if before.level != after.level:
            diff.hierarchy_changes.append(HierarchyChange(
                index=index,
                from_tag=f"H{before.level}",
                to_tag=f"H{after.level}",
                from_level=before.level,
                to_level=after.level,
                text=after.text,
                selector=after.selector,
                style_selector=after.style_selector,
                baseline_style_selector=before.style_selector,
                impact=assess_hierarchy_impact(before.level, after.level),
            ))
        elif before.text != after.text:
            diff.modified.append(HeadingTextChange(
                index=index,
                level=after.level,
                from_text=before.text,
                to_text=after.text,
                selector=after.selector,
            ))

    diff.added.extend(current[len(baseline):])
    return diff


def compare_meta_tags(baseline: PageStructure, current: PageStructure) -> MetaTagDiff:
    """Meta tag comparison keyed by name, property or http-equiv."""
    diff = MetaTagDiff()
    before = baseline.meta_map()
    after = current.meta_map()

    for key, content in before.items():
        if key not in after:
            diff.removed.append(MetaTagChange(key=key, from_content=content))
        elif after[key] != content:
            diff.modified.append(MetaTagChange(key=key, from_content=content, to_content=after[key]))

    for key, content in after.items():
        if key not in before:
            diff.added.append(MetaTagChange(key=key, to_content=content))

    return diff


def compare_important_elements(baseline: Dict[str, int], current: Dict[str, int]) -> List[ElementChange]:
    changes = []
    for selector in list(dict.fromkeys([*baseline, *current])):
        before = baseline.get(selector, 0)
        after = current.get(selector, 0)
        if before == after:
            continue
        if before == 0:
            change = ElementChangeType.ADDED
        elif after == 0:
            change = ElementChangeType.REMOVED
        else:
            change = ElementChangeType.COUNT_CHANGED
        changes.append(ElementChange(selector=selector, change=change, baseline_count=before, current_count=after))
    return changes


def compare_structures(baseline: PageStructure, current: PageStructure) -> StructuralDiff:
    return StructuralDiff(
        title_changed=baseline.title != current.title,
        baseline_title=baseline.title,
        current_title=current.title,
        heading_changes=compare_headings(baseline.headings, current.headings),
        meta_tag_changes=compare_meta_tags(baseline, current),
        element_changes=compare_important_elements(baseline.important_elements, current.important_elements),
    )


def parse_font_size(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    match = re.match(r'\s*(-?\d+(?:\.\d+)?)', str(value))
    return float(match.group(1)) if match else None


def parse_font_weight(value: Optional[str]) -> float:
    if value is None:
        return 400.0
    text = str(value).strip().lower()
    if text in _FONT_WEIGHTS:
        return _FONT_WEIGHTS[text]
    try:
        return float(text) or 400.0
    except ValueError:
        return 400.0


def is_significant_font_size_increase(from_value: Optional[str], to_value: Optional[str]) -> bool:
    before = parse_font_size(from_value)
    after = parse_font_size(to_value)
    if before is None or after is None:
        return False
    return after > before * FONT_SIZE_GROWTH_THRESHOLD


def is_weight_increase(from_value: Optional[str], to_value: Optional[str]) -> bool:
    return parse_font_weight(to_value) > parse_font_weight(from_value)


def is_suspicious_styling(selector: str, changes: List[PropertyChange]) -> bool:
    """An h2-h6 key whose font grew by more than 20% or got heavier."""
    if not _IMPERSONATION_CANDIDATE.match(selector):
        return False
    by_property = {change.property: change for change in changes}
    size = by_property.get("font_size")
    if size and is_significant_font_size_increase(size.from_value, size.to_value):
        return True
    weight = by_property.get("font_weight")
    return bool(weight and is_weight_increase(weight.from_value, weight.to_value))


def _property_changes(before: Dict[str, Optional[str]], after: Dict[str, Optional[str]]) -> List[PropertyChange]:
    return [
        PropertyChange(property=prop, from_value=value, to_value=after.get(prop))
        for prop, value in before.items()
        if after.get(prop) != value
    ]


def compare_styling(
    baseline: StyleSnapshot,
    current: StyleSnapshot,
    hierarchy_changes: Sequence[HierarchyChange] = ()
) -> StyleDiff:
    """Compare computed styles of every selector tracked in the baseline.

    Besides per-key growth, a demoted heading whose new key keeps the font
    size its old key had (within 20%) is flagged: a default-styled H3 is
    much smaller than an H1.
    """
    diff = StyleDiff()

    for selector, before in baseline.items():
        after = current.get(selector)
        if after is None:
            continue
        changes = _property_changes(before, after)
        if not changes:
            continue
        diff.per_selector_changes[selector] = changes
        if is_suspicious_styling(selector, changes):
            diff.suspicious_changes.append(SuspiciousStyleChange(
                selector=selector,
                reason="heading_impersonation",
                changes=changes,
            ))

    flagged = {change.selector for change in diff.suspicious_changes}
    for change in hierarchy_changes:
        if change.to_level <= change.from_level or change.style_selector in flagged:
            continue
        if not _IMPERSONATION_CANDIDATE.match(change.style_selector):
            continue
        before = baseline.get(change.baseline_style_selector)
        after = current.get(change.style_selector)
        if not before or not after:
            continue
        before_size = parse_font_size(before.get("font_size"))
        after_size = parse_font_size(after.get("font_size"))
        if not before_size or after_size is None:
            continue
        if after_size * FONT_SIZE_GROWTH_THRESHOLD >= before_size:
            diff.suspicious_changes.append(SuspiciousStyleChange(
                selector=change.style_selector,
                reason="styling_preserved_after_demotion",
                changes=[PropertyChange(
                    property="font_size",
                    from_value=before.get("font_size"),
                    to_value=after.get("font_size"),
                )],
                baseline_selector=change.baseline_style_selector,
            ))
            flagged.add(change.style_selector)

    return diff


def correlate_manipulations(structure: StructuralDiff, styling: Optional[StyleDiff]) -> List[ManipulationCorrelation]:
    """Pair each suspicious style change with the hierarchy change it disguises."""
    if styling is None:
        return []

    correlations = []
    hierarchy_changes = structure.heading_changes.hierarchy_changes
    for style_change in styling.suspicious_changes:
        match = next(
            (
                change for change in hierarchy_changes
                if change.impact != HeadingImpact.IMPROVEMENT
                and style_change.selector in (change.style_selector, change.selector)
            ),
            None
        )
        correlations.append(ManipulationCorrelation(style_change=style_change, structural_change=match))
    return correlations


def calculate_structure_score(
    structure: StructuralDiff,
    correlations: Sequence[ManipulationCorrelation] = ()
) -> int:
    hierarchy = structure.heading_changes.hierarchy_changes
    score = 100
    score -= 30 * sum(1 for c in hierarchy if c.impact == HeadingImpact.CRITICAL)
    score -= 15 * sum(1 for c in hierarchy if c.impact == HeadingImpact.WARNING)
    score -= 10 * len(structure.heading_changes.removed)
    score -= 20 * len(structure.meta_tag_changes.removed)
    score -= 5 * len(structure.meta_tag_changes.modified)
    score -= 25 * sum(1 for c in correlations if c.correlated)
    return max(0, score)


# Auditor

class StructureAuditorConfig(BaseModel):
    """Configuration for the structural manipulation detector."""

    enabled: bool = True
    timeout: Optional[float] = Field(default=None, gt=0)
    style_analysis: bool = Field(default=True, description="Capture and compare computed styles")
    important_elements: List[str] = Field(default_factory=lambda: list(DEFAULT_IMPORTANT_ELEMENTS))
    container_selectors: List[str] = Field(default_factory=lambda: list(DEFAULT_CONTAINER_SELECTORS))


class HtmlStructureAuditor(BaseAuditor):
    """Detects heading hierarchy manipulation against a stored baseline."""

    def __init__(self, store: BaselineStore, config: Optional[StructureAuditorConfig] = None):
        self.config = config or StructureAuditorConfig()
        super().__init__(STRUCTURE_AUDITOR_NAME, timeout=self.config.timeout)
        self.store = store

    async def extract_structure(self, page: PageHandle) -> PageStructure:
        raw = await page.evaluate(EXTRACT_STRUCTURE_JS, self.config.important_elements)
        return PageStructure.from_raw(raw or {})

    async def extract_styling(self, page: PageHandle) -> StyleSnapshot:
        raw = await page.evaluate(EXTRACT_STYLING_JS, self.config.container_selectors) or {}
        headings = raw.get('headings') or []
        keys = assign_style_keys([h['tag'] for h in headings])
        styles: StyleSnapshot = {key: h['style'] for key, h in zip(keys, headings)}
        styles.update(raw.get('containers') or {})
        return styles

    async def _load_baseline(self, key: BaselineKey) -> Optional[Dict[str, Any]]:
        """Read a JSON baseline; an unreadable one counts as missing."""
        try:
            return await self.store.read_json(key)
        except BaselineUnreadable as e:
            self.logger.warning(f"Baseline unreadable, recreating: {e}")
            await self.store.delete(key)
            return None

    async def audit(self, page: PageHandle, url: str) -> StructureReport:
        current = await self.extract_structure(page)
        styles = await self.extract_styling(page) if self.config.style_analysis else None
        report = StructureReport(auditor=self.name, url=url, current_structure=current)

        structure_key = BaselineKey.for_url(url, BaselineKind.STRUCTURE)
        style_key = BaselineKey.for_url(url, BaselineKind.STYLE)
        now = datetime.utcnow().isoformat()

        baseline_data = await self._load_baseline(structure_key)
        baseline = None
        if baseline_data is not None:
            try:
                baseline = PageStructure.model_validate(baseline_data.get('structure') or {})
            except ValidationError as e:
                self.logger.warning(f"Structure baseline for {url} is invalid, recreating: {e}")
                await self.store.delete(structure_key)

        if baseline is None:
            await self.store.write_if_absent(
                structure_key,
                _json_bytes({"url": url, "created_at": now, "structure": current.model_dump(mode="json", by_alias=True)})
            )
            if styles is not None:
                await self.store.write_if_absent(style_key, _json_bytes({"url": url, "created_at": now, "styles": styles}))
            self.logger.info(f"Created structure baseline for {url}")
            report.baseline_created = True
            report.score = 100
            report.add_recommendation(self.create_recommendation(
                "baseline_created",
                "Structure baseline captured; later audits are compared against it",
            ))
            return report

        structure_diff = compare_structures(baseline, current)
        style_diff = None

        if styles is not None:
            style_data = await self._load_baseline(style_key)
            if style_data is None:
                await self.store.write_if_absent(style_key, _json_bytes({"url": url, "created_at": now, "styles": styles}))
                self.logger.info(f"Created style baseline for {url}")
            else:
                style_diff = compare_styling(
                    style_data.get('styles') or {},
                    styles,
                    structure_diff.heading_changes.hierarchy_changes
                )

        correlations = correlate_manipulations(structure_diff, style_diff)

        self._report_structure_changes(report, structure_diff)
        self._report_manipulations(report, correlations)

        report.structure_comparison = structure_diff
        report.styling_comparison = style_diff
        report.correlations = correlations
        report.has_structural_changes = structure_diff.has_changes
        report.has_styling_compensation = bool(style_diff and style_diff.has_compensation)
        report.score = calculate_structure_score(structure_diff, correlations)
        return report

    def _report_structure_changes(self, report: StructureReport, diff: StructuralDiff) -> None:
        if diff.title_changed:
            report.add_issue(self.create_warning(
                "title_changed",
                "Page title has been modified",
                baseline=diff.baseline_title,
                current=diff.current_title,
            ))

        for change in diff.heading_changes.hierarchy_changes:
            if change.impact == HeadingImpact.CRITICAL:
                report.add_issue(self.create_error(
                    "critical_heading_change",
                    f'Critical SEO issue: {change.from_tag} changed to {change.to_tag} - "{change.text}"',
                    **change.model_dump(mode="json")
                ))
            elif change.impact == HeadingImpact.WARNING:
                report.add_issue(self.create_warning(
                    "heading_hierarchy_degraded",
                    f"Heading hierarchy degraded: {change.from_tag} -> {change.to_tag}",
                    **change.model_dump(mode="json")
                ))

        for removed in diff.meta_tag_changes.removed:
            if removed.key == "description":
                report.add_issue(self.create_error(
                    "meta_description_removed",
                    "Meta description has been removed",
                    **removed.model_dump(mode="json")
                ))

        for modified in diff.meta_tag_changes.modified:
            if modified.key == "description":
                report.add_issue(self.create_warning(
                    "meta_description_changed",
                    "Meta description content has been modified",
                    **modified.model_dump(mode="json")
                ))

    def _report_manipulations(self, report: StructureReport, correlations: List[ManipulationCorrelation]) -> None:
        for correlation in correlations:
            style_change = correlation.style_change
            change = correlation.structural_change
            if change is not None:
                report.add_issue(self.create_issue(
                    "seo_manipulation_detected",
                    f"SEO manipulation detected: {change.from_tag} changed to {change.to_tag} "
                    f"but styled to appear as {change.from_tag}",
                    severity=Severity.CRITICAL,
                    structural_change=change.model_dump(mode="json"),
                    styling_change=style_change.model_dump(mode="json"),
                ))
            else:
                report.add_issue(self.create_warning(
                    "suspicious_styling",
                    f"Suspicious styling changes detected on {style_change.selector}",
                    **style_change.model_dump(mode="json")
                ))


def _json_bytes(data: Dict[str, Any]) -> bytes:
    return json.dumps(data, indent=2, default=str).encode('utf-8')
