"""Visual regression detector.

Captures full-page and element screenshots at several viewports and diffs
them against the screenshots stored on first observation.
"""

import asyncio
import re
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from .base import AuditorReport, BaseAuditor
from .pixel_diff import PixelDiffResult, compare_images
from ..baselines.store import BaselineKey, BaselineKind, BaselineStore
from ..capture.render import PageHandle
from ..errors import BaselineUnreadable, DiffComputationError


VISUAL_AUDITOR_NAME = "visual_regression"

FULL_PAGE = "fullpage"

DEFAULT_CAPTURE_ELEMENTS = [
    "h1", "h2", "h3", "h4", "h5", "h6",
    "header", "nav", "main", "footer",
    ".hero", ".content", ".sidebar",
]


class Viewport(BaseModel):
    name: str
    width: int = Field(gt=0)
    height: int = Field(gt=0)


DEFAULT_VIEWPORTS = [
    Viewport(name="desktop", width=1920, height=1080),
    Viewport(name="tablet", width=768, height=1024),
    Viewport(name="mobile", width=375, height=667),
]


class VisualSeverity(str, Enum):
    MAJOR = "major"
    MODERATE = "moderate"
    MINOR = "minor"


def classify_visual_change(diff_percentage: float) -> VisualSeverity:
    if diff_percentage > 50:
        return VisualSeverity.MAJOR
    if diff_percentage > 20:
        return VisualSeverity.MODERATE
    return VisualSeverity.MINOR


def screenshot_variant(element: str, viewport: str) -> str:
    """Baseline variant for an element at a viewport, e.g. ``_hero_mobile``."""
    return f"{re.sub(r'[^a-zA-Z0-9]', '_', element)}_{viewport}"


class VisualAuditorConfig(BaseModel):
    """Configuration for the visual regression detector."""

    enabled: bool = True
    timeout: Optional[float] = Field(default=None, gt=0)
    viewports: List[Viewport] = Field(default_factory=lambda: [v.model_copy() for v in DEFAULT_VIEWPORTS])
    capture_elements: List[str] = Field(default_factory=lambda: list(DEFAULT_CAPTURE_ELEMENTS))
    color_threshold: float = Field(
        default=0.1,
        ge=0,
        le=1,
        description="Per-pixel YIQ colour sensitivity"
    )
    change_threshold: float = Field(
        default=0.1,
        ge=0,
        le=100,
        description="Diff percentage above which a comparison counts as changed"
    )
    include_antialiasing: bool = False
    viewport_settle_delay: float = Field(default=1.0, ge=0)
    diff_weight: float = Field(default=2.0, ge=0)
    ratio_weight: float = Field(default=30.0, ge=0)


class ScreenshotInfo(BaseModel):
    element: str
    viewport: str
    variant: str
    size: int
    baseline_created: bool = False


class VisualDiff(BaseModel):
    """Comparison of one screenshot with its baseline."""

    element: str
    viewport: str
    diff_pixels: int = 0
    diff_percentage: float = 0.0
    has_changes: bool = False
    reason: str = "no_change"
    severity: Optional[VisualSeverity] = None
    diff_image_ref: Optional[str] = None
    baseline_dimensions: Optional[Tuple[int, int]] = None
    current_dimensions: Optional[Tuple[int, int]] = None
    error: Optional[str] = None


class VisualReport(AuditorReport):
    screenshots: List[ScreenshotInfo] = Field(default_factory=list)
    comparisons: List[VisualDiff] = Field(default_factory=list)
    visual_changes: List[VisualDiff] = Field(default_factory=list)


def calculate_visual_score(comparisons: List[VisualDiff], diff_weight: float = 2.0, ratio_weight: float = 30.0) -> int:
    changed = [c for c in comparisons if c.has_changes]
    if not changed:
        return 100
    mean_diff = sum(c.diff_percentage for c in changed) / len(changed)
    ratio = len(changed) / len(comparisons)
    return max(0, round(100 - mean_diff * diff_weight - ratio * ratio_weight))


class VisualRegressionAuditor(BaseAuditor):
    """Screenshot comparison against stored baselines.

    Viewport changes are applied to the shared page and restored when the
    audit finishes.
    """

    def __init__(self, store: BaselineStore, config: Optional[VisualAuditorConfig] = None):
        self.config = config or VisualAuditorConfig()
        super().__init__(VISUAL_AUDITOR_NAME, timeout=self.config.timeout)
        self.store = store

    async def audit(self, page: PageHandle, url: str) -> VisualReport:
        report = VisualReport(auditor=self.name, url=url)
        original_viewport = page.viewport()

        try:
            for viewport in self.config.viewports:
                await page.set_viewport(viewport.width, viewport.height)
                if self.config.viewport_settle_delay > 0:
                    await asyncio.sleep(self.config.viewport_settle_delay)

                await self._capture(page, url, FULL_PAGE, viewport, report)
                for selector in self.config.capture_elements:
                    try:
                        await self._capture(page, url, selector, viewport, report)
                    except Exception as e:
                        self.logger.warning(f"Visual check of {selector} on {viewport.name} failed for {url}: {e}")
                        report.add_issue(self.create_warning(
                            "element_capture_failed",
                            f"Could not check {selector} on {viewport.name}",
                            element=selector,
                            viewport=viewport.name,
                            error=str(e),
                        ))
        finally:
            if original_viewport:
                try:
                    await page.set_viewport(original_viewport['width'], original_viewport['height'])
                except Exception as e:
                    self.logger.warning(f"Could not restore viewport for {url}: {e}")

        report.visual_changes = [c for c in report.comparisons if c.has_changes]
        for comparison in report.visual_changes:
            self._report_change(report, comparison)
        report.score = calculate_visual_score(report.comparisons, self.config.diff_weight, self.config.ratio_weight)
        report.metrics = {
            'screenshots': len(report.screenshots),
            'comparisons': len(report.comparisons),
            'changes': len(report.visual_changes),
        }
        return report

    async def _capture(
        self,
        page: PageHandle,
        url: str,
        element: str,
        viewport: Viewport,
        report: VisualReport
    ) -> None:
        if element == FULL_PAGE:
            image = await page.screenshot(full_page=True)
        else:
            try:
                image = await page.screenshot(full_page=False, selector=element)
            except Exception as e:
                # Hidden, detached or zero-sized elements cannot be captured
                self.logger.debug(f"Skipping element {element} on {viewport.name}: {e}")
                return
        if image is None:
            return

        variant = screenshot_variant(element, viewport.name)
        key = BaselineKey.for_url(url, BaselineKind.SCREENSHOT, variant)
        info = ScreenshotInfo(element=element, viewport=viewport.name, variant=variant, size=len(image))
        report.screenshots.append(info)

        try:
            baseline = await self.store.read(key)
        except BaselineUnreadable as e:
            report.comparisons.append(self._comparison_error(element, viewport.name, str(e)))
            return

        if baseline is None:
            info.baseline_created = await self.store.write_if_absent(key, image)
            self.logger.debug(f"Created screenshot baseline {variant} for {url}")
            return

        report.comparisons.append(await self._compare(key, baseline, image, element, viewport.name))

    async def _compare(
        self,
        key: BaselineKey,
        baseline: bytes,
        current: bytes,
        element: str,
        viewport: str
    ) -> VisualDiff:
        try:
            result: PixelDiffResult = await asyncio.to_thread(
                compare_images,
                baseline,
                current,
                self.config.color_threshold,
                self.config.include_antialiasing,
            )
        except DiffComputationError as e:
            self.logger.warning(f"Screenshot comparison failed for {key.name}: {e}")
            return self._comparison_error(element, viewport, str(e))

        if not result.dimensions_match:
            return VisualDiff(
                element=element,
                viewport=viewport,
                diff_pixels=result.diff_pixels,
                diff_percentage=100.0,
                has_changes=True,
                reason="dimension_change",
                severity=VisualSeverity.MAJOR,
                baseline_dimensions=result.baseline_dimensions,
                current_dimensions=result.current_dimensions,
            )

        has_changes = result.diff_percentage > self.config.change_threshold
        diff_ref = None
        if has_changes and result.diff_image is not None:
            diff_ref = await self.store.write_diff(key, result.diff_image)

        return VisualDiff(
            element=element,
            viewport=viewport,
            diff_pixels=result.diff_pixels,
            diff_percentage=result.diff_percentage,
            has_changes=has_changes,
            reason="visual_difference" if has_changes else "no_change",
            severity=classify_visual_change(result.diff_percentage) if has_changes else None,
            diff_image_ref=diff_ref,
            baseline_dimensions=result.baseline_dimensions,
            current_dimensions=result.current_dimensions,
        )

    def _comparison_error(self, element: str, viewport: str, error: str) -> VisualDiff:
        return VisualDiff(
            element=element,
            viewport=viewport,
            diff_percentage=100.0,
            has_changes=True,
            reason="comparison_error",
            severity=VisualSeverity.MAJOR,
            error=error,
        )

    def _report_change(self, report: VisualReport, comparison: VisualDiff) -> None:
        details = {
            'element': comparison.element,
            'viewport': comparison.viewport,
            'diff_percentage': comparison.diff_percentage,
            'diff_image_ref': comparison.diff_image_ref,
        }

        if comparison.reason == "dimension_change":
            report.add_issue(self.create_error(
                "layout_dimension_change",
                f"Layout dimensions changed for {comparison.element} on {comparison.viewport}",
                element=comparison.element,
                viewport=comparison.viewport,
                baseline=comparison.baseline_dimensions,
                current=comparison.current_dimensions,
            ))
        elif comparison.severity == VisualSeverity.MAJOR:
            report.add_issue(self.create_error(
                "major_visual_change",
                f"Major visual changes detected in {comparison.element} "
                f"({comparison.diff_percentage:.2f}% different)",
                reason=comparison.reason,
                **details
            ))
        elif comparison.severity == VisualSeverity.MODERATE:
            report.add_issue(self.create_warning(
                "moderate_visual_change",
                f"Moderate visual changes in {comparison.element} "
                f"({comparison.diff_percentage:.2f}% different)",
                **details
            ))
        else:
            report.add_recommendation(self.create_recommendation(
                "minor_visual_change",
                f"Minor visual changes detected in {comparison.element}",
                **details
            ))
