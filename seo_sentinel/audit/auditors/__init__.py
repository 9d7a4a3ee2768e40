"""Auditor plugins: the protocol, the registry and the two change detectors."""

from .base import Auditor, AuditorRegistry, AuditorReport, BaseAuditor
from .pixel_diff import PixelDiffResult, compare_images
from .structure import (
    STRUCTURE_AUDITOR_NAME,
    HtmlStructureAuditor,
    PageStructure,
    StructureAuditorConfig,
    StructureReport,
)
from .visual import (
    VISUAL_AUDITOR_NAME,
    Viewport,
    VisualAuditorConfig,
    VisualDiff,
    VisualRegressionAuditor,
    VisualReport,
    VisualSeverity,
)

__all__ = [
    "Auditor",
    "AuditorRegistry",
    "AuditorReport",
    "BaseAuditor",
    "PixelDiffResult",
    "compare_images",
    "STRUCTURE_AUDITOR_NAME",
    "HtmlStructureAuditor",
    "PageStructure",
    "StructureAuditorConfig",
    "StructureReport",
    "VISUAL_AUDITOR_NAME",
    "Viewport",
    "VisualAuditorConfig",
    "VisualDiff",
    "VisualRegressionAuditor",
    "VisualReport",
    "VisualSeverity",
]
