"""Auditor plugin protocol, shared report model and ordered registry.

Every auditor receives a loaded page and its URL and returns an
AuditorReport. Auditors must not keep mutable state between audit() calls;
they may be invoked concurrently for different pages.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, Field

from ..capture.render import PageHandle
from ..models.audit import AuditOptions, Finding, Recommendation, Severity


logger = logging.getLogger(__name__)


class AuditorReport(BaseModel):
    """Standardized output of an auditor for one page."""

    auditor: str = Field(description="Name of the auditor")
    url: str = Field(description="Audited URL")
    issues: List[Finding] = Field(default_factory=list)
    warnings: List[Finding] = Field(default_factory=list)
    recommendations: List[Recommendation] = Field(default_factory=list)
    score: Optional[int] = Field(default=None, ge=0, le=100)
    metrics: Dict[str, Any] = Field(default_factory=dict)

    def add_issue(self, finding: Finding) -> None:
        """File a finding under issues or warnings by its severity."""
        if finding.severity == Severity.WARNING:
            self.warnings.append(finding)
        else:
            self.issues.append(finding)

    def add_recommendation(self, recommendation: Recommendation) -> None:
        self.recommendations.append(recommendation)

    @property
    def has_errors(self) -> bool:
        return any(issue.is_blocking for issue in self.issues)


class Auditor(Protocol):
    """Protocol that all auditor plugins must implement."""

    @property
    def name(self) -> str:
        """Unique name; also the key of the auditor's report in AuditResult."""
        ...

    @property
    def timeout(self) -> Optional[float]:
        """Time budget in seconds, or None for the dispatcher default."""
        ...

    async def initialize(self) -> None:
        ...

    async def audit(self, page: PageHandle, url: str) -> AuditorReport:
        ...

    async def cleanup(self) -> None:
        ...

    async def health_check(self) -> bool:
        ...


class BaseAuditor(ABC):
    """Abstract base class providing common auditor functionality."""

    def __init__(self, name: str, timeout: Optional[float] = None):
        self._name = name
        self._timeout = timeout
        self.logger = logging.getLogger(f"{__name__}.{name}")

    @property
    def name(self) -> str:
        return self._name

    @property
    def timeout(self) -> Optional[float]:
        return self._timeout

    async def initialize(self) -> None:
        self.logger.debug(f"Initializing auditor {self.name}")

    @abstractmethod
    async def audit(self, page: PageHandle, url: str) -> AuditorReport:
        """Audit a loaded page."""
        ...

    async def cleanup(self) -> None:
        self.logger.debug(f"Cleaning up auditor {self.name}")

    async def health_check(self) -> bool:
        return True

    def create_issue(
        self,
        type: str,
        message: str,
        severity: Severity = Severity.ERROR,
        **details
    ) -> Finding:
        return Finding(type=type, severity=severity, message=message, auditor=self.name, details=details)

    def create_warning(self, type: str, message: str, **details) -> Finding:
        return self.create_issue(type, message, Severity.WARNING, **details)

    def create_error(self, type: str, message: str, **details) -> Finding:
        return self.create_issue(type, message, Severity.ERROR, **details)

    def create_recommendation(self, type: str, message: str, **details) -> Recommendation:
        return Recommendation(type=type, message=message, auditor=self.name, details=details)


class AuditorRegistry:
    """Explicit, ordered collection of auditor instances.

    Registration order is the order in which reports are compiled into an
    AuditResult. Auditors that fail to initialize are disabled and the rest
    keep running.
    """

    def __init__(self):
        self._auditors: Dict[str, Auditor] = {}
        self._enabled: Dict[str, bool] = {}
        self._initialization_errors: Dict[str, str] = {}

    def register(self, auditor: Auditor, enabled: bool = True) -> None:
        """Register an auditor instance.

        Raises:
            ValueError: If an auditor with the same name is registered
        """
        if auditor.name in self._auditors:
            raise ValueError(f"Auditor already registered: {auditor.name}")
        self._auditors[auditor.name] = auditor
        self._enabled[auditor.name] = enabled

    def get(self, name: str) -> Optional[Auditor]:
        return self._auditors.get(name)

    def names(self) -> List[str]:
        return list(self._auditors)

    def set_enabled(self, name: str, enabled: bool) -> bool:
        """Enable or disable an auditor; False if it is not registered."""
        if name not in self._auditors:
            return False
        self._enabled[name] = enabled
        return True

    def is_enabled(self, name: str) -> bool:
        return self._enabled.get(name, False) and name not in self._initialization_errors

    def enabled_auditors(self, options: Optional[AuditOptions] = None) -> List[Auditor]:
        """Auditors to run for a page, in registration order."""
        return [
            auditor for name, auditor in self._auditors.items()
            if self.is_enabled(name) and (options is None or options.allows(name))
        ]

    async def initialize_all(self) -> None:
        for name, auditor in self._auditors.items():
            if not self._enabled[name]:
                continue
            try:
                await auditor.initialize()
                self._initialization_errors.pop(name, None)
            except Exception as e:
                self._initialization_errors[name] = str(e)
                logger.error(f"Failed to initialize auditor {name}, disabling it: {e}")

    async def cleanup_all(self) -> None:
        for name, auditor in self._auditors.items():
            try:
                await auditor.cleanup()
            except Exception as e:
                logger.error(f"Error cleaning up auditor {name}: {e}")

    async def health_check_all(self) -> Dict[str, bool]:
        names = [name for name in self._auditors if self.is_enabled(name)]
        outcomes = await asyncio.gather(
            *(self._auditors[name].health_check() for name in names),
            return_exceptions=True
        )
        return {name: outcome is True for name, outcome in zip(names, outcomes)}

    def get_status(self) -> Dict[str, Dict[str, Any]]:
        """Get status of all auditors for debugging and monitoring."""
        return {
            name: {
                'enabled': self._enabled.get(name, False),
                'timeout': auditor.timeout,
                'initialization_error': self._initialization_errors.get(name),
            }
            for name, auditor in self._auditors.items()
        }

    def __len__(self) -> int:
        return len(self._auditors)
