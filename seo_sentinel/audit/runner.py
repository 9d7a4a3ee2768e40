"""Landing page audit orchestration.

Wires the render provider, baseline store, auditors, crawler and dispatcher
together for one run: discover URLs from a landing page, audit them, then
build the summary and the manipulation report.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from .aggregation import AuditSummary, ManipulationReport, build_summary, generate_manipulation_report
from .auditors.base import AuditorRegistry
from .auditors.structure import HtmlStructureAuditor
from .auditors.visual import VisualRegressionAuditor
from .baselines.store import BaselineStore, LocalBaselineStore, MemoryBaselineStore
from .capture.browser_factory import BrowserConfig, BrowserFactory
from .capture.render import PostLoadHook, PreNavigationHook, RenderProvider
from .capture.stealth import HumanInteractionSimulator, mask_automation
from .config.loader import BaselineStoreConfig, SentinelConfig
from .crawler import CrawlerEngine, CrawlerError
from .dispatch import AuditDispatcher, ProgressCallback
from .errors import EngineInitializationError, SentinelError
from .models.audit import AuditJob, AuditOptions, AuditResult
from .models.crawl import CrawlResult, DiscoveryOptions


logger = logging.getLogger(__name__)


def generate_audit_id() -> str:
    timestamp = datetime.utcnow().strftime("%Y-%m-%dT%H-%M-%S")
    return f"audit-{timestamp}-{uuid.uuid4().hex[:6]}"


def create_baseline_store(config: BaselineStoreConfig) -> BaselineStore:
    if config.backend == "memory":
        return MemoryBaselineStore()
    return LocalBaselineStore(config.path, config.diff_path)


def build_registry(config: SentinelConfig, store: BaselineStore) -> AuditorRegistry:
    """Registry with the structure detector first, then the visual detector."""
    registry = AuditorRegistry()
    registry.register(HtmlStructureAuditor(store, config.structure), enabled=config.structure.enabled)
    registry.register(VisualRegressionAuditor(store, config.visual), enabled=config.visual.enabled)
    return registry


class AuditRun(BaseModel):
    """Everything produced by one landing page audit."""

    audit_id: str
    landing_url: str
    success: bool
    error: Optional[str] = None
    crawl_results: List[CrawlResult] = Field(default_factory=list)
    results: List[AuditResult] = Field(default_factory=list)
    summary: AuditSummary
    manipulation_report: ManipulationReport
    baselines_deleted: int = 0
    crawl_stats: Dict[str, Any] = Field(default_factory=dict)
    dispatch_stats: Dict[str, Any] = Field(default_factory=dict)


class LandingPageAuditor:
    """Runs crawl, audit and aggregation for a landing page."""

    def __init__(
        self,
        config: Optional[SentinelConfig] = None,
        render_provider: Optional[RenderProvider] = None,
        store: Optional[BaselineStore] = None,
        registry: Optional[AuditorRegistry] = None,
        pre_navigation_hooks: Optional[Sequence[PreNavigationHook]] = None,
        post_load_hooks: Optional[Sequence[PostLoadHook]] = None
    ):
        """Initialize the auditor.

        Args:
            config: Complete configuration (defaults if None)
            render_provider: Page source (a Playwright BrowserFactory if None)
            store: Baseline store (built from config if None)
            registry: Auditor registry (both detectors if None)
            pre_navigation_hooks: Overrides the hooks derived from browser settings
            post_load_hooks: Overrides the hooks derived from browser settings
        """
        self.config = config or SentinelConfig()

        if render_provider is None:
            render_provider = BrowserFactory(BrowserConfig.from_settings(self.config.browser))
        self.render_provider = render_provider

        self.store = store or create_baseline_store(self.config.baselines)
        self.registry = registry or build_registry(self.config, self.store)

        if pre_navigation_hooks is None:
            pre_navigation_hooks = [mask_automation] if self.config.browser.stealth else []
        if post_load_hooks is None:
            post_load_hooks = [HumanInteractionSimulator()] if self.config.browser.human_simulation else []

        self.crawler = CrawlerEngine(
            self.config.crawl,
            self.render_provider,
            pre_navigation_hooks=pre_navigation_hooks,
            post_load_hooks=post_load_hooks,
        )
        self.dispatcher = AuditDispatcher(
            self.config.audit,
            self.render_provider,
            self.registry,
            pre_navigation_hooks=pre_navigation_hooks,
            post_load_hooks=post_load_hooks,
        )

    async def initialize(self) -> None:
        """Start the render provider and initialize auditors.

        Raises:
            EngineInitializationError: If the provider cannot start
        """
        try:
            await self.render_provider.start()
        except Exception as e:
            raise EngineInitializationError(f"Failed to start render provider: {e}") from e
        await self.crawler.initialize()
        await self.dispatcher.initialize()

    async def audit_landing_page(
        self,
        landing_url: str,
        discovery_options: Optional[DiscoveryOptions] = None,
        audit_options: Optional[AuditOptions] = None,
        on_progress: Optional[ProgressCallback] = None,
        reset_baselines: bool = False
    ) -> AuditRun:
        """Discover and audit every URL reachable from ``landing_url``.

        A summary is produced even when the run fails; only a render
        provider that cannot start raises.

        Raises:
            EngineInitializationError: If the render provider cannot start
        """
        audit_id = generate_audit_id()
        start_time = datetime.utcnow()
        crawl_results: List[CrawlResult] = []
        results: List[AuditResult] = []
        error: Optional[str] = None
        deleted = 0

        logger.info(f"Starting landing page audit {audit_id} for {landing_url}")

        try:
            await self.initialize()

            logger.info("Phase 1: discovering URLs")
            crawl_results = await self.crawler.discover(landing_url, discovery_options)
            if not crawl_results:
                raise CrawlerError("No URLs discovered from landing page")

            if reset_baselines:
                for result in crawl_results:
                    deleted += await self.store.delete_url(result.url)
                logger.info(f"Deleted {deleted} baselines for {len(crawl_results)} URLs")

            logger.info(f"Phase 2: auditing {len(crawl_results)} URLs")
            jobs = [AuditJob.from_crawl_result(result) for result in crawl_results]
            results = await self.dispatcher.audit_all(jobs, audit_options, on_progress)
        except EngineInitializationError:
            raise
        except SentinelError as e:
            error = str(e)
            logger.error(f"Landing page audit {audit_id} failed: {e}")
        except Exception as e:
            error = f"Unexpected error: {e}"
            logger.error(f"Landing page audit {audit_id} for {landing_url} failed unexpectedly: {type(e).__name__}: {e}")
        finally:
            crawl_stats = self.crawler.get_stats()
            dispatch_stats = self.dispatcher.get_stats()
            await self.cleanup()

        logger.info("Phase 3: building summary")
        summary = build_summary(
            results,
            audit_id=audit_id,
            landing_url=landing_url,
            start_time=start_time,
            end_time=datetime.utcnow(),
            error=error,
        )
        report = generate_manipulation_report(results)

        logger.info(
            f"Audit {audit_id} finished: {summary.successful_audits}/{summary.total_urls} succeeded, "
            f"score {summary.audit_score}, {summary.h1_manipulations} H1 manipulations, "
            f"{summary.visual_changes} visual changes"
        )

        return AuditRun(
            audit_id=audit_id,
            landing_url=landing_url,
            success=error is None and not summary.is_failure,
            error=error,
            crawl_results=crawl_results,
            results=results,
            summary=summary,
            manipulation_report=report,
            baselines_deleted=deleted,
            crawl_stats=crawl_stats,
            dispatch_stats=dispatch_stats,
        )

    async def recreate_baselines(
        self,
        landing_url: str,
        discovery_options: Optional[DiscoveryOptions] = None,
        audit_options: Optional[AuditOptions] = None,
        on_progress: Optional[ProgressCallback] = None
    ) -> AuditRun:
        """Delete the baselines of every discovered URL, then audit to capture new ones."""
        return await self.audit_landing_page(
            landing_url,
            discovery_options,
            audit_options,
            on_progress,
            reset_baselines=True,
        )

    async def health_check(self) -> Dict[str, Any]:
        status = await self.dispatcher.health_check()
        status['crawler'] = await self.crawler.health_check()
        return status

    async def cleanup(self) -> None:
        """Release pages, clean up auditors and stop the render provider."""
        for component in (self.crawler, self.dispatcher):
            try:
                await component.cleanup()
            except Exception as e:
                logger.error(f"Error during cleanup: {e}")
        try:
            await self.render_provider.stop()
        except Exception as e:
            logger.error(f"Error stopping render provider: {e}")
