"""Audit dispatch engine.

Runs every registered auditor against each discovered URL with a bounded
worker pool. Each page gets its own render context, navigation is retried
with backoff, HTTP 429 answers go through the per-URL rate-limit state
machine, and each auditor runs under its own timeout so one slow or
failing auditor never affects its siblings or the page result.
"""

import asyncio
import inspect
import logging
import random
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

from .auditors.base import AuditorRegistry, AuditorReport
from .capture.render import NavigationResponse, PageHandle, PostLoadHook, PreNavigationHook, RenderProvider
from .errors import (
    AuditorError,
    AuditorTimeoutError,
    EngineInitializationError,
    NavigationError,
    RateLimitError,
)
from .models.audit import (
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
from .queue.rate_limiter import BackoffPolicy, RateLimitTracker


logger = logging.getLogger(__name__)


MIN_CONCURRENCY = 1
MAX_CONCURRENCY = 10

ProgressCallback = Callable[[ProgressEvent], Union[None, Awaitable[None]]]


class AuditDispatcher:
    """Bounded-concurrency audit engine."""

    def __init__(
        self,
        config: AuditConfig,
        render_provider: RenderProvider,
        registry: AuditorRegistry,
        pre_navigation_hooks: Sequence[PreNavigationHook] = (),
        post_load_hooks: Sequence[PostLoadHook] = (),
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        """Initialize the dispatcher.

        Args:
            config: Audit configuration
            render_provider: Source of isolated pages
            registry: Ordered auditor registry
            pre_navigation_hooks: Awaited with each fresh page before navigation
            post_load_hooks: Awaited with each page after it settles
            rng: Random source for pacing and retry jitter
            sleep: Awaitable used for every delay
        """
        self.config = config
        self.render_provider = render_provider
        self.registry = registry
        self.pre_navigation_hooks = list(pre_navigation_hooks)
        self.post_load_hooks = list(post_load_hooks)
        self._rng = rng or random.Random()
        self._sleep = sleep

        self.rate_limit_tracker = RateLimitTracker(BackoffPolicy(
            base_delay=config.rate_limit_base_delay,
            max_delay=config.rate_limit_max_delay,
            jitter=config.rate_limit_jitter,
            max_retries=config.rate_limit_max_retries,
            rng=self._rng,
        ))

        self._concurrent_limit = config.concurrent_limit
        self._running_tasks = 0
        self._peak_running_tasks = 0
        self._request_count = 0
        self._retained_pages: List[PageHandle] = []
        self._initialized = False

        self.stats = {
            'pages_attempted': 0,
            'pages_successful': 0,
            'pages_failed': 0,
            'navigation_retries': 0,
            'auditor_failures': 0,
            'auditor_timeouts': 0,
            'cooldowns': 0,
        }

    async def initialize(self) -> None:
        """Start the render provider and initialize auditors.

        Raises:
            EngineInitializationError: If the provider cannot start
        """
        if self._initialized:
            return
        try:
            await self.render_provider.start()
        except Exception as e:
            raise EngineInitializationError(f"Failed to start render provider: {e}") from e
        await self.registry.initialize_all()
        self._initialized = True
        logger.info(f"Audit dispatcher initialized with {len(self.registry)} auditors")

    async def audit_all(
        self,
        jobs: Sequence[AuditJob],
        options: Optional[AuditOptions] = None,
        on_progress: Optional[ProgressCallback] = None
    ) -> List[AuditResult]:
        """Audit every job and return one result per job, in completion order."""
        if not self._initialized:
            await self.initialize()

        total = len(jobs)
        if total == 0:
            return []

        pending: asyncio.Queue = asyncio.Queue()
        for job in jobs:
            pending.put_nowait(job)
        completed: asyncio.Queue = asyncio.Queue()

        worker_count = min(self._concurrent_limit, total)
        logger.info(f"Auditing {total} URLs with {worker_count} workers")

        async def worker() -> None:
            while True:
                try:
                    job = pending.get_nowait()
                except asyncio.QueueEmpty:
                    return
                await completed.put(await self.audit_job(job, options))

        workers = [asyncio.create_task(worker()) for _ in range(worker_count)]

        results: List[AuditResult] = []
        success_count = 0
        failure_count = 0
        try:
            for current in range(1, total + 1):
                result: AuditResult = await completed.get()
                results.append(result)
                if result.success:
                    success_count += 1
                else:
                    failure_count += 1
                await self._notify(on_progress, ProgressEvent(
                    current=current,
                    total=total,
                    url=result.url,
                    result=result,
                    success_count=success_count,
                    failure_count=failure_count,
                ))
        finally:
            for task in workers:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

        logger.info(f"Audit finished: {success_count} succeeded, {failure_count} failed")
        return results

    async def audit_job(self, job: AuditJob, options: Optional[AuditOptions] = None) -> AuditResult:
        """Audit a single URL; failures become a failed AuditResult."""
        self._running_tasks += 1
        self._peak_running_tasks = max(self._peak_running_tasks, self._running_tasks)
        self.stats['pages_attempted'] += 1
        start = time.monotonic()

        try:
            result = await self._audit_page(job, options, start)
        except RateLimitError as e:
            logger.error(f"Giving up on {job.url}: {e}")
            result = AuditResult.failed(job, str(e), e.status_code, time.monotonic() - start)
        except NavigationError as e:
            logger.error(f"Navigation failed for {job.url} ({e.kind.value}): {e.message}")
            result = AuditResult.failed(job, e.message, e.status_code, time.monotonic() - start)
        except Exception as e:
            logger.error(f"Audit failed for {job.url}: {e}")
            result = AuditResult.failed(job, str(e) or type(e).__name__, load_time=time.monotonic() - start)
        finally:
            self._running_tasks -= 1

        self.stats['pages_successful' if result.success else 'pages_failed'] += 1
        return result

    async def _audit_page(self, job: AuditJob, options: Optional[AuditOptions], start: float) -> AuditResult:
        await self._pace()

        page = await self.render_provider.new_page()
        try:
            for hook in self.pre_navigation_hooks:
                await hook(page)

            response = await self._navigate(page, job.url)
            if response.is_error:
                raise NavigationError.from_status(job.url, response.status, response.status_text)

            await self._settle(page, job.url)

            for hook in self.post_load_hooks:
                await hook(page, job.url)

            outcomes = await self._run_auditors(page, job.url, options)
            return self._compile(job, response, outcomes, time.monotonic() - start)
        finally:
            await self._release_page(page)

    async def _pace(self) -> None:
        """Random delay between requests plus a periodic cooldown."""
        self._request_count += 1
        delay = self._rng.uniform(self.config.request_delay_min, self.config.request_delay_max)

        every = self.config.cooldown_every
        if every and self._request_count % every == 0:
            cooldown = self._rng.uniform(self.config.cooldown_min, self.config.cooldown_max)
            self.stats['cooldowns'] += 1
            logger.info(f"Cooldown after {self._request_count} requests: {cooldown:.1f}s")
            delay += cooldown

        if delay > 0:
            await self._sleep(delay)

    async def _navigate(self, page: PageHandle, url: str) -> NavigationResponse:
        """Navigate, waiting out HTTP 429 answers until the retry budget is spent.

        Raises:
            RateLimitError: If the URL is still rate limited after the last retry
            NavigationError: If navigation fails for another reason
        """
        while True:
            response = await self._navigate_with_retry(page, url)
            if not response.is_rate_limited:
                return response

            decision = await self.rate_limit_tracker.record_rate_limited(url)
            if not decision.should_retry:
                raise RateLimitError(url, decision.retry_count)
            await self._sleep(decision.delay)

    async def _navigate_with_retry(self, page: PageHandle, url: str) -> NavigationResponse:
        retries = self.config.navigation_retries
        for attempt in range(retries + 1):
            try:
                return await page.navigate(url, self.config.page_timeout)
            except Exception as e:
                error = NavigationError.from_exception(url, e)
                if not error.retryable or attempt >= retries:
                    raise error from e

                delay = self.config.retry_base_delay * (attempt + 1)
                if self.config.retry_jitter > 0:
                    delay += self._rng.uniform(0, self.config.retry_jitter)
                self.stats['navigation_retries'] += 1
                logger.warning(
                    f"Navigation attempt {attempt + 1} failed for {url} ({error.kind.value}), "
                    f"retrying in {delay:.1f}s"
                )
                await self._sleep(delay)

        raise NavigationError(url, "Navigation retries exhausted")

    async def _settle(self, page: PageHandle, url: str) -> None:
        if self.config.page_load_delay > 0:
            await self._sleep(self.config.page_load_delay)

        for state, timeout in (
            ("domcontentloaded", self.config.dom_content_timeout),
            ("networkidle", self.config.network_idle_timeout),
        ):
            try:
                await page.wait_for_load_state(state, timeout)
            except Exception as e:
                logger.debug(f"Wait for {state} on {url} did not complete, continuing: {e}")

    async def _run_auditors(
        self,
        page: PageHandle,
        url: str,
        options: Optional[AuditOptions]
    ) -> List[Tuple[AuditorOutcome, Optional[AuditorReport]]]:
        auditors = self.registry.enabled_auditors(options)
        return list(await asyncio.gather(*(self._run_auditor(auditor, page, url) for auditor in auditors)))

    async def _run_auditor(self, auditor, page: PageHandle, url: str) -> Tuple[AuditorOutcome, Optional[AuditorReport]]:
        timeout = auditor.timeout or self.config.auditor_timeout
        start = time.monotonic()
        try:
            report = await asyncio.wait_for(auditor.audit(page, url), timeout)
        except asyncio.TimeoutError:
            error: AuditorError = AuditorTimeoutError(auditor.name, url, timeout)
            self.stats['auditor_timeouts'] += 1
            self.stats['auditor_failures'] += 1
            logger.error(f"{error} on {url}")
            return AuditorOutcome(
                name=auditor.name,
                success=False,
                error=str(error),
                timed_out=True,
                duration=time.monotonic() - start,
            ), None
        except Exception as e:
            self.stats['auditor_failures'] += 1
            logger.error(f"Auditor {auditor.name} failed on {url}: {e}")
            return AuditorOutcome(
                name=auditor.name,
                success=False,
                error=str(e) or type(e).__name__,
                duration=time.monotonic() - start,
            ), None

        return AuditorOutcome(
            name=auditor.name,
            success=True,
            report=report.model_dump(mode="json"),
            duration=time.monotonic() - start,
        ), report

    def _compile(
        self,
        job: AuditJob,
        response: NavigationResponse,
        outcomes: List[Tuple[AuditorOutcome, Optional[AuditorReport]]],
        load_time: float
    ) -> AuditResult:
        """Merge auditor outcomes, in registration order, into one result."""
        auditors: Dict[str, Dict[str, Any]] = {}
        failed: List[str] = []
        issues: List[Finding] = []
        warnings: List[Finding] = []
        recommendations: List[Recommendation] = []

        for outcome, report in outcomes:
            if report is not None:
                auditors[outcome.name] = outcome.report
                issues.extend(report.issues)
                warnings.extend(report.warnings)
                recommendations.extend(report.recommendations)
                continue

            failed.append(outcome.name)
            issues.append(Finding(
                type="audit_failure",
                severity=Severity.ERROR,
                message=f"{outcome.name} auditor failed: {outcome.error}",
                auditor=outcome.name,
                details={'timed_out': outcome.timed_out, 'duration': outcome.duration},
            ))

        return AuditResult(
            url=job.url,
            success=True,
            status_code=response.status,
            load_time=load_time,
            crawl_depth=job.crawl_depth,
            crawl_source=job.source,
            auditors=auditors,
            failed_auditors=failed,
            issues=issues,
            warnings=warnings,
            recommendations=recommendations,
            score=AuditResult.calculate_score(True, issues, warnings),
        )

    async def _release_page(self, page: PageHandle) -> None:
        if self.config.keep_pages_open:
            self._retained_pages.append(page)
            return
        try:
            await page.close()
        except Exception as e:
            logger.error(f"Error closing page: {e}")

    async def _notify(self, callback: Optional[ProgressCallback], event: ProgressEvent) -> None:
        if callback is None:
            return
        try:
            outcome = callback(event)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.error(f"Progress callback failed for {event.url}: {e}")

    async def cleanup(self) -> None:
        """Close retained pages and clean up auditors."""
        if self._retained_pages:
            pages, self._retained_pages = self._retained_pages, []
            outcomes = await asyncio.gather(*(page.close() for page in pages), return_exceptions=True)
            for outcome in outcomes:
                if isinstance(outcome, Exception):
                    logger.error(f"Error closing retained page: {outcome}")
            logger.info(f"Closed {len(pages)} retained pages")

        await self.registry.cleanup_all()
        logger.info("Audit dispatcher cleanup completed")

    async def health_check(self) -> Dict[str, Any]:
        try:
            provider_ok = await self.render_provider.health_check()
        except Exception as e:
            logger.error(f"Render provider health check failed: {e}")
            provider_ok = False

        auditors = await self.registry.health_check_all()
        return {
            'healthy': provider_ok and all(auditors.values()),
            'render_provider': provider_ok,
            'auditors': auditors,
        }

    def adjust_concurrency(self, limit: int) -> int:
        """Change the worker count used by the next audit_all call."""
        self._concurrent_limit = max(MIN_CONCURRENCY, min(MAX_CONCURRENCY, limit))
        logger.info(f"Concurrency adjusted to {self._concurrent_limit}")
        return self._concurrent_limit

    @property
    def concurrent_limit(self) -> int:
        return self._concurrent_limit

    def get_current_load(self) -> Dict[str, Any]:
        return {
            'running_tasks': self._running_tasks,
            'peak_running_tasks': self._peak_running_tasks,
            'concurrent_limit': self._concurrent_limit,
            'utilization': self._running_tasks / self._concurrent_limit,
        }

    def get_rate_limit_stats(self) -> Dict[str, Any]:
        return self.rate_limit_tracker.get_stats()

    def get_stats(self) -> Dict[str, Any]:
        stats = dict(self.stats)
        stats.update({
            'requests': self._request_count,
            'retained_pages': len(self._retained_pages),
            'load': self.get_current_load(),
            'rate_limit': self.get_rate_limit_stats(),
            'auditors': self.registry.get_status(),
        })
        return stats
