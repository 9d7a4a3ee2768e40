"""Unit tests for the audit dispatcher."""

import asyncio
import pytest
import random
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from conftest import FakePageSpec, FakeRenderProvider
from seo_sentinel.audit.auditors.base import AuditorRegistry, AuditorReport, BaseAuditor
from seo_sentinel.audit.dispatch import AuditDispatcher
from seo_sentinel.audit.errors import EngineInitializationError
from seo_sentinel.audit.models.audit import AuditJob, AuditOptions, Severity
from seo_sentinel.audit.models.crawl import CrawlSource


class StubAuditor(BaseAuditor):
    """Auditor with scripted latency, failures and findings."""

    def __init__(self, name="stub", delay=0.0, error=None, findings=0, timeout=None, init_error=None):
        super().__init__(name, timeout=timeout)
        self.delay = delay
        self.error = error
        self.findings = findings
        self.init_error = init_error
        self.audited = []

    async def initialize(self) -> None:
        if self.init_error:
            raise self.init_error

    async def audit(self, page, url):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        self.audited.append(url)
        report = AuditorReport(auditor=self.name, url=url, score=100)
        for i in range(self.findings):
            report.add_issue(self.create_error(f"{self.name}_issue", f"Issue {i}"))
        return report


class BrokenProvider(FakeRenderProvider):
    async def start(self) -> None:
        raise RuntimeError("no browser")


def urls(count):
    return [f"https://example.com/p{i}" for i in range(count)]


def make_site(addresses, **spec):
    return FakeRenderProvider({url: FakePageSpec(**spec) for url in addresses})


def make_registry(*auditors):
    registry = AuditorRegistry()
    for auditor in auditors:
        registry.register(auditor)
    return registry


def jobs_for(addresses):
    return [AuditJob(url=url) for url in addresses]


class TestAuditAll:
    """Test cases for the bounded worker pool."""

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, fast_audit_config):
        addresses = urls(6)
        dispatcher = AuditDispatcher(fast_audit_config, make_site(addresses), make_registry(StubAuditor(delay=0.02)))

        results = await dispatcher.audit_all(jobs_for(addresses))

        assert sorted(r.url for r in results) == addresses
        assert all(r.success for r in results)
        assert dispatcher.get_current_load()["peak_running_tasks"] == 2
        assert dispatcher.get_current_load()["running_tasks"] == 0

    @pytest.mark.asyncio
    async def test_empty_job_list(self, fast_audit_config):
        dispatcher = AuditDispatcher(fast_audit_config, FakeRenderProvider(), make_registry(StubAuditor()))

        assert await dispatcher.audit_all([]) == []

    @pytest.mark.asyncio
    async def test_progress_events(self, fast_audit_config):
        addresses = urls(3)
        provider = make_site(addresses)
        provider.site.pop(addresses[1])
        dispatcher = AuditDispatcher(fast_audit_config, provider, make_registry(StubAuditor()))
        events = []

        await dispatcher.audit_all(jobs_for(addresses), on_progress=events.append)

        assert [e.current for e in events] == [1, 2, 3]
        assert all(e.total == 3 for e in events)
        assert events[-1].success_count == 2
        assert events[-1].failure_count == 1

    @pytest.mark.asyncio
    async def test_async_progress_callback(self, fast_audit_config):
        addresses = urls(2)
        dispatcher = AuditDispatcher(fast_audit_config, make_site(addresses), make_registry(StubAuditor()))
        seen = []

        async def on_progress(event):
            seen.append(event.url)

        await dispatcher.audit_all(jobs_for(addresses), on_progress=on_progress)

        assert sorted(seen) == addresses

    @pytest.mark.asyncio
    async def test_failing_progress_callback_does_not_stop_run(self, fast_audit_config):
        addresses = urls(2)
        dispatcher = AuditDispatcher(fast_audit_config, make_site(addresses), make_registry(StubAuditor()))

        def on_progress(event):
            raise ValueError("reporter crashed")

        results = await dispatcher.audit_all(jobs_for(addresses), on_progress=on_progress)

        assert len(results) == 2

    @pytest.mark.asyncio
    async def test_pages_are_closed(self, fast_audit_config):
        addresses = urls(3)
        provider = make_site(addresses)
        dispatcher = AuditDispatcher(fast_audit_config, provider, make_registry(StubAuditor()))

        await dispatcher.audit_all(jobs_for(addresses))

        assert len(provider.pages) == 3
        assert all(page.closed for page in provider.pages)

    @pytest.mark.asyncio
    async def test_cooldown_every_n_requests(self, fast_audit_config):
        config = fast_audit_config.model_copy(update={"cooldown_every": 2, "cooldown_min": 0, "cooldown_max": 0})
        addresses = urls(4)
        dispatcher = AuditDispatcher(config, make_site(addresses), make_registry(StubAuditor()))

        await dispatcher.audit_all(jobs_for(addresses))

        assert dispatcher.get_stats()["cooldowns"] == 2
        assert dispatcher.get_stats()["requests"] == 4

    @pytest.mark.asyncio
    async def test_provider_start_failure(self, fast_audit_config):
        dispatcher = AuditDispatcher(fast_audit_config, BrokenProvider(), make_registry(StubAuditor()))

        with pytest.raises(EngineInitializationError):
            await dispatcher.audit_all(jobs_for(urls(1)))


class TestNavigation:
    """Test cases for navigation retries and HTTP 429 handling."""

    @pytest.mark.asyncio
    async def test_rate_limited_url_fails_after_retry_budget(self, fast_audit_config):
        url = "https://example.com/busy"
        provider = make_site([url], status=429)
        dispatcher = AuditDispatcher(fast_audit_config, provider, make_registry(StubAuditor()))

        result = await dispatcher.audit_job(AuditJob(url=url))

        assert provider.navigations.count(url) == 4
        assert not result.success
        assert result.status_code == 429
        assert "maximum retries" in result.error
        assert result.score == 0
        assert dispatcher.get_rate_limit_stats()["permanently_failed"] == 1

    @pytest.mark.asyncio
    async def test_rate_limit_then_success(self, fast_audit_config):
        url = "https://example.com/busy"
        provider = FakeRenderProvider({url: FakePageSpec(statuses=[429, 429])})
        stub = StubAuditor()
        dispatcher = AuditDispatcher(fast_audit_config, provider, make_registry(stub))

        result = await dispatcher.audit_job(AuditJob(url=url))

        assert result.success
        assert result.status_code == 200
        assert provider.navigations.count(url) == 3
        assert stub.audited == [url]

    @pytest.mark.asyncio
    async def test_rate_limit_sleeps_use_backoff(self, fast_audit_config):
        config = fast_audit_config.model_copy(update={
            "rate_limit_base_delay": 30,
            "rate_limit_max_delay": 120,
            "rate_limit_jitter": 0,
        })
        sleeps = []

        async def fake_sleep(seconds):
            sleeps.append(seconds)

        url = "https://example.com/busy"
        dispatcher = AuditDispatcher(config, make_site([url], status=429), make_registry(StubAuditor()), sleep=fake_sleep)

        await dispatcher.audit_job(AuditJob(url=url))

        assert sleeps == [30, 60, 120]

    @pytest.mark.asyncio
    async def test_rate_limit_jitter_follows_dispatcher_rng(self, fast_audit_config):
        config = fast_audit_config.model_copy(update={
            "rate_limit_base_delay": 30,
            "rate_limit_max_delay": 120,
            "rate_limit_jitter": 10,
        })
        url = "https://example.com/busy"
        runs = []

        for _ in range(2):
            sleeps = []

            async def fake_sleep(seconds, sleeps=sleeps):
                sleeps.append(seconds)

            dispatcher = AuditDispatcher(
                config,
                make_site([url], status=429),
                make_registry(StubAuditor()),
                rng=random.Random(3),
                sleep=fake_sleep,
            )
            await dispatcher.audit_job(AuditJob(url=url))
            runs.append(sleeps)

        assert runs[0] == runs[1]
        assert len(runs[0]) == 3
        assert all(base <= delay <= base + 10 for base, delay in zip([30, 60, 120], runs[0]))

    @pytest.mark.asyncio
    async def test_terminal_error_is_not_retried(self, fast_audit_config):
        dispatcher = AuditDispatcher(fast_audit_config, FakeRenderProvider(), make_registry(StubAuditor()))
        url = "https://nowhere.test/"

        result = await dispatcher.audit_job(AuditJob(url=url))

        assert not result.success
        assert "ERR_NAME_NOT_RESOLVED" in result.error
        assert dispatcher.render_provider.navigations == [url]
        assert dispatcher.get_stats()["navigation_retries"] == 0

    @pytest.mark.asyncio
    async def test_retryable_error_is_retried(self, fast_audit_config):
        url = "https://example.com/slow"
        provider = make_site([url], navigate_error=TimeoutError("Timeout 90000ms exceeded"))
        dispatcher = AuditDispatcher(fast_audit_config, provider, make_registry(StubAuditor()))

        result = await dispatcher.audit_job(AuditJob(url=url))

        assert not result.success
        assert provider.navigations.count(url) == fast_audit_config.navigation_retries + 1
        assert dispatcher.get_stats()["navigation_retries"] == fast_audit_config.navigation_retries

    @pytest.mark.asyncio
    async def test_http_error_status(self, fast_audit_config):
        url = "https://example.com/broken"
        dispatcher = AuditDispatcher(fast_audit_config, make_site([url], status=500), make_registry(StubAuditor()))

        result = await dispatcher.audit_job(AuditJob(url=url, crawl_depth=2))

        assert not result.success
        assert result.status_code == 500
        assert result.error == "HTTP 500"
        assert result.crawl_depth == 2

    @pytest.mark.asyncio
    async def test_hooks_are_awaited(self, fast_audit_config):
        url = "https://example.com/"
        calls = []

        async def before(page):
            calls.append("before")

        async def after(page, address):
            calls.append(f"after:{address}")

        dispatcher = AuditDispatcher(
            fast_audit_config,
            make_site([url]),
            make_registry(StubAuditor()),
            pre_navigation_hooks=[before],
            post_load_hooks=[after],
        )

        await dispatcher.audit_job(AuditJob(url=url))

        assert calls == ["before", f"after:{url}"]


class TestAuditorIsolation:
    """Test cases for per-auditor timeouts and failures."""

    @pytest.mark.asyncio
    async def test_slow_auditor_does_not_affect_siblings(self, fast_audit_config):
        url = "https://example.com/"
        fast = StubAuditor("fast")
        slow = StubAuditor("slow", delay=5, timeout=0.05)
        dispatcher = AuditDispatcher(fast_audit_config, make_site([url]), make_registry(slow, fast))

        result = await dispatcher.audit_job(AuditJob(url=url))

        assert result.success
        assert result.failed_auditors == ["slow"]
        assert list(result.auditors) == ["fast"]
        failure = result.issues[0]
        assert failure.type == "audit_failure"
        assert failure.auditor == "slow"
        assert failure.details["timed_out"] is True
        assert dispatcher.get_stats()["auditor_timeouts"] == 1

    @pytest.mark.asyncio
    async def test_raising_auditor_becomes_finding(self, fast_audit_config):
        url = "https://example.com/"
        dispatcher = AuditDispatcher(
            fast_audit_config,
            make_site([url]),
            make_registry(StubAuditor("broken", error=RuntimeError("selector crashed")), StubAuditor("ok")),
        )

        result = await dispatcher.audit_job(AuditJob(url=url))

        assert result.success
        assert result.failed_auditors == ["broken"]
        assert "selector crashed" in result.issues[0].message
        assert result.issues[0].details["timed_out"] is False
        assert result.score == 85

    @pytest.mark.asyncio
    async def test_findings_follow_registration_order(self, fast_audit_config):
        url = "https://example.com/"
        first = StubAuditor("first", delay=0.02, findings=1)
        second = StubAuditor("second", findings=1)
        dispatcher = AuditDispatcher(fast_audit_config, make_site([url]), make_registry(first, second))

        result = await dispatcher.audit_job(AuditJob(url=url))

        assert [issue.auditor for issue in result.issues] == ["first", "second"]
        assert all(issue.severity == Severity.ERROR for issue in result.issues)
        assert result.score == 70

    @pytest.mark.asyncio
    async def test_auditor_selection(self, fast_audit_config):
        url = "https://example.com/"
        a, b = StubAuditor("a"), StubAuditor("b")
        dispatcher = AuditDispatcher(fast_audit_config, make_site([url]), make_registry(a, b))

        only_a = await dispatcher.audit_job(AuditJob(url=url), AuditOptions(only={"a"}))
        skip_a = await dispatcher.audit_job(AuditJob(url=url), AuditOptions(skip={"a"}))

        assert list(only_a.auditors) == ["a"]
        assert list(skip_a.auditors) == ["b"]

    @pytest.mark.asyncio
    async def test_auditor_that_fails_to_initialize_is_disabled(self, fast_audit_config):
        url = "https://example.com/"
        registry = make_registry(StubAuditor("bad", init_error=RuntimeError("missing model")), StubAuditor("good"))
        dispatcher = AuditDispatcher(fast_audit_config, make_site([url]), registry)

        results = await dispatcher.audit_all([AuditJob(url=url, source=CrawlSource.LANDING_PAGE)])

        assert list(results[0].auditors) == ["good"]
        assert results[0].crawl_source == CrawlSource.LANDING_PAGE
        assert registry.get_status()["bad"]["initialization_error"] == "missing model"


class TestDispatcherControls:
    """Test cases for concurrency adjustment and health checks."""

    def test_adjust_concurrency_is_clamped(self, fast_audit_config):
        dispatcher = AuditDispatcher(fast_audit_config, FakeRenderProvider(), make_registry(StubAuditor()))

        assert dispatcher.adjust_concurrency(50) == 10
        assert dispatcher.adjust_concurrency(0) == 1
        assert dispatcher.concurrent_limit == 1

    @pytest.mark.asyncio
    async def test_health_check(self, fast_audit_config):
        dispatcher = AuditDispatcher(fast_audit_config, FakeRenderProvider(), make_registry(StubAuditor()))
        await dispatcher.initialize()

        health = await dispatcher.health_check()

        assert health == {'healthy': True, 'render_provider': True, 'auditors': {'stub': True}}
