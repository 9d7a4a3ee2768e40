"""End-to-end landing page audits against an in-memory site.

The first run captures baselines for every discovered URL; the second run
serves a demoted H1 that is styled to look unchanged.
"""

import pytest
import sys
from pathlib import Path
from unittest.mock import AsyncMock

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from conftest import FakePageSpec, FakeRenderProvider, make_png, make_structure, make_styles
from seo_sentinel.audit.aggregation import ManipulationSeverity
from seo_sentinel.audit.baselines.store import MemoryBaselineStore
from seo_sentinel.audit.capture.stealth import STEALTH_INIT_SCRIPT
from seo_sentinel.audit.config.loader import SentinelConfig
from seo_sentinel.audit.errors import EngineInitializationError
from seo_sentinel.audit.models.audit import AuditOptions
from seo_sentinel.audit.models.crawl import CrawlSource
from seo_sentinel.audit.runner import LandingPageAuditor


pytestmark = pytest.mark.integration

HOME = "https://shop.example.com/"
PRODUCT = "https://shop.example.com/product"


def sentinel_config() -> SentinelConfig:
    return SentinelConfig(
        crawl={"page_load_delay": 0, "network_idle_timeout": 0, "rate_limit_requests": 100},
        audit={
            "page_load_delay": 0,
            "request_delay_min": 0,
            "request_delay_max": 0,
            "cooldown_every": 0,
            "retry_base_delay": 0,
            "retry_jitter": 0,
            "auditor_timeout": 5,
        },
        visual={
            "viewports": [{"name": "desktop", "width": 1280, "height": 800}],
            "capture_elements": ["h1"],
            "viewport_settle_delay": 0,
        },
        baselines={"backend": "memory"},
        browser={"human_simulation": False},
    )


def page(headings, styles, links=()):
    return FakePageSpec(
        links=list(links),
        structure=make_structure(headings),
        styles=make_styles(styles),
        screenshots={"fullpage": make_png(32, 48), "h1": make_png(32, 8)},
    )


def original_site():
    return {
        HOME: page(
            [(1, "Trail Running Shoes"), (2, "Bestsellers")],
            [(1, "32px", "700"), (2, "24px", "700")],
            links=["/product", "https://partner.example.org/"],
        ),
        PRODUCT: page([(1, "Trail Runner X"), (2, "Specs")], [(1, "32px", "700"), (2, "24px", "700")]),
    }


def manipulated_site():
    site = original_site()
    site[HOME] = page(
        [(3, "Trail Running Shoes"), (2, "Bestsellers")],
        [(3, "32px", "700"), (2, "24px", "700")],
        links=["/product"],
    )
    return site


class BrokenProvider(FakeRenderProvider):
    async def start(self) -> None:
        raise RuntimeError("chromium not installed")


class ReadOnlyStore(MemoryBaselineStore):
    async def delete_url(self, url: str) -> int:
        raise OSError("Read-only file system")


class TestLandingPageAudit:
    """Crawl, audit and aggregate through LandingPageAuditor."""

    @pytest.mark.asyncio
    async def test_first_run_captures_baselines(self, memory_store):
        provider = FakeRenderProvider(original_site())
        events = []
        auditor = LandingPageAuditor(sentinel_config(), render_provider=provider, store=memory_store)

        run = await auditor.audit_landing_page(HOME, on_progress=events.append)

        assert run.success
        assert [r.url for r in run.crawl_results] == [HOME, PRODUCT]
        assert run.crawl_results[0].source == CrawlSource.LANDING_PAGE
        assert sorted(r.url for r in run.results) == [HOME, PRODUCT]
        assert run.summary.successful_audits == 2
        assert run.summary.critical_issues == 0
        assert run.manipulation_report.summary['critical_manipulations'] == 0
        assert len(events) == 2
        assert all(r.get_auditor_report("html_structure")["baseline_created"] for r in run.results)
        # structure, style and two screenshots per URL
        assert len(await memory_store.list_keys()) == 8
        assert not provider.started
        assert all(p.init_scripts == [STEALTH_INIT_SCRIPT] for p in provider.pages)

    @pytest.mark.asyncio
    async def test_second_run_detects_disguised_demotion(self, memory_store):
        await LandingPageAuditor(
            sentinel_config(), render_provider=FakeRenderProvider(original_site()), store=memory_store
        ).audit_landing_page(HOME)

        auditor = LandingPageAuditor(
            sentinel_config(), render_provider=FakeRenderProvider(manipulated_site()), store=memory_store
        )
        run = await auditor.audit_landing_page(HOME)

        assert run.success
        assert run.summary.h1_manipulations == 1
        assert run.summary.structure_manipulations == 1
        assert run.summary.critical_issues == 2
        assert run.summary.visual_changes == 0

        manipulations = run.manipulation_report.heading_manipulations
        assert len(manipulations) == 1
        assert manipulations[0].url == HOME
        assert manipulations[0].severity == ManipulationSeverity.CRITICAL
        assert manipulations[0].from_tag == "H1"
        assert manipulations[0].to_tag == "H3"

    @pytest.mark.asyncio
    async def test_recreate_baselines(self, memory_store):
        await LandingPageAuditor(
            sentinel_config(), render_provider=FakeRenderProvider(original_site()), store=memory_store
        ).audit_landing_page(HOME)

        auditor = LandingPageAuditor(
            sentinel_config(), render_provider=FakeRenderProvider(manipulated_site()), store=memory_store
        )
        run = await auditor.recreate_baselines(HOME)

        assert run.baselines_deleted == 8
        assert run.summary.h1_manipulations == 0
        assert run.manipulation_report.heading_manipulations == []

    @pytest.mark.asyncio
    async def test_auditor_selection(self, memory_store):
        auditor = LandingPageAuditor(
            sentinel_config(), render_provider=FakeRenderProvider(original_site()), store=memory_store
        )

        run = await auditor.audit_landing_page(HOME, audit_options=AuditOptions(only={"html_structure"}))

        assert all(list(r.auditors) == ["html_structure"] for r in run.results)
        keys = await memory_store.list_keys()
        assert keys
        assert all(key.kind.value != "screenshot" for key in keys)

    @pytest.mark.asyncio
    async def test_invalid_landing_url_yields_failed_summary(self, memory_store):
        auditor = LandingPageAuditor(sentinel_config(), render_provider=FakeRenderProvider(), store=memory_store)

        run = await auditor.audit_landing_page("not-a-url")

        assert not run.success
        assert "Invalid seed URL" in run.error
        assert run.summary.is_failure
        assert run.results == []

    @pytest.mark.asyncio
    async def test_unreachable_landing_page(self, memory_store):
        auditor = LandingPageAuditor(sentinel_config(), render_provider=FakeRenderProvider(), store=memory_store)

        run = await auditor.audit_landing_page(HOME)

        assert not run.success
        assert run.summary.total_urls == 1
        assert run.summary.failed_audits == 1
        assert run.summary.is_failure

    @pytest.mark.asyncio
    async def test_provider_start_failure_raises(self, memory_store):
        auditor = LandingPageAuditor(sentinel_config(), render_provider=BrokenProvider(), store=memory_store)

        with pytest.raises(EngineInitializationError):
            await auditor.audit_landing_page(HOME)



    @pytest.mark.asyncio
    async def test_store_failure_during_reset_still_summarizes(self):
        provider = FakeRenderProvider(original_site())
        auditor = LandingPageAuditor(sentinel_config(), render_provider=provider, store=ReadOnlyStore())

        run = await auditor.recreate_baselines(HOME)

        assert not run.success
        assert "Read-only file system" in run.error
        assert run.summary.is_failure
        assert run.summary.error == run.error
        assert [r.url for r in run.crawl_results] == [HOME, PRODUCT]
        assert run.manipulation_report.summary['critical_manipulations'] == 0
        assert not provider.started

    @pytest.mark.asyncio
    async def test_unexpected_discovery_error_still_summarizes(self, memory_store):
        provider = FakeRenderProvider(original_site())
        auditor = LandingPageAuditor(sentinel_config(), render_provider=provider, store=memory_store)
        auditor.crawler.discover = AsyncMock(side_effect=RuntimeError("frontier corrupted"))

        run = await auditor.audit_landing_page(HOME)

        assert not run.success
        assert "frontier corrupted" in run.error
        assert run.results == []
        assert not provider.started
