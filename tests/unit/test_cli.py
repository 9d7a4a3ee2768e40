"""Unit tests for the Typer command line interface."""

import asyncio
import json
import pytest
import sys
from pathlib import Path

import yaml
from typer.testing import CliRunner

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from conftest import FakePageSpec, FakeRenderProvider, make_png, make_structure, make_styles
from seo_sentinel import __version__
from seo_sentinel.audit.baselines.store import BaselineKey, BaselineKind, LocalBaselineStore, MemoryBaselineStore
from seo_sentinel.audit.runner import LandingPageAuditor
from seo_sentinel.cli import main as cli
from seo_sentinel.cli.main import ExitCode, app


runner = CliRunner()

HOME = "https://shop.example.com/"


def fast_config(tmp_path, backend="memory") -> Path:
    path = tmp_path / "sentinel.yaml"
    path.write_text(yaml.safe_dump({
        "crawl": {"page_load_delay": 0, "network_idle_timeout": 0, "rate_limit_requests": 100},
        "audit": {
            "page_load_delay": 0,
            "request_delay_min": 0,
            "request_delay_max": 0,
            "cooldown_every": 0,
            "retry_base_delay": 0,
            "retry_jitter": 0,
        },
        "visual": {
            "viewports": [{"name": "desktop", "width": 1280, "height": 800}],
            "capture_elements": ["h1"],
            "viewport_settle_delay": 0,
        },
        "baselines": {"backend": backend, "path": str(tmp_path / "baselines")},
        "browser": {"human_simulation": False},
    }))
    return path


def site(h1_level):
    return {HOME: FakePageSpec(
        structure=make_structure([(h1_level, "Trail Running Shoes"), (2, "Bestsellers")]),
        styles=make_styles([(h1_level, "32px", "700"), (2, "24px", "700")]),
        screenshots={"fullpage": make_png(32, 48), "h1": make_png(32, 8)},
    )}


@pytest.fixture
def fake_auditor(monkeypatch):
    """Route the audit command through a FakeRenderProvider and a shared store."""
    store = MemoryBaselineStore()
    state = {"site": site(1)}

    def factory(config):
        return LandingPageAuditor(config, render_provider=FakeRenderProvider(state["site"]), store=store)

    monkeypatch.setattr(cli, "LandingPageAuditor", factory)
    return state


class TestBasicCommands:
    """Test cases for version and init-config."""

    def test_version(self):
        result = runner.invoke(app, ["version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_init_config_writes_file(self, tmp_path):
        path = tmp_path / "config" / "sentinel.yaml"

        result = runner.invoke(app, ["init-config", str(path)])

        assert result.exit_code == 0
        assert "environments" in yaml.safe_load(path.read_text())

    def test_init_config_refuses_to_overwrite(self, tmp_path):
        path = tmp_path / "sentinel.yaml"
        path.write_text("crawl: {}\n")

        result = runner.invoke(app, ["init-config", str(path)])

        assert result.exit_code == ExitCode.CONFIG_ERROR
        assert path.read_text() == "crawl: {}\n"

    def test_invalid_config_file(self, tmp_path):
        path = tmp_path / "sentinel.yaml"
        path.write_text("audit: {concurrent_limit: 50}\n")

        result = runner.invoke(app, ["baselines", "list", "--config", str(path)])

        assert result.exit_code == ExitCode.CONFIG_ERROR


class TestBaselineCommands:
    """Test cases for the baselines sub-commands."""

    @pytest.fixture
    def populated(self, tmp_path):
        config = fast_config(tmp_path, backend="local")
        store = LocalBaselineStore(tmp_path / "baselines")

        async def seed():
            await store.write_json(BaselineKey.for_url(HOME, BaselineKind.STRUCTURE), {"headings": []})
            await store.write(BaselineKey.for_url(HOME, BaselineKind.SCREENSHOT, "fullpage_desktop"), b"png")

        asyncio.run(seed())
        return config, store

    def test_list(self, populated):
        config, _ = populated

        result = runner.invoke(app, ["baselines", "list", "--config", str(config)])

        assert result.exit_code == 0
        assert "2 baselines" in result.output
        assert "fullpage_desktop" in result.output

    def test_list_by_kind(self, populated):
        config, _ = populated

        result = runner.invoke(app, ["baselines", "list", "--config", str(config), "--kind", "structure"])

        assert "1 baselines" in result.output

    def test_clear(self, populated):
        config, store = populated

        result = runner.invoke(app, ["baselines", "clear", "--config", str(config), "--yes"])

        assert result.exit_code == 0
        assert "Deleted 2 baselines" in result.output
        assert asyncio.run(store.list_keys()) == []

    def test_clear_requires_confirmation(self, populated):
        config, store = populated

        result = runner.invoke(app, ["baselines", "clear", "--config", str(config)], input="n\n")

        assert result.exit_code != 0
        assert len(asyncio.run(store.list_keys())) == 2


class TestAuditCommand:
    """Test cases for the audit command exit codes."""

    def test_first_run_succeeds(self, tmp_path, fake_auditor):
        config = fast_config(tmp_path)

        result = runner.invoke(app, ["audit", HOME, "--config", str(config)])

        assert result.exit_code == ExitCode.SUCCESS
        assert "[1/1]" in result.output

    def test_manipulation_exit_code(self, tmp_path, fake_auditor):
        config = fast_config(tmp_path)
        runner.invoke(app, ["audit", HOME, "--config", str(config)])

        fake_auditor["site"] = site(3)
        result = runner.invoke(app, ["audit", HOME, "--config", str(config)])

        assert result.exit_code == ExitCode.MANIPULATION
        assert "H1 -> H3" in result.output

    def test_output_file(self, tmp_path, fake_auditor):
        config = fast_config(tmp_path)
        output = tmp_path / "out" / "run.json"

        result = runner.invoke(app, ["audit", HOME, "--config", str(config), "--output", str(output), "--quiet"])

        assert result.exit_code == ExitCode.SUCCESS
        data = json.loads(output.read_text())
        assert data["summary"]["landing_url"] == HOME
        assert data["summary"]["total_urls"] == 1

    def test_unreachable_landing_page(self, tmp_path, fake_auditor):
        config = fast_config(tmp_path)
        fake_auditor["site"] = {}

        result = runner.invoke(app, ["audit", HOME, "--config", str(config)])

        assert result.exit_code == ExitCode.RUNTIME_ERROR
