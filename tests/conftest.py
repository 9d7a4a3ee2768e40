"""Shared test fixtures and fakes for SEO Sentinel tests.

FakeRenderProvider serves an in-memory site: each URL maps to a FakePageSpec
describing its HTTP status, anchors, structure snapshot, computed styles and
screenshots. Pages answer the extraction scripts by script identity.
"""

import io
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest
from PIL import Image

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

from seo_sentinel.audit.auditors.structure import EXTRACT_STRUCTURE_JS, EXTRACT_STYLING_JS
from seo_sentinel.audit.baselines.store import MemoryBaselineStore
from seo_sentinel.audit.capture.render import NavigationResponse
from seo_sentinel.audit.input.link_discovery import EXTRACT_LINKS_JS
from seo_sentinel.audit.models.audit import AuditConfig
from seo_sentinel.audit.models.crawl import CrawlConfig


HEADING_SIZES = {1: "32px", 2: "24px", 3: "18.72px", 4: "16px", 5: "13.28px", 6: "10.72px"}


@dataclass
class FakePageSpec:
    """What a fake URL serves."""
    status: int = 200
    links: List[str] = field(default_factory=list)
    structure: Dict[str, Any] = field(default_factory=dict)
    styles: Dict[str, Any] = field(default_factory=dict)
    screenshots: Dict[str, bytes] = field(default_factory=dict)
    # Consumed one per navigation before falling back to ``status``
    statuses: List[int] = field(default_factory=list)
    navigate_error: Optional[Exception] = None


class FakePage:
    """In-memory PageHandle."""

    def __init__(self, provider: "FakeRenderProvider"):
        self.provider = provider
        self.url: Optional[str] = None
        self.closed = False
        self.init_scripts: List[str] = []
        self.viewport_history: List[Tuple[int, int]] = []
        self._viewport = {'width': 1920, 'height': 1080}

    def _spec(self) -> FakePageSpec:
        return self.provider.site[self.url]

    async def navigate(self, url: str, timeout: float) -> NavigationResponse:
        self.provider.navigations.append(url)
        spec = self.provider.site.get(url)
        if spec is None:
            raise Exception(f"net::ERR_NAME_NOT_RESOLVED at {url}")
        if spec.navigate_error is not None:
            raise spec.navigate_error
        status = spec.statuses.pop(0) if spec.statuses else spec.status
        self.url = url
        return NavigationResponse(status=status, status_text="", url=url)

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        spec = self._spec()
        if script == EXTRACT_LINKS_JS:
            return [{'href': href, 'text': "", 'title': None, 'rel': None} for href in spec.links]
        if script == EXTRACT_STRUCTURE_JS:
            return spec.structure
        if script == EXTRACT_STYLING_JS:
            return spec.styles
        return None

    async def screenshot(self, full_page: bool = True, selector: Optional[str] = None) -> Optional[bytes]:
        return self._spec().screenshots.get(selector or "fullpage")

    async def set_viewport(self, width: int, height: int) -> None:
        self._viewport = {'width': width, 'height': height}
        self.viewport_history.append((width, height))

    def viewport(self) -> Optional[Dict[str, int]]:
        return dict(self._viewport)

    async def wait_for_load_state(self, state: str, timeout: float) -> None:
        return None

    async def add_init_script(self, script: str) -> None:
        self.init_scripts.append(script)

    async def mouse_move(self, x: float, y: float, steps: int = 1) -> None:
        return None

    async def mouse_wheel(self, delta_x: float, delta_y: float) -> None:
        return None

    async def close(self) -> None:
        self.closed = True


class FakeRenderProvider:
    """In-memory RenderProvider serving ``site``."""

    def __init__(self, site: Optional[Dict[str, FakePageSpec]] = None):
        self.site = site or {}
        self.started = False
        self.start_calls = 0
        self.pages: List[FakePage] = []
        self.navigations: List[str] = []

    async def start(self) -> None:
        self.start_calls += 1
        self.started = True

    async def stop(self) -> None:
        self.started = False

    async def new_page(self) -> FakePage:
        page = FakePage(self)
        self.pages.append(page)
        return page

    async def health_check(self) -> bool:
        return self.started


def make_structure(
    headings: Sequence[Tuple[int, str]],
    title: str = "Example",
    meta: Optional[Dict[str, str]] = None,
    elements: Optional[Dict[str, int]] = None
) -> Dict[str, Any]:
    """Raw output of the structure extraction script."""
    meta = {"description": "An example page"} if meta is None else meta
    return {
        'title': title,
        'headings': [
            {'level': level, 'text': text, 'selector': f"main > h{level}:nth-of-type({i + 1})", 'index': i}
            for i, (level, text) in enumerate(headings)
        ],
        'important_elements': elements or {"h1": sum(1 for level, _ in headings if level == 1), "main": 1},
        'meta_tags': [
            {'name': name, 'property': None, 'http_equiv': None, 'content': content}
            for name, content in meta.items()
        ],
    }


def make_styles(headings: Sequence[Tuple[int, str, str]]) -> Dict[str, Any]:
    """Raw output of the styling extraction script: (level, font size, font weight) per heading."""
    return {
        'headings': [
            {
                'tag': f"h{level}",
                'style': {
                    'font_size': size,
                    'font_weight': weight,
                    'font_family': "Arial",
                    'color': "rgb(0, 0, 0)",
                    'margin': "0px",
                    'padding': "0px",
                    'line_height': "normal",
                    'text_transform': "none",
                    'display': "block",
                },
            }
            for level, size, weight in headings
        ],
        'containers': {},
    }


def make_png(
    width: int,
    height: int,
    color: Tuple[int, int, int] = (255, 255, 255),
    fill: Optional[Tuple[int, int, int]] = None,
    fill_fraction: float = 0.0
) -> bytes:
    """Solid PNG, optionally with the top ``fill_fraction`` rows painted ``fill``."""
    image = Image.new("RGBA", (width, height), color + (255,))
    rows = int(round(height * fill_fraction))
    if fill is not None and rows:
        image.paste(fill + (255,), (0, 0, width, rows))
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def fast_crawl_config():
    """Crawl configuration without settle delays."""
    return CrawlConfig(
        max_depth=2,
        max_urls=50,
        page_load_delay=0,
        network_idle_timeout=0,
        rate_limit_requests=100,
        rate_limit_window=1.0,
    )


@pytest.fixture
def fast_audit_config():
    """Audit configuration without pacing, settle or retry delays."""
    return AuditConfig(
        concurrent_limit=2,
        page_load_delay=0,
        request_delay_min=0,
        request_delay_max=0,
        cooldown_every=0,
        retry_base_delay=0,
        retry_jitter=0,
        rate_limit_base_delay=0,
        rate_limit_max_delay=0,
        rate_limit_jitter=0,
        auditor_timeout=5,
    )


@pytest.fixture
def memory_store():
    return MemoryBaselineStore()


@pytest.fixture
def fake_provider():
    return FakeRenderProvider()


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
