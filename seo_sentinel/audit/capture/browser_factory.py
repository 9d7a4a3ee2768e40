"""Playwright implementation of the render provider.

BrowserFactory owns the Playwright driver and browser process. Every
new_page() call opens a fresh browser context, so pages never share
cookies, storage or viewport; closing a PlaywrightPage closes its context.
"""

import logging
from typing import Any, Dict, List, Optional

from playwright.async_api import (
    Browser,
    BrowserContext,
    Page,
    Playwright,
    async_playwright,
)

from .render import NavigationResponse
from ..errors import NavigationError, NavigationErrorKind

logger = logging.getLogger(__name__)


class BrowserEngineType:
    """Supported browser engine types."""
    CHROMIUM = "chromium"
    FIREFOX = "firefox"
    WEBKIT = "webkit"


DEFAULT_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-dev-shm-usage",
    "--disable-blink-features=AutomationControlled",
    "--disable-infobars",
    "--no-first-run",
    "--no-default-browser-check",
]

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class BrowserConfig:
    """Configuration for browser launch and context setup."""

    def __init__(
        self,
        engine: str = BrowserEngineType.CHROMIUM,
        headless: bool = True,
        slow_mo: int = 0,
        viewport: Optional[Dict[str, int]] = None,
        user_agent: Optional[str] = DEFAULT_USER_AGENT,
        extra_headers: Optional[Dict[str, str]] = None,
        ignore_https_errors: bool = False,
        locale: Optional[str] = "en-US",
        timezone: Optional[str] = None,
        launch_args: Optional[List[str]] = None,
        **kwargs
    ):
        """Initialize browser configuration.

        Args:
            engine: Browser engine to use (chromium, firefox, webkit)
            headless: Run browser in headless mode
            slow_mo: Slow down operations by specified milliseconds
            viewport: Viewport size dict with 'width' and 'height'
            user_agent: Custom User-Agent string
            extra_headers: Additional HTTP headers for all requests
            ignore_https_errors: Ignore SSL/TLS certificate errors
            locale: Locale for the browser context
            timezone: Timezone ID (e.g., 'America/New_York')
            launch_args: Extra command-line switches for Chromium
        """
        self.engine = engine
        self.headless = headless
        self.slow_mo = slow_mo
        self.viewport = viewport or {'width': 1920, 'height': 1080}
        self.user_agent = user_agent
        self.extra_headers = extra_headers or {}
        self.ignore_https_errors = ignore_https_errors
        self.locale = locale
        self.timezone = timezone
        self.launch_args = launch_args if launch_args is not None else list(DEFAULT_LAUNCH_ARGS)
        self.extra_options = kwargs

    @classmethod
    def from_settings(cls, settings) -> "BrowserConfig":
        """Build from a BrowserSettings config model."""
        return cls(
            engine=settings.engine,
            headless=settings.headless,
            slow_mo=settings.slow_mo,
            viewport={'width': settings.viewport_width, 'height': settings.viewport_height},
            user_agent=settings.user_agent,
            extra_headers=settings.extra_headers,
            ignore_https_errors=settings.ignore_https_errors,
            locale=settings.locale,
            timezone=settings.timezone,
        )

    def to_browser_options(self) -> Dict[str, Any]:
        """Convert to Playwright browser launch options."""
        options = {
            'headless': self.headless,
            'slow_mo': self.slow_mo,
        }

        if self.engine == BrowserEngineType.CHROMIUM and self.launch_args:
            options['args'] = list(self.launch_args)

        options.update(self.extra_options)
        return options

    def to_context_options(self) -> Dict[str, Any]:
        """Convert to Playwright browser context options."""
        options = {}

        if self.viewport:
            options['viewport'] = dict(self.viewport)

        if self.user_agent:
            options['user_agent'] = self.user_agent

        if self.extra_headers:
            options['extra_http_headers'] = self.extra_headers

        if self.ignore_https_errors:
            options['ignore_https_errors'] = True

        if self.locale:
            options['locale'] = self.locale

        if self.timezone:
            options['timezone_id'] = self.timezone

        return options


class PlaywrightPage:
    """PageHandle backed by a Playwright page in its own context."""

    def __init__(self, context: BrowserContext, page: Page):
        self._context = context
        self._page = page
        self._closed = False

    @property
    def raw(self) -> Page:
        return self._page

    async def navigate(self, url: str, timeout: float) -> NavigationResponse:
        response = await self._page.goto(
            url,
            timeout=timeout * 1000,
            wait_until="domcontentloaded"
        )
        if response is None:
            raise NavigationError(url, "No response received", NavigationErrorKind.NO_RESPONSE)

        return NavigationResponse(
            status=response.status,
            status_text=response.status_text or "",
            headers=dict(response.headers),
            url=response.url,
        )

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        if arg is None:
            return await self._page.evaluate(script)
        return await self._page.evaluate(script, arg)

    async def screenshot(self, full_page: bool = True, selector: Optional[str] = None) -> Optional[bytes]:
        if selector:
            locator = self._page.locator(selector).first
            if await locator.count() == 0:
                return None
            return await locator.screenshot(type="png")
        return await self._page.screenshot(full_page=full_page, type="png")

    async def set_viewport(self, width: int, height: int) -> None:
        await self._page.set_viewport_size({'width': width, 'height': height})

    def viewport(self) -> Optional[Dict[str, int]]:
        size = self._page.viewport_size
        return dict(size) if size else None

    async def wait_for_load_state(self, state: str, timeout: float) -> None:
        await self._page.wait_for_load_state(state, timeout=timeout * 1000)

    async def add_init_script(self, script: str) -> None:
        await self._page.add_init_script(script=script)

    async def mouse_move(self, x: float, y: float, steps: int = 1) -> None:
        await self._page.mouse.move(x, y, steps=steps)

    async def mouse_wheel(self, delta_x: float, delta_y: float) -> None:
        await self._page.mouse.wheel(delta_x, delta_y)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._page.close()
        finally:
            await self._context.close()


class BrowserFactory:
    """Render provider that launches one browser and hands out isolated pages."""

    def __init__(self, config: Optional[BrowserConfig] = None):
        """Initialize browser factory with configuration.

        Args:
            config: Browser configuration object
        """
        self.config = config or BrowserConfig()
        self.playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self._pages_opened = 0

    @property
    def is_running(self) -> bool:
        return self.browser is not None

    async def start(self) -> None:
        """Start Playwright and launch browser."""
        if self.playwright is not None:
            logger.debug("Browser factory already started")
            return

        logger.info(f"Starting browser factory with engine: {self.config.engine}")

        try:
            self.playwright = await async_playwright().start()

            if self.config.engine == BrowserEngineType.FIREFOX:
                browser_type = self.playwright.firefox
            elif self.config.engine == BrowserEngineType.WEBKIT:
                browser_type = self.playwright.webkit
            else:
                browser_type = self.playwright.chromium

            self.browser = await browser_type.launch(**self.config.to_browser_options())

            logger.info(f"Browser launched successfully (headless={self.config.headless})")

        except Exception as e:
            logger.error(f"Failed to start browser: {e}")
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop browser and cleanup resources."""
        logger.info("Stopping browser factory")

        try:
            if self.browser:
                await self.browser.close()
                self.browser = None

            if self.playwright:
                await self.playwright.stop()
                self.playwright = None

            logger.info("Browser factory stopped successfully")

        except Exception as e:
            logger.error(f"Error stopping browser factory: {e}")

    async def new_page(self) -> PlaywrightPage:
        """Open a page in a fresh browser context.

        Raises:
            RuntimeError: If browser factory not started
        """
        if not self.browser:
            raise RuntimeError("Browser factory not started. Call start() first.")

        context = await self.browser.new_context(**self.config.to_context_options())
        try:
            page = await context.new_page()
        except Exception:
            await context.close()
            raise

        self._pages_opened += 1
        logger.debug(f"Opened page #{self._pages_opened}")
        return PlaywrightPage(context, page)

    async def health_check(self) -> bool:
        """Check that the browser process is still connected."""
        if not self.browser:
            return False
        try:
            return self.browser.is_connected()
        except Exception as e:
            logger.error(f"Browser health check failed: {e}")
            return False

    async def get_browser_version(self) -> Optional[str]:
        """Get browser version information."""
        if not self.browser:
            return None
        return self.browser.version

    def get_stats(self) -> Dict[str, Any]:
        return {
            "engine": self.config.engine,
            "headless": self.config.headless,
            "running": self.is_running,
            "pages_opened": self._pages_opened,
        }
