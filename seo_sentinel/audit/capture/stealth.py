"""Browser fingerprint masking and human-like interaction hooks.

``mask_automation`` is a pre-navigation hook: it installs an init script so
the page sees a regular desktop browser. ``HumanInteractionSimulator`` is a
post-load hook that moves the mouse and scrolls like a visitor would.
Both are optional and wired in through the engines' hook lists.
"""

import asyncio
import logging
import random
from typing import Optional

from .render import PageHandle


logger = logging.getLogger(__name__)


STEALTH_INIT_SCRIPT = """
(() => {
    Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
    Object.defineProperty(navigator, 'plugins', {
        get: () => [
            { name: 'Chrome PDF Plugin', description: 'Portable Document Format' },
            { name: 'Chrome PDF Viewer', description: 'PDF Viewer' },
            { name: 'Native Client', description: 'Native Client' },
        ],
    });
    Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en'] });
    Object.defineProperty(navigator, 'platform', { get: () => 'Win32' });
    Object.defineProperty(navigator, 'hardwareConcurrency', { get: () => 4 });
    window.chrome = { runtime: {}, csi: () => ({}) };
    window.outerHeight = window.innerHeight;
    window.outerWidth = window.innerWidth;
})();
"""


async def mask_automation(page: PageHandle) -> None:
    """Pre-navigation hook hiding the usual headless automation markers."""
    await page.add_init_script(STEALTH_INIT_SCRIPT)


class HumanInteractionSimulator:
    """Post-load hook: random mouse movement and scrolling.

    Failures are logged and never fail the page.
    """

    def __init__(
        self,
        mouse_moves: int = 4,
        min_scroll_steps: int = 3,
        max_scroll_steps: int = 7,
        pause_scale: float = 1.0,
        rng: Optional[random.Random] = None
    ):
        self.mouse_moves = mouse_moves
        self.min_scroll_steps = min_scroll_steps
        self.max_scroll_steps = max_scroll_steps
        self.pause_scale = pause_scale
        self._rng = rng or random.Random()

    async def _pause(self, low: float, high: float) -> None:
        if self.pause_scale > 0:
            await asyncio.sleep(self._rng.uniform(low, high) * self.pause_scale)

    async def __call__(self, page: PageHandle, url: str) -> None:
        viewport = page.viewport() or {'width': 1366, 'height': 768}
        width, height = viewport['width'], viewport['height']

        try:
            await self._pause(0.8, 2.0)

            for _ in range(self.mouse_moves):
                x = self._rng.uniform(width * 0.1, width * 0.9)
                y = self._rng.uniform(height * 0.1, height * 0.9)
                await page.mouse_move(x, y, steps=self._rng.randint(10, 20))
                await self._pause(0.2, 0.8)

            scroll_steps = self._rng.randint(self.min_scroll_steps, self.max_scroll_steps)
            for _ in range(scroll_steps):
                await page.mouse_wheel(0, self._rng.uniform(200, 600))
                await self._pause(1.0, 3.0)

            await page.mouse_wheel(0, -(scroll_steps * 150 + self._rng.uniform(0, 200)))
            await self._pause(0.6, 1.0)

            await page.mouse_move(
                self._rng.uniform(width * 0.2, width * 0.8),
                self._rng.uniform(0, height / 3),
                steps=self._rng.randint(15, 25)
            )
            logger.debug(f"Completed interaction simulation for {url}")

        except Exception as e:
            logger.error(f"Interaction simulation failed for {url}: {e}")
