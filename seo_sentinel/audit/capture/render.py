"""Render provider contract used by the crawler, the dispatcher and the auditors.

Any headless browser can back these protocols; the Playwright
implementation lives in browser_factory.py.
"""

from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

from pydantic import BaseModel, Field


class NavigationResponse(BaseModel):
    """Main-document response of a navigation."""

    status: int = Field(description="HTTP status code")
    status_text: str = Field(default="", description="HTTP status text")
    headers: Dict[str, str] = Field(default_factory=dict, description="Response headers")
    url: Optional[str] = Field(default=None, description="Final URL after redirects")

    @property
    def is_rate_limited(self) -> bool:
        return self.status == 429

    @property
    def is_error(self) -> bool:
        return self.status >= 400


class PageHandle(Protocol):
    """A single isolated page (its own browsing context)."""

    async def navigate(self, url: str, timeout: float) -> NavigationResponse:
        """Load ``url``; raise on network failure or missing response."""
        ...

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        """Run a JavaScript function in the page and return its JSON result."""
        ...

    async def screenshot(self, full_page: bool = True, selector: Optional[str] = None) -> Optional[bytes]:
        """PNG bytes of the page or of the first element matching ``selector``.

        Returns None when ``selector`` matches nothing.
        """
        ...

    async def set_viewport(self, width: int, height: int) -> None:
        ...

    def viewport(self) -> Optional[Dict[str, int]]:
        ...

    async def wait_for_load_state(self, state: str, timeout: float) -> None:
        ...

    async def add_init_script(self, script: str) -> None:
        ...

    async def mouse_move(self, x: float, y: float, steps: int = 1) -> None:
        ...

    async def mouse_wheel(self, delta_x: float, delta_y: float) -> None:
        ...

    async def close(self) -> None:
        ...


class RenderProvider(Protocol):
    """Factory for isolated pages."""

    async def start(self) -> None:
        """Start the browser; calling it again is a no-op."""
        ...

    async def stop(self) -> None:
        ...

    async def new_page(self) -> PageHandle:
        ...

    async def health_check(self) -> bool:
        ...


# Called with each fresh page before it navigates
PreNavigationHook = Callable[[PageHandle], Awaitable[None]]

# Called with the page and its URL once it has loaded
PostLoadHook = Callable[[PageHandle, str], Awaitable[None]]
