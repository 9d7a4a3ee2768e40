"""Render provider contract, Playwright implementation and page hooks."""

from .render import NavigationResponse, PageHandle, PostLoadHook, PreNavigationHook, RenderProvider
from .stealth import HumanInteractionSimulator, mask_automation

__all__ = [
    "NavigationResponse",
    "PageHandle",
    "PostLoadHook",
    "PreNavigationHook",
    "RenderProvider",
    "HumanInteractionSimulator",
    "mask_automation",
]
