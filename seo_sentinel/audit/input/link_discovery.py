"""Anchor extraction from rendered pages."""

import logging
from typing import List, Optional

from pydantic import BaseModel, Field

from ..capture.render import PageHandle


logger = logging.getLogger(__name__)


EXTRACT_LINKS_JS = """
() => Array.from(document.querySelectorAll('a[href]')).map((a) => ({
    href: a.getAttribute('href'),
    text: (a.textContent || '').trim().slice(0, 200),
    title: a.getAttribute('title') || null,
    rel: a.getAttribute('rel') || null,
}))
"""


class DiscoveredLink(BaseModel):
    """Raw anchor as found in the DOM, before resolution."""

    href: str = Field(description="Raw href attribute value")
    text: str = Field(default="", description="Anchor text")
    title: Optional[str] = None
    rel: Optional[str] = None


class LinkDiscovery:
    """Extracts anchors from a loaded page."""

    def __init__(self, script: str = EXTRACT_LINKS_JS):
        self.script = script

    async def extract_links(self, page: PageHandle) -> List[DiscoveredLink]:
        """Return every anchor with a non-empty href, in document order."""
        raw = await page.evaluate(self.script) or []

        links = []
        for item in raw:
            href = (item or {}).get('href')
            if not href or not href.strip():
                continue
            links.append(DiscoveredLink(
                href=href.strip(),
                text=item.get('text') or "",
                title=item.get('title'),
                rel=item.get('rel'),
            ))

        logger.debug(f"Extracted {len(links)} links")
        return links
