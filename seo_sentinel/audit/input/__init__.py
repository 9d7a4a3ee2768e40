"""Link discovery from rendered pages."""

from .link_discovery import DiscoveredLink, LinkDiscovery

__all__ = ["DiscoveredLink", "LinkDiscovery"]
