"""Inclusion policy for links discovered during a crawl.

Checks are applied in a fixed order and the first failing check rejects
the URL:

1. same domain as the seed (unless external links are followed)
2. exclude patterns
3. include patterns (only when any are configured)
4. http(s) protocol and binary extension filter
"""

import re
from typing import Iterable, List, Optional, Tuple
from urllib.parse import urlparse

from .url_normalizer import extract_domain


class ScopeMatcherError(Exception):
    """Raised when scope matcher encounters an error."""
    pass


DEFAULT_BINARY_EXTENSIONS = (
    'pdf', 'doc', 'docx', 'xls', 'xlsx', 'ppt', 'pptx', 'zip', 'rar', 'tar', 'gz',
    'mp3', 'mp4', 'avi', 'mov', 'jpg', 'jpeg', 'png', 'gif', 'svg', 'ico', 'css', 'js',
)


class ScopeMatcher:
    """Scope matcher for discovered links.

    Patterns are compiled once, case-insensitively, and matched with
    ``re.search`` against the full URL.
    """

    def __init__(
        self,
        base_domain: Optional[str],
        follow_external_links: bool = False,
        include_patterns: Optional[List[str]] = None,
        exclude_patterns: Optional[List[str]] = None,
        include_binary_urls: bool = False,
        binary_extensions: Iterable[str] = DEFAULT_BINARY_EXTENSIONS
    ):
        """Initialize the scope matcher.

        Args:
            base_domain: Hostname of the seed URL
            follow_external_links: Allow links to other hostnames
            include_patterns: Regex patterns a URL must match (any)
            exclude_patterns: Regex patterns that reject a URL
            include_binary_urls: Keep links to binary/static resources
            binary_extensions: Extensions treated as binary resources

        Raises:
            ScopeMatcherError: If regex patterns are invalid
        """
        self.base_domain = base_domain.lower() if base_domain else None
        self.follow_external_links = follow_external_links
        self.include_binary_urls = include_binary_urls
        self._include_patterns = self._compile(include_patterns, "include")
        self._exclude_patterns = self._compile(exclude_patterns, "exclude")

        extensions = [re.escape(ext.lower().lstrip('.')) for ext in binary_extensions]
        self._binary_pattern = (
            re.compile(r'\.(' + '|'.join(extensions) + r')$', re.IGNORECASE)
            if extensions else None
        )

    @staticmethod
    def _compile(patterns: Optional[List[str]], kind: str) -> List[Tuple[str, re.Pattern]]:
        compiled = []
        for pattern in patterns or []:
            try:
                compiled.append((pattern, re.compile(pattern, re.IGNORECASE)))
            except re.error as e:
                raise ScopeMatcherError(f"Invalid {kind} pattern '{pattern}': {e}")
        return compiled

    def is_in_scope(self, url: str) -> bool:
        """Check if a resolved URL passes the inclusion policy."""
        return self.check(url) is None

    def check(self, url: str) -> Optional[str]:
        """Return the reason a URL is rejected, or None when it is in scope."""
        try:
            parsed = urlparse(url)
        except ValueError:
            return "invalid_url"

        if not self.follow_external_links and self.base_domain:
            if extract_domain(url) != self.base_domain:
                return "external_domain"

        for _, pattern in self._exclude_patterns:
            if pattern.search(url):
                return "excluded"

        if self._include_patterns:
            if not any(pattern.search(url) for _, pattern in self._include_patterns):
                return "not_included"

        if parsed.scheme.lower() not in ('http', 'https'):
            return "unsupported_protocol"

        if not self.include_binary_urls and self._binary_pattern:
            if self._binary_pattern.search(parsed.path):
                return "binary_resource"

        return None

    def filter_urls(self, urls: List[str]) -> Tuple[List[str], List[str]]:
        """Filter a list of URLs into in-scope and out-of-scope lists.

        Args:
            urls: List of URLs to filter

        Returns:
            Tuple of (in_scope_urls, out_of_scope_urls)
        """
        in_scope = []
        out_of_scope = []

        for url in urls:
            if self.is_in_scope(url):
                in_scope.append(url)
            else:
                out_of_scope.append(url)

        return in_scope, out_of_scope

    def get_scope_info(self) -> dict:
        """Get information about the configured scope."""
        return {
            "base_domain": self.base_domain,
            "follow_external_links": self.follow_external_links,
            "include_patterns": [pattern for pattern, _ in self._include_patterns],
            "exclude_patterns": [pattern for pattern, _ in self._exclude_patterns],
            "include_binary_urls": self.include_binary_urls,
        }


def create_scope_matcher_from_config(config, seed_url: str, follow_external_links: bool = False) -> ScopeMatcher:
    """Create a ScopeMatcher from a CrawlConfig for a crawl rooted at seed_url.

    Args:
        config: CrawlConfig instance
        seed_url: Seed URL whose hostname defines the crawl domain
        follow_external_links: Allow links leaving the seed's hostname

    Returns:
        Configured ScopeMatcher instance
    """
    return ScopeMatcher(
        base_domain=extract_domain(seed_url),
        follow_external_links=follow_external_links,
        include_patterns=config.include_patterns,
        exclude_patterns=config.exclude_patterns,
        include_binary_urls=config.include_binary_urls,
        binary_extensions=config.binary_extensions,
    )
