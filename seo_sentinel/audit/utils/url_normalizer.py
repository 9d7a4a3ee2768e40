"""URL normalization and resolution for crawl deduplication.

Normalized URLs are the identity used by the crawl frontier, the link cache
and the baseline store, so normalize() must be idempotent:
normalize(normalize(u)) == normalize(u).
"""

import re
from typing import Optional
from urllib.parse import urljoin, urlparse, urlunparse


class URLNormalizationError(Exception):
    """Raised when URL normalization fails."""
    pass


_DEFAULT_PORTS = {'http': 80, 'https': 443}
_DUPLICATE_SLASHES = re.compile(r'/{2,}')


def _normalize_host_port(scheme: str, netloc: str) -> str:
    """Lowercase the host, IDN-encode it and drop the scheme's default port."""
    netloc = netloc.lower()
    userinfo = None
    if '@' in netloc:
        userinfo, netloc = netloc.rsplit('@', 1)

    port = None
    if netloc.startswith('['):
        # [IPv6] or [IPv6]:port
        if ']:' in netloc:
            host, port = netloc.rsplit(']:', 1)
            host += ']'
        else:
            host = netloc
    elif ':' in netloc:
        host, port = netloc.rsplit(':', 1)
    else:
        host = netloc

    if port is not None:
        if not port.isdigit():
            raise URLNormalizationError(f"Invalid port: {port}")
        if int(port) == _DEFAULT_PORTS.get(scheme):
            port = None
        else:
            port = str(int(port))

    if not host.startswith('['):
        try:
            host = host.encode('idna').decode('ascii')
        except UnicodeError:
            # Keep hosts the idna codec rejects (e.g. underscores) as-is
            pass

    result = host if port is None else f"{host}:{port}"
    if userinfo:
        result = f"{userinfo}@{result}"
    return result


def normalize(url: str) -> str:
    """Normalize a URL for consistent deduplication and comparison.

    Lowercases scheme and host, strips default ports, collapses duplicate
    slashes in the path, strips a trailing slash (the root path stays "/")
    and drops the fragment. The query string is kept as-is.

    Args:
        url: The URL to normalize

    Returns:
        The normalized URL string

    Raises:
        URLNormalizationError: If the URL cannot be normalized

    Example:
        >>> normalize("HTTPS://Example.COM:443//blog//post/#top")
        "https://example.com/blog/post"
    """
    if not url or not isinstance(url, str):
        raise URLNormalizationError("URL must be a non-empty string")

    url = url.strip()
    if not url:
        raise URLNormalizationError("URL cannot be empty or whitespace only")

    try:
        parsed = urlparse(url)
    except ValueError as e:
        raise URLNormalizationError(f"Failed to parse URL '{url}': {e}")

    if not parsed.scheme:
        raise URLNormalizationError(f"URL missing scheme: {url}")
    if not parsed.netloc:
        raise URLNormalizationError(f"URL missing netloc: {url}")

    scheme = parsed.scheme.lower()
    if scheme not in _DEFAULT_PORTS:
        raise URLNormalizationError(f"Unsupported URL scheme: {scheme}")

    netloc = _normalize_host_port(scheme, parsed.netloc)

    path = _DUPLICATE_SLASHES.sub('/', parsed.path or '/')
    if len(path) > 1 and path.endswith('/'):
        path = path.rstrip('/') or '/'

    return urlunparse((scheme, netloc, path, parsed.params, parsed.query, ''))


def resolve(href: str, base_url: str) -> Optional[str]:
    """Resolve a link href against the page it was found on.

    Absolute URLs pass through, protocol-relative URLs inherit the base
    scheme and everything else is joined onto the base URL.

    Args:
        href: Raw href attribute value
        base_url: URL of the page containing the link

    Returns:
        Absolute URL, or None when the href is empty or cannot be resolved
    """
    if not href:
        return None

    href = href.strip()
    if not href:
        return None

    try:
        if href.startswith(('http://', 'https://')):
            return href
        if href.startswith('//'):
            return f"{urlparse(base_url).scheme}:{href}"
        return urljoin(base_url, href)
    except ValueError:
        return None


def extract_domain(url: str) -> Optional[str]:
    """Return the lowercased hostname of a URL, or None if it has none."""
    try:
        return urlparse(url).hostname
    except ValueError:
        return None


def is_same_domain(url: str, other: str) -> bool:
    """Check whether two URLs share the exact same hostname."""
    domain = extract_domain(url)
    return domain is not None and domain == extract_domain(other)


def is_valid_http_url(url: str) -> bool:
    """Check if a URL is a valid HTTP/HTTPS URL.

    Args:
        url: The URL to validate

    Returns:
        True if the URL can be normalized, False otherwise
    """
    try:
        normalize(url)
        return True
    except URLNormalizationError:
        return False
