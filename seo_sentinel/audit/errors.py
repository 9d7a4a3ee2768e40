"""Error taxonomy for crawling, auditing and baseline handling.

Per-URL and per-auditor errors are caught at the URL/auditor boundary and
converted into failed results; only EngineInitializationError aborts a run.
"""

from enum import Enum
from typing import Optional


class SentinelError(Exception):
    """Base class for all SEO Sentinel errors."""
    pass


class EngineInitializationError(SentinelError):
    """Raised when the render provider or an engine cannot start."""
    pass


class NavigationErrorKind(str, Enum):
    """Classification of page navigation failures."""
    DNS = "dns"
    CONNECTION_REFUSED = "connection_refused"
    SSL = "ssl"
    CERTIFICATE = "certificate"
    TIMEOUT = "timeout"
    BLOCKED = "blocked"
    HTTP = "http"
    NO_RESPONSE = "no_response"
    GENERIC = "generic"


# Kinds that will fail the same way on every attempt
TERMINAL_KINDS = frozenset({
    NavigationErrorKind.DNS,
    NavigationErrorKind.SSL,
    NavigationErrorKind.CERTIFICATE,
    NavigationErrorKind.BLOCKED,
    NavigationErrorKind.HTTP,
})


def classify_navigation_error(error: BaseException) -> NavigationErrorKind:
    """Classify a navigation exception by its type and message.

    Args:
        error: Exception raised by the render provider

    Returns:
        The matching NavigationErrorKind
    """
    if isinstance(error, NavigationError):
        return error.kind

    message = str(error)
    lowered = message.lower()

    if "ERR_NAME_NOT_RESOLVED" in message or "name resolution" in lowered or "getaddrinfo" in lowered:
        return NavigationErrorKind.DNS
    if "ERR_CONNECTION_REFUSED" in message or "connection refused" in lowered:
        return NavigationErrorKind.CONNECTION_REFUSED
    if "ERR_SSL_PROTOCOL_ERROR" in message:
        return NavigationErrorKind.SSL
    if "ERR_CERT_" in message:
        return NavigationErrorKind.CERTIFICATE
    if "ERR_BLOCKED_" in message:
        return NavigationErrorKind.BLOCKED
    if isinstance(error, TimeoutError) or "timeout" in lowered or "timed out" in lowered:
        return NavigationErrorKind.TIMEOUT
    return NavigationErrorKind.GENERIC


class NavigationError(SentinelError):
    """Raised when a page cannot be loaded."""

    def __init__(
        self,
        url: str,
        message: str,
        kind: NavigationErrorKind = NavigationErrorKind.GENERIC,
        status_code: Optional[int] = None
    ):
        super().__init__(message)
        self.url = url
        self.message = message
        self.kind = kind
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        """Whether another navigation attempt could succeed."""
        return self.kind not in TERMINAL_KINDS

    @classmethod
    def from_exception(cls, url: str, error: BaseException) -> "NavigationError":
        """Wrap an arbitrary exception raised during navigation."""
        if isinstance(error, NavigationError):
            return error
        return cls(url, str(error) or type(error).__name__, classify_navigation_error(error))

    @classmethod
    def from_status(cls, url: str, status: int, status_text: str = "") -> "NavigationError":
        """Build an error for an HTTP error response."""
        text = f"HTTP {status}"
        if status_text:
            text = f"{text}: {status_text}"
        return cls(url, text, NavigationErrorKind.HTTP, status_code=status)


class RateLimitError(SentinelError):
    """Raised when a URL keeps answering 429 after the retry budget is spent."""

    def __init__(self, url: str, attempts: int):
        super().__init__("Rate limit exceeded - maximum retries reached")
        self.url = url
        self.attempts = attempts
        self.status_code = 429


class AuditorError(SentinelError):
    """Raised when an auditor fails on a page."""

    def __init__(self, auditor: str, url: str, message: str):
        super().__init__(message)
        self.auditor = auditor
        self.url = url


class AuditorTimeoutError(AuditorError):
    """Raised when an auditor exceeds its time budget."""

    def __init__(self, auditor: str, url: str, timeout: float):
        super().__init__(auditor, url, f"Auditor {auditor} timed out after {timeout}s")
        self.timeout = timeout


class BaselineUnreadable(SentinelError):
    """Raised when a stored baseline exists but cannot be read or parsed."""
    pass


class DiffComputationError(SentinelError):
    """Raised when two images cannot be decoded or compared."""
    pass
