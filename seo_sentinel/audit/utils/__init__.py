"""Utility modules for URL handling, scoping and caching."""

from .cache import TTLCache
from .scope_matcher import ScopeMatcher, ScopeMatcherError, create_scope_matcher_from_config
from .url_normalizer import (
    URLNormalizationError,
    extract_domain,
    is_same_domain,
    is_valid_http_url,
    normalize,
    resolve,
)

__all__ = [
    "TTLCache",
    "ScopeMatcher",
    "ScopeMatcherError",
    "create_scope_matcher_from_config",
    "URLNormalizationError",
    "extract_domain",
    "is_same_domain",
    "is_valid_http_url",
    "normalize",
    "resolve",
]
