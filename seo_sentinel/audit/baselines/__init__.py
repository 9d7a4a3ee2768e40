"""Baseline storage for structure, style and screenshot references."""

from .store import (
    BaselineKey,
    BaselineKind,
    BaselineStore,
    LocalBaselineStore,
    MemoryBaselineStore,
    url_hash,
)

__all__ = [
    "BaselineKey",
    "BaselineKind",
    "BaselineStore",
    "LocalBaselineStore",
    "MemoryBaselineStore",
    "url_hash",
]
