"""In-memory TTL cache used to memoize per-URL link extraction."""

import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional, Tuple


class TTLCache:
    """Key/value cache with per-entry expiry and a size cap.

    Entries expire ``ttl`` seconds after being set. When the cache is full,
    the oldest entry (by insertion) is evicted to make room.
    """

    def __init__(
        self,
        ttl: float = 300.0,
        max_size: int = 1000,
        clock: Callable[[], float] = time.monotonic
    ):
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        if max_size < 1:
            raise ValueError("max_size must be at least 1")

        self.ttl = ttl
        self.max_size = max_size
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[Any, float]]" = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None if missing or expired."""
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None

        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            self._misses += 1
            return None

        self._hits += 1
        return value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store a value, evicting the oldest entry when at capacity."""
        if key in self._entries:
            del self._entries[key]
        elif len(self._entries) >= self.max_size:
            self._entries.popitem(last=False)
            self._evictions += 1

        self._entries[key] = (value, self._clock() + (ttl if ttl is not None else self.ttl))

    def has(self, key: str) -> bool:
        """Check for a live entry without touching hit/miss counters."""
        entry = self._entries.get(key)
        if entry is None:
            return False
        if self._clock() >= entry[1]:
            del self._entries[key]
            return False
        return True

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def purge_expired(self) -> int:
        """Drop all expired entries and return how many were removed."""
        now = self._clock()
        expired = [key for key, (_, expires_at) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "size": len(self._entries),
            "max_size": self.max_size,
            "ttl_seconds": self.ttl,
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
        }
