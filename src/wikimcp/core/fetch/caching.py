"""
In-memory TTL cache for upstream responses.

Entries carry an absolute expiry and are dropped lazily when a read
finds them stale. There is no background sweeping; an optional entry
bound evicts the least recently used key instead.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable


@dataclass
class CacheEntry:
    """A cached value and its absolute expiry (clock seconds)."""

    value: Any
    expires_at: float


class TTLCache:
    """Key/value store with per-entry time-to-live.

    Usage:
        cache = TTLCache()
        cache.set("key", {"a": 1}, ttl_ms=30_000)
        cache.get("key")  # -> {"a": 1} until 30s have passed
    """

    def __init__(
        self,
        max_entries: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the cache.

        Args:
            max_entries: Evict least recently used keys beyond this size
                (None keeps every key until it is read stale)
            clock: Time source in seconds
        """
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self._clock = clock
        self._store: OrderedDict[str, CacheEntry] = OrderedDict()

    def get(self, key: str, default: Any = None) -> Any:
        """Return the value for key, or default if absent or expired."""
        entry = self._store.get(key)
        if entry is None:
            return default
        if self._clock() >= entry.expires_at:
            del self._store[key]
            return default
        if self.max_entries is not None:
            self._store.move_to_end(key)
        return entry.value

    def set(self, key: str, value: Any, ttl_ms: float) -> None:
        """Store value under key, overwriting any previous entry."""
        expires_at = self._clock() + max(0.0, ttl_ms) / 1000.0
        self._store[key] = CacheEntry(value=value, expires_at=expires_at)
        self._store.move_to_end(key)

        if self.max_entries is not None:
            while len(self._store) > self.max_entries:
                self._store.popitem(last=False)

    def delete(self, key: str) -> None:
        self._store.pop(key, None)

    def clear(self) -> None:
        self._store.clear()

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, str):
            return False
        entry = self._store.get(key)
        return entry is not None and self._clock() < entry.expires_at

    def __len__(self) -> int:
        """Number of stored entries, stale ones included until read."""
        return len(self._store)
