"""
Smart Cache - LRU key/value store with per-entry TTL

Used for OAuth access tokens and watch-count values.
- Default TTL per cache, overridable per entry
- LRU eviction when max size reached
- Hit tracking for diagnostics
- Injectable clock so expiry can be tested without sleeping
"""

import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    """Single cache entry"""
    value: T
    expires_at: float
    hits: int = 0

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class TTLCache(Generic[T]):
    """
    Time-boxed LRU cache.

    Entries are created on set(), read through get(), and evicted on
    expiry or when capacity forces out the least recently used entry.
    An entry is only ever replaced by an explicit set() with a fresh TTL.
    """

    def __init__(
        self,
        max_size: int = 500,
        ttl_seconds: float = 900,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._cache: "OrderedDict[str, CacheEntry[T]]" = OrderedDict()
        self._stats = {
            'hits': 0,
            'misses': 0,
            'evictions': 0,
            'expirations': 0,
        }

    def get(self, key: str) -> Optional[T]:
        """Return the cached value, or None if missing or expired"""
        entry = self._cache.get(key)
        if entry is None:
            self._stats['misses'] += 1
            return None

        if entry.is_expired(self._clock()):
            del self._cache[key]
            self._stats['expirations'] += 1
            self._stats['misses'] += 1
            return None

        # Move to end (most recently used)
        self._cache.move_to_end(key)
        entry.hits += 1
        self._stats['hits'] += 1
        return entry.value

    def set(self, key: str, value: T, ttl_seconds: Optional[float] = None) -> None:
        """Store value, replacing any existing entry"""
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        if key in self._cache:
            del self._cache[key]

        # Evict oldest if at capacity
        while len(self._cache) >= self.max_size:
            self._cache.popitem(last=False)
            self._stats['evictions'] += 1

        self._cache[key] = CacheEntry(value=value, expires_at=self._clock() + ttl)

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def delete(self, key: str) -> bool:
        """Remove specific entry from cache"""
        return self._cache.pop(key, None) is not None

    def clear(self) -> int:
        """Clear all cache entries, return count cleared"""
        count = len(self._cache)
        self._cache.clear()
        return count

    def cleanup_expired(self) -> int:
        """Remove all expired entries, return count removed"""
        now = self._clock()
        expired_keys = [k for k, v in self._cache.items() if v.is_expired(now)]
        for key in expired_keys:
            del self._cache[key]
        self._stats['expirations'] += len(expired_keys)
        return len(expired_keys)

    def __len__(self) -> int:
        return len(self._cache)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics"""
        total_requests = self._stats['hits'] + self._stats['misses']
        hit_rate = (
            self._stats['hits'] / total_requests * 100
            if total_requests > 0 else 0
        )
        return {
            'size': len(self._cache),
            'max_size': self.max_size,
            'hits': self._stats['hits'],
            'misses': self._stats['misses'],
            'hit_rate': f"{hit_rate:.1f}%",
            'evictions': self._stats['evictions'],
            'expirations': self._stats['expirations'],
        }
