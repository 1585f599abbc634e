"""
Search Cache - In-memory caching with TTL support.

Short-circuits repeated identical searches and memoizes auto-complete
lookups. Expiry is lazy: entries are checked when read.
"""

from __future__ import annotations

import hashlib
import logging
import re
import time
from collections.abc import Callable
from typing import Any

from .models import CacheEntry, SearchQuery, SearchResponse

logger = logging.getLogger(__name__)

__all__ = ["TTLCache", "ResultCache"]


class TTLCache:
    """
    In-memory key/value cache with TTL.

    Features:
    - Lazy TTL expiration
    - Oldest-first eviction when full
    - Pattern-based invalidation
    - Hit/miss tracking
    """

    def __init__(
        self,
        default_ttl: float = 300,
        max_size: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize cache.

        Args:
            default_ttl: Default TTL in seconds
            max_size: Maximum number of cached entries
            clock: Time source in seconds
        """
        self._cache: dict[str, CacheEntry] = {}
        self._default_ttl = default_ttl
        self._max_size = max_size
        self._clock = clock
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        return len(self._cache)

    async def get(self, key: str) -> Any | None:
        """Get cached value if not expired."""
        entry = self._cache.get(key)
        if entry is None:
            self._misses += 1
            return None

        if self._clock() >= entry.expires_at:
            del self._cache[key]
            self._misses += 1
            logger.debug("Cache entry expired: %s", key[:16])
            return None

        entry.hit_count += 1
        self._hits += 1
        logger.debug("Cache hit: %s (hits: %d)", key[:16], entry.hit_count)
        return entry.value

    async def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        """Cache a value."""
        if key not in self._cache and len(self._cache) >= self._max_size:
            self._evict_oldest()

        ttl = self._default_ttl if ttl_seconds is None else ttl_seconds
        now = self._clock()
        self._cache[key] = CacheEntry(
            key=key,
            value=value,
            created_at=now,
            expires_at=now + ttl,
        )
        logger.debug("Cached value: %s (TTL: %ss)", key[:16], ttl)

    async def invalidate(self, pattern: str) -> int:
        """Invalidate cache entries whose key matches pattern."""
        regex = re.compile(pattern)
        keys_to_delete = [k for k in self._cache if regex.search(k)]
        for key in keys_to_delete:
            del self._cache[key]

        logger.info("Invalidated %d cache entries matching: %s", len(keys_to_delete), pattern)
        return len(keys_to_delete)

    async def clear(self) -> None:
        """Clear all cache entries."""
        count = len(self._cache)
        self._cache.clear()
        logger.info("Cleared %d cache entries", count)

    def purge_expired(self) -> int:
        """Drop every expired entry now."""
        now = self._clock()
        expired = [k for k, e in self._cache.items() if now >= e.expires_at]
        for key in expired:
            del self._cache[key]
        return len(expired)

    def _evict_oldest(self) -> None:
        """Drop expired entries, then the oldest 10% if still full."""
        if self.purge_expired() and len(self._cache) < self._max_size:
            return

        sorted_keys = sorted(self._cache, key=lambda k: self._cache[k].created_at)
        evict_count = max(1, len(sorted_keys) // 10)
        for key in sorted_keys[:evict_count]:
            del self._cache[key]

        logger.debug("Evicted %d oldest cache entries", evict_count)

    def stats(self) -> dict[str, Any]:
        """Get cache statistics."""
        now = self._clock()
        lookups = self._hits + self._misses
        return {
            "size": len(self._cache),
            "max_size": self._max_size,
            "expired": sum(1 for e in self._cache.values() if now >= e.expires_at),
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / lookups, 4) if lookups else 0.0,
        }


class ResultCache(TTLCache):
    """Composite search results keyed by the normalized query."""

    @staticmethod
    def generate_key(query: SearchQuery) -> str:
        """SHA-256 of the query's canonical serialization."""
        return hashlib.sha256(query.canonical_key().encode()).hexdigest()

    async def get(self, query: SearchQuery) -> SearchResponse | None:  # type: ignore[override]
        return await super().get(self.generate_key(query))

    async def set(  # type: ignore[override]
        self,
        query: SearchQuery,
        value: SearchResponse,
        ttl_seconds: float | None = None,
    ) -> None:
        await super().set(self.generate_key(query), value, ttl_seconds)
