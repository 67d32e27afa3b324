"""
GhostScore Caching Layer.

In-memory LRU cache with TTL. The indexer uses it to pin parsed payment
events by signature, so a re-poll returns the exact record produced the
first time (including a fallback ingestion timestamp).
"""

import time
import asyncio
import logging
from typing import Optional, Dict, Generic, TypeVar
from dataclasses import dataclass
from collections import OrderedDict

logger = logging.getLogger(__name__)

V = TypeVar("V")


@dataclass
class CacheEntry(Generic[V]):
    """A cached value with metadata."""

    value: V
    cached_at: float
    ttl: int
    hits: int = 0

    def expired(self, now: float) -> bool:
        return now > self.cached_at + self.ttl


class MemoryCache(Generic[V]):
    """
    Async-safe in-memory LRU cache with TTL support.

    Example:
        >>> cache = MemoryCache(max_size=1000, default_ttl=300)
        >>> await cache.set(event.signature, event)
        >>> same = await cache.get(event.signature)
    """

    def __init__(self, max_size: int = 10000, default_ttl: int = 300):
        """
        Initialize the memory cache.

        Args:
            max_size: Maximum number of entries before LRU eviction.
            default_ttl: Default TTL in seconds.
        """
        self._cache: "OrderedDict[str, CacheEntry[V]]" = OrderedDict()
        self._max_size = max_size
        self._default_ttl = default_ttl
        self._lock = asyncio.Lock()
        self._stats = {"hits": 0, "misses": 0, "evictions": 0}

    async def get(self, key: str) -> Optional[V]:
        """Get a value, returning None if not found or expired."""
        async with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._stats["misses"] += 1
                return None

            if entry.expired(time.time()):
                del self._cache[key]
                self._stats["misses"] += 1
                return None

            self._cache.move_to_end(key)
            entry.hits += 1
            self._stats["hits"] += 1
            return entry.value

    async def set(self, key: str, value: V, ttl: Optional[int] = None) -> None:
        """Set a value with optional TTL override."""
        async with self._lock:
            if key in self._cache:
                del self._cache[key]
            while len(self._cache) >= self._max_size:
                oldest_key = next(iter(self._cache))
                del self._cache[oldest_key]
                self._stats["evictions"] += 1

            self._cache[key] = CacheEntry(
                value=value,
                cached_at=time.time(),
                ttl=ttl if ttl is not None else self._default_ttl,
            )

    async def setdefault(self, key: str, value: V, ttl: Optional[int] = None) -> V:
        """Store value unless a live entry exists; return whichever is cached."""
        async with self._lock:
            entry = self._cache.get(key)
            if entry is not None and not entry.expired(time.time()):
                self._cache.move_to_end(key)
                entry.hits += 1
                self._stats["hits"] += 1
                return entry.value

            self._stats["misses"] += 1
            self._cache.pop(key, None)
            while len(self._cache) >= self._max_size:
                oldest_key = next(iter(self._cache))
                del self._cache[oldest_key]
                self._stats["evictions"] += 1

            self._cache[key] = CacheEntry(
                value=value,
                cached_at=time.time(),
                ttl=ttl if ttl is not None else self._default_ttl,
            )
            return value

    async def delete(self, key: str) -> bool:
        async with self._lock:
            if key in self._cache:
                del self._cache[key]
                return True
            return False

    async def exists(self, key: str) -> bool:
        return await self.get(key) is not None

    async def clear(self) -> None:
        async with self._lock:
            self._cache.clear()

    @property
    def stats(self) -> Dict[str, int]:
        """Return cache statistics."""
        return {**self._stats, "size": len(self._cache), "max_size": self._max_size}

    @property
    def hit_ratio(self) -> float:
        total = self._stats["hits"] + self._stats["misses"]
        return self._stats["hits"] / total if total > 0 else 0.0
