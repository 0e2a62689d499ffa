"""
CacheManager - Async-compatible TTL cache with staleness introspection.

Features:
- Memory-based cache, last-writer-wins
- Lazy expiry: entries are checked on read, never swept in the background
- Expired entries stay readable on request for stale-cache fallback
- Optional size bound (oldest stored entry evicted first)
"""

import asyncio
import hashlib
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Generic, TypeVar

from loguru import logger

T = TypeVar("T")

Clock = Callable[[], datetime]


@dataclass
class CacheEntry(Generic[T]):
    """A single cache entry with metadata."""

    value: T
    stored_at: datetime
    ttl: timedelta

    def age(self, now: datetime) -> timedelta:
        return max(now - self.stored_at, timedelta(0))

    def is_fresh(self, now: datetime) -> bool:
        """Check if entry is still within its TTL."""
        return self.age(now) < self.ttl


class CacheManager:
    """
    Async-compatible cache manager with TTL and staleness introspection.

    Usage:
        cache = CacheManager(prefix="quote:", max_size=1000)

        entry = await cache.get("AAPL")
        if entry:
            return entry.value

        data = await fetch_data()
        await cache.set("AAPL", data, ttl=timedelta(minutes=5))

        # Past TTL, for degraded responses
        stale = await cache.get("AAPL", allow_expired=True)
    """

    def __init__(
        self,
        prefix: str = "folio_",
        max_size: int | None = None,
        default_ttl: timedelta = timedelta(minutes=5),
        clock: Clock = datetime.now,
        debug: bool = False,
    ):
        self._memory: dict[str, CacheEntry[Any]] = {}
        self._prefix = prefix
        self._max_size = max_size
        self._default_ttl = default_ttl
        self._clock = clock
        self._debug = debug
        self._lock = asyncio.Lock()
        self._stats = CacheStats()

    def generate_key(self, *parts: str) -> str:
        """Generate a cache key from its parts, e.g. ("quote", "AAPL")."""
        full_key = ":".join(parts)

        # Hash long keys
        if len(full_key) > 200:
            hash_val = hashlib.md5(full_key.encode()).hexdigest()[:16]
            return f"{self._prefix}{hash_val}"

        return f"{self._prefix}{full_key}"

    async def get(
        self,
        key: str,
        allow_expired: bool = False,
    ) -> CacheEntry[Any] | None:
        """
        Get an entry from cache.

        Returns the entry if it is fresh, or at any age when allow_expired
        is set. Returns None otherwise.
        """
        async with self._lock:
            entry = self._memory.get(key)
            if entry is None:
                self._stats.misses += 1
                self._log(f"MISS: {key[:50]}")
                return None

            if entry.is_fresh(self._clock()):
                self._stats.hits += 1
                self._log(f"HIT: {key[:50]}")
                return entry

            if allow_expired:
                self._stats.stale_hits += 1
                self._log(f"STALE HIT: {key[:50]}")
                return entry

            self._stats.misses += 1
            self._log(f"EXPIRED: {key[:50]}")
            return None

    async def set(self, key: str, value: Any, ttl: timedelta | None = None) -> None:
        """
        Set value in cache, overwriting any existing entry.

        Args:
            key: Cache key
            value: Data to cache
            ttl: Time to live (uses default if not specified)
        """
        ttl = ttl or self._default_ttl
        entry = CacheEntry(value=value, stored_at=self._clock(), ttl=ttl)

        async with self._lock:
            if (
                self._max_size is not None
                and len(self._memory) >= self._max_size
                and key not in self._memory
            ):
                self._evict_oldest()

            self._memory[key] = entry
            self._log(f"SET: {key[:50]} (TTL: {ttl.total_seconds()}s)")

    async def get_age(self, key: str) -> timedelta | None:
        """Age of the entry stored under key, or None if there is none."""
        async with self._lock:
            entry = self._memory.get(key)
            if entry is None:
                return None
            return entry.age(self._clock())

    async def delete(self, key: str) -> bool:
        """Delete a specific key from cache."""
        async with self._lock:
            if key in self._memory:
                del self._memory[key]
                self._log(f"DELETE: {key[:50]}")
                return True
            return False

    async def invalidate(self, pattern: str) -> int:
        """
        Invalidate all keys containing a substring.

        Returns:
            Number of entries invalidated
        """
        async with self._lock:
            keys_to_delete = [k for k in self._memory if pattern in k]
            for key in keys_to_delete:
                del self._memory[key]

            if keys_to_delete:
                self._log(
                    f"INVALIDATE: {len(keys_to_delete)} entries matching '{pattern}'"
                )

            return len(keys_to_delete)

    async def clear(self) -> None:
        """Clear all cache entries."""
        async with self._lock:
            count = len(self._memory)
            self._memory.clear()
            self._log(f"CLEAR: {count} entries removed")

    def _evict_oldest(self) -> None:
        if not self._memory:
            return

        oldest_key = min(
            self._memory.keys(),
            key=lambda k: self._memory[k].stored_at,
        )
        del self._memory[oldest_key]
        self._stats.evictions += 1
        self._log(f"EVICT: {oldest_key[:50]}")

    def get_stats(self) -> "CacheStats":
        """Get cache statistics."""
        self._stats.size = len(self._memory)
        self._stats.max_size = self._max_size
        return self._stats

    def _log(self, message: str) -> None:
        if self._debug:
            logger.debug(f"[CacheManager] {message}")


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    stale_hits: int = 0
    evictions: int = 0
    size: int = 0
    max_size: int | None = None

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.stale_hits + self.misses
        if total == 0:
            return 0.0
        return (self.hits + self.stale_hits) / total

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "stale_hits": self.stale_hits,
            "evictions": self.evictions,
            "size": self.size,
            "max_size": self.max_size,
            "hit_rate": f"{self.hit_rate:.2%}",
        }
