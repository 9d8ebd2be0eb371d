"""Cache-aside TTL store for expensive per-merchant results.

Usage:
    from app.utils.cache import cache_aside, cache_key

    key = cache_key("dashboard", merchant.id, period.identifier)
    data = await cache_aside.get_or_compute(key, ttl=900, compute=build_dashboard)

A compute function signals "do not cache" by raising; the exception reaches
the caller and nothing is stored. Any returned value, including an empty
list or dict, is stored for the full TTL (negative caching).
"""
import asyncio
import threading
import time
from typing import Any, Awaitable, Callable, Optional

from app.config import get_settings
from app.utils.logger import log

_MISS = object()


def cache_key(kind: str, merchant_id: int, period: str) -> str:
    """Compose a key isolated by result kind, merchant and period."""
    return f"{kind}:merchant_{merchant_id}:period_{period}"


class CacheAside:
    """Thread-safe in-memory cache with TTL expiry and max-entry limit."""

    def __init__(self, max_entries: int = 500, clock: Callable[[], float] = time.time):
        self._store: dict[str, tuple[float, Any]] = {}
        self._lock = threading.Lock()
        self._max_entries = max_entries
        self._clock = clock
        self._inflight: dict[str, asyncio.Lock] = {}

    def get(self, key: str) -> Any:
        """Return cached value if still valid, else the _MISS sentinel."""
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return _MISS
            expires_at, value = entry
            if self._clock() >= expires_at:
                # Lazy expiry, nothing sweeps in the background
                del self._store[key]
                return _MISS
            return value

    def set(self, key: str, value: Any, ttl: int) -> None:
        with self._lock:
            if len(self._store) >= self._max_entries and key not in self._store:
                now = self._clock()
                expired = [k for k, (exp, _) in self._store.items() if now >= exp]
                for k in expired:
                    del self._store[k]
            if len(self._store) >= self._max_entries and key not in self._store:
                oldest_key = min(self._store, key=lambda k: self._store[k][0])
                del self._store[oldest_key]
            self._store[key] = (self._clock() + ttl, value)

    async def get_or_compute(
        self,
        key: str,
        ttl: int,
        compute: Callable[[], Awaitable[Any]],
    ) -> Any:
        """
        Return the cached value for key, computing and storing it on a miss.

        Concurrent misses on one key share a lock: the first caller computes,
        the others wait and then read its stored value. If the compute raised,
        the next waiter computes again.
        """
        cached = self.get(key)
        if cached is not _MISS:
            log.debug(f"Cache hit: {key}")
            return cached

        lock = self._inflight.setdefault(key, asyncio.Lock())
        try:
            async with lock:
                cached = self.get(key)
                if cached is not _MISS:
                    log.debug(f"Cache hit after wait: {key}")
                    return cached

                log.debug(f"Cache miss: {key}")
                value = await compute()
                self.set(key, value, ttl)
                log.info(f"Cached {key} for {ttl}s")
                return value
        finally:
            # Idle locks are dropped; a lock never carries over to another event loop
            if not lock.locked() and self._inflight.get(key) is lock:
                del self._inflight[key]

    def contains(self, key: str) -> bool:
        return self.get(key) is not _MISS

    def invalidate_merchant(self, merchant_id: int) -> int:
        """Drop every cached result for one merchant, whatever its kind."""
        marker = f":merchant_{merchant_id}:"
        with self._lock:
            keys = [k for k in self._store if marker in k]
            for k in keys:
                del self._store[k]
            return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()


def get_cache(max_entries: Optional[int] = None) -> CacheAside:
    return CacheAside(max_entries=max_entries or get_settings().cache_max_entries)


cache_aside = get_cache()
