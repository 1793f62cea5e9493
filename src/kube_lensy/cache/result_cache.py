"""Short-lived cache of read results, keyed by (scope, operation, params)."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass
from typing import Any

from cachetools import TLRUCache

logger = logging.getLogger(__name__)

GLOBAL_SCOPE = "__global__"

CacheKey = tuple[str, str, Hashable]


class _Miss:
    def __repr__(self) -> str:
        return "MISS"

    def __bool__(self) -> bool:
        return False


MISS: Any = _Miss()


@dataclass(frozen=True)
class CacheEntry:
    key: CacheKey
    value: Any
    expires_at: float


def make_key(scope: str, operation: str, params: Hashable = ()) -> CacheKey:
    return (scope, operation, params)


class ResultCache:
    """TTL cache where every entry carries its own time-to-live.

    ``scope`` is the kube context the result was read from, or
    ``GLOBAL_SCOPE`` for results that do not depend on a context.
    """

    def __init__(self, max_entries: int = 512, timer: Callable[[], float] = time.monotonic) -> None:
        self._timer = timer
        self._cache: TLRUCache[CacheKey, CacheEntry] = TLRUCache(
            maxsize=max_entries,
            ttu=lambda _key, entry, _now: entry.expires_at,
            timer=timer,
        )
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            self._cache.expire()
            return len(self._cache)

    def get(self, key: CacheKey) -> Any:
        with self._lock:
            entry = self._cache.get(key)
        if entry is None:
            return MISS
        logger.debug("cache hit for %s", key[:2])
        return entry.value

    def set(self, key: CacheKey, value: Any, ttl: float) -> None:
        if ttl <= 0:
            return
        entry = CacheEntry(key=key, value=value, expires_at=self._timer() + ttl)
        with self._lock:
            self._cache[key] = entry

    def invalidate(self, key: CacheKey) -> None:
        with self._lock:
            self._cache.pop(key, None)

    def invalidate_scope(self, scope: str) -> None:
        with self._lock:
            stale = [k for k in list(self._cache.keys()) if k[0] == scope]
            for k in stale:
                self._cache.pop(k, None)
        if stale:
            logger.debug("invalidated %d cache entries for scope %s", len(stale), scope)

    def invalidate_all(self) -> None:
        with self._lock:
            self._cache.clear()
        logger.debug("cleared result cache")

    async def cached(self, key: CacheKey, ttl: float, fetch: Callable[[], Awaitable[Any]]) -> Any:
        """Return the cached value for ``key`` or fetch and store it; failures are not stored."""
        value = self.get(key)
        if value is not MISS:
            return value
        value = await fetch()
        self.set(key, value, ttl)
        return value
