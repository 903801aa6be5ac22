"""
Time-boxed read cache with an optimistic-write helper.

One Cache instance per stateful service, each with its own TTL. Reads inside
the TTL never touch the backing store; writes that could change the cached
value must invalidate. Optimistic writes replace the entry immediately and
hand the durable write to a BackgroundWorker; a persist that ultimately fails
invalidates the entry so the next read re-fetches.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, TypeVar

from storefront.services.background import BackgroundWorker, Persist, PersistJob

logger = logging.getLogger(__name__)

V = TypeVar("V")


@dataclass
class CacheEntry(Generic[V]):
    value: V
    fetched_at: float   # clock() seconds


class Cache(Generic[V]):
    def __init__(
        self,
        name: str,
        ttl_ms: int,
        worker: Optional[BackgroundWorker] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.ttl_ms = ttl_ms
        self._worker = worker
        self._clock = clock
        self._entries: Dict[str, CacheEntry[V]] = {}
        self.hits = 0
        self.misses = 0

    def _is_fresh(self, entry: CacheEntry[V], ttl_ms: int) -> bool:
        return (self._clock() - entry.fetched_at) * 1000 < ttl_ms

    def peek(self, key: str) -> Optional[V]:
        """Return the value if present and fresh, without fetching."""
        entry = self._entries.get(key)
        if entry is not None and self._is_fresh(entry, self.ttl_ms):
            return entry.value
        return None

    def set(self, key: str, value: V) -> None:
        self._entries[key] = CacheEntry(value=value, fetched_at=self._clock())

    async def read(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[V]],
        ttl_ms: Optional[int] = None,
    ) -> V:
        ttl = self.ttl_ms if ttl_ms is None else ttl_ms
        entry = self._entries.get(key)
        if entry is not None and self._is_fresh(entry, ttl):
            self.hits += 1
            return entry.value

        self.misses += 1
        try:
            value = await fetcher()
        except Exception as exc:
            if entry is None:
                raise
            logger.warning(
                "Cache %s: fetch failed for key=%s, serving stale value: %s",
                self.name, key, exc,
            )
            return entry.value

        self.set(key, value)
        return value

    def optimistic_write(self, key: str, value: V, persist: Persist) -> PersistJob:
        """
        Make *value* visible to readers now and persist it in the background.
        Must be called from inside a running event loop.
        """
        if self._worker is None:
            raise RuntimeError(f"Cache {self.name!r} has no background worker")
        self.set(key, value)

        def _on_failure(exc: BaseException) -> None:
            logger.warning(
                "Cache %s: background persist failed for key=%s – invalidating: %s",
                self.name, key, exc,
            )
            self.invalidate(key)

        return self._worker.enqueue(f"{self.name}:{key}", persist, on_failure=_on_failure)

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def invalidate_prefix(self, prefix: str) -> int:
        keys = [k for k in self._entries if k.startswith(prefix)]
        for k in keys:
            del self._entries[k]
        return len(keys)

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> Dict[str, Any]:
        active = sum(1 for e in self._entries.values() if self._is_fresh(e, self.ttl_ms))
        return {
            "name": self.name,
            "ttl_ms": self.ttl_ms,
            "total": len(self._entries),
            "active": active,
            "expired": len(self._entries) - active,
            "hits": self.hits,
            "misses": self.misses,
        }
