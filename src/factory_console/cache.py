from __future__ import annotations

import asyncio
import functools
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Final, TypeVar

from factory_console.models import CacheEntry
from factory_console.observability import get_console_metrics, traced_cache_operation

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _Miss:
    __slots__ = ()

    def __repr__(self) -> str:
        return "MISS"

    def __bool__(self) -> bool:
        return False


MISS: Final = _Miss()


@dataclass(frozen=True)
class CacheStats:
    name: str
    entries: int
    fresh_entries: int
    in_flight: int
    hits: int
    misses: int
    dedup_joins: int


class TTLCache:
    """Keyed TTL cache that coalesces concurrent loads of the same key.

    ``fetch`` answers from a fresh entry, otherwise joins the in-flight load
    for the key, otherwise starts one. At most one load per key is in flight;
    every concurrent caller awaits the same task. Successful results are
    stored with the settle time; failures are never stored and propagate to
    every waiter.

    Waiters await the shared task through ``asyncio.shield``, so cancelling a
    caller does not cancel the load other callers are waiting on.
    """

    def __init__(self, name: str, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.name = name
        self._clock = clock
        self._entries: dict[str, CacheEntry[Any]] = {}
        self._in_flight: dict[str, asyncio.Task[Any]] = {}
        # Bumped by invalidate_all(); loads started under an older generation
        # still resolve for their waiters but are not stored.
        self._generation = 0
        self._hits = 0
        self._misses = 0
        self._dedup_joins = 0

    def get(self, key: str) -> Any:
        """Return the cached value for ``key`` if fresh, else ``MISS``."""
        entry = self._entries.get(key)
        if entry is None or not entry.is_fresh(self._clock()):
            return MISS
        return entry.value

    def is_in_flight(self, key: str) -> bool:
        return key in self._in_flight

    async def fetch(
        self,
        key: str,
        loader: Callable[[], Awaitable[T]],
        ttl_seconds: float,
    ) -> T:
        metrics = get_console_metrics()
        async with traced_cache_operation(
            "fetch", cache=self.name, key=key, ttl=ttl_seconds
        ) as span:
            cached = self.get(key)
            if cached is not MISS:
                self._hits += 1
                metrics.cache_hits.add(1, {"cache": self.name})
                span.set_attribute("cache.outcome", "hit")
                return cached  # type: ignore[no-any-return]

            task = self._in_flight.get(key)
            if task is not None:
                self._dedup_joins += 1
                metrics.cache_dedup_joins.add(1, {"cache": self.name})
                span.set_attribute("cache.outcome", "dedup")
                logger.debug("%s: joining in-flight load for %s", self.name, key)
            else:
                self._misses += 1
                metrics.cache_misses.add(1, {"cache": self.name})
                span.set_attribute("cache.outcome", "miss")
                task = asyncio.ensure_future(
                    self._load(key, loader, ttl_seconds, self._generation)
                )
                self._in_flight[key] = task
                task.add_done_callback(functools.partial(self._settle, key))

            return await asyncio.shield(task)  # type: ignore[no-any-return]

    async def _load(
        self,
        key: str,
        loader: Callable[[], Awaitable[T]],
        ttl_seconds: float,
        generation: int,
    ) -> T:
        metrics = get_console_metrics()
        started = time.monotonic()
        try:
            value = await loader()
        except Exception as exc:
            metrics.cache_fetch_errors.add(1, {"cache": self.name})
            logger.warning("%s: load for %s failed: %s", self.name, key, exc)
            raise
        finally:
            metrics.cache_fetch_duration.record(
                time.monotonic() - started, {"cache": self.name}
            )

        if generation == self._generation:
            self._entries[key] = CacheEntry(
                key=key, value=value, fetched_at=self._clock(), ttl_seconds=ttl_seconds
            )
        else:
            logger.debug("%s: discarding result for %s loaded before a full invalidation", self.name, key)
        return value

    def _settle(self, key: str, task: asyncio.Task[Any]) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        # Every waiter may have been cancelled; mark the failure as retrieved
        # here so it is not reported as unhandled. Waiters still receive it.
        if not task.cancelled():
            task.exception()

    def invalidate(self, key: str) -> None:
        """Drop the entry for ``key``. An in-flight load for it is left alone."""
        if self._entries.pop(key, None) is not None:
            get_console_metrics().cache_invalidations.add(1, {"cache": self.name, "scope": "key"})

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop every entry whose key starts with ``prefix``; returns the count."""
        doomed = [key for key in self._entries if key.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        if doomed:
            get_console_metrics().cache_invalidations.add(
                len(doomed), {"cache": self.name, "scope": "prefix"}
            )
        return len(doomed)

    def invalidate_all(self) -> None:
        """Drop all entries and forget in-flight loads.

        Pending loads still resolve for the callers already awaiting them, but
        their results are not stored; later callers start a fresh load.
        """
        dropped = len(self._entries)
        self._entries.clear()
        self._in_flight.clear()
        self._generation += 1
        get_console_metrics().cache_invalidations.add(
            dropped, {"cache": self.name, "scope": "all"}
        )
        logger.debug("%s: invalidated %d entries", self.name, dropped)

    def keys(self) -> list[str]:
        return sorted(self._entries)

    def stats(self) -> CacheStats:
        now = self._clock()
        return CacheStats(
            name=self.name,
            entries=len(self._entries),
            fresh_entries=sum(1 for entry in self._entries.values() if entry.is_fresh(now)),
            in_flight=len(self._in_flight),
            hits=self._hits,
            misses=self._misses,
            dedup_joins=self._dedup_joins,
        )
