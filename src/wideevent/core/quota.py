"""Process-wide TTL cache with request coalescing for account limits.

The cache sits in front of the external account-limits lookup on the ingest
hot path. Concurrent lookups for the same key share one upstream fetch, a
failed fetch serves the last known value (or a neutral default), and a
background sweep evicts entries that have been idle for twice the TTL.
"""

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, Self, TypeVar

from wideevent.core.logs import log_exception

logger = logging.getLogger(__name__)

V = TypeVar("V")

DEFAULT_TTL_SECONDS = 300.0
DEFAULT_SWEEP_INTERVAL_SECONDS = 600.0
DEFAULT_FETCH_TIMEOUT_SECONDS = 2.0


@dataclass
class CacheEntry(Generic[V]):
    """Cached value for one key.

    Attributes:
        value: Last fetched value, or the cache default before the first success.
        fetched_at: Clock reading of the last completed fetch attempt.
        in_flight: Pending fetch shared by concurrent lookups.
    """

    value: V
    fetched_at: float
    in_flight: asyncio.Task[V] | None = None


class QuotaCache(Generic[V]):
    """TTL cache with in-flight coalescing and a periodic sweep.

    Args:
        fetch: Upstream lookup, called with the key.
        default: Value served when a fetch fails and nothing is cached.
        ttl: Seconds a fetched value stays fresh.
        sweep_interval: Seconds between eviction sweeps.
        timeout: Upper bound on one upstream fetch.
        clock: Monotonic time source.
    """

    def __init__(
        self,
        fetch: Callable[[str], Awaitable[V]],
        default: V,
        ttl: float = DEFAULT_TTL_SECONDS,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        timeout: float | None = DEFAULT_FETCH_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._fetch = fetch
        self._default = default
        self._ttl = ttl
        self._sweep_interval = sweep_interval
        self._timeout = timeout
        self._clock = clock
        self._entries: dict[str, CacheEntry[V]] = {}
        self._sweeper: asyncio.Task[None] | None = None

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    async def get(self, key: str) -> V:
        """Return the value for ``key``, fetching it if missing or stale.

        A lookup that finds a fetch already in flight awaits that fetch
        instead of starting another one.
        """
        entry = self._entries.get(key)
        if entry is not None:
            if entry.in_flight is not None:
                return await asyncio.shield(entry.in_flight)
            if self._clock() - entry.fetched_at < self._ttl:
                return entry.value
        else:
            entry = CacheEntry(value=self._default, fetched_at=self._clock())
            self._entries[key] = entry

        task = asyncio.create_task(self._refresh(key, entry))
        entry.in_flight = task
        return await asyncio.shield(task)

    async def _refresh(self, key: str, entry: CacheEntry[V]) -> V:
        try:
            try:
                value = await asyncio.wait_for(self._fetch(key), self._timeout)
            except Exception:
                log_exception("Quota lookup failed, serving cached value", key=key)
                value = entry.value
            entry.value = value
            entry.fetched_at = self._clock()
            return value
        finally:
            entry.in_flight = None

    def invalidate(self, key: str) -> None:
        """Drop the cached value for ``key`` unless a fetch is in flight."""
        entry = self._entries.get(key)
        if entry is not None and entry.in_flight is None:
            del self._entries[key]

    def sweep(self) -> int:
        """Evict entries older than twice the TTL that are not being fetched.

        Returns:
            Number of evicted entries.
        """
        cutoff = self._clock() - 2 * self._ttl
        expired = [
            key
            for key, entry in self._entries.items()
            if entry.in_flight is None and entry.fetched_at < cutoff
        ]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Evicted %d quota cache entries", len(expired))
        return len(expired)

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            self.sweep()

    async def start(self) -> None:
        """Start the background sweep. Idempotent."""
        if self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep_forever())

    async def close(self) -> None:
        """Stop the background sweep."""
        if self._sweeper is not None:
            self._sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
