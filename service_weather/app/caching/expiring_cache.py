"""
Expiring in-process cache with per-entry TTL and single-flight fetches.

Entries carry a monotonic deadline and are evicted lazily when a lookup finds
them stale, or in bulk by ``purge_expired`` (optionally driven by the
background sweeper). There are no per-entry timers, so replacing a value can
never be undone by an older insertion expiring.

The mapping lock is only held while the mapping is read or written. The
upstream fetch itself runs outside the lock; concurrent misses for the same key
share one in-flight fetch.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Dict,
    Generic,
    MutableMapping,
    Optional,
    TypeVar,
)

from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


T = TypeVar("T")

FetchFn = Callable[[], Awaitable[T]]


def _consume_outcome(task: "asyncio.Task[Any]") -> None:
    # Every caller may have stopped waiting; retrieve the error so the loop
    # does not report it as never retrieved.
    if not task.cancelled():
        task.exception()


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """A stored value and the monotonic time after which it is stale."""

    value: T
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class ExpiringCache(Generic[T]):
    """Key/value cache whose entries expire a fixed duration after being stored."""

    def __init__(
        self,
        expiration: float,
        *,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
        store: Optional[MutableMapping[str, CacheEntry[T]]] = None,
        metrics: Optional["MetricsCollector"] = None,
    ) -> None:
        if expiration <= 0:
            raise ValueError("expiration must be positive")

        self.expiration = float(expiration)
        self.name = name
        self.metrics = metrics
        self.logger = get_logger(f"weather.cache.{name}")

        self._clock = clock
        self._data: MutableMapping[str, CacheEntry[T]] = store if store is not None else {}
        self._inflight: Dict[str, "asyncio.Task[T]"] = {}
        self._lock = asyncio.Lock()
        self._sweeper: Optional["asyncio.Task[None]"] = None

        self._hits = 0
        self._misses = 0
        self._fetch_errors = 0
        self._expirations = 0

    def __len__(self) -> int:
        return len(self._data)

    async def get_or_fetch(self, key: str, fetch: FetchFn[T]) -> T:
        """Return the cached value for ``key``, fetching and storing it on a miss.

        Fetch errors propagate unchanged and leave nothing cached, so the next
        call for the key fetches again. Callers that arrive while a fetch for
        the same key is in flight wait for that fetch instead of starting one.
        Cancelling a caller only stops that caller waiting; the fetch runs to
        completion and its result is cached for everyone else.
        """
        self._check_key(key)

        async with self._lock:
            entry = self._lookup(key)
            if entry is not None:
                self._record_hit(key)
                return entry.value

            pending = self._inflight.get(key)
            if pending is None:
                self._record_miss(key)
                pending = asyncio.get_running_loop().create_task(self._run_fetch(key, fetch))
                pending.add_done_callback(_consume_outcome)
                self._inflight[key] = pending
            else:
                self.logger.debug("Awaiting in-flight fetch", key=key)

        # The fetch belongs to the cache: a caller that is cancelled stops
        # waiting, but the fetch carries on for everyone else.
        return await asyncio.shield(pending)

    async def _run_fetch(self, key: str, fetch: FetchFn[T]) -> T:
        # Nothing after the fetch awaits, so storing and releasing the key is
        # atomic with respect to other tasks.
        task = asyncio.current_task()
        try:
            value = await fetch()
        except Exception as exc:
            self._record_fetch_error(key, exc)
            raise
        else:
            self._store(key, value)
            return value
        finally:
            self._release(key, task)

    async def add(self, key: str, value: T) -> None:
        """Store ``value`` under ``key`` unconditionally with a fresh deadline."""
        self._check_key(key)
        async with self._lock:
            self._store(key, value)

    async def get(self, key: str) -> Optional[T]:
        """Return the unexpired value for ``key`` without fetching, or ``None``."""
        async with self._lock:
            entry = self._lookup(key)
        return entry.value if entry is not None else None

    async def delete(self, key: str) -> bool:
        async with self._lock:
            removed = self._data.pop(key, None) is not None
            self._update_size_gauge()
        return removed

    async def clear(self) -> None:
        async with self._lock:
            self._data.clear()
            self._update_size_gauge()

    async def purge_expired(self) -> int:
        """Evict every expired entry and return how many were removed."""
        async with self._lock:
            now = self._clock()
            stale = [key for key, entry in self._data.items() if entry.is_expired(now)]
            for key in stale:
                del self._data[key]
            self._expirations += len(stale)
            self._update_size_gauge()

        if stale:
            self.logger.debug("Purged expired cache entries", count=len(stale))
        return len(stale)

    def start_sweeper(self, interval: float) -> None:
        """Start a background task that purges expired entries every ``interval`` seconds."""
        if interval <= 0:
            raise ValueError("interval must be positive")
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop(interval))
        self.logger.info("Cache sweeper started", interval_seconds=interval)

    async def stop_sweeper(self) -> None:
        sweeper, self._sweeper = self._sweeper, None
        if sweeper is None:
            return
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass
        self.logger.info("Cache sweeper stopped")

    def stats(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "entries": len(self._data),
            "in_flight": len(self._inflight),
            "hits": self._hits,
            "misses": self._misses,
            "fetch_errors": self._fetch_errors,
            "expirations": self._expirations,
            "expiration_seconds": self.expiration,
        }

    async def _sweep_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.purge_expired()
            except Exception as exc:  # pragma: no cover - keep sweeping
                self.logger.error("Cache sweep failed", error=str(exc))

    # The helpers below never await; callers hold self._lock or are otherwise
    # between awaits.

    def _lookup(self, key: str) -> Optional[CacheEntry[T]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._data[key]
            self._expirations += 1
            self._update_size_gauge()
            self.logger.debug("Cache entry expired", key=key)
            return None
        return entry

    def _store(self, key: str, value: T) -> None:
        self._data[key] = CacheEntry(value=value, expires_at=self._clock() + self.expiration)
        self._update_size_gauge()

    def _release(self, key: str, pending: Optional["asyncio.Task[T]"]) -> None:
        if self._inflight.get(key) is pending:
            del self._inflight[key]

    def _check_key(self, key: str) -> None:
        if not isinstance(key, str) or not key:
            raise ValueError("cache key must be a non-empty string")

    def _record_hit(self, key: str) -> None:
        self._hits += 1
        self.logger.debug("Cache hit", key=key)
        if self.metrics:
            self.metrics.increment_counter("cache_hits_total", cache_type=self.name)

    def _record_miss(self, key: str) -> None:
        self._misses += 1
        self.logger.debug("Cache miss", key=key)
        if self.metrics:
            self.metrics.increment_counter("cache_misses_total", cache_type=self.name)

    def _record_fetch_error(self, key: str, exc: Exception) -> None:
        self._fetch_errors += 1
        self.logger.warning("Cache fetch failed", key=key, error=str(exc))
        if self.metrics:
            self.metrics.increment_counter("cache_fetch_errors_total", cache_type=self.name)

    def _update_size_gauge(self) -> None:
        if self.metrics:
            self.metrics.set_gauge("cache_entries", len(self._data), cache_type=self.name)
