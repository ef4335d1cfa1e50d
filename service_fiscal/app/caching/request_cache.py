"""
In-memory request cache with TTL freshness and in-flight coalescing.

Keeps the last successful result per key so repeated reads within the
freshness window skip the network, and merges concurrent reads of the same
key onto a single fetch. Entries are only evicted on a stale read,
explicit invalidation, or a first-ever failed fetch.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, TYPE_CHECKING, TypeVar

from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


T = TypeVar("T")

DEFAULT_TTL = 120.0  # 2 minutes
KEY_SEPARATOR = "::"


@dataclass
class CacheEntry:
    """One cached resource.

    ``pending`` holds the in-flight fetch task for the key, if any. While it
    is set, ``data``/``timestamp`` still carry the previous result (when
    there was one) so a failed refresh can fall back to it.
    """

    data: Any = None
    timestamp: float = 0.0
    pending: Optional["asyncio.Task[Any]"] = None
    has_data: bool = False

    def age(self, now: float) -> float:
        return now - self.timestamp

    def is_fresh(self, now: float, ttl: float) -> bool:
        return self.has_data and self.age(now) <= ttl


def build_cache_key(base_url: Optional[str], resource: str, token: str) -> str:
    """Build a cache key scoped to an API base, a resource and a session token."""
    return KEY_SEPARATOR.join([base_url or "", resource, token])


def redact_key(key: str) -> str:
    """Hide the session token part of a cache key for logging."""
    parts = key.split(KEY_SEPARATOR)
    if len(parts) < 3:
        return key
    return KEY_SEPARATOR.join(parts[:2] + ["***"])


def _resource_label(key: str) -> str:
    parts = key.split(KEY_SEPARATOR)
    return parts[1] if len(parts) >= 3 and parts[1] else "default"


class RequestCache:
    """TTL cache that coalesces concurrent fetches of the same key.

    All bookkeeping runs synchronously on the event loop; the only
    suspension point is the fetcher itself. The check for an in-flight
    fetch and the registration of a new one therefore happen without an
    intervening ``await``, which is what keeps at most one fetch per key.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        default_ttl: float = DEFAULT_TTL,
        *,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self._entries: Dict[str, CacheEntry] = {}
        self._clock = clock
        self.default_ttl = default_ttl
        self.metrics = metrics
        self.logger = get_logger("fiscal.request_cache")
        self._counters = {"hits": 0, "misses": 0, "coalesced": 0, "forced": 0, "errors": 0}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def keys(self) -> List[str]:
        return list(self._entries)

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        """Return the raw entry for a key, pending or not."""
        return self._entries.get(key)

    async def fetch_with_cache(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[T]],
        *,
        ttl: Optional[float] = None,
        force: bool = False,
    ) -> T:
        """Return fresh cached data for ``key`` or fetch it.

        A fetch already in flight for the key is shared with the caller even
        when ``force`` is set. Failures propagate unchanged; a previous entry
        survives a failed refresh, a brand-new key is dropped.
        """
        if ttl is None:
            ttl = self.default_ttl
        existing = self._entries.get(key)
        now = self._clock()

        if existing is not None and existing.pending is not None:
            self._record_lookup(key, "coalesced")
            return await asyncio.shield(existing.pending)

        if not force and existing is not None and existing.is_fresh(now, ttl):
            self._record_lookup(key, "hit")
            return existing.data

        self._record_lookup(key, "forced" if force else "miss")

        task = asyncio.ensure_future(self._run_fetch(key, fetcher, existing))
        task.add_done_callback(self._consume_result)
        self._entries[key] = CacheEntry(
            data=existing.data if existing is not None else None,
            timestamp=existing.timestamp if existing is not None else now,
            pending=task,
            has_data=existing.has_data if existing is not None else False,
        )
        self._update_size()

        # Callers never cancel the shared fetch; it completes for later readers.
        return await asyncio.shield(task)

    async def _run_fetch(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[T]],
        previous: Optional[CacheEntry],
    ) -> T:
        task = asyncio.current_task()
        start = time.perf_counter()
        try:
            data = await fetcher()
        except BaseException as exc:
            self._counters["errors"] += 1
            self._record_fetch(key, "error", time.perf_counter() - start)

            # A set/invalidate issued while the fetch was in flight wins.
            current = self._entries.get(key)
            if current is not None and current.pending is task:
                if previous is not None:
                    self._entries[key] = previous
                else:
                    del self._entries[key]
                self._update_size()

            self.logger.warning(
                "Cache fetch failed",
                key=redact_key(key),
                kept_previous=previous is not None,
                error=str(exc),
            )
            raise

        self._entries[key] = CacheEntry(data=data, timestamp=self._clock(), has_data=True)
        self._update_size()
        self._record_fetch(key, "success", time.perf_counter() - start)
        self.logger.debug("Cache entry refreshed", key=redact_key(key))
        return data

    @staticmethod
    def _consume_result(task: "asyncio.Task[Any]") -> None:
        # Mark the exception retrieved when every waiter has gone away.
        if not task.cancelled():
            task.exception()

    def set_cache_data(self, key: str, data: Any) -> None:
        """Overwrite ``key`` with fresh data, dropping any pending marker."""
        self._entries[key] = CacheEntry(data=data, timestamp=self._clock(), has_data=True)
        self._update_size()

    def invalidate_cache(self, key: str) -> None:
        """Delete ``key`` so the next read performs a real fetch."""
        if self._entries.pop(key, None) is not None:
            self.logger.debug("Cache entry invalidated", key=redact_key(key))
            self._update_size()

    def get_cache_data(self, key: str, ttl: Optional[float] = None) -> Optional[Any]:
        """Return fresh data for ``key`` without fetching, else ``None``.

        Stale entries are evicted, except while a fetch for the key is in
        flight: evicting then would let a second fetch start.
        """
        if ttl is None:
            ttl = self.default_ttl
        entry = self._entries.get(key)
        if entry is None or not entry.has_data:
            return None

        if entry.age(self._clock()) > ttl:
            if entry.pending is None:
                del self._entries[key]
                self._update_size()
            return None

        return entry.data

    def clear(self) -> None:
        """Drop every entry. In-flight fetches still complete and write back."""
        self._entries.clear()
        self._update_size()

    def stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        return {
            "entries": len(self._entries),
            "pending": sum(1 for entry in self._entries.values() if entry.pending is not None),
            **self._counters,
        }

    def _record_lookup(self, key: str, result: str) -> None:
        counter = {"hit": "hits", "miss": "misses"}.get(result, result)
        self._counters[counter] += 1
        if not self.metrics:
            return
        try:
            self.metrics.record_cache_lookup(_resource_label(key), result)
        except Exception as exc:  # pragma: no cover - metrics failures never break the cache
            self.logger.debug("Failed to record cache lookup", error=str(exc))

    def _record_fetch(self, key: str, outcome: str, duration: float) -> None:
        if not self.metrics:
            return
        try:
            self.metrics.record_cache_fetch(_resource_label(key), outcome, duration)
        except Exception as exc:  # pragma: no cover
            self.logger.debug("Failed to record cache fetch", error=str(exc))

    def _update_size(self) -> None:
        if not self.metrics:
            return
        try:
            self.metrics.set_cache_entries(len(self._entries))
        except Exception as exc:  # pragma: no cover
            self.logger.debug("Failed to record cache size", error=str(exc))


_default_cache = RequestCache()


def get_default_cache() -> RequestCache:
    """Process-wide cache shared by callers that do not inject their own."""
    return _default_cache


async def fetch_with_cache(
    key: str,
    fetcher: Callable[[], Awaitable[T]],
    *,
    ttl: Optional[float] = None,
    force: bool = False,
) -> T:
    return await _default_cache.fetch_with_cache(key, fetcher, ttl=ttl, force=force)


def set_cache_data(key: str, data: Any) -> None:
    _default_cache.set_cache_data(key, data)


def invalidate_cache(key: str) -> None:
    _default_cache.invalidate_cache(key)


def get_cache_data(key: str, ttl: Optional[float] = None) -> Optional[Any]:
    return _default_cache.get_cache_data(key, ttl)
