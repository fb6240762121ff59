"""
In-memory response cache for the proxy.

Entries expire after a fixed TTL. Two independent mechanisms keep the store
small: a periodic sweep that drops expired entries regardless of traffic, and
a hard size cap enforced on insert that evicts the soonest-to-expire entries.
"""

import asyncio
import heapq
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, TYPE_CHECKING

from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


MAX_CACHE_SIZE = 1000
CACHE_TTL_SECONDS = 10 * 60


@dataclass
class CacheEntry:
    """A cached upstream payload and the moment it stops being served."""

    key: str
    payload: Any
    expires_at: float

    def is_live(self, now: float) -> bool:
        return now < self.expires_at


class ResponseCache:
    """Size-bounded TTL cache keyed by request target."""

    def __init__(
        self,
        *,
        max_size: int = MAX_CACHE_SIZE,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
        metrics: Optional["MetricsCollector"] = None,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self.logger = get_logger("proxy.cache")
        self.metrics = metrics
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        # Guards _entries and counters across threads.
        self._lock = threading.Lock()

        self._hits = 0
        self._misses = 0
        self._evictions = {"expired": 0, "size": 0, "sweep": 0}
        self._sweeps = 0

        self._sweep_task: Optional[asyncio.Task] = None
        self._sweep_interval: Optional[float] = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and entry.is_live(now)

    def lookup(self, key: str) -> Optional[CacheEntry]:
        """Return the live entry for ``key``; drop it if it has expired."""
        now = self._clock()
        expired = False
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and not entry.is_live(now):
                del self._entries[key]
                self._evictions["expired"] += 1
                expired = True
                entry = None

            if entry is None:
                self._misses += 1
            else:
                self._hits += 1

        if expired:
            self.logger.debug("Cache entry expired on access", key=key)
            self._record_eviction("expired", 1)
        self._record_lookup(entry is not None)
        return entry

    def insert(self, key: str, payload: Any, ttl: Optional[float] = None) -> CacheEntry:
        """Store ``payload`` under ``key`` for ``ttl`` seconds.

        When the key is new and the store is full, the entries closest to
        expiry are evicted first until there is room.
        """
        ttl = self.ttl_seconds if ttl is None else ttl
        evicted: List[str] = []
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_size:
                overflow = len(self._entries) - self.max_size + 1
                oldest = heapq.nsmallest(
                    overflow,
                    self._entries.values(),
                    key=lambda item: item.expires_at,
                )
                for victim in oldest:
                    del self._entries[victim.key]
                    evicted.append(victim.key)
                self._evictions["size"] += len(evicted)

            entry = CacheEntry(key=key, payload=payload, expires_at=self._clock() + ttl)
            self._entries[key] = entry
            size = len(self._entries)

        if evicted:
            self.logger.info("Evicted cache entries over size limit", count=len(evicted), max_size=self.max_size)
            self._record_eviction("size", len(evicted))
        self._record_size(size)
        return entry

    def sweep_expired(self) -> int:
        """Remove every expired entry and return how many were dropped."""
        now = self._clock()
        with self._lock:
            stale = [key for key, entry in self._entries.items() if not entry.is_live(now)]
            for key in stale:
                del self._entries[key]
            self._evictions["sweep"] += len(stale)
            self._sweeps += 1
            size = len(self._entries)

        if stale:
            self.logger.info("Swept expired cache entries", count=len(stale), remaining=size)
        self._record_eviction("sweep", len(stale))
        self._record_size(size)
        return len(stale)

    def clear(self) -> None:
        """Drop every entry."""
        with self._lock:
            self._entries.clear()
        self._record_size(0)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            return {
                "size": len(self._entries),
                "max_size": self.max_size,
                "ttl_seconds": self.ttl_seconds,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": dict(self._evictions),
                "sweeps": self._sweeps,
                "sweeper_running": self.sweeper_running,
                "sweep_interval_seconds": self._sweep_interval,
            }

    @property
    def sweeper_running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    async def start_sweeper(self, interval: Optional[float] = None) -> None:
        """Start the periodic sweep; the period defaults to the TTL."""
        if self.sweeper_running:
            return
        self._sweep_interval = interval or self.ttl_seconds
        self._sweep_task = asyncio.create_task(self._sweep_loop(self._sweep_interval))
        self.logger.info("Cache sweeper started", interval_seconds=self._sweep_interval)

    async def stop_sweeper(self) -> None:
        """Cancel the periodic sweep and wait for it to finish."""
        if self._sweep_task is None:
            return
        self._sweep_task.cancel()
        try:
            await self._sweep_task
        except asyncio.CancelledError:
            pass
        self._sweep_task = None
        self.logger.info("Cache sweeper stopped")

    async def _sweep_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                self.sweep_expired()
            except Exception as exc:  # pragma: no cover - keep the loop alive
                self.logger.error("Cache sweep failed", error=str(exc))

    def _record_lookup(self, hit: bool) -> None:
        if self.metrics:
            self.metrics.record_cache_lookup(hit)

    def _record_eviction(self, reason: str, count: int) -> None:
        if self.metrics:
            self.metrics.record_cache_eviction(reason, count)

    def _record_size(self, size: int) -> None:
        if self.metrics:
            self.metrics.set_gauge("cache_entries", size)
