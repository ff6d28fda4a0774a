from __future__ import annotations

import asyncio
import logging
import time
from threading import RLock
from typing import Any, Callable, Generic, Hashable, Optional, Set, TypeVar

import cachetools

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

_MISSING = object()


class _LRUTTLMap(cachetools.TTLCache):
    """cachetools TTLCache that reports LRU evictions to its owner."""

    def __init__(self, maxsize: int, ttl: float, timer: Callable[[], float], on_evict: Callable[[Any], None]):
        super().__init__(maxsize=maxsize, ttl=ttl, timer=timer)
        self._on_evict = on_evict

    def popitem(self):
        key, value = super().popitem()
        self._on_evict(key)
        return key, value


class TTLCache(Generic[K, V]):
    """
    In-memory key/value cache with a fixed capacity, per-entry TTL and LRU eviction.

    Backed by `cachetools.TTLCache`:
    - Entries expire `ttl` seconds after they were set; reads never extend that.
    - When full, inserting a new key evicts the least recently read or written entry.
    - Expired entries that have not been swept yet are reported by `stale_keys()`;
      `sweep()` (run periodically by `run_sweeper`) drops them.
    - Every operation is total: nothing here raises for a missing or expired key.
    """

    def __init__(
        self,
        max_size: int,
        ttl: float,
        cleanup_interval: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._cleanup_interval = max(0.01, float(cleanup_interval))
        self._data = _LRUTTLMap(
            maxsize=max(1, int(max_size)),
            ttl=float(ttl),
            timer=clock,
            on_evict=self._forget_evicted,
        )
        # Keys set and not yet deleted, evicted or swept; live or expired.
        self._stored: Set[K] = set()
        self._lock = RLock()

    @property
    def max_size(self) -> int:
        return int(self._data.maxsize)

    @property
    def ttl(self) -> float:
        return float(self._data.ttl)

    def _forget_evicted(self, key: K) -> None:
        self._stored.discard(key)
        logger.debug("Evicted LRU cache entry key=%s", key)

    def set(self, key: K, value: V) -> None:
        """Insert or replace a value, evicting the least recently accessed entry when full."""
        with self._lock:
            self._data[key] = value
            self._stored.add(key)

    def get(self, key: K) -> Optional[V]:
        """Return the live value for key, or None if missing/expired (expired entries are purged)."""
        with self._lock:
            value = self._data.get(key, _MISSING)
            if value is _MISSING:
                if key in self._stored:
                    self._stored.discard(key)
                    self._data.expire()
                return None
            return value  # type: ignore[return-value]

    def has(self, key: K) -> bool:
        """True when key holds a live entry. Counts as an access, like `get`."""
        with self._lock:
            return self.get(key) is not None

    def delete(self, key: K) -> bool:
        with self._lock:
            self._stored.discard(key)
            try:
                del self._data[key]
            except KeyError:
                return False
            return True

    def clear(self) -> None:
        with self._lock:
            self._data.clear()
            self._stored.clear()

    def size(self) -> int:
        """Number of live entries."""
        with self._lock:
            return len(self._data)

    def valid_keys(self) -> Set[K]:
        with self._lock:
            return set(self._data.keys())

    def stale_keys(self) -> Set[K]:
        """Keys whose entries have expired but have not been swept or read since."""
        with self._lock:
            return self._stored - self.valid_keys()

    def sweep(self) -> int:
        """Remove every expired entry; returns how many were removed."""
        with self._lock:
            self._data.expire()
            stale = self.stale_keys()
            self._stored -= stale
            return len(stale)

    # PUBLIC_INTERFACE
    async def run_sweeper(self, shutdown_event: asyncio.Event) -> None:
        """Background loop that sweeps expired entries every cleanup interval until shutdown."""
        while not shutdown_event.is_set():
            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=self._cleanup_interval)
            except asyncio.TimeoutError:
                pass
            if shutdown_event.is_set():
                break
            try:
                removed = self.sweep()
                if removed:
                    logger.debug("Cache sweep removed %s expired entries", removed)
            except Exception:
                logger.exception("Cache sweep failed")
