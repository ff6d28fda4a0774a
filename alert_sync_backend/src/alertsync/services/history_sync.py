from __future__ import annotations

import asyncio
import contextlib
import logging
import math
import time
from collections import deque
from dataclasses import dataclass
from typing import AsyncContextManager, Callable, Deque, Dict, Iterable, List, Optional

from aiolimiter import AsyncLimiter

from src.alertsync.cache.ttl_cache import TTLCache
from src.alertsync.schemas.records import RawAlertRecord
from src.alertsync.upstream.client import AlertsUpstreamClient, UpstreamError, UpstreamSchemaError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheStatus:
    """How much of the tracked catalog currently has cached history."""

    cached_regions: int
    pending_regions: int
    failed_regions: int
    total_regions: int
    is_complete: bool
    is_ready: bool


class HistorySyncOrchestrator:
    """
    Back-fills per-region alert history into a bounded TTL cache under an upstream rate limit.

    Region lifecycle: uncached -> queued -> fetching -> cached | failed. A failed region is
    re-queued at the back until it has failed `max_attempts` times in a row; it is then
    abandoned until one cache TTL has passed, after which `queue_stale` picks it up again.

    Upstream calls are paced by an `aiolimiter.AsyncLimiter` admitting one call per
    `min_fetch_interval`. Queue and cache mutations happen either synchronously on the event
    loop or under `self._lock`, which also keeps at most one upstream history call in flight.
    """

    def __init__(
        self,
        client: AlertsUpstreamClient,
        region_keys: Iterable[str],
        *,
        cache_max_size: int,
        cache_ttl: float,
        cleanup_interval: float,
        min_fetch_interval: float,
        max_attempts: int,
        readiness_threshold: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._client = client
        self._keys: List[str] = list(dict.fromkeys(str(k) for k in region_keys))
        self._cache: TTLCache[str, List[RawAlertRecord]] = TTLCache(
            max_size=cache_max_size, ttl=cache_ttl, cleanup_interval=cleanup_interval, clock=clock
        )
        self._abandoned: TTLCache[str, bool] = TTLCache(
            max_size=max(1, len(self._keys)), ttl=cache_ttl, cleanup_interval=cleanup_interval, clock=clock
        )
        self._min_interval = max(0.0, float(min_fetch_interval))
        # Interval 0 disables pacing.
        self._limiter: Optional[AsyncLimiter] = (
            AsyncLimiter(1, self._min_interval) if self._min_interval > 0 else None
        )
        self._max_attempts = max(1, int(max_attempts))
        self._min_ready = min(len(self._keys), math.ceil(len(self._keys) * float(readiness_threshold)))
        self._clock = clock

        self._queue: Deque[str] = deque(self._keys)
        self._retries: Dict[str, int] = {}
        self._last_fetch_at: Optional[float] = None
        self._last_error: Optional[str] = None
        self._in_flight_key: Optional[str] = None
        self._ready = self._min_ready == 0

        self._lock = asyncio.Lock()
        self._init_task: Optional[asyncio.Task] = None
        self._fill_task: Optional[asyncio.Task] = None

    # ---- introspection ----

    @property
    def total_regions(self) -> int:
        return len(self._keys)

    @property
    def min_ready_regions(self) -> int:
        return self._min_ready

    @property
    def is_ready(self) -> bool:
        return self._ready

    @property
    def min_fetch_interval(self) -> float:
        return self._min_interval

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    @property
    def cache_max_size(self) -> int:
        return self._cache.max_size

    @property
    def last_fetch_at(self) -> Optional[float]:
        return self._last_fetch_at

    @property
    def has_pending(self) -> bool:
        return bool(self._queue) or self._in_flight_key is not None

    @property
    def fill_in_progress(self) -> bool:
        return any(t is not None and not t.done() for t in (self._fill_task, self._init_task))

    @property
    def last_error(self) -> Optional[str]:
        """Reason of the most recent failed attempt, cleared by the next success."""
        return self._last_error

    @property
    def is_degraded(self) -> bool:
        """True while upstream history fetches are failing or some region is abandoned."""
        return self._last_error is not None or self.failed_count() > 0

    def pending_keys(self) -> List[str]:
        return list(self._queue)

    def attempts(self, key: str) -> int:
        return self._retries.get(key, 0)

    def cached_count(self) -> int:
        valid = self._cache.valid_keys()
        return sum(1 for k in self._keys if k in valid)

    def failed_count(self) -> int:
        abandoned = self._abandoned.valid_keys()
        return sum(1 for k in self._keys if k in abandoned)

    def region_state(self, key: str) -> str:
        """One of: fetching, cached, queued, abandoned, uncached."""
        if key == self._in_flight_key:
            return "fetching"
        if key in self._cache.valid_keys():
            return "cached"
        if key in self._queue:
            return "queued"
        if self._abandoned.has(key):
            return "abandoned"
        return "uncached"

    def cache_status(self) -> CacheStatus:
        pending = len(self._queue) + (1 if self._in_flight_key is not None else 0)
        cached = self.cached_count()
        return CacheStatus(
            cached_regions=cached,
            pending_regions=pending,
            failed_regions=self.failed_count(),
            total_regions=self.total_regions,
            is_complete=cached == self.total_regions,
            is_ready=self._ready,
        )

    def cached_records(self, key: str) -> Optional[List[RawAlertRecord]]:
        return self._cache.get(key)

    def cached_history(self) -> Dict[str, List[RawAlertRecord]]:
        """Cached records per region key, in catalog order, skipping regions with no live entry."""
        out: Dict[str, List[RawAlertRecord]] = {}
        for key in self._keys:
            records = self._cache.get(key)
            if records is not None:
                out[key] = records
        return out

    # ---- queue maintenance ----

    def queue_stale(self) -> int:
        """Append every tracked key with no live cache entry that is not queued, in flight or abandoned."""
        valid = self._cache.valid_keys()
        added = 0
        for key in self._keys:
            if key in valid or key == self._in_flight_key or key in self._queue:
                continue
            if self._abandoned.has(key):
                continue
            self._queue.append(key)
            added += 1
        if added:
            logger.debug("Queued %s stale regions for history refresh", added)
        return added

    def _slot_open(self) -> bool:
        return self._limiter is None or self._limiter.has_capacity()

    def _pace(self) -> AsyncContextManager:
        if self._limiter is None:
            return contextlib.nullcontext()
        return self._limiter

    # ---- fetching ----

    # PUBLIC_INTERFACE
    async def fetch_next(self, wait: bool = False) -> bool:
        """
        Make at most one upstream history call for the head of the queue.

        Without `wait`, refuses (returns False) when another fetch holds the slot or the minimum
        interval since the previous call has not elapsed. With `wait`, waits for both instead.
        Returns True when a call was attempted, whatever its outcome.
        """
        if not wait and self._lock.locked():
            return False

        async with self._lock:
            if not self._queue:
                return False
            if not wait and not self._slot_open():
                return False

            async with self._pace():
                key = self._queue.popleft()
                await self._attempt(key)
            return True

    async def _attempt(self, key: str) -> None:
        self._in_flight_key = key
        self._last_fetch_at = self._clock()
        try:
            records = await self._client.get_region_history(key)
        except UpstreamSchemaError as exc:
            # Cached as empty until TTL; a retry would get the same payload.
            logger.warning("Invalid history payload for region=%s, treating as empty: %s", key, exc)
            self._store(key, [])
        except UpstreamError as exc:
            self._record_failure(key, str(exc))
        except Exception as exc:
            logger.exception("Unexpected error fetching history for region=%s", key)
            self._record_failure(key, repr(exc))
        else:
            self._store(key, records)
        finally:
            self._in_flight_key = None

    def _store(self, key: str, records: List[RawAlertRecord]) -> None:
        self._cache.set(key, list(records))
        self._retries.pop(key, None)
        self._last_error = None
        if not self._ready and self.cached_count() >= self._min_ready:
            self._ready = True
            logger.info("History cache ready (%s/%s regions cached)", self.cached_count(), self.total_regions)

    def _record_failure(self, key: str, reason: str) -> None:
        self._last_error = reason
        attempts = self._retries.get(key, 0) + 1
        if attempts < self._max_attempts:
            self._retries[key] = attempts
            if key not in self._queue:
                self._queue.append(key)
            logger.warning(
                "History fetch failed for region=%s (attempt %s/%s): %s", key, attempts, self._max_attempts, reason
            )
            return

        self._retries.pop(key, None)
        self._abandoned.set(key, True)
        logger.warning(
            "Skipping region=%s after %s failed attempts until its cache window expires: %s",
            key,
            self._max_attempts,
            reason,
        )

    # ---- single-flight fills ----

    def _clear_init_task(self, task: asyncio.Task) -> None:
        if self._init_task is task:
            self._init_task = None
        if not task.cancelled() and task.exception() is not None:
            logger.error("History readiness fill failed", exc_info=task.exception())

    def _clear_fill_task(self, task: asyncio.Task) -> None:
        if self._fill_task is task:
            self._fill_task = None
        if not task.cancelled() and task.exception() is not None:
            logger.error("History background fill failed", exc_info=task.exception())

    async def _fill_to_threshold(self) -> None:
        logger.info(
            "History readiness fill started (target=%s of %s regions)", self._min_ready, self.total_regions
        )
        self.queue_stale()
        while self.cached_count() < self._min_ready and self._queue:
            await self.fetch_next(wait=True)
        if self.cached_count() >= self._min_ready:
            self._ready = True
        logger.info(
            "History readiness fill finished (%s/%s cached, ready=%s)",
            self.cached_count(),
            self.total_regions,
            self._ready,
        )

    # PUBLIC_INTERFACE
    async def ensure_ready(self) -> None:
        """
        Wait until at least the readiness threshold of regions has cached history.

        Single-flight: concurrent callers await the same fill. The fill is shielded, so a caller
        that gets cancelled does not cancel it. Once the threshold is reached this returns at once.
        """
        if self._ready:
            return
        if self._init_task is None:
            self._init_task = asyncio.create_task(self._fill_to_threshold())
            self._init_task.add_done_callback(self._clear_init_task)
        await asyncio.shield(self._init_task)

    async def _fill_all(self) -> None:
        await self.ensure_ready()
        self.queue_stale()
        while self._queue:
            await self.fetch_next(wait=True)
        logger.debug("History background fill drained queue (%s/%s cached)", self.cached_count(), self.total_regions)

    # PUBLIC_INTERFACE
    def schedule_fill(self) -> asyncio.Task:
        """Start (or join) a non-blocking fill of the whole catalog and return its task."""
        if self._fill_task is None or self._fill_task.done():
            self._fill_task = asyncio.create_task(self._fill_all())
            self._fill_task.add_done_callback(self._clear_fill_task)
        return self._fill_task

    # PUBLIC_INTERFACE
    async def aclose(self) -> None:
        """Cancel and await any readiness or background fill started by callers."""
        tasks = [t for t in (self._fill_task, self._init_task) if t is not None and not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Cancelled %s pending history fill task(s)", len(tasks))

    # PUBLIC_INTERFACE
    async def sync_tick(self) -> bool:
        """Readiness gate, stale re-queue, then one non-waiting rate-limited fetch attempt."""
        await self.ensure_ready()
        self.queue_stale()
        return await self.fetch_next()

    # PUBLIC_INTERFACE
    async def run(self, shutdown_event: asyncio.Event) -> None:
        """Background loop that calls `sync_tick` once per minimum fetch interval until shutdown."""
        interval = max(0.1, self._min_interval)
        logger.info(
            "History sync started (regions=%s, interval=%ss, max_attempts=%s, ready_at=%s)",
            self.total_regions,
            interval,
            self._max_attempts,
            self._min_ready,
        )

        while not shutdown_event.is_set():
            try:
                await self.sync_tick()
            except Exception:
                logger.exception("History sync tick failed")

            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

        logger.info("History sync stopped")

    async def run_cache_sweepers(self, shutdown_event: asyncio.Event) -> None:
        """Run the periodic expiry sweep of the history and abandonment caches until shutdown."""
        await asyncio.gather(
            self._cache.run_sweeper(shutdown_event),
            self._abandoned.run_sweeper(shutdown_event),
        )
