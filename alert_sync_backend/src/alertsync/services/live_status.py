from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, List, Literal, Optional, Tuple

from src.alertsync.regions import DEFAULT_CATALOG, RegionCatalog
from src.alertsync.schemas.common import utc_now
from src.alertsync.schemas.records import RegionStatus
from src.alertsync.services.priority import aggregate
from src.alertsync.upstream.client import AlertsUpstreamClient, UpstreamError, UpstreamSchemaError

logger = logging.getLogger(__name__)

DataSource = Literal["api", "cache"]


@dataclass(frozen=True)
class LiveSnapshot:
    """Latest aggregated live status plus where it came from."""

    statuses: Tuple[RegionStatus, ...] = ()
    source: DataSource = "cache"
    degraded: bool = False
    error: Optional[str] = None
    last_update: Optional[datetime] = None
    polled: bool = False


def _with_always_alert(statuses: List[RegionStatus], always_alert: Iterable[str]) -> List[RegionStatus]:
    present = {s.region_id for s in statuses}
    out = list(statuses)
    for region_id in always_alert:
        if region_id not in present:
            out.append(RegionStatus(region_id=region_id, alert_kind="air_raid", started_at=None))
            present.add(region_id)
    return out


class LiveStatusService:
    """
    Polls the upstream active-alerts endpoint and keeps the latest canonical RegionStatus list.

    A failed poll keeps the previous statuses and flags the snapshot as degraded (source=cache);
    a malformed payload counts as zero active alerts for that cycle.
    """

    def __init__(
        self,
        client: AlertsUpstreamClient,
        *,
        poll_interval: float,
        always_alert_regions: Iterable[str] = (),
        catalog: RegionCatalog = DEFAULT_CATALOG,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._client = client
        self._poll_interval = max(0.0, float(poll_interval))
        self._always_alert = tuple(r for r in always_alert_regions if catalog.get(r) is not None)
        self._catalog = catalog
        self._clock = clock
        self._snapshot = LiveSnapshot()
        self._polled_at: Optional[float] = None
        self._lock = asyncio.Lock()

    @property
    def poll_interval(self) -> float:
        return self._poll_interval

    def snapshot(self) -> LiveSnapshot:
        return self._snapshot

    def is_stale(self) -> bool:
        if self._polled_at is None:
            return True
        return self._clock() - self._polled_at >= self._poll_interval

    @staticmethod
    def _degraded(previous: LiveSnapshot) -> LiveSnapshot:
        return LiveSnapshot(
            statuses=previous.statuses,
            source="cache",
            degraded=True,
            error="upstream unavailable, using cached data",
            last_update=previous.last_update,
            polled=True,
        )

    # PUBLIC_INTERFACE
    async def refresh(self) -> LiveSnapshot:
        """Poll upstream once and replace the snapshot. Never raises for upstream failures."""
        async with self._lock:
            previous = self._snapshot
            try:
                records = await self._client.get_active_alerts()
            except UpstreamSchemaError as exc:
                logger.warning("Invalid active-alerts payload, treating as no active alerts: %s", exc)
                statuses = _with_always_alert([], self._always_alert)
                self._snapshot = LiveSnapshot(
                    statuses=tuple(statuses),
                    source="api",
                    degraded=True,
                    error="invalid upstream payload",
                    last_update=utc_now(),
                    polled=True,
                )
            except UpstreamError as exc:
                logger.warning("Active alerts poll failed, serving previous status: %s", exc)
                self._snapshot = self._degraded(previous)
            except Exception:
                logger.exception("Unexpected error polling active alerts, serving previous status")
                self._snapshot = self._degraded(previous)
            else:
                statuses = _with_always_alert(aggregate(records, self._catalog), self._always_alert)
                self._snapshot = LiveSnapshot(
                    statuses=tuple(statuses),
                    source="api",
                    degraded=False,
                    error=None,
                    last_update=utc_now(),
                    polled=True,
                )
            self._polled_at = self._clock()
            return self._snapshot

    # PUBLIC_INTERFACE
    async def get_snapshot(self) -> LiveSnapshot:
        """Return the current snapshot, polling first when it is older than the poll interval."""
        if self.is_stale():
            if self._lock.locked():
                # Another caller is polling; share its result.
                async with self._lock:
                    return self._snapshot
            return await self.refresh()
        return self._snapshot

    # PUBLIC_INTERFACE
    async def run(self, shutdown_event: asyncio.Event) -> None:
        """Background loop that refreshes live status every poll interval until shutdown."""
        interval = max(1.0, self._poll_interval)
        logger.info("Live status poller started (interval=%ss)", interval)

        while not shutdown_event.is_set():
            tick_started = self._clock()
            try:
                await self.refresh()
            except Exception:
                logger.exception("Live status poll failed")

            elapsed = self._clock() - tick_started
            sleep_for = max(0.1, interval - elapsed)
            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=sleep_for)
            except asyncio.TimeoutError:
                pass

        logger.info("Live status poller stopped")
