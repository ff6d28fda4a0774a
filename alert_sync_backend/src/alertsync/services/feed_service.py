from __future__ import annotations

import logging
from typing import List

from fastapi import Request

from src.alertsync.schemas.alerts import (
    ActiveAlertsResponse,
    AlertMessageOut,
    CacheStatusOut,
    HistoryResponse,
    MessagesResponse,
    RegionAlertOut,
)
from src.alertsync.schemas.common import utc_now
from src.alertsync.schemas.records import RegionStatus, TimelineMessage
from src.alertsync.services.history_sync import CacheStatus
from src.alertsync.services.message_merge import history_to_messages, merge
from src.alertsync.state import AppState, get_state

logger = logging.getLogger(__name__)

_HISTORY_DEGRADED_ERROR = "upstream history unavailable, serving cached data"


def _status_to_out(status: RegionStatus) -> RegionAlertOut:
    return RegionAlertOut(
        regionId=status.region_id,
        isActive=True,
        alertType=status.alert_kind,
        startTime=status.started_at,
    )


def _message_to_out(msg: TimelineMessage) -> AlertMessageOut:
    return AlertMessageOut(
        id=msg.id,
        timestamp=msg.timestamp,
        regionId=msg.region_id,
        regionName=msg.region_name,
        type=msg.kind,
        message=msg.text,
    )


def _cache_status_to_out(status: CacheStatus) -> CacheStatusOut:
    return CacheStatusOut(
        cachedRegions=status.cached_regions,
        pendingRegions=status.pending_regions,
        failedRegions=status.failed_regions,
        totalRegions=status.total_regions,
        isComplete=status.is_complete,
        isReady=status.is_ready,
    )


async def _sync_history(state: AppState) -> None:
    """
    Nudge history synchronization from a request.

    By default this only re-queues expired regions and schedules the background fill. With HISTORY_BLOCKING_INIT the first
    callers wait for the readiness threshold; the fill itself is never cancelled by a caller.
    """
    history = state.history
    if state.config.history_blocking_init and not history.is_ready:
        try:
            await history.ensure_ready()
        except Exception:
            logger.exception("History readiness fill failed; serving partial cache")
    history.queue_stale()
    if history.has_pending:
        history.schedule_fill()


def _cached_history_messages(state: AppState) -> List[TimelineMessage]:
    messages: List[TimelineMessage] = []
    for records in state.history.cached_history().values():
        messages.extend(history_to_messages(records, state.catalog))
    return messages


# PUBLIC_INTERFACE
async def get_active_alerts(request: Request) -> ActiveAlertsResponse:
    """Current canonical region statuses (refreshed from upstream when stale)."""
    state = get_state(request.app)
    snapshot = await state.live.get_snapshot()
    items = [_status_to_out(s) for s in snapshot.statuses]
    return ActiveAlertsResponse(
        alerts=items,
        alertCount=len(items),
        source=snapshot.source,
        degraded=snapshot.degraded,
        error=snapshot.error,
        lastUpdate=snapshot.last_update,
    )


# PUBLIC_INTERFACE
async def get_history(request: Request) -> HistoryResponse:
    """Whatever history is cached right now, newest first, plus cache completeness."""
    state = get_state(request.app)
    await _sync_history(state)

    messages = merge((), _cached_history_messages(state), state.catalog)
    limit = int(state.config.history_max_messages)
    degraded = state.history.is_degraded
    return HistoryResponse(
        messages=[_message_to_out(m) for m in messages[:limit]],
        source="cache" if degraded else "api",
        degraded=degraded,
        error=_HISTORY_DEGRADED_ERROR if degraded else None,
        lastUpdate=utc_now(),
        cacheStatus=_cache_status_to_out(state.history.cache_status()),
    )


# PUBLIC_INTERFACE
async def get_messages(request: Request) -> MessagesResponse:
    """Live status merged with cached history into one deduplicated feed."""
    state = get_state(request.app)
    snapshot = await state.live.get_snapshot()
    await _sync_history(state)

    merged = merge(snapshot.statuses, _cached_history_messages(state), state.catalog)
    limit = int(state.config.history_max_messages)
    return MessagesResponse(
        messages=[_message_to_out(m) for m in merged[:limit]],
        alertCount=len(snapshot.statuses),
        isAlertActive=len(snapshot.statuses) > 0,
        source=snapshot.source,
        degraded=snapshot.degraded or state.history.is_degraded,
        lastUpdate=utc_now(),
        cacheStatus=_cache_status_to_out(state.history.cache_status()),
    )
