from __future__ import annotations

from fastapi import APIRouter, Request, Response

from src.alertsync.schemas.alerts import ActiveAlertsResponse, HistoryResponse, MessagesResponse
from src.alertsync.services import feed_service

router = APIRouter(prefix="/api/alerts", tags=["Alerts"])


@router.get(
    "",
    response_model=ActiveAlertsResponse,
    summary="Active region alerts",
    description=(
        "One canonical status per region with an active alert, resolved by severity. "
        "When the upstream is unavailable the last good poll is served with source=cache."
    ),
    operation_id="list_active_alerts",
)
async def list_active_alerts(request: Request) -> ActiveAlertsResponse:
    """List active region alerts."""
    return await feed_service.get_active_alerts(request)


@router.get(
    "/history",
    response_model=HistoryResponse,
    summary="Alert history",
    description=(
        "Alert start/end messages from the per-region history cache, newest first. "
        "The cache is back-filled in the background; cacheStatus reports how complete it is."
    ),
    operation_id="list_alert_history",
)
async def list_alert_history(request: Request, response: Response) -> HistoryResponse:
    """List cached alert history."""
    response.headers["Cache-Control"] = "public, max-age=30"
    return await feed_service.get_history(request)


@router.get(
    "/messages",
    response_model=MessagesResponse,
    summary="Merged message feed",
    description=(
        "Live alert starts merged with cached history. A historical start within 60 seconds of a live "
        "start for the same region is treated as the same event. Sorted newest first."
    ),
    operation_id="list_alert_messages",
)
async def list_alert_messages(request: Request) -> MessagesResponse:
    """List merged live + history messages."""
    return await feed_service.get_messages(request)
