from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from src.alertsync.schemas.common import HealthResponse, utc_now
from src.alertsync.state import get_state

router = APIRouter(tags=["Health"])


class SyncDiagnosticsResponse(BaseModel):
    """Diagnostics describing sync tuning and current progress (no secrets)."""

    upstream_url: str = Field(..., description="Upstream alerts API base URL.")
    history_cache_max_size: int = Field(..., description="History cache capacity (entries).")
    history_cache_ttl_sec: int = Field(..., description="History cache TTL (seconds).")
    history_min_fetch_interval_sec: float = Field(..., description="Minimum gap between history calls (seconds).")
    history_max_retry_attempts: int = Field(..., description="Failures before a region is skipped.")
    history_readiness_threshold: float = Field(..., description="Fraction of regions required for readiness.")
    history_blocking_init: bool = Field(..., description="Whether history requests wait for readiness.")
    cached_regions: int = Field(..., description="Regions with live cached history.")
    pending_regions: int = Field(..., description="Regions queued or being fetched.")
    failed_regions: int = Field(..., description="Regions skipped after repeated fetch failures.")
    total_regions: int = Field(..., description="Tracked regions.")
    is_ready: bool = Field(..., description="Readiness threshold reached.")
    live_source: str = Field(..., description="Source of the current live snapshot.")
    live_degraded: bool = Field(..., description="Whether the last live poll failed.")
    live_last_update: Optional[str] = Field(default=None, description="UTC time of last good live poll (ISO).")
    timestamp: str = Field(..., description="UTC timestamp when the diagnostics were produced (ISO string).")
    meta: Dict[str, Any] = Field(default_factory=dict, description="Optional debug metadata.")


@router.get(
    "/",
    response_model=HealthResponse,
    summary="Health check",
    description="Basic service liveness check used by deployment and the frontend.",
    operation_id="health_check",
)
def health_check() -> HealthResponse:
    """Return service liveness status."""
    return HealthResponse(status="ok", message="Healthy", timestamp=utc_now())


@router.get(
    "/api/health/sync",
    response_model=SyncDiagnosticsResponse,
    summary="Sync diagnostics",
    description="Reports history cache/rate-limit tuning, cache completeness and live poll status.",
    operation_id="sync_diagnostics",
)
def sync_diagnostics(request: Request) -> SyncDiagnosticsResponse:
    """Return sync configuration and progress diagnostics."""
    state = get_state(request.app)
    cfg = state.config
    cache = state.history.cache_status()
    live = state.live.snapshot()
    return SyncDiagnosticsResponse(
        upstream_url=cfg.alerts_api_url,
        history_cache_max_size=state.history.cache_max_size,
        history_cache_ttl_sec=int(cfg.history_cache_ttl_sec),
        history_min_fetch_interval_sec=float(cfg.history_min_fetch_interval_sec),
        history_max_retry_attempts=int(cfg.history_max_retry_attempts),
        history_readiness_threshold=float(cfg.history_readiness_threshold),
        history_blocking_init=bool(cfg.history_blocking_init),
        cached_regions=cache.cached_regions,
        pending_regions=cache.pending_regions,
        failed_regions=cache.failed_regions,
        total_regions=cache.total_regions,
        is_ready=cache.is_ready,
        live_source=live.source,
        live_degraded=live.degraded,
        live_last_update=live.last_update.isoformat() if live.last_update else None,
        timestamp=utc_now().isoformat(),
        meta={"min_ready_regions": state.history.min_ready_regions, "last_error": state.history.last_error},
    )
