from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

DataSource = Literal["api", "cache"]
MessageType = Literal["alert_start", "alert_end", "info"]


class RegionAlertOut(BaseModel):
    """Live alert status for one canonical region."""

    region_id: str = Field(..., description="Canonical region id.", alias="regionId")
    is_active: bool = Field(..., description="Whether an alert is currently active.", alias="isActive")
    alert_type: str = Field(..., description="Winning alert kind for the region.", alias="alertType")
    start_time: Optional[datetime] = Field(
        default=None, description="UTC start of the winning alert, if known.", alias="startTime"
    )


class ActiveAlertsResponse(BaseModel):
    """Envelope for the live region-status list."""

    alerts: List[RegionAlertOut] = Field(..., description="Active regions, one entry per region.")
    alert_count: int = Field(..., ge=0, description="Number of active regions.", alias="alertCount")
    source: DataSource = Field(..., description="'api' for a fresh poll, 'cache' when serving the last good poll.")
    degraded: bool = Field(False, description="True when the last upstream poll failed or was malformed.")
    error: Optional[str] = Field(default=None, description="Human-readable reason when degraded.")
    last_update: Optional[datetime] = Field(
        default=None, description="UTC time of the last successful poll.", alias="lastUpdate"
    )


class AlertMessageOut(BaseModel):
    """One timeline message."""

    id: str = Field(..., description="Stable message id.")
    timestamp: datetime = Field(..., description="UTC event time.")
    region_id: str = Field(..., description="Canonical region id.", alias="regionId")
    region_name: str = Field(..., description="Display name of the location.", alias="regionName")
    type: MessageType = Field(..., description="alert_start|alert_end|info.")
    message: str = Field(..., description="Human-readable message text.")


class CacheStatusOut(BaseModel):
    """How complete the history cache is."""

    cached_regions: int = Field(..., ge=0, description="Regions with live cached history.", alias="cachedRegions")
    pending_regions: int = Field(..., ge=0, description="Regions queued or being fetched.", alias="pendingRegions")
    failed_regions: int = Field(
        ..., ge=0, description="Regions skipped after repeated fetch failures.", alias="failedRegions"
    )
    total_regions: int = Field(..., ge=0, description="Tracked regions.", alias="totalRegions")
    is_complete: bool = Field(..., description="Every tracked region has live cached history.", alias="isComplete")
    is_ready: bool = Field(..., description="Readiness threshold reached.", alias="isReady")


class HistoryResponse(BaseModel):
    """Envelope for cached alert history."""

    messages: List[AlertMessageOut] = Field(..., description="History messages, newest first.")
    source: DataSource = Field(
        ..., description="'api' while history fetches succeed, 'cache' when serving cached data during upstream failures."
    )
    degraded: bool = Field(False, description="True when history fetches are failing or some regions were skipped.")
    error: Optional[str] = Field(default=None, description="Human-readable reason when degraded.")
    last_update: datetime = Field(..., description="UTC time the response was built.", alias="lastUpdate")
    cache_status: CacheStatusOut = Field(..., description="History cache completeness.", alias="cacheStatus")


class MessagesResponse(BaseModel):
    """Envelope for the merged live + history message feed."""

    messages: List[AlertMessageOut] = Field(..., description="Merged and deduplicated messages, newest first.")
    alert_count: int = Field(..., ge=0, description="Number of active regions.", alias="alertCount")
    is_alert_active: bool = Field(..., description="At least one region is active.", alias="isAlertActive")
    source: DataSource = Field(..., description="Origin of the live status.")
    degraded: bool = Field(
        False, description="True when live status is served from the last good poll or history fetches are failing."
    )
    last_update: datetime = Field(..., description="UTC time the response was built.", alias="lastUpdate")
    cache_status: CacheStatusOut = Field(..., description="History cache completeness.", alias="cacheStatus")
