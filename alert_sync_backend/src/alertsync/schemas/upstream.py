from __future__ import annotations

from typing import List, Optional, Union

from pydantic import BaseModel, Field

from src.alertsync.schemas.common import parse_datetime_safe
from src.alertsync.schemas.records import RawAlertRecord, normalize_alert_kind, normalize_location_kind


class UpstreamAlert(BaseModel):
    """One alert object as returned by the provider's active/history endpoints."""

    id: Union[int, str] = Field(..., description="Unique alert identifier.")
    location_title: str = Field(..., min_length=1, description="Location name.")
    location_type: str = Field(..., description="oblast|raion|hromada|city|unknown.")
    started_at: Optional[str] = Field(default=None, description="Alert start time (ISO).")
    finished_at: Optional[str] = Field(default=None, description="End time; null while active.")
    updated_at: Optional[str] = Field(default=None, description="Provider DB update time.")
    alert_type: str = Field(..., description="Provider alert type.")
    location_uid: Union[str, int] = Field(..., description="Location UID.")
    location_oblast: Optional[str] = Field(default=None, description="Parent oblast name.")
    location_oblast_uid: Optional[Union[int, str]] = Field(default=None, description="Parent oblast UID.")
    location_raion: Optional[str] = Field(default=None, description="Raion name.")
    notes: Optional[str] = Field(default=None, description="Additional notes.")
    calculated: Optional[bool] = Field(default=None, description="Whether the end time is calculated.")

    def to_record(self) -> RawAlertRecord:
        return RawAlertRecord(
            id=str(self.id),
            location_id=str(self.location_uid),
            location_kind=normalize_location_kind(self.location_type),
            location_name=self.location_title,
            alert_kind=normalize_alert_kind(self.alert_type),
            started_at=parse_datetime_safe(self.started_at),
            finished_at=parse_datetime_safe(self.finished_at),
            oblast_id=str(self.location_oblast_uid) if self.location_oblast_uid is not None else None,
            oblast_name=self.location_oblast,
        )


class UpstreamMeta(BaseModel):
    """Response metadata block."""

    last_updated_at: str = Field(..., description="Provider data timestamp (ISO).")
    type: str = Field(..., description="Response type label.")


class UpstreamAlertsResponse(BaseModel):
    """Shared shape of the active-alerts and region-history responses."""

    alerts: List[UpstreamAlert] = Field(default_factory=list)
    meta: UpstreamMeta
    disclaimer: Optional[str] = None

    def to_records(self) -> List[RawAlertRecord]:
        return [a.to_record() for a in self.alerts]
