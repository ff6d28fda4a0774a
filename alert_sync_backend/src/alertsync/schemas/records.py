"""Internal domain records passed between the upstream client, aggregator, sync and merge layers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Optional

LocationKind = Literal["oblast", "subdivision", "unknown"]
MessageKind = Literal["alert_start", "alert_end", "info"]

# Provider alert types -> internal alert kinds.
_ALERT_KIND_MAP = {
    "air_raid": "air_raid",
    "artillery_shelling": "artillery",
    "artillery": "artillery",
    "urban_fights": "urban_fights",
    "chemical": "chemical",
    "nuclear": "nuclear",
}

# Provider location types -> internal location kinds.
_LOCATION_KIND_MAP = {
    "oblast": "oblast",
    "raion": "subdivision",
    "hromada": "subdivision",
    "city": "subdivision",
}


def normalize_alert_kind(raw: str) -> str:
    """Map a provider alert type to an internal kind; unknown types are kept verbatim."""
    return _ALERT_KIND_MAP.get(raw, raw)


def normalize_location_kind(raw: str) -> LocationKind:
    return _LOCATION_KIND_MAP.get(raw, "unknown")  # type: ignore[return-value]


@dataclass(frozen=True)
class RawAlertRecord:
    """One validated alert as reported by the upstream provider."""

    id: str
    location_id: str
    location_kind: LocationKind
    location_name: str
    alert_kind: str
    started_at: Optional[datetime]
    finished_at: Optional[datetime]
    oblast_id: Optional[str] = None
    oblast_name: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.finished_at is None


@dataclass(frozen=True)
class RegionStatus:
    """Canonical live alert status for one region."""

    region_id: str
    alert_kind: str
    started_at: Optional[datetime]


@dataclass(frozen=True)
class TimelineMessage:
    """One entry of the served message feed."""

    id: str
    timestamp: datetime
    region_id: str
    region_name: str
    kind: MessageKind
    text: str
