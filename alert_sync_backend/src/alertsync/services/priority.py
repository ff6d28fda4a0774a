from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from src.alertsync.regions import DEFAULT_CATALOG, Region, RegionCatalog
from src.alertsync.schemas.records import RawAlertRecord, RegionStatus

logger = logging.getLogger(__name__)

ALERT_SEVERITY: Dict[str, int] = {
    "nuclear": 5,
    "chemical": 4,
    "artillery": 3,
    "urban_fights": 2,
    "air_raid": 1,
}

UNKNOWN_SEVERITY = 0


def severity(alert_kind: str) -> int:
    return ALERT_SEVERITY.get(alert_kind, UNKNOWN_SEVERITY)


# PUBLIC_INTERFACE
def resolve(current: RegionStatus, candidate: RegionStatus) -> RegionStatus:
    """
    Pick the winning alert between the incumbent and a competing candidate for one region.

    1. Higher severity wins.
    2. Same severity: the earlier start wins (it has been active longer).
    3. A side with a start time beats one without.
    4. Otherwise the incumbent stays, so the map does not flicker between equals.
    """
    current_sev = severity(current.alert_kind)
    candidate_sev = severity(candidate.alert_kind)

    if candidate_sev > current_sev:
        return candidate
    if candidate_sev < current_sev:
        return current

    if current.started_at is not None and candidate.started_at is not None:
        if candidate.started_at < current.started_at:
            return candidate
        return current

    if candidate.started_at is not None and current.started_at is None:
        return candidate

    return current


def region_for_record(record: RawAlertRecord, catalog: RegionCatalog = DEFAULT_CATALOG) -> Optional[Region]:
    """Resolve a provider record to its canonical region (None when it cannot be placed)."""
    if record.location_kind == "oblast":
        region = catalog.by_uid(record.location_id)
        if region is not None:
            return region
    if record.oblast_id:
        region = catalog.by_uid(record.oblast_id)
        if region is not None:
            return region
    region = catalog.by_oblast_name(record.oblast_name)
    if region is not None:
        return region
    # Provider sometimes reports city-level oblasts (Kyiv, Sevastopol) without an oblast parent.
    return catalog.by_oblast_name(record.location_name)


# PUBLIC_INTERFACE
def aggregate(records: Iterable[RawAlertRecord], catalog: RegionCatalog = DEFAULT_CATALOG) -> List[RegionStatus]:
    """
    Reduce raw per-location records to one RegionStatus per canonical region.

    Only active records (no finished_at) are considered; unplaceable records are dropped.
    Output follows catalog order.
    """
    winners: Dict[str, RegionStatus] = {}
    skipped = 0

    for record in records:
        if not record.is_active:
            continue
        region = region_for_record(record, catalog)
        if region is None:
            skipped += 1
            continue

        candidate = RegionStatus(region_id=region.id, alert_kind=record.alert_kind, started_at=record.started_at)
        current = winners.get(region.id)
        winners[region.id] = candidate if current is None else resolve(current, candidate)

    if skipped:
        logger.debug("Aggregation skipped %s records with no canonical region", skipped)

    return sorted(winners.values(), key=lambda s: catalog.order_of(s.region_id))
