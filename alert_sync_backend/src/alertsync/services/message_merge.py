from __future__ import annotations

from datetime import timedelta
from typing import Dict, Iterable, List, Set

from src.alertsync.regions import DEFAULT_CATALOG, RegionCatalog
from src.alertsync.schemas.records import RawAlertRecord, RegionStatus, TimelineMessage
from src.alertsync.services.priority import region_for_record

ALERT_START_TEXT = "Повітряна тривога!"
ALERT_END_TEXT = "Відбій тривоги"

# Live and historical sources disagree by up to a minute on the same event.
SAME_EVENT_TOLERANCE = timedelta(seconds=60)


# PUBLIC_INTERFACE
def record_to_messages(record: RawAlertRecord, catalog: RegionCatalog = DEFAULT_CATALOG) -> List[TimelineMessage]:
    """Turn one historical record into its alert_start (and, when finished, alert_end) messages."""
    region = region_for_record(record, catalog)
    if region is None:
        return []

    messages: List[TimelineMessage] = []
    if record.started_at is not None:
        messages.append(
            TimelineMessage(
                id=f"{record.id}-start",
                timestamp=record.started_at,
                region_id=region.id,
                region_name=record.location_name,
                kind="alert_start",
                text=ALERT_START_TEXT,
            )
        )
    if record.finished_at is not None:
        messages.append(
            TimelineMessage(
                id=f"{record.id}-end",
                timestamp=record.finished_at,
                region_id=region.id,
                region_name=record.location_name,
                kind="alert_end",
                text=ALERT_END_TEXT,
            )
        )
    return messages


def history_to_messages(
    records: Iterable[RawAlertRecord], catalog: RegionCatalog = DEFAULT_CATALOG
) -> List[TimelineMessage]:
    out: List[TimelineMessage] = []
    for record in records:
        out.extend(record_to_messages(record, catalog))
    return out


def sort_newest_first(messages: Iterable[TimelineMessage]) -> List[TimelineMessage]:
    # sorted() is stable with reverse=True: equal timestamps keep input order.
    return sorted(messages, key=lambda m: m.timestamp, reverse=True)


def _active_messages(live_statuses: Iterable[RegionStatus], catalog: RegionCatalog) -> List[TimelineMessage]:
    out: List[TimelineMessage] = []
    seen: Set[str] = set()
    for status in live_statuses:
        if status.started_at is None or status.region_id in seen:
            continue
        seen.add(status.region_id)
        out.append(
            TimelineMessage(
                id=f"active-{status.region_id}",
                timestamp=status.started_at,
                region_id=status.region_id,
                region_name=catalog.display_name(status.region_id),
                kind="alert_start",
                text=ALERT_START_TEXT,
            )
        )
    return out


# PUBLIC_INTERFACE
def merge(
    live_statuses: Iterable[RegionStatus],
    history_messages: Iterable[TimelineMessage],
    catalog: RegionCatalog = DEFAULT_CATALOG,
) -> List[TimelineMessage]:
    """
    Combine live statuses and historical messages into one feed, newest first.

    Each active region with a start time contributes a synthetic `active-<region>` alert_start.
    A historical alert_start for such a region is the same event (and dropped) when it lies
    within SAME_EVENT_TOLERANCE of the live start. Repeated history ids collapse to the first.
    """
    active = _active_messages(live_statuses, catalog)
    active_by_region: Dict[str, TimelineMessage] = {m.region_id: m for m in active}

    kept: List[TimelineMessage] = []
    seen_ids: Set[str] = set()
    for msg in history_messages:
        if msg.id in seen_ids:
            continue
        seen_ids.add(msg.id)

        if msg.kind == "alert_start":
            live = active_by_region.get(msg.region_id)
            if live is not None and abs(live.timestamp - msg.timestamp) <= SAME_EVENT_TOLERANCE:
                continue
        kept.append(msg)

    return sort_newest_first(active + kept)
