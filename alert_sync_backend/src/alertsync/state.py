from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import FastAPI

from src.alertsync.config import BackendConfig
from src.alertsync.regions import DEFAULT_CATALOG, RegionCatalog
from src.alertsync.services.history_sync import HistorySyncOrchestrator
from src.alertsync.services.live_status import LiveStatusService
from src.alertsync.upstream.client import AlertsUpstreamClient

logger = logging.getLogger(__name__)


@dataclass
class AppState:
    """Typed app.state container for the explicitly constructed sync engine."""

    config: BackendConfig
    catalog: RegionCatalog
    upstream: AlertsUpstreamClient
    history: HistorySyncOrchestrator
    live: LiveStatusService
    live_task: Optional[object] = None  # asyncio.Task, but kept loose to avoid import cycles
    history_task: Optional[object] = None  # asyncio.Task for the history sync loop
    sweeper_task: Optional[object] = None  # asyncio.Task for cache expiry sweeps


# PUBLIC_INTERFACE
def build_state(
    config: BackendConfig,
    upstream: Optional[AlertsUpstreamClient] = None,
    catalog: RegionCatalog = DEFAULT_CATALOG,
) -> AppState:
    """Wire the upstream client, history orchestrator and live poller from config."""
    if upstream is None:
        upstream = AlertsUpstreamClient(
            config.alerts_api_url,
            config.alerts_api_token,
            live_timeout=config.live_request_timeout_sec,
            history_timeout=config.history_request_timeout_sec,
        )

    cache_max_size = int(config.history_cache_max_size)
    if cache_max_size < len(catalog):
        logger.warning(
            "HISTORY_CACHE_MAX_SIZE=%s is below the %s tracked regions; using %s",
            cache_max_size,
            len(catalog),
            len(catalog),
        )
        cache_max_size = len(catalog)

    history = HistorySyncOrchestrator(
        upstream,
        catalog.uids(),
        cache_max_size=cache_max_size,
        cache_ttl=config.history_cache_ttl_sec,
        cleanup_interval=config.history_cache_cleanup_interval_sec,
        min_fetch_interval=config.history_min_fetch_interval_sec,
        max_attempts=config.history_max_retry_attempts,
        readiness_threshold=config.history_readiness_threshold,
    )
    live = LiveStatusService(
        upstream,
        poll_interval=config.live_poll_interval_sec,
        always_alert_regions=config.always_alert_regions,
        catalog=catalog,
    )
    return AppState(config=config, catalog=catalog, upstream=upstream, history=history, live=live)


# PUBLIC_INTERFACE
def init_state(app: FastAPI, config: BackendConfig, upstream: Optional[AlertsUpstreamClient] = None) -> None:
    """Initialize app.state with the sync engine built from config."""
    app.state.state = build_state(config, upstream)


# PUBLIC_INTERFACE
def get_state(app: FastAPI) -> AppState:
    """Fetch typed AppState from a FastAPI app."""
    return app.state.state  # type: ignore[attr-defined]
