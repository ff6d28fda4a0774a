from __future__ import annotations

import asyncio
import logging
import os
from typing import List, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.alertsync.config import BackendConfig, load_config
from src.alertsync.routers import alerts, health
from src.alertsync.state import get_state, init_state
from src.alertsync.upstream.client import AlertsUpstreamClient

openapi_tags = [
    {"name": "Health", "description": "Service health, liveness and sync diagnostics."},
    {"name": "Alerts", "description": "Live region alerts, cached history and the merged message feed."},
]

logger = logging.getLogger(__name__)


def _env_frontend_url() -> str | None:
    # Support both:
    # - standardized: FRONTEND_URL
    # - legacy: REACT_APP_FRONTEND_URL
    return os.getenv("FRONTEND_URL") or os.getenv("REACT_APP_FRONTEND_URL")


def _env_cors_extra_origins() -> List[str]:
    # Comma-separated list for preview deployments, etc.
    raw = os.getenv("CORS_ALLOW_ORIGINS") or ""
    parts = [p.strip() for p in raw.split(",") if p.strip()]
    return parts


def _allowed_origins() -> List[str]:
    origins: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]
    frontend_url = _env_frontend_url()
    if frontend_url:
        origins.append(frontend_url)
    origins.extend(_env_cors_extra_origins())

    # De-dupe while preserving order
    seen = set()
    return [o for o in origins if not (o in seen or seen.add(o))]


async def _stop_task(task: Optional[asyncio.Task], shutdown: Optional[asyncio.Event], name: str) -> None:
    if shutdown is not None:
        shutdown.set()
    if task is None:
        return
    try:
        await asyncio.wait_for(task, timeout=5.0)
    except Exception:
        logger.exception("Error stopping %s task", name)


# PUBLIC_INTERFACE
def create_app(
    config: Optional[BackendConfig] = None,
    upstream: Optional[AlertsUpstreamClient] = None,
) -> FastAPI:
    """
    Build the FastAPI app with an explicitly constructed sync engine.

    Tests pass a config and a fake upstream; production reads config from env and
    builds the httpx-backed client.
    """
    cfg = config or load_config()
    logging.basicConfig(
        level=getattr(logging, cfg.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title="Air Raid Alert Sync API",
        description=(
            "Backend API for the air-raid alert map. Polls the upstream alerts API for live status, "
            "back-fills per-region history into a bounded TTL cache under a strict rate limit, and "
            "serves a merged, deduplicated message feed."
        ),
        version="0.3.0",
        openapi_tags=openapi_tags,
    )

    init_state(app, cfg, upstream)

    @app.on_event("startup")
    async def _on_startup() -> None:
        """Startup hook: start the live poller, history sync loop and cache sweepers."""
        state = get_state(app)

        app.state._live_shutdown = asyncio.Event()
        state.live_task = asyncio.create_task(state.live.run(app.state._live_shutdown))

        app.state._history_shutdown = asyncio.Event()
        state.history_task = asyncio.create_task(state.history.run(app.state._history_shutdown))

        app.state._sweeper_shutdown = asyncio.Event()
        state.sweeper_task = asyncio.create_task(state.history.run_cache_sweepers(app.state._sweeper_shutdown))

        logger.info(
            "Alert sync started (regions=%d, min_fetch_interval=%.1fs, ready_at=%d)",
            state.history.total_regions,
            state.history.min_fetch_interval,
            state.history.min_ready_regions,
        )

    @app.on_event("shutdown")
    async def _on_shutdown() -> None:
        """Shutdown hook: stop background loops, cancel pending history fills, then close the upstream client."""
        state = get_state(app)
        await _stop_task(state.live_task, getattr(app.state, "_live_shutdown", None), "live poller")
        await _stop_task(state.history_task, getattr(app.state, "_history_shutdown", None), "history sync")
        await _stop_task(state.sweeper_task, getattr(app.state, "_sweeper_shutdown", None), "cache sweeper")
        await state.history.aclose()
        await state.upstream.aclose()

    # CORS: allow local frontend by default, plus explicit frontend URL and optional extra origins.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_allowed_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(alerts.router)
    return app


app = create_app()
