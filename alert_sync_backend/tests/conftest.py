from __future__ import annotations

import os
from collections.abc import AsyncIterator
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Union

import httpx
import pytest

# src.alertsync.main builds a module-level app from env on import.
os.environ.setdefault("ALERTS_API_URL", "https://alerts.example.test")
os.environ.setdefault("ALERTS_API_TOKEN", "test-token-1234")

from src.alertsync.config import BackendConfig  # noqa: E402
from src.alertsync.schemas.records import RawAlertRecord  # noqa: E402

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

Outcome = Union[List[RawAlertRecord], Exception]


class FakeUpstream:
    """
    In-memory stand-in for AlertsUpstreamClient.

    `active` and `history[key]` hold either a record list or an exception to raise. A history
    value may also be a list of outcomes, consumed one per call (the last one repeats).
    """

    def __init__(self):
        self.active: Outcome = []
        self.history: Dict[str, Union[Outcome, List[Outcome]]] = {}
        self.active_calls = 0
        self.history_calls: List[str] = []
        self.closed = False

    async def get_active_alerts(self) -> List[RawAlertRecord]:
        self.active_calls += 1
        if isinstance(self.active, Exception):
            raise self.active
        return list(self.active)

    async def get_region_history(self, region_key: str) -> List[RawAlertRecord]:
        self.history_calls.append(region_key)
        outcome = self.history.get(region_key, [])
        if isinstance(outcome, list) and outcome and not isinstance(outcome[0], RawAlertRecord):
            seen = self.history_calls.count(region_key)
            outcome = outcome[min(seen, len(outcome)) - 1]
        if isinstance(outcome, Exception):
            raise outcome
        return list(outcome)

    async def aclose(self) -> None:
        self.closed = True


def _record(
    id: str,
    *,
    location_id: str = "31",
    location_kind: str = "oblast",
    location_name: str = "м. Київ",
    alert_kind: str = "air_raid",
    started_at: Optional[datetime] = T0,
    finished_at: Optional[datetime] = None,
    oblast_id: Optional[str] = None,
    oblast_name: Optional[str] = None,
) -> RawAlertRecord:
    return RawAlertRecord(
        id=id,
        location_id=location_id,
        location_kind=location_kind,  # type: ignore[arg-type]
        location_name=location_name,
        alert_kind=alert_kind,
        started_at=started_at,
        finished_at=finished_at,
        oblast_id=oblast_id,
        oblast_name=oblast_name,
    )


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def make_record() -> Callable[..., RawAlertRecord]:
    """Factory for RawAlertRecord with Kyiv-city air raid defaults starting at T0."""
    return _record


@pytest.fixture
def t0() -> datetime:
    return T0


@pytest.fixture
def minutes() -> Callable[[int], timedelta]:
    return lambda n: timedelta(minutes=n)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def backend_config() -> BackendConfig:
    """Config with rate limiting disabled so background fills drain immediately."""
    return BackendConfig(
        alerts_api_url="https://alerts.example.test",
        alerts_api_token="test-token-1234",
        history_cache_max_size=35,
        history_cache_ttl_sec=1800,
        history_cache_cleanup_interval_sec=1800,
        history_min_fetch_interval_sec=0.0,
        history_max_retry_attempts=3,
        history_readiness_threshold=0.25,
        history_blocking_init=False,
        history_request_timeout_sec=15.0,
        history_max_messages=500,
        live_request_timeout_sec=10.0,
        live_poll_interval_sec=30,
        always_alert_regions=(),
    )


@pytest.fixture
def app(backend_config: BackendConfig, fake_upstream: FakeUpstream):
    """
    FastAPI app wired to the in-memory upstream.

    Built per test: the sync engine's asyncio primitives bind to the running loop on first use.
    """
    from src.alertsync.main import create_app

    return create_app(config=backend_config, upstream=fake_upstream)  # type: ignore[arg-type]


@pytest.fixture
async def async_client(app) -> AsyncIterator[httpx.AsyncClient]:
    """
    Async HTTP client bound to the FastAPI ASGI app.

    httpx ASGITransport does not run lifespan events, so background loops stay stopped and
    tests drive the sync engine through requests (and by awaiting its fill task).
    """
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
