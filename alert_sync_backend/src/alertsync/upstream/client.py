from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

import httpx
from pydantic import ValidationError

from src.alertsync.schemas.records import RawAlertRecord
from src.alertsync.schemas.upstream import UpstreamAlertsResponse

logger = logging.getLogger(__name__)


class UpstreamError(Exception):
    """Base class for failures talking to the upstream alerts provider."""


class UpstreamHTTPError(UpstreamError):
    """Upstream answered with a non-2xx status."""

    def __init__(self, url: str, status_code: int):
        super().__init__(f"Upstream {url} responded with HTTP {status_code}")
        self.url = url
        self.status_code = status_code


class UpstreamTimeoutError(UpstreamError):
    """Upstream call exceeded its deadline."""

    def __init__(self, url: str, timeout: float):
        super().__init__(f"Request to {url} timed out after {timeout:.1f}s")
        self.url = url
        self.timeout = timeout


class UpstreamUnavailableError(UpstreamError):
    """Network-level failure (DNS, connect, reset)."""


class UpstreamSchemaError(UpstreamError):
    """Upstream payload did not match the expected shape. Retrying will not fix it."""


class AlertsUpstreamClient:
    """
    Authenticated client for the upstream alerts provider.

    Every call is bounded by a per-call timeout: httpx enforces it on the connection, and
    asyncio.wait_for enforces it as a hard deadline so a stalled stream always releases the caller.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        live_timeout: float = 10.0,
        history_timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._live_timeout = float(live_timeout)
        self._history_timeout = float(history_timeout)
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/json",
                "User-Agent": "alert-sync-backend/1.0",
            },
            timeout=httpx.Timeout(max(self._live_timeout, self._history_timeout)),
            transport=transport,
        )

    async def _get_alerts(self, path: str, timeout: float) -> List[RawAlertRecord]:
        try:
            resp = await asyncio.wait_for(
                self._client.get(path, timeout=httpx.Timeout(timeout)),
                timeout=timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise UpstreamTimeoutError(path, timeout) from exc
        except httpx.HTTPError as exc:
            raise UpstreamUnavailableError(f"Request to {path} failed: {exc!r}") from exc

        if resp.status_code < 200 or resp.status_code >= 300:
            raise UpstreamHTTPError(path, resp.status_code)

        try:
            payload = UpstreamAlertsResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as exc:
            raise UpstreamSchemaError(f"Invalid payload from {path}: {exc}") from exc

        return payload.to_records()

    # PUBLIC_INTERFACE
    async def get_active_alerts(self) -> List[RawAlertRecord]:
        """Fetch all currently active alerts."""
        return await self._get_alerts("/v1/alerts/active.json", self._live_timeout)

    # PUBLIC_INTERFACE
    async def get_region_history(self, region_key: str) -> List[RawAlertRecord]:
        """Fetch roughly a month of alert history for one provider region UID."""
        return await self._get_alerts(f"/v1/regions/{region_key}/alerts/month_ago.json", self._history_timeout)

    async def aclose(self) -> None:
        await self._client.aclose()
