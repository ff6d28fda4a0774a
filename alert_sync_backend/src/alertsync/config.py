from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from typing import Tuple

logger = logging.getLogger(__name__)


class ConfigError(RuntimeError):
    """Raised when required configuration is missing or invalid."""


def _env_int(name: str, default: int) -> int:
    """Parse an int env var with a default."""
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return int(default)


def _env_float(name: str, default: float) -> float:
    """Parse a float env var with a default."""
    try:
        return float(os.getenv(name, str(default)))
    except Exception:
        return float(default)


def _env_bool(name: str, default: bool = False) -> bool:
    """Parse a bool env var (true/false/1/0/yes/no/on/off)."""
    raw = os.getenv(name)
    if raw is None:
        return bool(default)
    val = raw.strip().lower()
    if val in ("1", "true", "yes", "y", "on"):
        return True
    if val in ("0", "false", "no", "n", "off"):
        return False
    return bool(default)


def _env_csv(name: str, default: str) -> Tuple[str, ...]:
    """Parse a comma-separated env var into a tuple of non-empty, stripped parts."""
    raw = os.getenv(name)
    if raw is None:
        raw = default
    return tuple(p.strip() for p in raw.split(",") if p.strip())


def _clamp_int(v: int, lo: int, hi: int) -> int:
    """Clamp integer to [lo, hi]."""
    return max(lo, min(hi, int(v)))


def _clamp_float(v: float, lo: float, hi: float) -> float:
    """Clamp float to [lo, hi]."""
    return max(lo, min(hi, float(v)))


@dataclass(frozen=True)
class BackendConfig:
    """Runtime configuration loaded from env."""

    alerts_api_url: str
    alerts_api_token: str

    # History cache sizing and expiry.
    history_cache_max_size: int
    history_cache_ttl_sec: int
    history_cache_cleanup_interval_sec: int

    # Upstream history rate limiting and retry policy.
    history_min_fetch_interval_sec: float
    history_max_retry_attempts: int
    history_readiness_threshold: float
    history_blocking_init: bool
    history_request_timeout_sec: float
    history_max_messages: int

    # Live status polling.
    live_request_timeout_sec: float
    live_poll_interval_sec: int
    always_alert_regions: Tuple[str, ...] = ()

    log_level: str = "INFO"


def _sanitize_token_for_logs(token: str) -> str:
    """Mask all but the last 4 characters of the bearer token."""
    if len(token) <= 4:
        return "***"
    return "***" + token[-4:]


# PUBLIC_INTERFACE
def load_config() -> BackendConfig:
    """Load BackendConfig from env vars; raise ConfigError when upstream credentials are unusable."""
    api_url = (os.getenv("ALERTS_API_URL") or "").strip().rstrip("/")
    api_token = (os.getenv("ALERTS_API_TOKEN") or "").strip()

    if not api_url:
        raise ConfigError("ALERTS_API_URL is not configured. Provide the upstream alerts API base URL.")
    if not re.match(r"^https?://\S+$", api_url):
        raise ConfigError("ALERTS_API_URL appears invalid (must start with http:// or https://).")
    if not api_token:
        raise ConfigError("ALERTS_API_TOKEN is not configured. Provide the upstream bearer token.")

    logger.info("Resolved upstream alerts API url=%s token=%s", api_url, _sanitize_token_for_logs(api_token))

    cache_max_size = _env_int("HISTORY_CACHE_MAX_SIZE", 35)
    cache_ttl = _env_int("HISTORY_CACHE_TTL_SEC", 30 * 60)
    cleanup_interval = _env_int("HISTORY_CACHE_CLEANUP_INTERVAL_SEC", 30 * 60)

    min_fetch_interval = _env_float("HISTORY_MIN_FETCH_INTERVAL_SEC", 5.0)
    max_retry_attempts = _env_int("HISTORY_MAX_RETRY_ATTEMPTS", 3)
    readiness_threshold = _env_float("HISTORY_READINESS_THRESHOLD", 0.25)
    blocking_init = _env_bool("HISTORY_BLOCKING_INIT", False)
    history_timeout = _env_float("HISTORY_REQUEST_TIMEOUT_SEC", 15.0)
    history_max_messages = _env_int("HISTORY_MAX_MESSAGES", 500)

    live_timeout = _env_float("LIVE_REQUEST_TIMEOUT_SEC", 10.0)
    live_poll_interval = _env_int("LIVE_POLL_INTERVAL_SEC", 30)

    cache_max_size = _clamp_int(cache_max_size, 1, 10_000)
    cache_ttl = _clamp_int(cache_ttl, 1, 7 * 24 * 3600)
    cleanup_interval = _clamp_int(cleanup_interval, 1, 24 * 3600)

    # Interval 0 disables rate limiting.
    min_fetch_interval = _clamp_float(min_fetch_interval, 0.0, 3600.0)
    max_retry_attempts = _clamp_int(max_retry_attempts, 1, 100)
    readiness_threshold = _clamp_float(readiness_threshold, 0.0, 1.0)
    history_timeout = _clamp_float(history_timeout, 0.1, 300.0)
    history_max_messages = _clamp_int(history_max_messages, 1, 100_000)

    live_timeout = _clamp_float(live_timeout, 0.1, 300.0)
    live_poll_interval = _clamp_int(live_poll_interval, 1, 3600)

    return BackendConfig(
        alerts_api_url=api_url,
        alerts_api_token=api_token,
        history_cache_max_size=cache_max_size,
        history_cache_ttl_sec=cache_ttl,
        history_cache_cleanup_interval_sec=cleanup_interval,
        history_min_fetch_interval_sec=min_fetch_interval,
        history_max_retry_attempts=max_retry_attempts,
        history_readiness_threshold=readiness_threshold,
        history_blocking_init=blocking_init,
        history_request_timeout_sec=history_timeout,
        history_max_messages=history_max_messages,
        live_request_timeout_sec=live_timeout,
        live_poll_interval_sec=live_poll_interval,
        always_alert_regions=_env_csv("ALWAYS_ALERT_REGIONS", "crimea,sevastopol"),
        log_level=(os.getenv("LOG_LEVEL") or "INFO").strip().upper(),
    )
