from __future__ import annotations

import asyncio
import time
from typing import List

import pytest

from src.alertsync.services.history_sync import HistorySyncOrchestrator
from src.alertsync.upstream.client import UpstreamSchemaError, UpstreamTimeoutError, UpstreamUnavailableError

KEYS = ("a", "b", "c", "d", "e")


def _orchestrator(upstream, clock, keys=KEYS, **overrides) -> HistorySyncOrchestrator:
    opts = dict(
        cache_max_size=35,
        cache_ttl=1800,
        cleanup_interval=1800,
        min_fetch_interval=0.0,
        max_attempts=3,
        readiness_threshold=0.4,
    )
    opts.update(overrides)
    return HistorySyncOrchestrator(upstream, keys, clock=clock, **opts)


class _TimedUpstream:
    """Records the clock reading at every history call."""

    def __init__(self, clock):
        self.clock = clock
        self.calls: List[tuple] = []

    async def get_region_history(self, region_key: str):
        self.calls.append((region_key, self.clock()))
        return []


class _GatedUpstream:
    """History calls block until `gate` is set."""

    def __init__(self):
        self.gate = asyncio.Event()
        self.history_calls: List[str] = []

    async def get_region_history(self, region_key: str):
        self.history_calls.append(region_key)
        await self.gate.wait()
        return []


@pytest.mark.anyio
async def test_readiness_then_background_fill_caches_every_region(fake_upstream, fake_clock, make_record):
    fake_upstream.history = {k: [make_record(f"{k}-1")] for k in KEYS}
    orch = _orchestrator(fake_upstream, fake_clock)
    assert orch.min_ready_regions == 2
    assert orch.is_ready is False

    await orch.ensure_ready()

    assert orch.is_ready is True
    assert fake_upstream.history_calls == ["a", "b"]
    status = orch.cache_status()
    assert (status.cached_regions, status.pending_regions, status.is_complete) == (2, 3, False)

    await orch.schedule_fill()

    assert fake_upstream.history_calls == list(KEYS)
    status = orch.cache_status()
    assert (status.cached_regions, status.pending_regions, status.total_regions) == (5, 0, 5)
    assert status.is_complete is True
    assert [r.id for r in orch.cached_records("c")] == ["c-1"]
    assert list(orch.cached_history()) == list(KEYS)


@pytest.mark.anyio
async def test_consecutive_calls_respect_min_interval():
    upstream = _TimedUpstream(time.monotonic)
    orch = _orchestrator(upstream, time.monotonic, min_fetch_interval=0.05)

    await asyncio.wait_for(orch.schedule_fill(), timeout=5.0)

    times = [t for _, t in upstream.calls]
    assert len(times) == 5
    assert all(later - earlier >= 0.045 for earlier, later in zip(times, times[1:]))


@pytest.mark.anyio
async def test_fetch_next_without_wait_refuses_inside_interval(fake_upstream, fake_clock):
    orch = _orchestrator(fake_upstream, fake_clock, min_fetch_interval=0.05)

    assert await orch.fetch_next() is True
    assert await orch.fetch_next() is False
    await asyncio.sleep(0.07)
    assert await orch.fetch_next() is True
    assert await orch.fetch_next() is False
    assert fake_upstream.history_calls == ["a", "b"]


@pytest.mark.anyio
async def test_failures_are_rate_limited_too(fake_upstream, fake_clock):
    fake_upstream.history = {"a": UpstreamTimeoutError("/x", 15.0)}
    orch = _orchestrator(fake_upstream, fake_clock, min_fetch_interval=5.0)

    assert await orch.fetch_next() is True
    assert await orch.fetch_next() is False
    assert orch.pending_keys() == ["b", "c", "d", "e", "a"]
    assert orch.is_degraded is True


@pytest.mark.anyio
async def test_region_abandoned_after_max_attempts_until_ttl(fake_upstream, fake_clock):
    fake_upstream.history = {"b": UpstreamUnavailableError("connection reset")}
    orch = _orchestrator(fake_upstream, fake_clock, keys=("a", "b", "c"), min_fetch_interval=0.0, cache_ttl=60)

    await orch.schedule_fill()

    assert fake_upstream.history_calls.count("b") == 3
    assert fake_upstream.history_calls.count("a") == 1
    assert orch.region_state("b") == "abandoned"
    assert orch.attempts("b") == 0
    assert orch.queue_stale() == 0
    status = orch.cache_status()
    assert (status.cached_regions, status.pending_regions, status.failed_regions) == (2, 0, 1)
    assert status.is_complete is False
    assert orch.is_degraded is True

    fake_clock.advance(61)

    assert orch.region_state("b") == "uncached"
    assert orch.queue_stale() == 3
    assert orch.pending_keys() == ["a", "b", "c"]


@pytest.mark.anyio
async def test_success_after_retry_clears_attempt_counter(fake_upstream, fake_clock, make_record):
    fake_upstream.history = {"a": [UpstreamUnavailableError("boom"), [make_record("ok")]]}
    orch = _orchestrator(fake_upstream, fake_clock, keys=("a",), min_fetch_interval=0.0)

    assert await orch.fetch_next() is True
    assert orch.attempts("a") == 1
    assert orch.region_state("a") == "queued"

    assert await orch.fetch_next() is True
    assert orch.attempts("a") == 0
    assert orch.region_state("a") == "cached"


@pytest.mark.anyio
async def test_schema_error_caches_empty_history_without_retry(fake_upstream, fake_clock):
    fake_upstream.history = {"a": UpstreamSchemaError("bad payload")}
    orch = _orchestrator(fake_upstream, fake_clock, keys=("a", "b"), min_fetch_interval=0.0)

    await orch.schedule_fill()

    assert fake_upstream.history_calls == ["a", "b"]
    assert orch.cached_records("a") == []
    assert orch.region_state("a") == "cached"
    assert orch.attempts("a") == 0


@pytest.mark.anyio
async def test_ensure_ready_is_single_flight_and_survives_caller_cancellation(fake_clock):
    upstream = _GatedUpstream()
    orch = _orchestrator(upstream, fake_clock, min_fetch_interval=0.0, readiness_threshold=0.2)

    first = asyncio.create_task(orch.ensure_ready())
    second = asyncio.create_task(orch.ensure_ready())
    for _ in range(5):
        await asyncio.sleep(0)

    assert upstream.history_calls == ["a"]
    assert orch.region_state("a") == "fetching"
    assert orch.cache_status().pending_regions == 5
    assert await orch.fetch_next() is False

    first.cancel()
    with pytest.raises(asyncio.CancelledError):
        await first

    upstream.gate.set()
    await asyncio.wait_for(second, timeout=1.0)

    assert orch.is_ready is True
    assert upstream.history_calls == ["a"]
    assert orch.region_state("a") == "cached"


@pytest.mark.anyio
async def test_zero_threshold_is_ready_immediately(fake_upstream, fake_clock):
    orch = _orchestrator(fake_upstream, fake_clock, readiness_threshold=0.0)
    assert orch.is_ready is True
    await orch.ensure_ready()
    assert fake_upstream.history_calls == []


@pytest.mark.anyio
async def test_queue_stale_never_duplicates(fake_upstream, fake_clock):
    orch = _orchestrator(fake_upstream, fake_clock, min_fetch_interval=0.0)
    assert orch.queue_stale() == 0
    assert orch.pending_keys() == list(KEYS)

    await orch.fetch_next()
    assert orch.queue_stale() == 0
    assert orch.pending_keys() == ["b", "c", "d", "e"]


@pytest.mark.anyio
async def test_expired_entries_are_requeued(fake_upstream, fake_clock):
    orch = _orchestrator(fake_upstream, fake_clock, min_fetch_interval=0.0, cache_ttl=100)
    await orch.schedule_fill()
    assert orch.cache_status().cached_regions == 5

    fake_clock.advance(100)

    assert orch.cache_status().cached_regions == 0
    assert orch.is_ready is True
    assert orch.queue_stale() == 5
    assert orch.cache_status().is_complete is False


@pytest.mark.anyio
async def test_sync_tick_makes_at_most_one_call_per_interval(fake_upstream, fake_clock):
    orch = _orchestrator(fake_upstream, fake_clock, readiness_threshold=0.0, min_fetch_interval=0.05)

    assert await orch.sync_tick() is True
    assert await orch.sync_tick() is False
    await asyncio.sleep(0.07)
    assert await orch.sync_tick() is True
    assert fake_upstream.history_calls == ["a", "b"]


@pytest.mark.anyio
async def test_run_loop_fills_cache_and_stops_on_shutdown(fake_upstream):
    orch = HistorySyncOrchestrator(
        fake_upstream,
        KEYS,
        cache_max_size=35,
        cache_ttl=1800,
        cleanup_interval=1800,
        min_fetch_interval=0.0,
        max_attempts=3,
        readiness_threshold=0.25,
    )
    shutdown = asyncio.Event()
    task = asyncio.create_task(orch.run(shutdown))

    for _ in range(100):
        if orch.cache_status().cached_regions == len(KEYS):
            break
        await asyncio.sleep(0.05)

    shutdown.set()
    await asyncio.wait_for(task, timeout=2.0)
    assert orch.cache_status().cached_regions == len(KEYS)
    assert sorted(fake_upstream.history_calls) == sorted(KEYS)


@pytest.mark.anyio
async def test_sync_ticks_fill_whole_catalog_one_region_per_interval(fake_upstream, make_record):
    fake_upstream.history = {k: [make_record(f"{k}-1")] for k in KEYS}
    orch = _orchestrator(fake_upstream, time.monotonic, readiness_threshold=0.25, min_fetch_interval=0.05)

    await orch.sync_tick()
    first = orch.cache_status()
    assert orch.is_ready is True
    assert first.cached_regions >= 2

    cached_per_tick = [first.cached_regions]
    for _ in range(50):
        status = orch.cache_status()
        if status.cached_regions == len(KEYS) and status.pending_regions == 0:
            break
        await asyncio.sleep(0.06)
        await orch.sync_tick()
        cached_per_tick.append(orch.cache_status().cached_regions)

    status = orch.cache_status()
    assert (status.cached_regions, status.pending_regions, status.failed_regions) == (5, 0, 0)
    assert status.is_complete is True
    assert fake_upstream.history_calls == list(KEYS)
    assert all(later - earlier <= 1 for earlier, later in zip(cached_per_tick, cached_per_tick[1:]))


@pytest.mark.anyio
async def test_degraded_clears_after_next_success(fake_upstream, fake_clock, make_record):
    fake_upstream.history = {"a": [UpstreamUnavailableError("down"), [make_record("ok")]]}
    orch = _orchestrator(fake_upstream, fake_clock, keys=("a",))

    await orch.fetch_next()
    assert orch.is_degraded is True
    assert orch.last_error == "down"

    await orch.fetch_next()
    assert orch.is_degraded is False
    assert orch.last_error is None


@pytest.mark.anyio
async def test_aclose_cancels_pending_fills(fake_clock):
    upstream = _GatedUpstream()
    orch = _orchestrator(upstream, fake_clock)

    fill = orch.schedule_fill()
    for _ in range(5):
        await asyncio.sleep(0)
    assert orch.fill_in_progress is True
    assert upstream.history_calls == ["a"]

    await asyncio.wait_for(orch.aclose(), timeout=1.0)

    assert fill.done()
    assert orch.fill_in_progress is False
    assert orch.region_state("a") == "uncached"
    upstream.gate.set()
    await asyncio.sleep(0.05)
    assert upstream.history_calls == ["a"]


@pytest.mark.anyio
async def test_aclose_without_fills_is_a_noop(fake_upstream, fake_clock):
    orch = _orchestrator(fake_upstream, fake_clock)
    await orch.aclose()
    assert orch.fill_in_progress is False
    assert fake_upstream.history_calls == []
