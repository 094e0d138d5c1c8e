"""Tests for stale-while-revalidate reads (engine/freshness.py)."""

import asyncio
import logging
from datetime import timedelta

import pytest

from ghleaderboard.adapters.storage.memory import InMemoryCacheStore
from ghleaderboard.core.errors import (
    BuildTimeoutError,
    UnknownPeriodError,
    UpstreamAuthError,
    UpstreamHTTPError,
)
from ghleaderboard.core.models import CacheRecord, epoch_millis
from ghleaderboard.engine.freshness import (
    FreshnessController,
    FreshnessPolicy,
    FreshnessState,
    classify_freshness,
)

from factories import FakeClock

HOUR = timedelta(hours=1)
POLICIES = {
    "week": FreshnessPolicy(ttl=HOUR, stale_ceiling=24 * HOUR),
    "recent-activities": FreshnessPolicy(ttl=HOUR, stale_ceiling=24 * HOUR),
}


class Builder:
    """Document builder that counts calls and can be held open or made to fail."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.calls = 0
        self.release: asyncio.Event | None = None
        self.error: Exception | None = None

    async def __call__(self):
        self.calls += 1
        if self.release is not None:
            await self.release.wait()
        if self.error is not None:
            raise self.error
        stamp = epoch_millis(self.clock())
        return {
            "week": {"period": "week", "updatedAt": stamp, "build": self.calls},
            "recent-activities": {"updatedAt": stamp, "groups": []},
        }


async def _seed(store: InMemoryCacheStore, clock: FakeClock, age: timedelta, key: str = "week") -> None:
    built = epoch_millis(clock() - age)
    await store.put(f"acme:{key}", CacheRecord(built_at_ms=built, document={"period": key, "build": 0}))


def _controller(store, builder, clock, **kwargs) -> FreshnessController:
    return FreshnessController(store, builder, POLICIES, namespace="acme", clock=clock, **kwargs)


async def _drain() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


def test_classification_boundaries() -> None:
    ttl, ceiling = HOUR, 24 * HOUR
    assert classify_freshness(timedelta(0), ttl, ceiling) == FreshnessState.FRESH
    assert classify_freshness(HOUR - timedelta(seconds=1), ttl, ceiling) == FreshnessState.FRESH
    assert classify_freshness(HOUR, ttl, ceiling) == FreshnessState.STALE
    assert classify_freshness(24 * HOUR - timedelta(seconds=1), ttl, ceiling) == FreshnessState.STALE
    assert classify_freshness(24 * HOUR, ttl, ceiling) == FreshnessState.EXPIRED


@pytest.mark.asyncio
async def test_fresh_record_served_without_build() -> None:
    clock, store = FakeClock(), InMemoryCacheStore()
    builder = Builder(clock)
    await _seed(store, clock, timedelta(minutes=10))
    controller = _controller(store, builder, clock)

    result = await controller.read("week")

    assert result.state == FreshnessState.FRESH
    assert result.document["build"] == 0
    assert not result.rebuilt and not result.refresh_scheduled
    assert builder.calls == 0


@pytest.mark.asyncio
async def test_stale_record_served_and_one_refresh_scheduled() -> None:
    clock, store = FakeClock(), InMemoryCacheStore()
    builder = Builder(clock)
    builder.release = asyncio.Event()
    await _seed(store, clock, 2 * HOUR)
    controller = _controller(store, builder, clock)

    first = await controller.read("week")
    second = await controller.read("week")

    assert first.state == FreshnessState.STALE
    assert first.document["build"] == 0
    assert first.refresh_scheduled
    assert second.document["build"] == 0
    assert not second.refresh_scheduled
    assert controller.refreshing("week")
    assert controller.refreshing("recent-activities")

    builder.release.set()
    await _drain()

    assert builder.calls == 1
    assert not controller.refreshing("week")
    record = await store.get("acme:week")
    assert record is not None and record.document["build"] == 1
    assert (await store.get("acme:recent-activities")) is not None
    third = await controller.read("week")
    assert third.state == FreshnessState.FRESH
    assert third.document["build"] == 1


@pytest.mark.asyncio
async def test_failed_background_refresh_is_logged_and_cache_kept(caplog) -> None:
    clock, store = FakeClock(), InMemoryCacheStore()
    builder = Builder(clock)
    builder.error = UpstreamHTTPError(502, "Bad Gateway", "/search/issues")
    await _seed(store, clock, 2 * HOUR)
    controller = _controller(store, builder, clock)
    caplog.set_level(logging.ERROR)

    result = await controller.read("week")
    await _drain()

    assert result.state == FreshnessState.STALE
    assert "Background rebuild failed" in caplog.text
    record = await store.get("acme:week")
    assert record is not None and record.document["build"] == 0
    assert not controller.refreshing("week")


@pytest.mark.asyncio
async def test_expired_record_rebuilt_before_serving() -> None:
    clock, store = FakeClock(), InMemoryCacheStore()
    builder = Builder(clock)
    await _seed(store, clock, 25 * HOUR)
    controller = _controller(store, builder, clock)

    result = await controller.read("week")

    assert result.state == FreshnessState.EXPIRED
    assert result.rebuilt
    assert result.document["build"] == 1
    assert result.built_at == clock().replace(microsecond=0)
    assert builder.calls == 1


@pytest.mark.asyncio
async def test_missing_record_rebuilt_before_serving() -> None:
    clock, store = FakeClock(), InMemoryCacheStore()
    builder = Builder(clock)
    controller = _controller(store, builder, clock)

    result = await controller.read("recent-activities")

    assert result.rebuilt
    assert result.document == {"updatedAt": epoch_millis(clock()), "groups": []}


@pytest.mark.asyncio
async def test_concurrent_expired_reads_share_one_build() -> None:
    clock, store = FakeClock(), InMemoryCacheStore()
    builder = Builder(clock)
    builder.release = asyncio.Event()
    controller = _controller(store, builder, clock)

    readers = [asyncio.create_task(controller.read(key)) for key in ("week", "week", "recent-activities")]
    await _drain()
    builder.release.set()
    results = await asyncio.gather(*readers)

    assert builder.calls == 1
    assert all(result.rebuilt for result in results)


@pytest.mark.asyncio
async def test_expired_failure_falls_back_to_last_document(caplog) -> None:
    clock, store = FakeClock(), InMemoryCacheStore()
    builder = Builder(clock)
    builder.error = UpstreamHTTPError(500, "boom", "/search/issues")
    await _seed(store, clock, 30 * HOUR)
    controller = _controller(store, builder, clock)
    caplog.set_level(logging.WARNING)

    result = await controller.read("week")

    assert result.fallback
    assert result.state == FreshnessState.EXPIRED
    assert result.document["build"] == 0
    assert "boom" in (result.error or "")
    assert "serving last good document" in caplog.text


@pytest.mark.asyncio
async def test_expired_failure_without_record_propagates() -> None:
    clock, store = FakeClock(), InMemoryCacheStore()
    builder = Builder(clock)
    builder.error = UpstreamHTTPError(500, "boom", "/search/issues")
    controller = _controller(store, builder, clock)

    with pytest.raises(UpstreamHTTPError):
        await controller.read("week")


@pytest.mark.asyncio
async def test_auth_failure_always_propagates() -> None:
    clock, store = FakeClock(), InMemoryCacheStore()
    builder = Builder(clock)
    builder.error = UpstreamAuthError("Bad credentials")
    await _seed(store, clock, 30 * HOUR)
    controller = _controller(store, builder, clock)

    with pytest.raises(UpstreamAuthError):
        await controller.read("week")


@pytest.mark.asyncio
async def test_forced_read_rebuilds_fresh_record() -> None:
    clock, store = FakeClock(), InMemoryCacheStore()
    builder = Builder(clock)
    await _seed(store, clock, timedelta(minutes=1))
    controller = _controller(store, builder, clock)

    result = await controller.read_forced("week")

    assert result.rebuilt
    assert result.document["build"] == 1
    assert builder.calls == 1


@pytest.mark.asyncio
async def test_forced_read_failure_propagates() -> None:
    clock, store = FakeClock(), InMemoryCacheStore()
    builder = Builder(clock)
    builder.error = UpstreamHTTPError(500, "boom", "/search/issues")
    await _seed(store, clock, timedelta(minutes=1))
    controller = _controller(store, builder, clock)

    with pytest.raises(UpstreamHTTPError):
        await controller.read_forced("week")
    record = await store.get("acme:week")
    assert record is not None and record.document["build"] == 0


@pytest.mark.asyncio
async def test_build_timeout() -> None:
    clock, store = FakeClock(), InMemoryCacheStore()
    builder = Builder(clock)
    builder.release = asyncio.Event()
    controller = _controller(store, builder, clock, build_timeout=0.01)

    with pytest.raises(BuildTimeoutError):
        await controller.read("week")
    assert not controller.refreshing("week")


@pytest.mark.asyncio
async def test_unknown_key_rejected() -> None:
    clock = FakeClock()
    controller = _controller(InMemoryCacheStore(), Builder(clock), clock)
    with pytest.raises(UnknownPeriodError):
        await controller.read("decade")
    with pytest.raises(UnknownPeriodError):
        await controller.status("decade")


@pytest.mark.asyncio
async def test_status_never_builds() -> None:
    clock, store = FakeClock(), InMemoryCacheStore()
    builder = Builder(clock)
    await _seed(store, clock, 2 * HOUR)
    controller = _controller(store, builder, clock)

    status = await controller.status("week")
    missing = await controller.status("recent-activities")

    assert status["state"] == "stale"
    assert status["exists"] is True
    assert status["ageSeconds"] == pytest.approx(7200, abs=1)
    assert status["store"] == "memory"
    assert missing == {
        "period": "recent-activities",
        "state": "expired",
        "exists": False,
        "builtAt": None,
        "ageSeconds": None,
        "ttlSeconds": 3600.0,
        "staleSeconds": 86400.0,
        "refreshing": False,
        "store": "memory",
    }
    assert builder.calls == 0


@pytest.mark.asyncio
async def test_shutdown_cancels_background_refresh() -> None:
    clock, store = FakeClock(), InMemoryCacheStore()
    builder = Builder(clock)
    builder.release = asyncio.Event()
    await _seed(store, clock, 2 * HOUR)
    controller = _controller(store, builder, clock)

    await controller.read("week")
    assert controller.refreshing("week")
    await controller.shutdown()
    await _drain()

    assert not controller.refreshing("week")
    record = await store.get("acme:week")
    assert record is not None and record.document["build"] == 0
