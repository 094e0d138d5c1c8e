"""Stale-while-revalidate control over the cached leaderboard documents.

Every read classifies the cached record by age:

- fresh   (age < ttl): served as is.
- stale   (ttl <= age < stale ceiling): served as is, and one background
  rebuild is started unless one is already running.
- expired (age >= stale ceiling, or nothing cached): rebuilt before serving.

A build always produces every document, so one running build is registered
under every document key and any read that needs a rebuild joins it.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Mapping

from ghleaderboard.config.models import FreshnessConfig
from ghleaderboard.core.errors import (
    BuildTimeoutError,
    UnknownPeriodError,
    UpstreamAuthError,
    UpstreamError,
)
from ghleaderboard.core.interfaces import CacheStore, DocumentBuilder
from ghleaderboard.core.models import CacheRecord, epoch_millis, ensure_utc


class FreshnessState(str, Enum):
    FRESH = "fresh"
    STALE = "stale"
    EXPIRED = "expired"


def classify_freshness(age: timedelta, ttl: timedelta, stale_ceiling: timedelta) -> FreshnessState:
    if age < ttl:
        return FreshnessState.FRESH
    if age < stale_ceiling:
        return FreshnessState.STALE
    return FreshnessState.EXPIRED


@dataclass(frozen=True)
class FreshnessPolicy:
    ttl: timedelta
    stale_ceiling: timedelta

    @classmethod
    def from_config(cls, config: FreshnessConfig) -> "FreshnessPolicy":
        return cls(
            ttl=timedelta(seconds=config.ttl_seconds),
            stale_ceiling=timedelta(seconds=config.stale_seconds),
        )

    def classify(self, record: CacheRecord | None, now: datetime) -> FreshnessState:
        if record is None:
            return FreshnessState.EXPIRED
        return classify_freshness(now - record.built_at, self.ttl, self.stale_ceiling)


@dataclass(frozen=True)
class ReadResult:
    key: str
    state: FreshnessState
    document: dict[str, Any]
    built_at: datetime
    rebuilt: bool = False
    refresh_scheduled: bool = False
    fallback: bool = False
    error: str | None = None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class FreshnessController:
    def __init__(
        self,
        store: CacheStore,
        builder: DocumentBuilder,
        policies: Mapping[str, FreshnessPolicy],
        *,
        namespace: str,
        build_timeout: float | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._logger = logging.getLogger(self.__class__.__name__)
        self._store = store
        self._builder = builder
        self._policies = dict(policies)
        self._namespace = namespace
        self._build_timeout = build_timeout
        self._clock = clock
        self._in_flight: dict[str, asyncio.Task[dict[str, CacheRecord]]] = {}
        self._background: set[asyncio.Task[dict[str, CacheRecord]]] = set()

    @property
    def keys(self) -> list[str]:
        return list(self._policies)

    def refreshing(self, key: str) -> bool:
        return key in self._in_flight

    async def read(self, key: str) -> ReadResult:
        policy = self._policy(key)
        record = await self._store.get(self.storage_key(key))
        state = policy.classify(record, self._now())

        if state == FreshnessState.FRESH and record is not None:
            return ReadResult(key=key, state=state, document=record.document, built_at=record.built_at)

        if state == FreshnessState.STALE and record is not None:
            scheduled = self._schedule_refresh(key)
            return ReadResult(
                key=key,
                state=state,
                document=record.document,
                built_at=record.built_at,
                refresh_scheduled=scheduled,
            )

        try:
            records = await self._join_or_start_build(key)
        except UpstreamAuthError:
            raise
        except UpstreamError as exc:
            if record is None:
                raise
            self._logger.warning(
                "Rebuild failed; serving last good document past its stale ceiling",
                extra={"key": key, "built_at": record.built_at.isoformat(), "error": str(exc)},
            )
            return ReadResult(
                key=key,
                state=state,
                document=record.document,
                built_at=record.built_at,
                fallback=True,
                error=str(exc),
            )
        return self._rebuilt_result(key, state, records)

    async def read_forced(self, key: str) -> ReadResult:
        """Rebuild unconditionally and serve the result. Errors always propagate."""
        self._policy(key)
        records = await asyncio.shield(self._start_build())
        return self._rebuilt_result(key, FreshnessState.EXPIRED, records)

    async def status(self, key: str) -> dict[str, Any]:
        policy = self._policy(key)
        record = await self._store.get(self.storage_key(key))
        now = self._now()
        state = policy.classify(record, now)
        return {
            "period": key,
            "state": state.value,
            "exists": record is not None,
            "builtAt": record.built_at.isoformat() if record else None,
            "ageSeconds": (now - record.built_at).total_seconds() if record else None,
            "ttlSeconds": policy.ttl.total_seconds(),
            "staleSeconds": policy.stale_ceiling.total_seconds(),
            "refreshing": self.refreshing(key),
            "store": self._store.backend,
        }

    async def shutdown(self, *, wait: bool = False) -> None:
        """Abandon (or with wait=True, finish) builds still running in the background."""
        tasks = set(self._in_flight.values())
        if not tasks:
            return
        if not wait:
            for task in tasks:
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _policy(self, key: str) -> FreshnessPolicy:
        try:
            return self._policies[key]
        except KeyError:
            raise UnknownPeriodError(f"Unknown leaderboard document: {key}") from None

    def storage_key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    def _now(self) -> datetime:
        return ensure_utc(self._clock())

    def _schedule_refresh(self, key: str) -> bool:
        if key in self._in_flight:
            return False
        task = self._start_build()
        self._background.add(task)
        self._logger.info("Scheduled background rebuild", extra={"key": key})
        return True

    async def _join_or_start_build(self, key: str) -> dict[str, CacheRecord]:
        task = self._in_flight.get(key) or self._start_build()
        # A reader going away must not cancel a build other readers share.
        return await asyncio.shield(task)

    def _start_build(self) -> asyncio.Task[dict[str, CacheRecord]]:
        task = asyncio.create_task(self._run_build())
        for key in self._policies:
            self._in_flight[key] = task
        task.add_done_callback(self._on_build_done)
        return task

    def _on_build_done(self, task: asyncio.Task[dict[str, CacheRecord]]) -> None:
        for key in [k for k, running in self._in_flight.items() if running is task]:
            del self._in_flight[key]
        background = task in self._background
        self._background.discard(task)
        if task.cancelled():
            self._logger.info("Rebuild cancelled", extra={"background": background})
            return
        exc = task.exception()
        if exc is not None and background:
            self._logger.error(
                "Background rebuild failed; cached documents stay in place",
                exc_info=exc,
                extra={"error": str(exc)},
            )

    async def _run_build(self) -> dict[str, CacheRecord]:
        started = self._now()
        try:
            if self._build_timeout:
                documents = await asyncio.wait_for(self._builder(), self._build_timeout)
            else:
                documents = await self._builder()
        except asyncio.TimeoutError as exc:
            raise BuildTimeoutError(f"Build exceeded {self._build_timeout:g}s") from exc

        records: dict[str, CacheRecord] = {}
        for key, document in documents.items():
            if key not in self._policies:
                continue
            built_at_ms = int(document.get("updatedAt") or epoch_millis(started))
            records[key] = CacheRecord(built_at_ms=built_at_ms, document=document)
        for key, record in records.items():
            await self._store.put(self.storage_key(key), record)
        self._logger.info(
            "Rebuilt leaderboard documents",
            extra={
                "documents": sorted(records),
                "seconds": round((self._now() - started).total_seconds(), 3),
            },
        )
        return records

    def _rebuilt_result(
        self, key: str, state: FreshnessState, records: Mapping[str, CacheRecord]
    ) -> ReadResult:
        record = records.get(key)
        if record is None:
            raise UnknownPeriodError(f"Build did not produce document: {key}")
        return ReadResult(
            key=key,
            state=state,
            document=record.document,
            built_at=record.built_at,
            rebuilt=True,
        )
