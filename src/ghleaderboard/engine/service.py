from __future__ import annotations

import logging
from typing import Any

from ghleaderboard.config.models import RECENT_ACTIVITIES_KEY, AppConfig
from ghleaderboard.core.errors import AccessDenied, UnknownPeriodError
from ghleaderboard.core.interfaces import CacheStore
from ghleaderboard.core.models import CacheRecord
from ghleaderboard.core.modes import OverridePolicy
from ghleaderboard.engine.freshness import (
    FreshnessController,
    FreshnessPolicy,
    FreshnessState,
    ReadResult,
)
from ghleaderboard.engine.orchestrator import BuildOrchestrator


class LeaderboardService:
    """Read surface over the cached documents: default, status, forced, ping, overrides."""

    def __init__(
        self,
        config: AppConfig,
        orchestrator: BuildOrchestrator,
        store: CacheStore,
        controller: FreshnessController | None = None,
    ) -> None:
        self._logger = logging.getLogger(self.__class__.__name__)
        self._config = config
        self._orchestrator = orchestrator
        self._store = store
        self._overrides = OverridePolicy(environment=config.runtime.environment)
        self._controller = controller or FreshnessController(
            store,
            orchestrator.build_payloads,
            {
                key: FreshnessPolicy.from_config(policy)
                for key, policy in config.leaderboard.freshness_policies().items()
            },
            namespace=config.github.org,
            build_timeout=config.runtime.build_timeout_seconds,
        )

    @property
    def controller(self) -> FreshnessController:
        return self._controller

    async def start(self) -> None:
        await self._store.init_schema()

    async def cached_documents(self) -> dict[str, dict[str, Any]]:
        """Every document currently in the cache, without classifying or rebuilding."""
        documents: dict[str, dict[str, Any]] = {}
        for key in self._controller.keys:
            record = await self._store.get(self._controller.storage_key(key))
            if record is not None:
                documents[key] = record.document
        return documents

    async def read(
        self,
        period: str,
        *,
        force: bool = False,
        org: str | None = None,
        lookback_days: int | None = None,
    ) -> ReadResult:
        if org is not None or lookback_days is not None:
            return await self._read_override(period, org=org, lookback_days=lookback_days)
        if period == RECENT_ACTIVITIES_KEY or self._config.leaderboard.period(period) is None:
            raise UnknownPeriodError(f"Unknown leaderboard period: {period}")
        if force:
            self._logger.info("Forced rebuild requested", extra={"period": period})
            return await self._controller.read_forced(period)
        return await self._controller.read(period)

    async def recent(self, *, force: bool = False) -> ReadResult:
        if force:
            return await self._controller.read_forced(RECENT_ACTIVITIES_KEY)
        return await self._controller.read(RECENT_ACTIVITIES_KEY)

    async def status(self, period: str) -> dict[str, Any]:
        return await self._controller.status(period)

    async def status_all(self) -> list[dict[str, Any]]:
        return [await self._controller.status(key) for key in self._controller.keys]

    async def ping(self) -> dict[str, Any]:
        return {
            "status": "ok",
            "org": self._config.github.org,
            "periods": [period.name for period in self._config.leaderboard.periods],
            "store": self._store.backend,
        }

    async def rebuild_all(self) -> list[str]:
        """Forced build of every document; returns the document keys written."""
        result = await self._controller.read_forced(self._config.leaderboard.canonical_period)
        self._logger.info("Rebuilt all documents", extra={"built_at": result.built_at.isoformat()})
        return self._controller.keys

    async def rederive(self) -> list[str]:
        """Rewrite the shorter periods from the cached canonical document, without GitHub calls."""
        board = self._config.leaderboard
        canonical_key = self._controller.storage_key(board.canonical_period)
        record = await self._store.get(canonical_key)
        if record is None:
            raise UnknownPeriodError(
                f"No cached canonical document ({board.canonical_period}); run a build first"
            )
        result = self._orchestrator.rederive(record.document)
        written = []
        for key, document in result.payloads().items():
            if key == board.canonical_period:
                continue
            await self._store.put(
                self._controller.storage_key(key),
                CacheRecord(built_at_ms=record.built_at_ms, document=document),
            )
            written.append(key)
        return written

    async def close(self, *, wait: bool = False) -> None:
        await self._controller.shutdown(wait=wait)

    async def _read_override(
        self, period: str, *, org: str | None, lookback_days: int | None
    ) -> ReadResult:
        if org is not None and not self._overrides.allow_org_override:
            raise AccessDenied("Organization override is only available in development")
        if lookback_days is not None and not self._overrides.allow_lookback_override:
            raise AccessDenied("Lookback override is only available in development")
        if lookback_days is not None and lookback_days <= 0:
            raise ValueError("lookback_days must be positive")
        self._logger.info(
            "Development override read; bypassing cache",
            extra={"period": period, "org": org, "lookback_days": lookback_days},
        )
        result = await self._orchestrator.build(org=org, lookback_days=lookback_days)
        payloads = result.payloads()
        if period not in payloads:
            raise UnknownPeriodError(f"Period {period} is not available for this override")
        document = payloads[period]
        return ReadResult(
            key=period,
            state=FreshnessState.EXPIRED,
            document=document,
            built_at=result.built_at,
            rebuilt=True,
        )
