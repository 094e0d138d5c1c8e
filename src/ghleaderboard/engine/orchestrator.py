from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from ghleaderboard.config.models import RECENT_ACTIVITIES_KEY, AppConfig
from ghleaderboard.core.interfaces import EventSource
from ghleaderboard.core.models import (
    CATEGORY_ORDER,
    PeriodDocument,
    RecentActivitiesDocument,
    ensure_utc,
)
from ghleaderboard.engine.aggregator import ContributorAggregator
from ghleaderboard.engine.classifier import ActivityClassifier
from ghleaderboard.engine.periods import build_recent_activities, derive_period


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class BuildResult:
    built_at: datetime
    org: str
    periods: dict[str, PeriodDocument]
    recent: RecentActivitiesDocument

    def payloads(self) -> dict[str, dict[str, Any]]:
        documents = {name: doc.to_dict() for name, doc in self.periods.items()}
        documents[RECENT_ACTIVITIES_KEY] = self.recent.to_dict()
        return documents


class BuildOrchestrator:
    """One build: fetch, classify, aggregate the canonical window, derive the rest."""

    def __init__(
        self,
        source: EventSource,
        config: AppConfig,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._logger = logging.getLogger(self.__class__.__name__)
        self._source = source
        self._config = config
        self._clock = clock
        self._classifier = ActivityClassifier(config.scoring.points)

    async def build(
        self, *, org: str | None = None, lookback_days: int | None = None
    ) -> BuildResult:
        board = self._config.leaderboard
        canonical_cfg = board.canonical
        days = min(lookback_days, canonical_cfg.days) if lookback_days else canonical_cfg.days
        now = ensure_utc(self._clock()).replace(microsecond=0)
        start = now - timedelta(days=days)
        org_name = org or self._config.github.org

        self._logger.info(
            "Starting leaderboard build",
            extra={"org": org_name, "days": days, "start": start.isoformat(), "end": now.isoformat()},
        )
        aggregator = ContributorAggregator(default_role=board.default_role)
        seen: set[tuple[str, str]] = set()
        skipped = duplicates = out_of_window = 0
        for category in CATEGORY_ORDER:
            items = await self._source.fetch_category(category, start, now, org=org)
            for item in items:
                event = self._classifier.classify(category, item)
                if event is None:
                    skipped += 1
                    continue
                # Merged PRs are found by creation date but scored at merge time.
                if not start <= event.occurred_at < now:
                    out_of_window += 1
                    continue
                if event.key in seen:
                    duplicates += 1
                    continue
                seen.add(event.key)
                aggregator.add(event)

        canonical = aggregator.to_document(
            canonical_cfg.name,
            built_at=now,
            start=start,
            end=now,
            hidden_roles=board.hidden_roles,
            top_limit=board.top_by_activity_limit,
        )
        self._logger.info(
            "Aggregated canonical period",
            extra={
                "period": canonical_cfg.name,
                "contributors": len(canonical.entries),
                "events": len(seen),
                "skipped": skipped,
                "duplicates": duplicates,
                "out_of_window": out_of_window,
            },
        )
        return BuildResult(
            built_at=now,
            org=org_name,
            periods=self.derive_all(canonical, now, max_days=days),
            recent=build_recent_activities(canonical, board.recent_activities.days, now),
        )

    def derive_all(
        self, canonical: PeriodDocument, now: datetime, *, max_days: int | None = None
    ) -> dict[str, PeriodDocument]:
        """Canonical document plus every shorter configured period that fits in max_days."""
        board = self._config.leaderboard
        documents: dict[str, PeriodDocument] = {}
        for period in board.periods:
            if period.name == board.canonical_period:
                documents[period.name] = canonical
                continue
            if max_days is not None and period.days > max_days:
                self._logger.info(
                    "Skipping period longer than lookback",
                    extra={"period": period.name, "days": period.days, "lookback_days": max_days},
                )
                continue
            documents[period.name] = derive_period(
                canonical, period.name, period.days, now, top_limit=board.top_by_activity_limit
            )
        return documents

    def rederive(self, canonical_payload: dict[str, Any]) -> BuildResult:
        """Re-derive every shorter period from an already persisted canonical document."""
        canonical = PeriodDocument.from_dict(canonical_payload)
        now = canonical.built_at
        board = self._config.leaderboard
        return BuildResult(
            built_at=now,
            org=self._config.github.org,
            periods=self.derive_all(canonical, now),
            recent=build_recent_activities(canonical, board.recent_activities.days, now),
        )

    async def build_payloads(self) -> dict[str, dict[str, Any]]:
        result = await self.build()
        return result.payloads()
