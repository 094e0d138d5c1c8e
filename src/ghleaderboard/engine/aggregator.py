from __future__ import annotations

from datetime import datetime
from typing import Iterable, Sequence

from ghleaderboard.core.models import (
    ActivityKind,
    ActivityRecord,
    BreakdownBucket,
    ClassifiedEvent,
    ContributorEntry,
    DailyBucket,
    PeriodDocument,
    TopContributor,
)


class ContributorAggregator:
    """Folds classified events into one ContributorEntry per username."""

    def __init__(self, default_role: str | None = "Contributor") -> None:
        self._default_role = default_role
        self._entries: dict[str, ContributorEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def add(self, event: ClassifiedEvent) -> None:
        entry = self._entries.get(event.username)
        if entry is None:
            # First-seen identity wins; later events only move the numbers.
            entry = ContributorEntry(
                username=event.username,
                name=event.name,
                avatar_url=event.avatar_url,
                role=self._default_role,
            )
            self._entries[event.username] = entry
        record_activity(
            entry,
            ActivityRecord(
                kind=event.kind,
                occurred_at=event.occurred_at,
                title=event.title,
                link=event.link,
                points=event.points,
            ),
        )

    def add_all(self, events: Iterable[ClassifiedEvent]) -> None:
        for event in events:
            self.add(event)

    def entries(self) -> list[ContributorEntry]:
        for entry in self._entries.values():
            entry.daily_activity.sort(key=lambda day: day.date)
        return rank_entries(self._entries.values())

    def to_document(
        self,
        period: str,
        built_at: datetime,
        start: datetime,
        end: datetime,
        *,
        hidden_roles: Sequence[str] = (),
        top_limit: int = 5,
    ) -> PeriodDocument:
        entries = self.entries()
        return PeriodDocument(
            period=period,
            built_at=built_at,
            start=start,
            end=end,
            entries=entries,
            hidden_roles=list(hidden_roles),
            top_by_activity=top_by_activity(entries, top_limit),
        )


def record_activity(entry: ContributorEntry, activity: ActivityRecord) -> None:
    entry.raw_activities.append(activity)
    entry.total_points += activity.points

    bucket = entry.activity_breakdown.setdefault(activity.kind, BreakdownBucket())
    bucket.count += 1
    bucket.points += activity.points

    day = activity.day
    for daily in entry.daily_activity:
        if daily.date == day:
            break
    else:
        daily = DailyBucket(date=day)
        entry.daily_activity.append(daily)
    daily.count += 1
    daily.points += activity.points


def rebuild_entry(template: ContributorEntry, activities: Iterable[ActivityRecord]) -> ContributorEntry:
    """Fresh entry carrying template's identity, with every aggregate recomputed from activities."""
    entry = ContributorEntry(
        username=template.username,
        name=template.name,
        avatar_url=template.avatar_url,
        role=template.role,
    )
    for activity in activities:
        record_activity(entry, activity)
    entry.daily_activity.sort(key=lambda day: day.date)
    return entry


def rank_entries(entries: Iterable[ContributorEntry]) -> list[ContributorEntry]:
    """Drop zero-point entries; highest total first, ties by username."""
    return sorted(
        (entry for entry in entries if entry.total_points > 0),
        key=lambda entry: (-entry.total_points, entry.username),
    )


def top_by_activity(
    entries: Sequence[ContributorEntry], limit: int
) -> dict[ActivityKind, list[TopContributor]]:
    if limit <= 0:
        return {}
    result: dict[ActivityKind, list[TopContributor]] = {}
    for kind in ActivityKind:
        ranked = sorted(
            (
                (entry, entry.activity_breakdown[kind])
                for entry in entries
                if kind in entry.activity_breakdown and entry.activity_breakdown[kind].points > 0
            ),
            key=lambda pair: (-pair[1].points, -pair[1].count, pair[0].username),
        )
        if not ranked:
            continue
        result[kind] = [
            TopContributor(
                username=entry.username,
                name=entry.name,
                avatar_url=entry.avatar_url,
                count=bucket.count,
                points=bucket.points,
            )
            for entry, bucket in ranked[:limit]
        ]
    return result
