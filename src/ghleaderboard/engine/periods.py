"""Shorter reporting windows and the recent-activity feed, projected from the canonical log.

Nothing here talks to GitHub. Every function is a pure function of the canonical
document and the reference instant, so re-running it yields the same output.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from ghleaderboard.core.models import (
    PeriodDocument,
    RecentActivitiesDocument,
    RecentActivityGroup,
    RecentActivityItem,
    ensure_utc,
    utc_day,
)
from ghleaderboard.engine.aggregator import rank_entries, rebuild_entry, top_by_activity


def derive_period(
    canonical: PeriodDocument,
    period: str,
    days: int,
    now: datetime,
    *,
    top_limit: int = 5,
) -> PeriodDocument:
    """Project `canonical` onto the window [now - days, now].

    The canonical entries are only read. Aggregates are rebuilt from the
    filtered raw activity log, never copied, since the canonical totals include
    events outside the window.
    """
    now = ensure_utc(now)
    cutoff = now - timedelta(days=days)
    derived = []
    for entry in canonical.entries:
        in_window = [a for a in entry.raw_activities if ensure_utc(a.occurred_at) >= cutoff]
        if not in_window:
            continue
        derived.append(rebuild_entry(entry, in_window))
    entries = rank_entries(derived)
    return PeriodDocument(
        period=period,
        built_at=now,
        start=cutoff,
        end=now,
        entries=entries,
        hidden_roles=list(canonical.hidden_roles),
        top_by_activity=top_by_activity(entries, top_limit),
        include_activities=True,
    )


def build_recent_activities(
    canonical: PeriodDocument, days: int, now: datetime
) -> RecentActivitiesDocument:
    """Group the last `days` days of activity by UTC date, newest date first."""
    now = ensure_utc(now)
    cutoff_day = utc_day(now - timedelta(days=days))
    groups: dict[str, list[RecentActivityItem]] = {}
    for entry in canonical.entries:
        for activity in entry.raw_activities:
            day = activity.day
            # The cutoff date itself is out: exactly `days` dates remain.
            if day <= cutoff_day:
                continue
            groups.setdefault(day, []).append(
                RecentActivityItem(
                    username=entry.username,
                    name=entry.name,
                    title=activity.title,
                    link=activity.link,
                    avatar_url=entry.avatar_url,
                    points=activity.points,
                )
            )
    return RecentActivitiesDocument(
        built_at=now,
        groups=[
            RecentActivityGroup(date=day, items=items)
            for day, items in sorted(groups.items(), key=lambda pair: pair[0], reverse=True)
        ],
    )
