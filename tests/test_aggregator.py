"""Tests for per-contributor aggregation and ranking (engine/aggregator.py)."""

from datetime import timedelta

from ghleaderboard.core.models import ActivityKind, ClassifiedEvent
from ghleaderboard.engine.aggregator import ContributorAggregator, top_by_activity

from factories import NOW


def _event(username, kind, points, *, days_ago=0, number=1, name=None, avatar=None):
    return ClassifiedEvent(
        key=(kind.value, str(number)),
        username=username,
        name=name,
        avatar_url=avatar,
        kind=kind,
        occurred_at=NOW - timedelta(days=days_ago),
        title=f"Change {number}",
        link=f"https://github.com/acme/repo/pull/{number}",
        points=points,
    )


def test_totals_equal_breakdown_and_daily_sums() -> None:
    aggregator = ContributorAggregator()
    aggregator.add_all(
        [
            _event("alice", ActivityKind.PR_OPENED, 2, days_ago=1, number=1),
            _event("alice", ActivityKind.PR_MERGED, 5, days_ago=1, number=2),
            _event("alice", ActivityKind.ISSUE_OPENED, 1, days_ago=3, number=3),
        ]
    )
    [entry] = aggregator.entries()
    assert entry.total_points == 8
    assert sum(b.points for b in entry.activity_breakdown.values()) == 8
    assert sum(d.points for d in entry.daily_activity) == 8
    assert sum(d.count for d in entry.daily_activity) == len(entry.raw_activities) == 3
    assert entry.activity_breakdown[ActivityKind.PR_MERGED].count == 1
    assert [d.date for d in entry.daily_activity] == ["2024-06-27", "2024-06-29"]
    assert entry.role == "Contributor"


def test_first_seen_identity_wins() -> None:
    aggregator = ContributorAggregator()
    aggregator.add(_event("alice", ActivityKind.PR_OPENED, 2, number=1, name="Alice", avatar="a1"))
    aggregator.add(_event("alice", ActivityKind.PR_OPENED, 2, number=2, name="Renamed", avatar="a2"))
    [entry] = aggregator.entries()
    assert entry.name == "Alice"
    assert entry.avatar_url == "a1"


def test_ranking_breaks_ties_by_username() -> None:
    aggregator = ContributorAggregator()
    aggregator.add_all(
        [
            _event("carol", ActivityKind.PR_OPENED, 2, number=1),
            _event("bob", ActivityKind.PR_OPENED, 2, number=2),
            _event("dave", ActivityKind.PR_MERGED, 5, number=3),
        ]
    )
    assert [e.username for e in aggregator.entries()] == ["dave", "bob", "carol"]


def test_zero_point_contributors_are_dropped() -> None:
    aggregator = ContributorAggregator()
    aggregator.add(_event("ghost", ActivityKind.ISSUE_OPENED, 0))
    aggregator.add(_event("alice", ActivityKind.ISSUE_OPENED, 1, number=2))
    assert [e.username for e in aggregator.entries()] == ["alice"]


def test_empty_aggregator_yields_empty_document() -> None:
    document = ContributorAggregator().to_document(
        "year", NOW, NOW - timedelta(days=365), NOW
    )
    payload = document.to_dict()
    assert payload["entries"] == []
    assert payload["topByActivity"] == {}
    assert payload["startDate"] == "2023-07-01"
    assert payload["endDate"] == "2024-06-30"


def test_top_by_activity_orders_and_limits() -> None:
    aggregator = ContributorAggregator()
    aggregator.add_all(
        [
            _event("alice", ActivityKind.PR_MERGED, 5, number=1),
            _event("bob", ActivityKind.PR_MERGED, 5, number=2),
            _event("bob", ActivityKind.PR_MERGED, 5, number=3),
            _event("carol", ActivityKind.PR_MERGED, 5, number=4),
            _event("carol", ActivityKind.ISSUE_OPENED, 1, number=5),
        ]
    )
    tops = top_by_activity(aggregator.entries(), 2)
    assert [t.username for t in tops[ActivityKind.PR_MERGED]] == ["bob", "alice"]
    assert tops[ActivityKind.PR_MERGED][0].count == 2
    assert [t.username for t in tops[ActivityKind.ISSUE_OPENED]] == ["carol"]
    assert ActivityKind.PR_OPENED not in tops
    assert top_by_activity(aggregator.entries(), 0) == {}
