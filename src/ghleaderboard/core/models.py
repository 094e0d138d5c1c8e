from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict


class EventCategory(str, Enum):
    PR_OPENED = "pr_opened"
    PR_MERGED = "pr_merged"
    ISSUE_OPENED = "issue_opened"


# Fold order within one build.
CATEGORY_ORDER: tuple[EventCategory, ...] = (
    EventCategory.PR_OPENED,
    EventCategory.PR_MERGED,
    EventCategory.ISSUE_OPENED,
)


class ActivityKind(str, Enum):
    PR_OPENED = "PR opened"
    PR_MERGED = "PR merged"
    ISSUE_OPENED = "Issue opened"


CATEGORY_KIND: dict[EventCategory, ActivityKind] = {
    EventCategory.PR_OPENED: ActivityKind.PR_OPENED,
    EventCategory.PR_MERGED: ActivityKind.PR_MERGED,
    EventCategory.ISSUE_OPENED: ActivityKind.ISSUE_OPENED,
}

DEFAULT_POINTS: dict[ActivityKind, int] = {
    ActivityKind.PR_OPENED: 2,
    ActivityKind.PR_MERGED: 5,
    ActivityKind.ISSUE_OPENED: 1,
}


class RawActor(BaseModel):
    model_config = ConfigDict(extra="ignore")

    login: str | None = None
    name: str | None = None
    avatar_url: str | None = None
    type: str | None = None


class RawPullRequestRef(BaseModel):
    model_config = ConfigDict(extra="ignore")

    merged_at: datetime | None = None


class RawEvent(BaseModel):
    """One GitHub search result (issue or pull request)."""

    model_config = ConfigDict(extra="ignore")

    id: int | None = None
    number: int | None = None
    user: RawActor | None = None
    title: str | None = None
    html_url: str | None = None
    created_at: datetime
    closed_at: datetime | None = None
    pull_request: RawPullRequestRef | None = None


@dataclass(frozen=True)
class ClassifiedEvent:
    key: tuple[str, str]
    username: str
    name: str | None
    avatar_url: str | None
    kind: ActivityKind
    occurred_at: datetime
    title: str | None
    link: str | None
    points: int


@dataclass(frozen=True)
class ActivityRecord:
    kind: ActivityKind
    occurred_at: datetime
    title: str | None
    link: str | None
    points: int

    @property
    def day(self) -> str:
        return utc_day(self.occurred_at)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind.value,
            # Field name consumed by the presentation layer.
            "occured_at": format_timestamp(self.occurred_at),
            "title": self.title,
            "link": self.link,
            "points": self.points,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ActivityRecord":
        return cls(
            kind=ActivityKind(data["type"]),
            occurred_at=parse_timestamp(data["occured_at"]),
            title=data.get("title"),
            link=data.get("link"),
            points=int(data["points"]),
        )


@dataclass
class BreakdownBucket:
    count: int = 0
    points: int = 0


@dataclass
class DailyBucket:
    date: str
    count: int = 0
    points: int = 0


@dataclass
class ContributorEntry:
    username: str
    name: str | None = None
    avatar_url: str | None = None
    role: str | None = None
    total_points: int = 0
    activity_breakdown: dict[ActivityKind, BreakdownBucket] = field(default_factory=dict)
    daily_activity: list[DailyBucket] = field(default_factory=list)
    raw_activities: list[ActivityRecord] = field(default_factory=list)

    def to_dict(self, *, include_activities: bool = False) -> dict[str, Any]:
        data: dict[str, Any] = {
            "username": self.username,
            "name": self.name,
            "avatar_url": self.avatar_url,
            "role": self.role,
            "total_points": self.total_points,
            "activity_breakdown": {
                kind.value: {"count": bucket.count, "points": bucket.points}
                for kind, bucket in self.activity_breakdown.items()
            },
            "daily_activity": [
                {"date": day.date, "count": day.count, "points": day.points}
                for day in self.daily_activity
            ],
            "raw_activities": [activity.to_dict() for activity in self.raw_activities],
        }
        if include_activities:
            # Contributor detail view of a period reads this list, not raw_activities.
            data["activities"] = [
                {
                    **activity.to_dict(),
                    "contributor": self.username,
                    "contributor_name": self.name,
                    "contributor_avatar_url": self.avatar_url,
                }
                for activity in self.raw_activities
            ]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ContributorEntry":
        return cls(
            username=data["username"],
            name=data.get("name"),
            avatar_url=data.get("avatar_url"),
            role=data.get("role"),
            total_points=int(data.get("total_points", 0)),
            activity_breakdown={
                ActivityKind(kind): BreakdownBucket(count=int(b["count"]), points=int(b["points"]))
                for kind, b in (data.get("activity_breakdown") or {}).items()
            },
            daily_activity=[
                DailyBucket(date=d["date"], count=int(d["count"]), points=int(d["points"]))
                for d in data.get("daily_activity") or []
            ],
            raw_activities=[
                ActivityRecord.from_dict(a) for a in data.get("raw_activities") or []
            ],
        )


@dataclass(frozen=True)
class TopContributor:
    username: str
    name: str | None
    avatar_url: str | None
    count: int
    points: int


@dataclass
class PeriodDocument:
    period: str
    built_at: datetime
    start: datetime
    end: datetime
    entries: list[ContributorEntry]
    hidden_roles: list[str] = field(default_factory=list)
    top_by_activity: dict[ActivityKind, list[TopContributor]] = field(default_factory=dict)
    include_activities: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "period": self.period,
            "updatedAt": epoch_millis(self.built_at),
            "startDate": utc_day(self.start),
            "endDate": utc_day(self.end),
            "hiddenRoles": list(self.hidden_roles),
            "topByActivity": {
                kind.value: [
                    {
                        "username": top.username,
                        "name": top.name,
                        "avatar_url": top.avatar_url,
                        "count": top.count,
                        "points": top.points,
                    }
                    for top in tops
                ]
                for kind, tops in self.top_by_activity.items()
            },
            "entries": [
                entry.to_dict(include_activities=self.include_activities) for entry in self.entries
            ],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PeriodDocument":
        built_at = from_epoch_millis(int(data["updatedAt"]))
        return cls(
            period=data["period"],
            built_at=built_at,
            start=_day_start(data["startDate"]),
            end=_day_start(data["endDate"]),
            entries=[ContributorEntry.from_dict(e) for e in data.get("entries") or []],
            hidden_roles=list(data.get("hiddenRoles") or []),
            top_by_activity={
                ActivityKind(kind): [TopContributor(**top) for top in tops]
                for kind, tops in (data.get("topByActivity") or {}).items()
            },
            include_activities=any("activities" in e for e in data.get("entries") or []),
        )


@dataclass(frozen=True)
class RecentActivityItem:
    username: str
    name: str | None
    title: str | None
    link: str | None
    avatar_url: str | None
    points: int


@dataclass(frozen=True)
class RecentActivityGroup:
    date: str
    items: list[RecentActivityItem]


@dataclass(frozen=True)
class RecentActivitiesDocument:
    built_at: datetime
    groups: list[RecentActivityGroup]

    def to_dict(self) -> dict[str, Any]:
        return {
            "updatedAt": epoch_millis(self.built_at),
            "groups": [
                {
                    "date": group.date,
                    "items": [
                        {
                            "username": item.username,
                            "name": item.name,
                            "title": item.title,
                            "link": item.link,
                            "avatar_url": item.avatar_url,
                            "points": item.points,
                        }
                        for item in group.items
                    ],
                }
                for group in self.groups
            ],
        }


@dataclass(frozen=True)
class CacheRecord:
    built_at_ms: int
    document: dict[str, Any]

    @property
    def built_at(self) -> datetime:
        return from_epoch_millis(self.built_at_ms)


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_day(value: datetime) -> str:
    return ensure_utc(value).date().isoformat()


def format_timestamp(value: datetime) -> str:
    return ensure_utc(value).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_timestamp(value: str) -> datetime:
    return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


def epoch_millis(value: datetime) -> int:
    return int(ensure_utc(value).timestamp() * 1000)


def from_epoch_millis(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def _day_start(value: str) -> datetime:
    parsed = date.fromisoformat(value)
    return datetime(parsed.year, parsed.month, parsed.day, tzinfo=timezone.utc)
