from __future__ import annotations

from pydantic import BaseModel, Field, HttpUrl, field_validator, model_validator

from ghleaderboard.core.models import DEFAULT_POINTS, ActivityKind
from ghleaderboard.core.modes import Environment

RECENT_ACTIVITIES_KEY = "recent-activities"


class RuntimeConfig(BaseModel):
    environment: Environment = Environment.PRODUCTION
    log_level: str = "INFO"
    data_dir: str
    storage_adapter: str = "ghleaderboard.adapters.storage.sqlite:SqliteCacheStore"
    build_timeout_seconds: float = 1800.0

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        if value.upper() not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError("Unsupported log level")
        return value.upper()

    @field_validator("build_timeout_seconds")
    @classmethod
    def validate_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("build_timeout_seconds must be positive")
        return value


class GitHubConfig(BaseModel):
    org: str
    token: str
    api_base: HttpUrl = Field(default="https://api.github.com")
    # Search API allows 30 requests/minute for authenticated clients.
    request_delay_seconds: float = 2.5
    chunk_days: int = 30
    per_page: int = 100
    timeout_seconds: float = 30.0

    @field_validator("request_delay_seconds")
    @classmethod
    def validate_delay(cls, value: float) -> float:
        if value < 0:
            raise ValueError("request_delay_seconds must be non-negative")
        return value

    @field_validator("chunk_days")
    @classmethod
    def validate_chunk_days(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("chunk_days must be positive")
        return value

    @field_validator("per_page")
    @classmethod
    def validate_per_page(cls, value: int) -> int:
        if not 1 <= value <= 100:
            raise ValueError("per_page must be between 1 and 100")
        return value


class ScoringConfig(BaseModel):
    points: dict[ActivityKind, int] = Field(default_factory=lambda: dict(DEFAULT_POINTS))

    @field_validator("points")
    @classmethod
    def validate_points(cls, value: dict[ActivityKind, int]) -> dict[ActivityKind, int]:
        for kind, points in value.items():
            if points < 0:
                raise ValueError(f"points[{kind.value}] must be non-negative")
        # Kinds left out of the file keep their default value.
        return {**DEFAULT_POINTS, **value}


class FreshnessConfig(BaseModel):
    ttl_seconds: int
    stale_seconds: int

    @model_validator(mode="after")
    def validate_window(self) -> "FreshnessConfig":
        if self.ttl_seconds < 0:
            raise ValueError("ttl_seconds must be non-negative")
        if self.stale_seconds <= self.ttl_seconds:
            raise ValueError("stale_seconds must be greater than ttl_seconds")
        return self


class PeriodConfig(FreshnessConfig):
    name: str
    days: int

    @field_validator("days")
    @classmethod
    def validate_days(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("period days must be positive")
        return value

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        if not value or value == RECENT_ACTIVITIES_KEY:
            raise ValueError(f"period name must be non-empty and not {RECENT_ACTIVITIES_KEY!r}")
        return value


class RecentActivitiesConfig(FreshnessConfig):
    days: int = 14
    ttl_seconds: int = 3600
    stale_seconds: int = 86400


def _default_periods() -> list[PeriodConfig]:
    hour = 3600
    return [
        PeriodConfig(name="week", days=7, ttl_seconds=hour, stale_seconds=24 * hour),
        PeriodConfig(name="2week", days=14, ttl_seconds=hour, stale_seconds=24 * hour),
        PeriodConfig(name="3week", days=21, ttl_seconds=2 * hour, stale_seconds=24 * hour),
        PeriodConfig(name="month", days=30, ttl_seconds=3 * hour, stale_seconds=48 * hour),
        PeriodConfig(name="2month", days=60, ttl_seconds=6 * hour, stale_seconds=72 * hour),
        PeriodConfig(name="year", days=365, ttl_seconds=12 * hour, stale_seconds=7 * 24 * hour),
    ]


class LeaderboardConfig(BaseModel):
    canonical_period: str = "year"
    periods: list[PeriodConfig] = Field(default_factory=_default_periods)
    recent_activities: RecentActivitiesConfig = Field(default_factory=RecentActivitiesConfig)
    default_role: str = "Contributor"
    hidden_roles: list[str] = Field(default_factory=list)
    top_by_activity_limit: int = 5

    @field_validator("periods")
    @classmethod
    def validate_periods(cls, value: list[PeriodConfig]) -> list[PeriodConfig]:
        if not value:
            raise ValueError("periods must not be empty")
        names = [period.name for period in value]
        if len(names) != len(set(names)):
            raise ValueError("period names must be unique")
        # Keep derivation order deterministic: shortest window first.
        return sorted(value, key=lambda p: (p.days, p.name))

    @model_validator(mode="after")
    def validate_canonical(self) -> "LeaderboardConfig":
        canonical = self.period(self.canonical_period)
        if canonical is None:
            raise ValueError(f"canonical_period {self.canonical_period!r} is not a configured period")
        if any(period.days > canonical.days for period in self.periods):
            raise ValueError("canonical_period must be the longest configured period")
        if self.top_by_activity_limit < 0:
            raise ValueError("top_by_activity_limit must be non-negative")
        return self

    def period(self, name: str) -> PeriodConfig | None:
        for period in self.periods:
            if period.name == name:
                return period
        return None

    @property
    def canonical(self) -> PeriodConfig:
        period = self.period(self.canonical_period)
        assert period is not None
        return period

    def freshness_policies(self) -> dict[str, FreshnessConfig]:
        policies: dict[str, FreshnessConfig] = {p.name: p for p in self.periods}
        policies[RECENT_ACTIVITIES_KEY] = self.recent_activities
        return policies


class AppConfig(BaseModel):
    runtime: RuntimeConfig
    github: GitHubConfig
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    leaderboard: LeaderboardConfig = Field(default_factory=LeaderboardConfig)
