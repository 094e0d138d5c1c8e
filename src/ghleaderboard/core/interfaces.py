from __future__ import annotations

from datetime import datetime
from typing import Any, Awaitable, Callable, Mapping, Protocol, Sequence

from ghleaderboard.core.models import CacheRecord, EventCategory


class EventSource(Protocol):
    async def fetch_category(
        self,
        category: EventCategory,
        start: datetime,
        end: datetime,
        *,
        org: str | None = None,
    ) -> Sequence[dict[str, Any]]:
        """Return every raw search item for the category within [start, end)."""


class CacheStore(Protocol):
    async def init_schema(self) -> None:
        """Prepare the backend if needed."""

    async def get(self, key: str) -> CacheRecord | None:
        """Return the record stored under key, if any."""

    async def put(self, key: str, record: CacheRecord) -> None:
        """Replace the record under key as a whole."""

    @property
    def backend(self) -> str:
        """Short name of the backend currently serving reads and writes."""


# Builds every document and returns them keyed by document name.
DocumentBuilder = Callable[[], Awaitable[Mapping[str, dict[str, Any]]]]
