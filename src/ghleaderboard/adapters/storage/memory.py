from __future__ import annotations

from ghleaderboard.core.models import CacheRecord


class InMemoryCacheStore:
    """Process-local cache. Lost on restart; used as fallback and in tests."""

    backend = "memory"

    def __init__(self, data_dir: str | None = None) -> None:
        # data_dir is accepted so the adapter registry can build any store the same way.
        self._records: dict[str, CacheRecord] = {}

    async def init_schema(self) -> None:
        return None

    async def get(self, key: str) -> CacheRecord | None:
        return self._records.get(key)

    async def put(self, key: str, record: CacheRecord) -> None:
        self._records[key] = record

    def keys(self) -> list[str]:
        return sorted(self._records)
