from __future__ import annotations

import logging

from ghleaderboard.adapters.storage.memory import InMemoryCacheStore
from ghleaderboard.core.errors import PersistenceUnavailable
from ghleaderboard.core.interfaces import CacheStore
from ghleaderboard.core.models import CacheRecord


class DegradingCacheStore:
    """Serve from the durable store until it fails, then from memory for the rest of the run."""

    def __init__(self, primary: CacheStore, fallback: CacheStore | None = None) -> None:
        self._logger = logging.getLogger(self.__class__.__name__)
        self._primary = primary
        self._fallback = fallback or InMemoryCacheStore()
        self._degraded = False

    @property
    def degraded(self) -> bool:
        return self._degraded

    @property
    def backend(self) -> str:
        return self._fallback.backend if self._degraded else self._primary.backend

    async def init_schema(self) -> None:
        if not self._degraded:
            try:
                await self._primary.init_schema()
                return
            except PersistenceUnavailable as exc:
                self._degrade(exc)
        await self._fallback.init_schema()

    async def get(self, key: str) -> CacheRecord | None:
        if not self._degraded:
            try:
                return await self._primary.get(key)
            except PersistenceUnavailable as exc:
                self._degrade(exc)
        return await self._fallback.get(key)

    async def put(self, key: str, record: CacheRecord) -> None:
        if not self._degraded:
            try:
                await self._primary.put(key, record)
                return
            except PersistenceUnavailable as exc:
                self._degrade(exc)
        await self._fallback.put(key, record)

    def _degrade(self, exc: PersistenceUnavailable) -> None:
        self._degraded = True
        self._logger.warning(
            "Durable cache unavailable; using in-process cache for this run",
            extra={
                "primary": self._primary.backend,
                "fallback": self._fallback.backend,
                "error": str(exc),
            },
        )
