from __future__ import annotations

import asyncio
import json
import sqlite3
from pathlib import Path

from ghleaderboard.core.errors import PersistenceUnavailable
from ghleaderboard.core.models import CacheRecord


class SqliteCacheStore:
    """Durable cache: one row per document key, replaced as a whole on every build."""

    backend = "sqlite"

    def __init__(self, data_dir: str) -> None:
        self._db_path = Path(data_dir) / "leaderboard.db"

    def _connect(self) -> sqlite3.Connection:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self._db_path, timeout=10.0)
        conn.row_factory = sqlite3.Row
        return conn

    async def init_schema(self) -> None:
        await asyncio.to_thread(self._guarded, self._init_schema)

    async def get(self, key: str) -> CacheRecord | None:
        return await asyncio.to_thread(self._guarded, self._get, key)

    async def put(self, key: str, record: CacheRecord) -> None:
        await asyncio.to_thread(self._guarded, self._put, key, record)

    def _guarded(self, func, *args):
        try:
            return func(*args)
        except (sqlite3.Error, OSError) as exc:
            raise PersistenceUnavailable(f"SQLite cache unavailable at {self._db_path}: {exc}") from exc

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS cache_records (
                    key TEXT PRIMARY KEY,
                    built_at_ms INTEGER NOT NULL,
                    document_json TEXT NOT NULL
                );
                """
            )

    def _get(self, key: str) -> CacheRecord | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT built_at_ms, document_json FROM cache_records WHERE key = ?",
                (key,),
            ).fetchone()
        if row is None:
            return None
        return CacheRecord(
            built_at_ms=int(row["built_at_ms"]),
            document=json.loads(row["document_json"]),
        )

    def _put(self, key: str, record: CacheRecord) -> None:
        payload = json.dumps(record.document, separators=(",", ":"))
        # Single-statement upsert inside a transaction: readers see old or new, never half.
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO cache_records (key, built_at_ms, document_json)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    built_at_ms = excluded.built_at_ms,
                    document_json = excluded.document_json
                """,
                (key, record.built_at_ms, payload),
            )
