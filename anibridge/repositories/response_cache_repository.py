from __future__ import annotations

import json
import sqlite3
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import cast

from anibridge.errors import CacheWriteError
from anibridge.repositories.common import parse_timestamp, utc_now
from anibridge.repositories.database import Database


class ResponseCacheRepository:
    """SQLite key/value store with a per-entry expiry.

    Every call opens its own connection, so concurrent callers on different
    keys never share state; ``set`` is an upsert.
    """

    def __init__(self, db: Database, *, clock: Callable[[], datetime] = utc_now) -> None:
        self._db = db
        self._clock = clock

    def get(self, key: str) -> object | None:
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT value_json, expires_at
                FROM response_cache
                WHERE cache_key = ?
                """,
                (key,),
            ).fetchone()

        if row is None:
            return None
        expires_at = parse_timestamp(row["expires_at"])
        if expires_at is None or self._clock() >= expires_at:
            return None

        raw_value = row["value_json"]
        if not isinstance(raw_value, str):
            return None
        try:
            return cast(object, json.loads(raw_value))
        except json.JSONDecodeError:
            return None

    def set(self, key: str, value: object, ttl_seconds: int) -> None:
        now = self._clock()
        expires_at = now + timedelta(seconds=max(0, ttl_seconds))
        try:
            value_json = json.dumps(value, sort_keys=True, ensure_ascii=True)
        except (TypeError, ValueError) as exc:
            raise CacheWriteError(
                f"value for cache key {key!r} is not JSON serializable",
                cache_key=key,
            ) from exc

        try:
            with self._db.connection() as conn:
                conn.execute(
                    """
                    INSERT INTO response_cache (cache_key, value_json, expires_at, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(cache_key) DO UPDATE SET
                        value_json = excluded.value_json,
                        expires_at = excluded.expires_at,
                        updated_at = excluded.updated_at
                    """,
                    (key, value_json, _to_iso(expires_at), _to_iso(now)),
                )
        except sqlite3.Error as exc:
            raise CacheWriteError(f"failed to store cache key {key!r}", cache_key=key) from exc

    def purge_expired(self) -> int:
        with self._db.connection() as conn:
            cursor = conn.execute(
                "DELETE FROM response_cache WHERE expires_at <= ?",
                (_to_iso(self._clock()),),
            )
            return cursor.rowcount

    def count(self) -> int:
        with self._db.connection() as conn:
            row = conn.execute("SELECT COUNT(*) AS total FROM response_cache").fetchone()
        return int(row["total"]) if row is not None else 0


def _to_iso(value: datetime) -> str:
    # Fixed-width timestamps keep SQL string comparison in chronological order.
    return value.isoformat(timespec="microseconds")
