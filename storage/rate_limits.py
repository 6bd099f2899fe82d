"""Persistence for sliding-window rate limit records."""
from __future__ import annotations

import json
import sqlite3
import time
from typing import Callable, Optional

from audit.types import RateLimitRecord
from config.settings import settings
from services.errors import PersistenceError

from .sqlite import get_conn


class RateLimitStore:
    """SQLite table of request timestamps keyed by identifier."""

    def __init__(self, db_path: Optional[str] = None, clock: Callable[[], float] = time.time) -> None:
        self._db_path = db_path
        self._clock = clock

    @property
    def db_path(self) -> str:
        return self._db_path or settings.DB_PATH

    def get(self, identifier: str) -> Optional[RateLimitRecord]:
        try:
            with get_conn(self.db_path) as conn:
                row = conn.execute(
                    "SELECT timestamps, expires_at FROM rate_limits WHERE identifier=? AND expires_at>?",
                    (identifier, int(self._clock())),
                ).fetchone()
        except sqlite3.Error as exc:
            raise PersistenceError("Rate limit store unavailable") from exc
        if row is None:
            return None
        return RateLimitRecord(identifier=identifier, timestamps=json.loads(row[0]), expires_at=int(row[1]))

    def put(self, record: RateLimitRecord) -> None:
        try:
            with get_conn(self.db_path) as conn:
                conn.execute(
                    """INSERT INTO rate_limits (identifier, timestamps, expires_at)
                       VALUES (?, ?, ?)
                       ON CONFLICT(identifier) DO UPDATE
                       SET timestamps=excluded.timestamps, expires_at=excluded.expires_at""",
                    (record.identifier, json.dumps(record.timestamps), record.expires_at),
                )
        except sqlite3.Error as exc:
            raise PersistenceError("Rate limit store unavailable") from exc

    def purge_expired(self) -> int:
        try:
            with get_conn(self.db_path) as conn:
                cur = conn.execute("DELETE FROM rate_limits WHERE expires_at<=?", (int(self._clock()),))
                return int(cur.rowcount)
        except sqlite3.Error as exc:
            raise PersistenceError("Rate limit store unavailable") from exc


__all__ = ["RateLimitStore"]
