"""Tests for the SQLite migration and write helpers."""
from __future__ import annotations

import json
import os
import sqlite3
import tempfile

import pytest

from audit.types import RateLimitRecord
from config.settings import settings
from storage.migrate import migrate
from storage.rate_limits import RateLimitStore
from storage.sessions import SessionStore


@pytest.fixture()
def temp_db(monkeypatch: pytest.MonkeyPatch):
    """Provide a temporary database path for each test."""

    with tempfile.TemporaryDirectory() as td:
        db_path = os.path.join(td, "nested", "test.db")
        monkeypatch.setattr(settings, "DB_PATH", db_path, raising=False)
        yield db_path


def test_migrate_is_idempotent(temp_db: str):
    migrate(temp_db)
    migrate(temp_db)
    assert os.path.exists(temp_db)

    with sqlite3.connect(temp_db) as conn:
        tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
    assert {"audit_sessions", "rate_limits"} <= tables


def test_session_row_layout(temp_db: str):
    migrate(temp_db)
    session = SessionStore().create()

    with sqlite3.connect(temp_db) as conn:
        row = conn.execute(
            "SELECT status, version, expires_at, body FROM audit_sessions WHERE session_id=?",
            (session.session_id,),
        ).fetchone()
    status, version, expires_at, body = row
    assert (status, version, expires_at) == ("active", 0, session.expires_at)
    stored = json.loads(body)
    assert stored["sessionId"] == session.session_id
    assert stored["questionCount"] == 1
    assert stored["messages"][0]["isFixed"] is True


def test_rate_limit_upsert(temp_db: str):
    migrate(temp_db)
    store = RateLimitStore(clock=lambda: 1_000.0)
    store.put(RateLimitRecord(identifier="ip", timestamps=[1], expires_at=1_060))
    store.put(RateLimitRecord(identifier="ip", timestamps=[1, 2], expires_at=1_061))

    assert store.get("ip").timestamps == [1, 2]
    with sqlite3.connect(temp_db) as conn:
        assert conn.execute("SELECT COUNT(*) FROM rate_limits").fetchone()[0] == 1

    expired = RateLimitStore(clock=lambda: 2_000.0)
    assert expired.get("ip") is None
    assert expired.purge_expired() == 1
