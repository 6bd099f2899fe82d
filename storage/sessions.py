"""Persistence for audit interview sessions."""
from __future__ import annotations

import logging
import sqlite3
import time
import uuid
from typing import Callable, List, Optional

from audit.types import (
    DISCOVERY_QUESTIONS,
    AuditMessage,
    AuditSession,
    AuditStatus,
    ContactInfo,
    SessionUpdate,
)
from config.settings import settings
from services.errors import PersistenceError, StaleSessionError

from .sqlite import get_conn

logger = logging.getLogger(__name__)

HOUR_MS = 60 * 60 * 1000


def _row_to_session(row) -> AuditSession:
    session = AuditSession.model_validate_json(row[0])
    return session.model_copy(update={"version": int(row[1])})


class SessionStore:
    """SQLite-backed session records with a fixed TTL measured from creation."""

    def __init__(self, db_path: Optional[str] = None, clock: Callable[[], float] = time.time) -> None:
        self._db_path = db_path
        self._clock = clock

    @property
    def db_path(self) -> str:
        return self._db_path or settings.DB_PATH

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def create(self, contact_info: Optional[ContactInfo] = None) -> AuditSession:
        """Persist a new session seeded with the first discovery question."""

        now = self._now_ms()
        session = AuditSession(
            session_id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            expires_at=now + settings.SESSION_TTL_HOURS * HOUR_MS,
            state="DISCOVERY",
            question_count=1,
            contact_info=contact_info,
            messages=[
                AuditMessage(
                    role="assistant",
                    content=DISCOVERY_QUESTIONS[0],
                    timestamp=now,
                    question_number=1,
                    is_fixed=True,
                )
            ],
        )
        try:
            with get_conn(self.db_path) as conn:
                conn.execute(
                    """INSERT INTO audit_sessions
                       (session_id, status, created_at, updated_at, expires_at, version, body)
                       VALUES (?, ?, ?, ?, ?, ?, ?)""",
                    (
                        session.session_id,
                        session.status,
                        session.created_at,
                        session.updated_at,
                        session.expires_at,
                        session.version,
                        session.model_dump_json(by_alias=True),
                    ),
                )
        except sqlite3.Error as exc:
            logger.error("Session create failed: %s", exc)
            raise PersistenceError("Failed to create audit session. Please try again.") from exc
        return session

    def _fetch(self, conn: sqlite3.Connection, session_id: str) -> Optional[AuditSession]:
        row = conn.execute(
            "SELECT body, version FROM audit_sessions WHERE session_id=? AND expires_at>?",
            (session_id, self._now_ms()),
        ).fetchone()
        return _row_to_session(row) if row else None

    def get(self, session_id: str) -> Optional[AuditSession]:
        """Return the live session for ``session_id``; expired rows read as absent."""

        try:
            with get_conn(self.db_path) as conn:
                return self._fetch(conn, session_id)
        except sqlite3.Error as exc:
            logger.error("Session read failed: %s", exc)
            raise PersistenceError() from exc

    def update(
        self,
        session_id: str,
        changes: SessionUpdate,
        *,
        expected_version: Optional[int] = None,
    ) -> Optional[AuditSession]:
        """Merge ``changes`` into the stored session and write it back.

        Returns ``None`` when the session is missing or expired. Raises
        :class:`StaleSessionError` when ``expected_version`` no longer matches
        or another writer got in between the read and the write.
        """

        try:
            with get_conn(self.db_path) as conn:
                current = self._fetch(conn, session_id)
                if current is None:
                    return None
                if expected_version is not None and current.version != expected_version:
                    raise StaleSessionError()

                fields = changes.model_dump(exclude_unset=True, exclude={"append_messages"})
                merged = AuditSession.model_validate(
                    {
                        **current.model_dump(),
                        **fields,
                        "messages": [*current.messages, *changes.append_messages],
                        "updated_at": self._now_ms(),
                        "version": current.version + 1,
                    }
                )
                cur = conn.execute(
                    """UPDATE audit_sessions
                       SET status=?, updated_at=?, version=?, body=?
                       WHERE session_id=? AND version=?""",
                    (
                        merged.status,
                        merged.updated_at,
                        merged.version,
                        merged.model_dump_json(by_alias=True),
                        session_id,
                        current.version,
                    ),
                )
                if cur.rowcount == 0:
                    raise StaleSessionError()
                return merged
        except sqlite3.Error as exc:
            logger.error("Session update failed: %s", exc)
            raise PersistenceError() from exc

    def list_by_status(self, status: AuditStatus) -> List[AuditSession]:
        """Return live sessions with ``status``, newest first."""

        try:
            with get_conn(self.db_path) as conn:
                rows = conn.execute(
                    """SELECT body, version FROM audit_sessions
                       WHERE status=? AND expires_at>?
                       ORDER BY created_at DESC""",
                    (status, self._now_ms()),
                ).fetchall()
        except sqlite3.Error as exc:
            logger.error("Session listing failed: %s", exc)
            raise PersistenceError() from exc
        return [_row_to_session(row) for row in rows]

    def abandon(self, session_id: str) -> Optional[AuditSession]:
        return self.update(session_id, SessionUpdate(status="abandoned"))

    def purge_expired(self) -> int:
        """Delete expired rows and return how many were removed."""

        try:
            with get_conn(self.db_path) as conn:
                cur = conn.execute("DELETE FROM audit_sessions WHERE expires_at<=?", (self._now_ms(),))
                return int(cur.rowcount)
        except sqlite3.Error as exc:
            logger.error("Session purge failed: %s", exc)
            raise PersistenceError() from exc


__all__ = ["SessionStore"]
