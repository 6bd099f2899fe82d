import os
import sys
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("ENABLE_FILE_LOGS", "0")

from audit.types import AuditSession, ContactInfo, RateLimitRecord, SessionUpdate
from config.settings import Settings, settings
from services.generation import TurnContext, TurnProposal
from storage.migrate import migrate


@pytest.fixture(autouse=True)
def tmp_db(monkeypatch):
    td = tempfile.TemporaryDirectory()
    db_path = os.path.join(td.name, "test.db")
    monkeypatch.setattr(settings, "DB_PATH", db_path, raising=False)
    migrate(db_path)
    try:
        yield db_path
    finally:
        td.cleanup()


@pytest.fixture
def cfg() -> Settings:
    return Settings(_env_file=None, AUDIT_WEBHOOK_URL=None, AUDIT_API_KEY=None)


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class CountingLimiter:
    def __init__(self, allow: bool = True, deny_network: bool = False) -> None:
        self.allow = allow
        self.deny_network = deny_network
        self.calls: List[tuple] = []

    def check_and_record(self, identifier: str, is_network: bool = False) -> bool:
        self.calls.append((identifier, is_network))
        if is_network and self.deny_network:
            return False
        return self.allow


class CountingSessions:
    """Wraps a real store and counts calls per operation."""

    def __init__(self, inner) -> None:
        self.inner = inner
        self.calls: Dict[str, int] = {"create": 0, "get": 0, "update": 0}
        self.fail_update = False

    def create(self, contact_info: Optional[ContactInfo] = None) -> AuditSession:
        self.calls["create"] += 1
        return self.inner.create(contact_info)

    def get(self, session_id: str) -> Optional[AuditSession]:
        self.calls["get"] += 1
        return self.inner.get(session_id)

    def update(self, session_id: str, changes: SessionUpdate, *, expected_version=None) -> Optional[AuditSession]:
        self.calls["update"] += 1
        if self.fail_update:
            from services.errors import PersistenceError

            raise PersistenceError()
        return self.inner.update(session_id, changes, expected_version=expected_version)


class ScriptedGenerator:
    """Generator double returning queued proposals or raising queued errors."""

    name = "remote"

    def __init__(self, *replies: Any) -> None:
        self.replies = list(replies)
        self.contexts: List[TurnContext] = []

    def propose(self, ctx: TurnContext) -> TurnProposal:
        self.contexts.append(ctx)
        reply = self.replies.pop(0) if self.replies else TurnProposal()
        if isinstance(reply, Exception):
            raise reply
        return reply


class MemoryRateLimitStore:
    def __init__(self) -> None:
        self.records: Dict[str, RateLimitRecord] = {}
        self.puts = 0

    def get(self, identifier: str) -> Optional[RateLimitRecord]:
        return self.records.get(identifier)

    def put(self, record: RateLimitRecord) -> None:
        self.puts += 1
        self.records[record.identifier] = record
