import json
import logging

import pytest

from observability import log_event, logger as logger_module, span


@pytest.fixture()
def emitted(monkeypatch):
    captured = []
    monkeypatch.setattr(logger_module, "ENABLE_FILE_LOGS", True)
    monkeypatch.setattr(logger_module, "_ensure_handlers", lambda: None)
    monkeypatch.setattr(logger_module, "_emit", lambda level, msg, is_json: captured.append((level, msg, is_json)))
    return captured


def test_log_event_human_line(emitted):
    log_event("turn_processed", "s1", question=4, state="ADAPTIVE", ignored="x")
    human = [msg for _, msg, is_json in emitted if not is_json]
    assert human == ["session=s1 kind=turn_processed question=4 state=ADAPTIVE"]


def test_log_event_json_line(emitted):
    log_event("generator_fallback", "s2", level=logging.WARNING, reason="timeout")

    assert [c[2] for c in emitted] == [False, True]
    payload = json.loads(emitted[1][1])
    assert payload["kind"] == "generator_fallback"
    assert payload["session_id"] == "s2"
    assert payload["reason"] == "timeout"
    assert emitted[1][0] == logging.WARNING


def test_span_records_elapsed():
    events = []
    with span(events, "store"):
        pass
    assert len(events) == 1
    assert events[0]["span"] == "store"
    assert events[0]["ms"] >= 0
