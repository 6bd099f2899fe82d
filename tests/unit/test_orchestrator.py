"""State machine tests for the audit orchestrator."""
from __future__ import annotations

import pytest

from audit.types import MAX_QUESTIONS, AuditMessage, ConfidenceScores, PainPoint, Recommendation, SessionUpdate
from conftest import CountingLimiter, CountingSessions, ScriptedGenerator
from generation_gateway import GenerationGatewayError
from services.errors import (
    AuditError,
    AuditValidationError,
    PersistenceError,
    RateLimitError,
    SessionConflictError,
    SessionNotFoundError,
    StaleSessionError,
)
from services.fallback import next_fallback_question
from services.generation import TurnProposal
from services.orchestrator import AuditOrchestrator
from storage.sessions import SessionStore


def _build(cfg, clock, generator=None, limiter=None):
    sessions = CountingSessions(SessionStore(clock=clock))
    limiter = limiter or CountingLimiter()
    orch = AuditOrchestrator(cfg, sessions=sessions, limiter=limiter, generator=generator, clock=clock)
    return orch, sessions, limiter


def _advance_to(sessions, session_id: str, question_count: int, **extra):
    """Fast-forward a stored session to ``question_count`` answered questions."""

    messages = []
    for n in range(2, question_count + 1):
        messages.append(AuditMessage(role="user", content=f"answer {n - 1}", timestamp=n))
        messages.append(AuditMessage(role="assistant", content=next_fallback_question(n), timestamp=n, question_number=n))
    state = "DISCOVERY" if question_count <= 3 else "ADAPTIVE"
    return sessions.inner.update(
        session_id,
        SessionUpdate(append_messages=messages, question_count=question_count, state=state, **extra),
    )


def test_discovery_turn_without_generator(cfg, clock):
    orch, sessions, limiter = _build(cfg, clock)
    session = sessions.inner.create()

    resp = orch.handle_turn({"sessionId": session.session_id, "message": "Dental clinic"}, "1.1.1.1")

    assert resp.state == "DISCOVERY"
    assert resp.question_number == 2
    assert resp.question == next_fallback_question(2)
    assert resp.is_fixed_question is True
    assert resp.progress == 20
    assert resp.total_questions == MAX_QUESTIONS
    assert limiter.calls == [(session.session_id, False), ("1.1.1.1", True)]

    stored = sessions.inner.get(session.session_id)
    assert stored.question_count == 2
    assert [m.role for m in stored.messages] == ["assistant", "user", "assistant"]
    assert stored.messages[-1].question_number == 2


def test_missing_session_id_touches_nothing(cfg, clock):
    orch, sessions, limiter = _build(cfg, clock)
    with pytest.raises(AuditValidationError):
        orch.handle_turn({"message": "hello"}, "1.1.1.1")
    assert limiter.calls == []
    assert sessions.calls == {"create": 0, "get": 0, "update": 0}


@pytest.mark.parametrize("message", ["", "x" * 5001])
def test_message_length_bounds(cfg, clock, message):
    orch, sessions, limiter = _build(cfg, clock)
    with pytest.raises(AuditValidationError):
        orch.handle_turn({"sessionId": "s1", "message": message}, "1.1.1.1")
    assert limiter.calls == []


def test_message_at_max_length_is_accepted(cfg, clock):
    orch, sessions, _ = _build(cfg, clock)
    session = sessions.inner.create()
    resp = orch.handle_turn({"sessionId": session.session_id, "message": "x" * 5000}, "ip")
    assert resp.question_number == 2


@pytest.mark.parametrize(
    "limiter, reason",
    [(CountingLimiter(allow=False), "rate_limit"), (CountingLimiter(deny_network=True), "ip_rate_limit")],
)
def test_rate_limits_short_circuit(cfg, clock, limiter, reason):
    orch, sessions, _ = _build(cfg, clock, limiter=limiter)
    with pytest.raises(RateLimitError) as info:
        orch.handle_turn({"sessionId": "s1", "message": "hi"}, "1.1.1.1")
    assert info.value.reason == reason
    assert info.value.status_code == 429
    assert sessions.calls["get"] == 0


def test_unknown_session(cfg, clock):
    orch, _, _ = _build(cfg, clock)
    with pytest.raises(SessionNotFoundError):
        orch.handle_turn({"sessionId": "missing", "message": "hi"}, "ip")


def test_tenth_turn_forces_completion_with_fallback_recommendations(cfg, clock):
    orch, sessions, _ = _build(cfg, clock)
    session = sessions.inner.create()
    _advance_to(sessions, session.session_id, 9)

    resp = orch.handle_turn(
        {"sessionId": session.session_id, "message": "We need help with leads and invoicing"}, "ip"
    )

    assert resp.state == "COMPLETE"
    titles = [r.title for r in resp.recommendations]
    assert "Lead Management Automation" in titles
    assert "Invoice & Billing Automation" in titles
    assert len(titles) <= 5
    assert resp.next_steps

    stored = sessions.inner.get(session.session_id)
    assert stored.status == "complete"
    assert stored.question_count == 10
    assert stored.messages[-1].role == "user"


def test_forced_completion_overrides_non_stopping_generator(cfg, clock):
    generator = ScriptedGenerator(TurnProposal(next_question="More?", should_stop=False, should_escalate=False))
    orch, sessions, _ = _build(cfg, clock, generator=generator)
    session = sessions.inner.create()
    _advance_to(sessions, session.session_id, 9)

    resp = orch.handle_turn({"sessionId": session.session_id, "message": "nothing specific"}, "ip")

    assert resp.state == "COMPLETE"
    assert len(resp.recommendations) >= 1


def test_escalation_then_reuse_is_rejected(cfg, clock):
    generator = ScriptedGenerator(
        TurnProposal(should_escalate=True, escalation_reason="needs custom scope", should_stop=False)
    )
    orch, sessions, _ = _build(cfg, clock, generator=generator)
    session = sessions.inner.create()

    resp = orch.handle_turn({"sessionId": session.session_id, "message": "Complex ERP"}, "ip")
    assert resp.state == "ESCALATED"
    assert resp.reason == "needs custom scope"
    assert resp.booking_url == cfg.BOOKING_URL

    with pytest.raises(SessionConflictError) as info:
        orch.handle_turn({"sessionId": session.session_id, "message": "again"}, "ip")
    assert info.value.status_code == 400
    assert sessions.inner.get(session.session_id).escalation_reason == "needs custom scope"


def test_generator_stop_with_recommendations_completes(cfg, clock):
    rec = Recommendation(title="Lead Capture Bot", description="d", complexity="low", priority=1)
    pain = PainPoint(category="leads", description="slow follow-up", severity="high")
    generator = ScriptedGenerator(
        TurnProposal(
            should_stop=True,
            recommendations=[rec],
            derived_pain_points=[pain],
            updated_confidence=ConfidenceScores(I=1, R=1, P=0.9, M=0.8, K=0, overall=0.2),
        )
    )
    orch, sessions, _ = _build(cfg, clock, generator=generator)
    session = sessions.inner.create()
    _advance_to(sessions, session.session_id, 5)

    resp = orch.handle_turn({"sessionId": session.session_id, "message": "leads"}, "ip")

    assert resp.state == "COMPLETE"
    assert [r.title for r in resp.recommendations] == ["Lead Capture Bot"]
    assert resp.pain_points[0].category == "leads"
    assert resp.confidence == pytest.approx(0.25 + 0.25 + 0.27 + 0.16)
    assert resp.next_steps.startswith("Book a free consultation")


def test_stop_without_recommendations_keeps_asking(cfg, clock):
    generator = ScriptedGenerator(TurnProposal(should_stop=True, recommendations=[]))
    orch, sessions, _ = _build(cfg, clock, generator=generator)
    session = sessions.inner.create()
    _advance_to(sessions, session.session_id, 4)

    resp = orch.handle_turn({"sessionId": session.session_id, "message": "ok"}, "ip")
    assert resp.state == "ADAPTIVE"
    assert resp.question == next_fallback_question(5)


def test_generator_failure_on_turn_four_uses_ladder(cfg, clock):
    generator = ScriptedGenerator(GenerationGatewayError("LLM transport failed"))
    orch, sessions, _ = _build(cfg, clock, generator=generator)
    session = sessions.inner.create()
    pain = PainPoint(category="email", description="inbox overload", severity="medium")
    before = _advance_to(
        sessions,
        session.session_id,
        3,
        confidence=ConfidenceScores(I=0.6, R=0.4, P=0.3, M=0.2, K=0.0, overall=0.37),
        pain_points=[pain],
    )

    resp = orch.handle_turn({"sessionId": session.session_id, "message": "Mostly email"}, "ip")

    assert resp.state == "ADAPTIVE"
    assert resp.question_number == 4
    assert resp.question == next_fallback_question(4)
    assert resp.is_fixed_question is False
    after = sessions.inner.get(session.session_id)
    assert after.confidence.model_dump() == before.confidence.model_dump()
    assert [p.model_dump() for p in after.pain_points] == [pain.model_dump()]


def test_remote_confidence_without_question_uses_ladder(cfg, clock):
    generator = ScriptedGenerator(
        TurnProposal(updated_confidence=ConfidenceScores(I=0.8), suggested_responses=["Yes", "No"])
    )
    orch, sessions, _ = _build(cfg, clock, generator=generator)
    session = sessions.inner.create()

    resp = orch.handle_turn({"sessionId": session.session_id, "message": "Logistics"}, "ip")

    assert resp.question == next_fallback_question(2)
    assert resp.suggested_responses == ["Yes", "No"]
    assert sessions.inner.get(session.session_id).confidence.overall == pytest.approx(0.2)
    assert generator.contexts[0].question_count == 1
    assert generator.contexts[0].history[-1].content == "Logistics"


def test_persistence_failure_fails_the_turn(cfg, clock):
    orch, sessions, _ = _build(cfg, clock)
    session = sessions.inner.create()
    sessions.fail_update = True

    with pytest.raises(PersistenceError) as info:
        orch.handle_turn({"sessionId": session.session_id, "message": "hi"}, "ip")
    assert info.value.status_code == 500
    assert sessions.inner.get(session.session_id).question_count == 1


def test_concurrent_write_is_reported_as_stale(cfg, clock):
    orch, sessions, _ = _build(cfg, clock)
    session = sessions.inner.create()
    original_get = sessions.get

    def racing_get(session_id):
        loaded = original_get(session_id)
        sessions.inner.update(session_id, SessionUpdate(question_count=2))
        return loaded

    sessions.get = racing_get
    with pytest.raises(StaleSessionError):
        orch.handle_turn({"sessionId": session.session_id, "message": "hi"}, "ip")


def test_unexpected_errors_are_generic(cfg, clock):
    generator = ScriptedGenerator(KeyError("internal detail"))
    orch, sessions, _ = _build(cfg, clock, generator=generator)
    session = sessions.inner.create()

    with pytest.raises(AuditError) as info:
        orch.handle_turn({"sessionId": session.session_id, "message": "hi"}, "ip")
    assert type(info.value) is AuditError
    assert "internal detail" not in info.value.message


def test_abandoned_session_rejects_turns(cfg, clock):
    orch, sessions, _ = _build(cfg, clock)
    session = sessions.inner.create()
    sessions.inner.abandon(session.session_id)
    with pytest.raises(SessionConflictError):
        orch.handle_turn({"sessionId": session.session_id, "message": "hi"}, "ip")


def test_start_and_resume(cfg, clock):
    orch, sessions, limiter = _build(cfg, clock)

    started = orch.start_session({"contactInfo": {"name": "Ada", "email": "ada@example.com"}}, "ip")
    assert started.question_number == 1
    assert started.state == "DISCOVERY"
    assert limiter.calls == [("ip", True)]

    orch.handle_turn({"sessionId": started.session_id, "message": "Retail"}, "ip")
    resumed = orch.start_session({"resumeSessionId": started.session_id}, "ip")
    assert resumed.session_id == started.session_id
    assert resumed.question_number == 2
    assert resumed.question == next_fallback_question(2)
    assert sessions.calls["create"] == 1


def test_start_rejects_bad_contact(cfg, clock):
    orch, _, limiter = _build(cfg, clock)
    with pytest.raises(AuditValidationError):
        orch.start_session({"contactInfo": {"name": "", "email": "nope"}}, "ip")
    assert limiter.calls == []


def test_get_session_view(cfg, clock):
    orch, sessions, limiter = _build(cfg, clock)
    session = sessions.inner.create()
    view = orch.get_session(session.session_id, "ip")
    assert view.status == "active"
    assert view.total_questions == MAX_QUESTIONS
    assert limiter.calls == [("ip", True)]
    with pytest.raises(SessionNotFoundError):
        orch.get_session("missing", "ip")


def test_get_session_is_network_rate_limited(cfg, clock):
    orch, sessions, _ = _build(cfg, clock, limiter=CountingLimiter(deny_network=True))
    session = sessions.inner.create()
    with pytest.raises(RateLimitError) as exc:
        orch.get_session(session.session_id, "ip")
    assert exc.value.reason == "ip_rate_limit"
    assert sessions.calls["get"] == 0


def test_start_accepts_blank_phone(cfg, clock):
    orch, sessions, _ = _build(cfg, clock)
    started = orch.start_session(
        {"contactInfo": {"name": "Ada", "email": "ada@example.com", "phone": ""}}, "ip"
    )
    stored = sessions.inner.get(started.session_id)
    assert stored.contact_info.phone is None
    with pytest.raises(AuditValidationError):
        orch.start_session({"contactInfo": {"name": "Ada", "email": "ada@example.com", "phone": "abc"}}, "ip")
