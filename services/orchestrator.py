"""Per-turn state machine for the business audit interview.

Each call to :meth:`AuditOrchestrator.handle_turn` is one stateless
request/response cycle::

    validate -> rate limit (session, network) -> load -> generate -> persist -> respond

Steps run strictly in order and stop at the first failure. The remote
generator is the only step whose failure is recovered locally (by the
fallback ladder); everything else surfaces as an :class:`AuditError`.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Protocol

from pydantic import BaseModel, ValidationError

from api.schemas import (
    CompleteResp,
    ContinueResp,
    EscalatedResp,
    SessionView,
    StartReq,
    StartResp,
    TurnReq,
    TurnResp,
)
from audit.types import (
    FIXED_QUESTION_COUNT,
    MAX_QUESTIONS,
    AuditMessage,
    AuditSession,
    AuditState,
    ContactInfo,
    SessionUpdate,
)
from config.settings import Settings
from generation_gateway import GenerationGatewayError
from observability import log_event, span
from services.confidence import should_stop, with_overall
from services.errors import (
    AuditError,
    AuditValidationError,
    PersistenceError,
    RateLimitError,
    SessionConflictError,
    SessionNotFoundError,
)
from services.fallback import fallback_recommendations, next_fallback_question
from services.generation import (
    FallbackTurnGenerator,
    HistoryItem,
    TurnContext,
    TurnGenerator,
    TurnProposal,
)

logger = logging.getLogger(__name__)

TURN_PATH = "/api/audit/message"
SESSION_PATH = "/api/audit/session"

DEFAULT_ESCALATION_REASON = "Your needs require personalized attention."
DEFAULT_NEXT_STEPS = "Book a free consultation to get started with your automation journey."
FORCED_NEXT_STEPS = "Book a free consultation to discuss these recommendations in detail."
ESCALATION_MESSAGE = (
    "Based on the information provided, we want to make sure you receive the best possible "
    "guidance. A member of our team will reach out to you directly to better understand your "
    "needs and recommend the right solution."
)

SESSION_RATE_MESSAGE = "You're sending messages too quickly. Please wait a moment."
NETWORK_RATE_MESSAGE = "Too many requests from your network. Please wait a moment."


class SessionBackend(Protocol):
    def create(self, contact_info: Optional[ContactInfo] = None) -> AuditSession: ...

    def get(self, session_id: str) -> Optional[AuditSession]: ...

    def update(
        self, session_id: str, changes: SessionUpdate, *, expected_version: Optional[int] = None
    ) -> Optional[AuditSession]: ...


class Limiter(Protocol):
    def check_and_record(self, identifier: str, is_network: bool = False) -> bool: ...


class TurnOutcome(BaseModel):
    """Decision reached for one turn before it is persisted."""

    state: AuditState
    question: Optional[str] = None
    suggested_responses: List[str] = []
    recommendations: Optional[list] = None
    escalation_reason: Optional[str] = None
    next_steps: Optional[str] = None

    @property
    def terminal(self) -> bool:
        return self.state in ("COMPLETE", "ESCALATED")


def _validation_details(exc: ValidationError) -> List[Dict[str, Any]]:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]


class AuditOrchestrator:
    """Composes rate limiting, session storage and question generation per turn."""

    def __init__(
        self,
        cfg: Settings,
        sessions: SessionBackend,
        limiter: Limiter,
        generator: Optional[TurnGenerator] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._cfg = cfg
        self._sessions = sessions
        self._limiter = limiter
        self._generator = generator
        self._fallback = FallbackTurnGenerator()
        self._clock = clock

    # -- public operations -------------------------------------------------

    def handle_turn(self, payload: Any, client_ip: str) -> TurnResp:
        """Process one user answer and return the next question or a terminal result."""

        session_id = payload.get("sessionId") if isinstance(payload, dict) else None
        try:
            return self._turn(payload, client_ip)
        except AuditError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception("Audit message processing failed session=%s", session_id)
            log_event("turn_failed", session_id, level=logging.ERROR, path=TURN_PATH, error=type(exc).__name__)
            raise AuditError() from exc

    def start_session(self, payload: Any, client_ip: str) -> StartResp:
        """Create a new session, or resume an active one by id."""

        try:
            return self._start(payload, client_ip)
        except AuditError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception("Audit session creation failed")
            log_event("session_failed", None, level=logging.ERROR, path=SESSION_PATH, error=type(exc).__name__)
            raise AuditError("Failed to create audit session. Please try again.") from exc

    def get_session(self, session_id: str, client_ip: str) -> SessionView:
        """Read-only view of a session, terminal ones included."""

        if not self._limiter.check_and_record(client_ip, is_network=True):
            log_event("rate_limited", session_id, level=logging.WARNING, path=SESSION_PATH, reason="ip_rate_limit")
            raise RateLimitError("Too many requests. Please wait a moment and try again.", "ip_rate_limit")
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError()
        return SessionView(
            session_id=session.session_id,
            state=session.state,
            status=session.status,
            question_count=session.question_count,
            total_questions=MAX_QUESTIONS,
            messages=session.messages,
            confidence=session.confidence,
            pain_points=session.pain_points,
            recommendations=session.recommendations,
            escalation_reason=session.escalation_reason,
            next_steps=session.next_steps,
            created_at=session.created_at,
            expires_at=session.expires_at,
        )

    # -- turn pipeline -----------------------------------------------------

    def _validate_turn(self, payload: Any) -> TurnReq:
        if not isinstance(payload, dict):
            raise AuditValidationError(details=[{"loc": [], "msg": "Request body must be a JSON object", "type": "type_error"}])
        try:
            req = TurnReq.model_validate(payload)
        except ValidationError as exc:
            raise AuditValidationError(details=_validation_details(exc)) from exc
        if len(req.message) > self._cfg.MAX_MESSAGE_CHARS:
            raise AuditValidationError(
                details=[
                    {
                        "loc": ["message"],
                        "msg": f"Answer too long (max {self._cfg.MAX_MESSAGE_CHARS} characters)",
                        "type": "string_too_long",
                    }
                ]
            )
        return req

    def _enforce_limits(self, session_id: str, client_ip: str) -> None:
        if not self._limiter.check_and_record(session_id):
            log_event("rate_limited", session_id, level=logging.WARNING, path=TURN_PATH, reason="rate_limit")
            raise RateLimitError(SESSION_RATE_MESSAGE, "rate_limit")
        if not self._limiter.check_and_record(client_ip, is_network=True):
            log_event("rate_limited", session_id, level=logging.WARNING, path=TURN_PATH, reason="ip_rate_limit")
            raise RateLimitError(NETWORK_RATE_MESSAGE, "ip_rate_limit")

    def _load_open_session(self, session_id: str) -> AuditSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError()
        if session.status != "active":
            raise SessionConflictError()
        return session

    def _propose(self, ctx: TurnContext) -> TurnProposal:
        if self._generator is None:
            return self._fallback.propose(ctx)
        try:
            return self._generator.propose(ctx)
        except GenerationGatewayError as exc:
            log_event(
                "generator_fallback",
                ctx.session_id,
                level=logging.WARNING,
                path=TURN_PATH,
                source=self._generator.name,
                reason=str(exc),
            )
            return self._fallback.propose(ctx)

    def _decide(self, proposal: TurnProposal, next_number: int, history: List[HistoryItem]) -> TurnOutcome:
        continuing: AuditState = "DISCOVERY" if next_number <= FIXED_QUESTION_COUNT else "ADAPTIVE"

        if proposal.should_escalate:
            outcome = TurnOutcome(
                state="ESCALATED",
                escalation_reason=proposal.escalation_reason or DEFAULT_ESCALATION_REASON,
            )
        elif proposal.should_stop and proposal.recommendations:
            outcome = TurnOutcome(
                state="COMPLETE",
                recommendations=proposal.recommendations,
                next_steps=proposal.next_steps or DEFAULT_NEXT_STEPS,
            )
        else:
            outcome = TurnOutcome(
                state=continuing,
                question=proposal.next_question or next_fallback_question(next_number),
                suggested_responses=proposal.suggested_responses,
            )

        if next_number >= MAX_QUESTIONS and not outcome.terminal:
            outcome = TurnOutcome(
                state="COMPLETE",
                recommendations=fallback_recommendations(history),
                next_steps=FORCED_NEXT_STEPS,
            )
        return outcome

    def _turn(self, payload: Any, client_ip: str) -> TurnResp:
        req = self._validate_turn(payload)
        events: List[Dict[str, Any]] = []

        with span(events, "rate_limit"):
            self._enforce_limits(req.session_id, client_ip)

        with span(events, "load"):
            session = self._load_open_session(req.session_id)

        next_number = session.question_count + 1
        is_fixed = next_number <= FIXED_QUESTION_COUNT
        history = [HistoryItem(role=m.role, content=m.content) for m in session.messages]
        history.append(HistoryItem(role="user", content=req.message))

        ctx = TurnContext(
            session_id=session.session_id,
            message=req.message,
            question_count=session.question_count,
            next_question_number=next_number,
            state=session.state,
            history=history,
            confidence=session.confidence,
        )
        with span(events, "generate"):
            proposal = self._propose(ctx)

        confidence = session.confidence
        pain_points = session.pain_points
        if proposal.updated_confidence is not None:
            confidence = with_overall(proposal.updated_confidence)
        if proposal.derived_pain_points is not None:
            pain_points = proposal.derived_pain_points

        outcome = self._decide(proposal, next_number, history)
        status = {"COMPLETE": "complete", "ESCALATED": "escalated"}.get(outcome.state, "active")

        now_ms = int(self._clock() * 1000)
        messages = [AuditMessage(role="user", content=req.message, timestamp=now_ms)]
        if not outcome.terminal:
            messages.append(
                AuditMessage(
                    role="assistant",
                    content=outcome.question,
                    timestamp=now_ms,
                    question_number=next_number,
                    is_fixed=is_fixed,
                )
            )
        changes: Dict[str, Any] = {
            "append_messages": messages,
            "question_count": next_number,
            "state": outcome.state,
            "status": status,
            "confidence": confidence,
            "pain_points": pain_points,
        }
        if outcome.state == "COMPLETE":
            changes["recommendations"] = outcome.recommendations
            changes["next_steps"] = outcome.next_steps
        elif outcome.state == "ESCALATED":
            changes["escalation_reason"] = outcome.escalation_reason

        with span(events, "persist"):
            updated = self._sessions.update(
                session.session_id,
                SessionUpdate(**changes),
                expected_version=session.version,
            )
        if updated is None:
            raise PersistenceError()

        log_event(
            "turn_processed",
            session.session_id,
            path=TURN_PATH,
            question=next_number,
            state=outcome.state,
            source=proposal.source,
            stop_ready=should_stop(confidence),
            spans=events,
        )
        return self._respond(updated, outcome, next_number, is_fixed)

    def _respond(self, session: AuditSession, outcome: TurnOutcome, next_number: int, is_fixed: bool) -> TurnResp:
        if outcome.state == "ESCALATED":
            return EscalatedResp(
                session_id=session.session_id,
                reason=outcome.escalation_reason or DEFAULT_ESCALATION_REASON,
                message=ESCALATION_MESSAGE,
                booking_url=self._cfg.BOOKING_URL,
            )
        if outcome.state == "COMPLETE":
            return CompleteResp(
                session_id=session.session_id,
                pain_points=session.pain_points,
                recommendations=session.recommendations or [],
                next_steps=outcome.next_steps or DEFAULT_NEXT_STEPS,
                confidence=session.confidence.overall,
            )
        return ContinueResp(
            session_id=session.session_id,
            question=outcome.question or next_fallback_question(next_number),
            question_number=next_number,
            total_questions=MAX_QUESTIONS,
            is_fixed_question=is_fixed,
            state=outcome.state,
            progress=round(next_number / MAX_QUESTIONS * 100),
            suggested_responses=outcome.suggested_responses,
        )

    # -- session start -----------------------------------------------------

    def _start(self, payload: Any, client_ip: str) -> StartResp:
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            raise AuditValidationError(details=[{"loc": [], "msg": "Request body must be a JSON object", "type": "type_error"}])
        try:
            req = StartReq.model_validate(payload)
        except ValidationError as exc:
            raise AuditValidationError(details=_validation_details(exc)) from exc

        if not self._limiter.check_and_record(client_ip, is_network=True):
            log_event("rate_limited", None, level=logging.WARNING, path=SESSION_PATH, reason="ip_rate_limit")
            raise RateLimitError("Too many requests. Please wait a moment and try again.", "ip_rate_limit")

        if req.resume_session_id:
            existing = self._sessions.get(req.resume_session_id)
            if existing is not None and existing.status == "active":
                last_question = next(
                    (m.content for m in reversed(existing.messages) if m.role == "assistant"),
                    next_fallback_question(1),
                )
                log_event("session_resumed", existing.session_id, path=SESSION_PATH, question=existing.question_count)
                return StartResp(
                    session_id=existing.session_id,
                    question=last_question,
                    question_number=existing.question_count,
                    total_questions=MAX_QUESTIONS,
                    is_fixed_question=existing.question_count <= FIXED_QUESTION_COUNT,
                    state=existing.state,
                )

        session = self._sessions.create(req.contact_info)
        log_event(
            "session_created",
            session.session_id,
            path=SESSION_PATH,
            has_contact_info=req.contact_info is not None,
        )
        return StartResp(
            session_id=session.session_id,
            question=next_fallback_question(1),
            question_number=1,
            total_questions=MAX_QUESTIONS,
            is_fixed_question=True,
            state="DISCOVERY",
        )


__all__ = ["AuditOrchestrator", "TurnOutcome", "SessionBackend", "Limiter"]
