"""Next-question generators: the remote AI webhook and the deterministic fallback."""
from __future__ import annotations

import datetime as dt
import re
from typing import Any, Dict, List, Literal, Optional, Protocol

from pydantic import BaseModel, Field, ValidationError

from audit.types import AuditState, CamelModel, ConfidenceScores, PainPoint, Recommendation
from config.settings import Settings
from generation_gateway import GenerationGatewayError, HttpClient, post_turn
from services.fallback import next_fallback_question

_TAG_RE = re.compile(r"<[^>]*>")


class HistoryItem(BaseModel):
    role: Literal["assistant", "user"]
    content: str


class TurnContext(BaseModel):
    """Everything a generator may look at for one turn."""

    session_id: str
    message: str
    question_count: int
    next_question_number: int
    state: AuditState
    history: List[HistoryItem]
    confidence: ConfidenceScores


class TurnProposal(CamelModel):
    """What a generator suggests for the turn; unset fields mean "no change"."""

    next_question: Optional[str] = None
    suggested_responses: List[str] = Field(default_factory=list)
    updated_confidence: Optional[ConfidenceScores] = None
    derived_pain_points: Optional[List[PainPoint]] = None
    should_stop: bool = False
    recommendations: Optional[List[Recommendation]] = None
    should_escalate: bool = False
    escalation_reason: Optional[str] = None
    next_steps: Optional[str] = None
    source: Literal["remote", "fallback"] = "remote"


class GeneratorReply(CamelModel):
    """Wire shape returned by the remote generator; unknown keys are ignored."""

    updated_confidence: ConfidenceScores
    should_stop: bool
    next_question: Optional[str] = None
    suggested_responses: Optional[List[str]] = None
    derived_pain_points: Optional[List[PainPoint]] = None
    recommendations: Optional[List[Recommendation]] = None
    should_escalate: Optional[bool] = None
    escalation_reason: Optional[str] = None
    next_steps: Optional[str] = None


class TurnGenerator(Protocol):
    name: str

    def propose(self, ctx: TurnContext) -> TurnProposal: ...


def strip_tags(text: Optional[str]) -> Optional[str]:
    """Reduce generator text to plain text; blank results become ``None``."""

    if text is None:
        return None
    cleaned = _TAG_RE.sub("", text).strip()
    return cleaned or None


class FallbackTurnGenerator:
    """Scripted ladder question, no scoring changes."""

    name = "fallback"

    def propose(self, ctx: TurnContext) -> TurnProposal:
        return TurnProposal(
            next_question=next_fallback_question(ctx.next_question_number),
            source="fallback",
        )


class RemoteTurnGenerator:
    """Calls the configured webhook and validates its reply.

    Raises :class:`GenerationGatewayError` on any transport, status or schema
    problem so callers can fall back.
    """

    name = "remote"

    def __init__(self, cfg: Settings, client: Optional[HttpClient] = None) -> None:
        if not cfg.AUDIT_WEBHOOK_URL:
            raise ValueError("AUDIT_WEBHOOK_URL is required for the remote generator")
        self._cfg = cfg
        self._client = client

    def _request(self, ctx: TurnContext) -> Dict[str, Any]:
        return {
            "sessionId": ctx.session_id,
            "message": ctx.message,
            "questionNumber": ctx.question_count,
            "state": "DISCOVERY" if ctx.state == "DISCOVERY" else "ADAPTIVE",
            "conversationHistory": [item.model_dump() for item in ctx.history],
            "currentConfidence": ctx.confidence.model_dump(),
            "source": self._cfg.AUDIT_SOURCE,
            "submittedAt": dt.datetime.now(dt.timezone.utc).isoformat(),
        }

    def propose(self, ctx: TurnContext) -> TurnProposal:
        data = post_turn(
            self._cfg.AUDIT_WEBHOOK_URL,
            self._request(ctx),
            api_key=self._cfg.AUDIT_API_KEY,
            timeout_s=self._cfg.AUDIT_WEBHOOK_TIMEOUT_S,
            client=self._client,
        )
        try:
            reply = GeneratorReply.model_validate(data)
        except ValidationError as exc:
            raise GenerationGatewayError("Generator reply failed validation") from exc

        suggestions = [s for s in (strip_tags(item) for item in reply.suggested_responses or []) if s]
        return TurnProposal(
            next_question=strip_tags(reply.next_question),
            suggested_responses=suggestions,
            updated_confidence=reply.updated_confidence,
            derived_pain_points=reply.derived_pain_points,
            should_stop=reply.should_stop,
            recommendations=reply.recommendations,
            should_escalate=bool(reply.should_escalate),
            escalation_reason=reply.escalation_reason,
            next_steps=reply.next_steps,
            source="remote",
        )


def build_generator(cfg: Settings, client: Optional[HttpClient] = None) -> TurnGenerator:
    """Remote generator when a webhook is configured, otherwise the fallback."""

    if cfg.AUDIT_WEBHOOK_URL:
        return RemoteTurnGenerator(cfg, client=client)
    return FallbackTurnGenerator()


__all__ = [
    "HistoryItem",
    "TurnContext",
    "TurnProposal",
    "TurnGenerator",
    "FallbackTurnGenerator",
    "RemoteTurnGenerator",
    "build_generator",
    "strip_tags",
]
