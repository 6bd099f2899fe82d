"""Pydantic schemas for the audit interview API."""
from __future__ import annotations

from typing import List, Literal, Optional, Union

from pydantic import Field

from audit.types import (
    AuditMessage,
    AuditState,
    AuditStatus,
    CamelModel,
    ConfidenceScores,
    ContactInfo,
    PainPoint,
    Recommendation,
)


class TurnReq(CamelModel):
    session_id: str = Field(min_length=1)
    message: str = Field(min_length=1)


class StartReq(CamelModel):
    resume_session_id: Optional[str] = Field(default=None, min_length=1)
    contact_info: Optional[ContactInfo] = None


class StartResp(CamelModel):
    session_id: str
    question: str
    question_number: int
    total_questions: int
    is_fixed_question: bool
    state: AuditState


class ContinueResp(CamelModel):
    session_id: str
    question: str
    question_number: int
    total_questions: int
    is_fixed_question: bool
    state: Literal["DISCOVERY", "ADAPTIVE"]
    progress: int = Field(ge=0, le=100)
    suggested_responses: List[str] = Field(default_factory=list)


class CompleteResp(CamelModel):
    session_id: str
    state: Literal["COMPLETE"] = "COMPLETE"
    pain_points: List[PainPoint] = Field(default_factory=list)
    recommendations: List[Recommendation] = Field(default_factory=list)
    next_steps: str
    confidence: float


class EscalatedResp(CamelModel):
    session_id: str
    state: Literal["ESCALATED"] = "ESCALATED"
    reason: str
    message: str
    booking_url: str


TurnResp = Union[ContinueResp, CompleteResp, EscalatedResp]


class SessionView(CamelModel):
    """Read-only projection of a stored session."""

    session_id: str
    state: AuditState
    status: AuditStatus
    question_count: int
    total_questions: int
    messages: List[AuditMessage]
    confidence: ConfidenceScores
    pain_points: List[PainPoint]
    recommendations: Optional[List[Recommendation]] = None
    escalation_reason: Optional[str] = None
    next_steps: Optional[str] = None
    created_at: int
    expires_at: int
