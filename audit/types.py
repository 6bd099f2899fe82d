"""Shared type definitions for the business audit interview."""
from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

AuditState = Literal["DISCOVERY", "ADAPTIVE", "COMPLETE", "ESCALATED"]
AuditStatus = Literal["active", "complete", "escalated", "abandoned"]
Severity = Literal["low", "medium", "high"]
Complexity = Literal["low", "medium", "high"]

TERMINAL_STATUSES = frozenset({"complete", "escalated"})

MAX_QUESTIONS = 10
FIXED_QUESTION_COUNT = 3

DISCOVERY_QUESTIONS = (
    "What industry do you work in?",
    "What does a typical workday look like for you right now?",
    "What is the biggest challenge or frustration you face in your business or role today?",
)


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase keys on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ConfidenceScores(BaseModel):
    I: float = Field(default=0.0, ge=0.0, le=1.0)  # industry clarity
    R: float = Field(default=0.0, ge=0.0, le=1.0)  # role/process understanding
    P: float = Field(default=0.0, ge=0.0, le=1.0)  # pain clarity
    M: float = Field(default=0.0, ge=0.0, le=1.0)  # automation mappability
    K: float = 0.0  # contradiction/noise penalty
    overall: float = 0.0


class AuditMessage(CamelModel):
    role: Literal["assistant", "user"]
    content: str
    timestamp: int
    question_number: Optional[int] = None
    is_fixed: Optional[bool] = None


class PainPoint(CamelModel):
    category: str
    description: str
    severity: Severity
    automation_potential: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class Recommendation(CamelModel):
    title: str
    description: str
    complexity: Complexity
    priority: int = Field(ge=1)
    mapped_pain_point: Optional[str] = None
    suggested_tooling: Optional[List[str]] = None
    estimated_roi: Optional[str] = Field(default=None, alias="estimatedROI")


class ContactInfo(CamelModel):
    name: str = Field(min_length=1, max_length=100)
    email: str = Field(max_length=255, pattern=r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
    phone: Optional[str] = Field(default=None, pattern=r"^[\d\s\-\+\(\)]{7,20}$")

    @field_validator("phone", mode="before")
    @classmethod
    def _blank_phone(cls, value: Optional[str]) -> Optional[str]:
        # Contact forms submit an empty field when no phone is given.
        if isinstance(value, str) and not value.strip():
            return None
        return value


class AuditSession(CamelModel):
    """Durable record of one audit interview."""

    session_id: str
    created_at: int
    updated_at: int
    expires_at: int

    state: AuditState = "DISCOVERY"
    question_count: int = Field(default=1, ge=1, le=MAX_QUESTIONS)

    contact_info: Optional[ContactInfo] = None
    messages: List[AuditMessage] = Field(default_factory=list)
    confidence: ConfidenceScores = Field(default_factory=ConfidenceScores)
    pain_points: List[PainPoint] = Field(default_factory=list)

    recommendations: Optional[List[Recommendation]] = None
    escalation_reason: Optional[str] = None
    next_steps: Optional[str] = None

    status: AuditStatus = "active"
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class SessionUpdate(BaseModel):
    """Changes applied to a session in a single store write.

    Unset fields are left untouched; ``append_messages`` extends the history.
    """

    append_messages: List[AuditMessage] = Field(default_factory=list)
    question_count: Optional[int] = None
    state: Optional[AuditState] = None
    status: Optional[AuditStatus] = None
    confidence: Optional[ConfidenceScores] = None
    pain_points: Optional[List[PainPoint]] = None
    recommendations: Optional[List[Recommendation]] = None
    escalation_reason: Optional[str] = None
    next_steps: Optional[str] = None


class RateLimitRecord(BaseModel):
    identifier: str
    timestamps: List[int] = Field(default_factory=list)  # epoch ms
    expires_at: int = 0  # epoch seconds


__all__ = [
    "AuditState",
    "AuditStatus",
    "TERMINAL_STATUSES",
    "MAX_QUESTIONS",
    "FIXED_QUESTION_COUNT",
    "DISCOVERY_QUESTIONS",
    "CamelModel",
    "ConfidenceScores",
    "AuditMessage",
    "PainPoint",
    "Recommendation",
    "ContactInfo",
    "AuditSession",
    "SessionUpdate",
    "RateLimitRecord",
]
