"""Deterministic question ladder and keyword recommender used without the remote generator."""
from __future__ import annotations

from typing import Iterable, List, Mapping, Sequence, Tuple, Union

from pydantic import BaseModel

from audit.types import DISCOVERY_QUESTIONS, AuditMessage, Recommendation

ADAPTIVE_POOL: Tuple[str, ...] = (
    "What tools or software do you currently use for your daily tasks?",
    "How much time do you spend on repetitive tasks each week?",
    "What would you do with an extra 10 hours per week?",
    "Have you tried automating any processes before? What happened?",
    "What's your biggest bottleneck when it comes to growth?",
    "How do you currently handle customer communication?",
    "What tasks do you wish you could delegate but can't?",
    "How do you track and manage your leads or customers?",
    "What reports or data do you need that take too long to create?",
    "If you could wave a magic wand and fix one process, what would it be?",
    "How do you handle scheduling and appointments?",
    "What administrative tasks eat up most of your time?",
)

CLOSING_QUESTION = "Is there anything else you'd like to share about your business challenges?"

MAX_RECOMMENDATIONS = 5

# (keywords, title, description, complexity, priority), checked in this order
CATEGORIES: Tuple[Tuple[Tuple[str, ...], str, str, str, int], ...] = (
    (
        ("email", "inbox", "message"),
        "Email Automation",
        "Automate email responses, sorting, and follow-ups to save hours weekly.",
        "low",
        1,
    ),
    (
        ("schedule", "calendar", "appointment", "booking"),
        "Smart Scheduling System",
        "Automated booking with calendar integration, reminders, and rescheduling.",
        "medium",
        2,
    ),
    (
        ("lead", "customer", "client", "crm"),
        "Lead Management Automation",
        "Automatic lead capture, qualification, and CRM updates.",
        "medium",
        1,
    ),
    (
        ("invoice", "payment", "billing"),
        "Invoice & Billing Automation",
        "Automated invoice generation, payment reminders, and reconciliation.",
        "medium",
        2,
    ),
    (
        ("report", "data", "spreadsheet", "excel"),
        "Automated Reporting",
        "Generate reports automatically from your data sources on schedule.",
        "medium",
        3,
    ),
    (
        ("social", "post", "content", "marketing"),
        "Content & Social Automation",
        "Schedule posts, generate content ideas, and track engagement automatically.",
        "low",
        3,
    ),
)

GENERIC_RECOMMENDATION = Recommendation(
    title="Custom Workflow Assessment",
    description=(
        "Based on your unique needs, we recommend a personalized workflow analysis "
        "to identify the best automation opportunities."
    ),
    complexity="medium",
    priority=1,
)

HistoryEntry = Union[AuditMessage, BaseModel, Mapping[str, str]]


def next_fallback_question(question_number: int) -> str:
    """Return the scripted question for ``question_number`` (1-based)."""

    number = max(1, question_number)
    if number <= len(DISCOVERY_QUESTIONS):
        return DISCOVERY_QUESTIONS[number - 1]
    index = number - len(DISCOVERY_QUESTIONS) - 1
    if index < len(ADAPTIVE_POOL):
        return ADAPTIVE_POOL[index]
    return CLOSING_QUESTION


def _user_text(history: Iterable[HistoryEntry]) -> str:
    parts: List[str] = []
    for entry in history:
        if isinstance(entry, Mapping):
            role, content = entry.get("role", ""), entry.get("content", "")
        else:
            role, content = getattr(entry, "role", ""), getattr(entry, "content", "")
        if role == "user":
            parts.append(content.lower())
    return " ".join(parts)


def fallback_recommendations(history: Sequence[HistoryEntry]) -> List[Recommendation]:
    """Map keywords in the user's answers onto canned automation recommendations."""

    text = _user_text(history)
    recommendations: List[Recommendation] = []
    for keywords, title, description, complexity, priority in CATEGORIES:
        if any(keyword in text for keyword in keywords):
            recommendations.append(
                Recommendation(
                    title=title,
                    description=description,
                    complexity=complexity,
                    priority=priority,
                )
            )
    if not recommendations:
        recommendations.append(GENERIC_RECOMMENDATION.model_copy())
    return recommendations[:MAX_RECOMMENDATIONS]


__all__ = [
    "ADAPTIVE_POOL",
    "CLOSING_QUESTION",
    "next_fallback_question",
    "fallback_recommendations",
]
