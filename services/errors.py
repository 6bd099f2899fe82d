"""Domain errors raised by the audit services and mapped to HTTP by the API layer."""
from __future__ import annotations

from typing import Any, Dict, List, Optional


class AuditError(RuntimeError):  # Base audit error
    status_code = 500
    public_message = "Failed to process your response. Please try again."

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.public_message)
        self.message = message or self.public_message

    def body(self) -> Dict[str, Any]:
        return {"error": self.message}


class AuditValidationError(AuditError):
    status_code = 400
    public_message = "Invalid request data"

    def __init__(self, message: Optional[str] = None, details: Optional[List[Dict[str, Any]]] = None) -> None:
        super().__init__(message)
        self.details = details or []

    def body(self) -> Dict[str, Any]:
        return {"error": self.message, "details": self.details}


class RateLimitError(AuditError):
    status_code = 429

    def __init__(self, message: str, reason: str) -> None:
        super().__init__(message)
        self.reason = reason

    def body(self) -> Dict[str, Any]:
        return {"error": self.message, "reason": self.reason}


class SessionNotFoundError(AuditError):
    status_code = 404
    public_message = "Session not found. Please start a new audit."


class SessionConflictError(AuditError):
    status_code = 400
    public_message = "This audit session has already ended."


class StaleSessionError(SessionConflictError):
    status_code = 409
    public_message = "This audit session was updated by another request. Please try again."


class PersistenceError(AuditError):
    status_code = 500


__all__ = [
    "AuditError",
    "AuditValidationError",
    "RateLimitError",
    "SessionNotFoundError",
    "SessionConflictError",
    "StaleSessionError",
    "PersistenceError",
]
