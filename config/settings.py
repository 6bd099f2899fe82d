"""Application settings and configuration management."""
from __future__ import annotations

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or defaults."""

    DB_PATH: str = Field(default="data/audit.db")

    AUDIT_WEBHOOK_URL: Optional[str] = None
    AUDIT_API_KEY: Optional[str] = None
    AUDIT_WEBHOOK_TIMEOUT_S: float = Field(default=15.0, gt=0.0)
    AUDIT_SOURCE: str = "website-audit"

    SESSION_TTL_HOURS: int = Field(default=72, ge=1)
    MAX_MESSAGE_CHARS: int = Field(default=5000, ge=1)
    BOOKING_URL: str = "/#booking"

    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_WINDOW_S: int = Field(default=60, ge=1)
    RATE_LIMIT_SESSION_MAX: int = Field(default=10, ge=1)
    RATE_LIMIT_NETWORK_MAX: int = Field(default=20, ge=1)
    CIRCUIT_BREAKER_THRESHOLD: int = Field(default=5, ge=1)
    CIRCUIT_BREAKER_TIMEOUT_S: int = Field(default=60, ge=1)

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", validate_assignment=True)


settings = Settings()
