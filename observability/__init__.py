"""Observability utilities for the audit interview service."""
from .logger import log_event
from .tracing import span

__all__ = ["log_event", "span"]
