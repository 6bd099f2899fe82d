"""Configuration package for the audit interview service."""
from .settings import Settings, settings

__all__ = ["Settings", "settings"]
