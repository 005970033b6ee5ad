"""Core app configuration and storage."""

from app.core.config import get_settings, settings
from app.core.storage import get_engine, get_store

__all__ = ["get_settings", "settings", "get_engine", "get_store"]
