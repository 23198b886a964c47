"""Core module for configuration and utilities."""

from streamvault.core.config import settings
from streamvault.core.database import Base

__all__ = [
    "settings",
    "Base",
]
