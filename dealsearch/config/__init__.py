"""
Configuration - Application settings and error taxonomy.
"""

from .errors import (
    DealSearchError,
    EntitySearchError,
    ErrorCode,
    SearchError,
    StorageError,
    ValidationError,
)
from .settings import Settings, get_settings

__all__ = [
    # Settings
    "Settings",
    "get_settings",
    # Errors
    "ErrorCode",
    "DealSearchError",
    "ValidationError",
    "SearchError",
    "EntitySearchError",
    "StorageError",
]
