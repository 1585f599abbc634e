"""
Error Taxonomy - Consistent error codes across the search service.

Usage:
    from dealsearch.config.errors import ErrorCode, DealSearchError

    raise DealSearchError(ErrorCode.SEARCH_FAILED, "Dispatcher crashed")
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Standardized error codes for machine-readable error responses."""

    # Search errors
    SEARCH_INVALID_QUERY = "SEARCH_INVALID_QUERY"
    SEARCH_FAILED = "SEARCH_FAILED"
    SEARCH_PARTIAL_FAILURE = "SEARCH_PARTIAL_FAILURE"

    # Storage errors
    STORAGE_CONNECTION_FAILED = "STORAGE_CONNECTION_FAILED"
    STORAGE_READ_FAILED = "STORAGE_READ_FAILED"
    STORAGE_WRITE_FAILED = "STORAGE_WRITE_FAILED"

    # Security errors
    SECURITY_RATE_LIMITED = "SECURITY_RATE_LIMITED"

    # General errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"


class DealSearchError(Exception):
    """Base exception with error code support."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(f"[{code.value}] {message}")

    def to_dict(self) -> dict[str, Any]:
        """Convert to API-friendly dictionary."""
        return {
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
        }


# Domain-specific exceptions for cleaner imports
class ValidationError(DealSearchError):
    """Rejected search parameters (query length, type, sort)."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(ErrorCode.VALIDATION_ERROR, message, details)


class SearchError(DealSearchError):
    """Search orchestration errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(ErrorCode.SEARCH_FAILED, message, details)


class EntitySearchError(DealSearchError):
    """A single entity branch of a fan-out search failed."""

    def __init__(
        self,
        entity: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.entity = entity
        super().__init__(
            ErrorCode.SEARCH_PARTIAL_FAILURE,
            message,
            {"entity": entity, **(details or {})},
        )


class StorageError(DealSearchError):
    """Record store errors."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        code: ErrorCode = ErrorCode.STORAGE_READ_FAILED,
    ) -> None:
        super().__init__(code, message, details)
