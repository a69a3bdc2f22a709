"""
Custom exceptions for the API Sniffer.

Provides structured error handling with appropriate HTTP status codes
and error details for dashboard API responses.
"""

from typing import Any, Dict, Optional


class SnifferException(Exception):
    """Base exception for the API Sniffer."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: str = "internal_error",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class ValidationError(SnifferException):
    """Raised when a query or capture record is invalid."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=400,
            error_code="validation_error",
            details=details,
        )


class UnsupportedFormatError(SnifferException):
    """Raised when an export format is not supported."""

    def __init__(self, export_format: str, supported: Optional[list] = None) -> None:
        super().__init__(
            message=f"Unsupported export format: {export_format!r}",
            status_code=400,
            error_code="unsupported_format",
            details={"format": export_format, "supported": supported or []},
        )


class PersistenceError(SnifferException):
    """Raised when reading or writing the persisted log file fails."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=500,
            error_code="persistence_error",
            details=details,
        )
