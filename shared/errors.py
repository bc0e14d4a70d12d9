"""
Shared error handling for the Clinic API.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field

from shared.logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class ClinicApiException(Exception):
    """Base exception for Clinic API services."""

    status_code: int = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id_var.get(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(ClinicApiException):
    """Validation-related errors."""

    status_code = 422

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class NotFoundError(ClinicApiException):
    """Requested resource does not exist."""

    status_code = 404

    def __init__(self, message: str = "Resource not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class CacheError(ClinicApiException):
    """
    Base class for cache layer failures.

    Cache errors never reach an HTTP caller; they are raised and handled
    inside the caching package and only surface in logs and metrics.
    """

    status_code = 500


class StoreUnavailableError(CacheError):
    """No key-value store is configured."""

    def __init__(self, message: str = "Key-value store not configured", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORE_UNAVAILABLE", message, details)


class TransientStoreError(CacheError):
    """A single store operation failed (network, timeout or server error)."""

    def __init__(self, operation: str, message: str = "Store operation failed", details: Optional[Dict[str, Any]] = None):
        self.operation = operation
        super().__init__("TRANSIENT_STORE_ERROR", f"{operation}: {message}", details)


class SerializationError(CacheError):
    """A cached payload could not be encoded or decoded."""

    def __init__(self, message: str = "Cache payload could not be decoded", details: Optional[Dict[str, Any]] = None):
        super().__init__("SERIALIZATION_ERROR", message, details)
