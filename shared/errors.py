"""
Shared error handling for the Event Context layer.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response format."""

    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class EventContextException(Exception):
    """Base exception for Event Context components."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            code=self.code,
            message=self.message,
            details=self.details
        )


class StorageError(EventContextException):
    """Durable storage medium errors (quota, disabled storage, I/O)."""

    def __init__(self, message: str = "Storage error", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORAGE_ERROR", message, details)


class RoleLookupError(EventContextException):
    """Role lookup request failed or was rejected."""

    def __init__(
        self,
        message: str = "Role lookup failed",
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.status_code = status_code
        details = dict(details or {})
        if status_code is not None:
            details.setdefault("status_code", status_code)
        super().__init__("ROLE_LOOKUP_ERROR", message, details)

    @property
    def is_access_denied(self) -> bool:
        """True when the server answered "not a member" or "forbidden"."""
        return self.status_code in (403, 404)


class BroadcastError(EventContextException):
    """Cross-context broadcast channel errors."""

    def __init__(self, message: str = "Broadcast error", details: Optional[Dict[str, Any]] = None):
        super().__init__("BROADCAST_ERROR", message, details)


class SessionError(EventContextException):
    """Session lifecycle errors."""

    def __init__(self, message: str = "Session error", details: Optional[Dict[str, Any]] = None):
        super().__init__("SESSION_ERROR", message, details)
