"""
Shared error types for the client cache layer.

Storage-side errors are raised by substrates and absorbed at the cache
boundary. Only FetchError ever reaches a consumer, and then only as a message.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error payload exposed to consumers."""

    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class CacheLayerException(Exception):
    """Base exception for the cache layer."""

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


class StorageUnavailableError(CacheLayerException):
    """No usable storage in this execution context."""

    def __init__(self, message: str = "Storage unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORAGE_UNAVAILABLE", message, details)


class QuotaExceededError(CacheLayerException):
    """Storage write rejected by a size limit."""

    def __init__(self, message: str = "Storage quota exceeded", details: Optional[Dict[str, Any]] = None):
        super().__init__("QUOTA_EXCEEDED", message, details)


class CorruptEntryError(CacheLayerException):
    """Persisted entry failed to parse or validate."""

    def __init__(self, key: str, message: str = "Corrupt cache entry", details: Optional[Dict[str, Any]] = None):
        super().__init__("CORRUPT_ENTRY", f"{key}: {message}", details)


class IdentityMismatchError(CacheLayerException):
    """Entry belongs to a different identity than the one requested."""

    def __init__(self, message: str = "Cached entry belongs to another identity", details: Optional[Dict[str, Any]] = None):
        super().__init__("IDENTITY_MISMATCH", message, details)


class FetchError(CacheLayerException):
    """Network fetch failed; the only error class surfaced to consumers."""

    def __init__(self, resource: str, message: str = "Failed to load", details: Optional[Dict[str, Any]] = None):
        self.resource = resource
        super().__init__("FETCH_FAILED", message, details)
