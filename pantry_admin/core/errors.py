"""
Error taxonomy for the admin subsystem.

Only ``Unauthorized`` is fatal to a request. Every other failure is absorbed
by the component that hit it and reported as a ``PartialFailure`` note, so
callers can always show how many sub-operations succeeded.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class AdminError(Exception):
    """Base exception for all admin subsystem errors."""

    def __init__(
        self,
        message: str,
        error_code: str = "ADMIN_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class Unauthorized(AdminError):
    """Raised when the authorization gate rejects the caller."""

    def __init__(
        self,
        message: str = "Caller is not an administrator",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message=message, error_code="UNAUTHORIZED", details=details)


class RecordStoreError(AdminError):
    """Raised by a record store when a single operation fails."""

    def __init__(
        self,
        message: str,
        collection: str = "unknown",
        operation: str = "unknown",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code="RECORD_STORE_ERROR",
            details={**(details or {}), "collection": collection, "operation": operation}
        )
        self.collection = collection
        self.operation = operation


class IdentityNotFound(AdminError):
    """Raised by an identity provider that has no account for a user id."""

    def __init__(self, user_id: str):
        super().__init__(
            message=f"User not found in identity provider: {user_id}",
            error_code="IDENTITY_NOT_FOUND",
            details={"user_id": user_id}
        )
        self.user_id = user_id


class FailureKind(Enum):
    """Recoverable failure categories recorded in partial results."""
    COLLECTION_UNAVAILABLE = "collection_unavailable"
    RECORD_DELETE_FAILED = "record_delete_failed"
    UNKNOWN_MODEL_PRICING = "unknown_model_pricing"


@dataclass(frozen=True)
class PartialFailure:
    """A recoverable failure absorbed into a structured result."""
    kind: FailureKind
    collection: Optional[str]
    message: str

    @classmethod
    def collection_unavailable(cls, collection: Optional[str], error: BaseException) -> "PartialFailure":
        return cls(FailureKind.COLLECTION_UNAVAILABLE, collection, _describe(error))

    def describe(self) -> str:
        if self.collection:
            return f"{self.collection}: {self.message}"
        return self.message


def _describe(error: BaseException) -> str:
    return str(error) or type(error).__name__
