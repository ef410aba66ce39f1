"""Custom exceptions for the CatalogSync pipeline.

Defines specific exception types for better error handling and reporting.
Most of them are caught close to where they are raised and turned into
counters; only connection failures abort a run.
"""

from typing import Any, Dict, Optional


class CatalogSyncError(Exception):
    """Base exception for CatalogSync errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        """Initialize exception.

        Args:
            message: Human-readable error message
            details: Additional error details for debugging
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class MalformedRecordError(CatalogSyncError):
    """Raised when an input line cannot be parsed into a record."""

    def __init__(self, path: str, line_number: int, error: str):
        message = f"Malformed record at {path}:{line_number}: {error}"
        super().__init__(
            message=message,
            details={
                "path": path,
                "line_number": line_number,
                "error": error,
            },
        )


class QuotaExceededError(CatalogSyncError):
    """Raised when the synthesized identity quota is exhausted."""

    def __init__(self, quota: int, external_key: str):
        message = (
            f"Identity quota of {quota} reached; "
            f"cannot synthesize identity for '{external_key}'"
        )
        super().__init__(
            message=message,
            details={"quota": quota, "external_key": external_key},
        )


class PersistenceConflictError(CatalogSyncError):
    """Raised when a write violates a unique field in the store."""

    def __init__(self, collection: str, record_id: str, error: Exception):
        message = f"Conflict writing {collection} record '{record_id}': {error}"
        super().__init__(
            message=message,
            details={
                "collection": collection,
                "record_id": record_id,
                "error": str(error),
                "error_type": type(error).__name__,
            },
        )


class ConnectionFailureError(CatalogSyncError):
    """Raised when the catalog store cannot be reached."""

    def __init__(self, url: str, error: Exception):
        message = f"Failed to connect to catalog store '{url}': {error}"
        super().__init__(
            message=message,
            details={
                "url": url,
                "error": str(error),
                "error_type": type(error).__name__,
            },
        )
