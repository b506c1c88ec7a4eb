"""
Custom exceptions for the backup / restore engine with structured error context.

This module provides the exception hierarchy used by the blob stores,
the archive codec and the restore coordinator. Each exception carries
context information for debugging and a payload shape for API responses.

Exception Hierarchy:
    BackupException (base)
    ├── ArchiveError
    │   ├── InvalidArchiveError
    │   └── ExportError
    ├── RestoreError
    │   ├── TransactionFailedError
    │   ├── BlobMigrationError
    │   └── CleanupError
    ├── BlobStoreError
    │   └── BlobNotFoundError
    ├── StagingError
    │   ├── StagingUnavailableError
    │   └── StagedArchiveNotFoundError
    └── ResourceNotFoundError
"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone


class BackupException(Exception):
    """
    Base exception for all backup / restore errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (table, key, state, etc.)
        original_exception: The original exception that was caught (if any)
        status_code: HTTP status used when the error reaches the API layer
    """

    status_code: int = 500

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.now(timezone.utc)

        # Add timestamp to context
        self.context["error_timestamp"] = self.timestamp.isoformat()

        # Chain original exception if provided
        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging and API payloads."""
        return {
            "error": self.message,
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": {k: _jsonable(v) for k, v in self.context.items()},
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


def _jsonable(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return str(value)


# ============================================================================
# Archive Errors
# ============================================================================

class ArchiveError(BackupException):
    """Base exception for archive packing / unpacking failures."""
    pass


class InvalidArchiveError(ArchiveError):
    """
    Raised when an uploaded archive cannot be used for a restore.

    Raised before any destructive step. Context should include:
        - archive: Name or path of the archive
        - reason: missing_manifest, corrupt_manifest, not_a_zip
    """
    status_code = 400


class ExportError(ArchiveError):
    """
    Raised when the relational snapshot cannot be read for export.

    Context should include:
        - table_name: Table being read when the failure happened
    """
    pass


# ============================================================================
# Restore Errors
# ============================================================================

class RestoreError(BackupException):
    """Base exception for restore / wipe failures."""
    pass


class TransactionFailedError(RestoreError):
    """
    Raised when the relational phase fails. The transaction has been rolled
    back and foreign-key enforcement restored; no blob was touched.

    Context should include:
        - phase: delete or insert
        - table_name: Table being processed
        - state: Coordinator state at failure
    """
    pass


class BlobMigrationError(RestoreError):
    """
    A single post-commit blob write failed.

    Collected into the restore result (completed with warnings), never raised
    to the caller because the relational data is already committed.
    """
    pass


class CleanupError(RestoreError):
    """Releasing a temporary resource failed. Logged only."""
    pass


# ============================================================================
# Blob Store Errors
# ============================================================================

class BlobStoreError(BackupException):
    """
    Raised when a blob store operation fails.

    Context should include:
        - key: Blob key
        - operation: list, get, put, delete, exists
        - backend: local or s3
    """
    pass


class BlobNotFoundError(BlobStoreError):
    """Requested blob key does not exist."""
    status_code = 404


# ============================================================================
# Staging Errors
# ============================================================================

class StagingError(BackupException):
    """Base exception for the staged (pre-signed upload) restore path."""
    pass


class StagingUnavailableError(StagingError):
    """No object storage is configured for staged uploads."""
    status_code = 503


class StagedArchiveNotFoundError(StagingError):
    """The staged archive key does not exist (upload never completed)."""
    status_code = 404


# ============================================================================
# Generic
# ============================================================================

class ResourceNotFoundError(BackupException):
    """Requested row does not exist."""
    status_code = 404
