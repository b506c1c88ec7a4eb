"""
Core utilities and configuration for the parts inventory backend.

This package provides foundational components used by the API and the
backup / restore engine:

Modules:
    config: Application configuration and environment variable management
    database: Database engine, session management and SQLite pragmas
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration and utilities

Usage:
    from core.config import settings
    from core.database import get_session
    from core.exceptions import InvalidArchiveError, TransactionFailedError
    from core.logging import setup_logging

Example:
    # Initialize logging
    setup_logging()

    # Get database session
    async with async_session_maker() as session:
        # Perform database operations
        pass
"""

__all__ = [
    "settings",
    "get_session",
    "setup_logging",
    # Exceptions
    "BackupException",
    "ArchiveError",
    "InvalidArchiveError",
    "ExportError",
    "RestoreError",
    "TransactionFailedError",
    "BlobMigrationError",
    "CleanupError",
    "BlobStoreError",
    "BlobNotFoundError",
    "StagingError",
    "StagingUnavailableError",
    "StagedArchiveNotFoundError",
    "ResourceNotFoundError",
]
