"""
Pydantic schemas for request/response validation.

Schemas:
    backup: Restore, staging, reset and health payloads

Error payloads are not modelled here; they come from
BackupException.to_dict() through the API exception handler.
"""

from schemas.backup import (
    RestoreResponse,
    StageUploadResponse,
    StagedRestoreRequest,
    ResetResponse,
    MessageResponse,
    HealthCheckResponse,
)

__all__ = [
    "RestoreResponse",
    "StageUploadResponse",
    "StagedRestoreRequest",
    "ResetResponse",
    "MessageResponse",
    "HealthCheckResponse",
]
