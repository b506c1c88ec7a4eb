"""
Pydantic schemas for backup, restore and maintenance endpoints
"""

from pydantic import BaseModel, Field, validator
from typing import Optional, List, Dict
from datetime import datetime, timezone


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Restore Schemas
# ============================================================================

class RestoreResponse(BaseModel):
    """Result of a full restore"""
    status: str = Field(..., description="success or completed_with_warnings")
    message: str
    tables: Dict[str, int] = Field(default_factory=dict, description="Rows restored per table")
    skipped_tables: List[str] = Field(default_factory=list)
    blobs_migrated: int = 0
    failed_blob_keys: List[str] = Field(
        default_factory=list,
        description="Files that could not be written to the blob store; need manual remediation"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "status": "success",
                "message": "Full restore successful",
                "tables": {"categories": 4, "locations": 2, "parts": 120, "part_tags": 87},
                "skipped_tables": [],
                "blobs_migrated": 64,
                "failed_blob_keys": []
            }
        }


class StageUploadResponse(BaseModel):
    """Pre-signed upload target for a large restore archive"""
    key: str = Field(..., description="Staging key to pass to /api/backup/import/staged")
    upload_url: str = Field(..., description="Pre-signed PUT URL (Content-Type: application/zip)")
    expires_in: int = Field(..., description="URL lifetime in seconds")


class StagedRestoreRequest(BaseModel):
    """Restore from an archive previously uploaded to the staging area"""
    key: str = Field(..., description="Staging key returned by /api/backup/import/stage")

    @validator("key")
    def key_not_blank(cls, v):
        if not v or not v.strip():
            raise ValueError("key must not be empty")
        return v.strip()


# ============================================================================
# Maintenance Schemas
# ============================================================================

class ResetResponse(BaseModel):
    """Result of a data reset"""
    status: str
    message: str
    deleted_rows: Dict[str, int] = Field(default_factory=dict)
    deleted_blobs: int = 0
    failed_blob_keys: List[str] = Field(default_factory=list)


class MessageResponse(BaseModel):
    message: str


# ============================================================================
# Health Check Schemas
# ============================================================================

class HealthCheckResponse(BaseModel):
    """Health check response model"""
    status: str = Field(..., description="Overall system status: healthy, degraded, unhealthy")
    timestamp: datetime = Field(default_factory=_utcnow)
    database_connected: bool
    blob_store: str = Field(..., description="Active blob store backend")
    blob_store_reachable: bool
    environment: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "status": "healthy",
                "timestamp": "2024-01-15T10:30:00Z",
                "database_connected": True,
                "blob_store": "local:uploads",
                "blob_store_reachable": True,
                "environment": "development"
            }
        }
