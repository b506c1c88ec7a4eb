"""
Backup, restore and reset endpoints
"""

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncEngine
from typing import Optional
import logging

from api.dependencies import get_engine, get_staging, get_store
from backup import (
    RestoreCoordinator,
    SnapshotBuilder,
    StagedArchiveSource,
    UploadedArchiveSource,
    WipeOperation,
    archive_filename,
    stream_archive,
)
from backup.sources import ArchiveSource
from core.config import settings
from schemas.backup import ResetResponse, RestoreResponse, StagedRestoreRequest, StageUploadResponse
from storage.base import BlobStore
from storage.staging import ArchiveStaging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/backup", tags=["Backup"])


@router.get("/export/full")
async def export_full(
    request: Request,
    engine: AsyncEngine = Depends(get_engine),
    blob_store: BlobStore = Depends(get_store)
):
    """
    Stream a full backup: database snapshot plus every stored file.

    The snapshot and the blob listing are read before the response
    starts, so a database or listing failure is reported as a JSON error
    rather than a truncated ZIP.
    """
    request_id = getattr(request.state, "request_id", "-")
    logger.info(f"[{request_id}] Full export requested ({blob_store.describe()})")

    async with engine.connect() as conn:
        document = await SnapshotBuilder(conn).build()
    keys = await blob_store.list()

    filename = archive_filename()
    return StreamingResponse(
        stream_archive(document, blob_store, keys),
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )


async def _run_restore(engine: AsyncEngine, blob_store: BlobStore, source: ArchiveSource) -> RestoreResponse:
    coordinator = RestoreCoordinator(engine, blob_store, temp_dir=settings.BACKUP_TEMP_DIR)
    result = await coordinator.restore(source)
    return RestoreResponse(
        status=result.status,
        message=result.message,
        tables=result.tables,
        skipped_tables=result.skipped_tables,
        blobs_migrated=result.blobs_migrated,
        failed_blob_keys=result.failed_blob_keys
    )


@router.post("/import/full", response_model=RestoreResponse)
async def import_full(
    request: Request,
    file: Optional[UploadFile] = File(None),
    engine: AsyncEngine = Depends(get_engine),
    blob_store: BlobStore = Depends(get_store)
):
    """
    Replace all data and files with the contents of an uploaded archive.

    Returns completed_with_warnings when the database was restored but
    some files could not be written.
    """
    if file is None:
        raise HTTPException(status_code=400, detail="No file uploaded")

    request_id = getattr(request.state, "request_id", "-")
    logger.info(f"[{request_id}] Full restore from upload {file.filename}")

    source = UploadedArchiveSource(file, chunk_size=settings.ARCHIVE_CHUNK_SIZE)
    return await _run_restore(engine, blob_store, source)


@router.post("/import/stage", response_model=StageUploadResponse)
async def stage_import(staging: ArchiveStaging = Depends(get_staging)):
    """Issue a pre-signed URL for uploading a large archive directly to object storage"""
    return StageUploadResponse(**await staging.create_upload())


@router.post("/import/staged", response_model=RestoreResponse)
async def import_staged(
    request: Request,
    body: StagedRestoreRequest,
    engine: AsyncEngine = Depends(get_engine),
    blob_store: BlobStore = Depends(get_store),
    staging: ArchiveStaging = Depends(get_staging)
):
    """Restore from an archive uploaded through /import/stage; the staged object is deleted afterwards"""
    request_id = getattr(request.state, "request_id", "-")
    logger.info(f"[{request_id}] Full restore from staged archive {body.key}")

    source = StagedArchiveSource(staging, body.key)
    return await _run_restore(engine, blob_store, source)


@router.post("/reset", response_model=ResetResponse)
async def reset(
    request: Request,
    engine: AsyncEngine = Depends(get_engine),
    blob_store: BlobStore = Depends(get_store)
):
    """Delete all parts, tag links, storage logs and stored files; master data is kept"""
    request_id = getattr(request.state, "request_id", "-")
    logger.warning(f"[{request_id}] Data reset requested")

    result = await WipeOperation(engine, blob_store).run()
    message = "All parts and files deleted"
    if result.failed_blob_keys:
        message = f"All parts deleted; {len(result.failed_blob_keys)} file(s) could not be removed"

    return ResetResponse(
        status=result.status,
        message=message,
        deleted_rows=result.deleted_rows,
        deleted_blobs=result.deleted_blobs,
        failed_blob_keys=result.failed_blob_keys
    )
