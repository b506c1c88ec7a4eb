"""
Part deletion with orphan-safe blob cleanup
"""

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from api.dependencies import get_db, get_store
from core.exceptions import ResourceNotFoundError
from models.part import Part
from models.storage_log import StorageLog
from models.tag import part_tags
from schemas.backup import MessageResponse
from storage.base import BlobStore, blob_key_from_reference
from storage.cleanup import discard_blobs

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/parts", tags=["Parts"])


@router.delete("/{part_id}", response_model=MessageResponse)
async def delete_part(
    part_id: int,
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    blob_store: BlobStore = Depends(get_store)
):
    """
    Delete a part and its storage logs and tag links.

    Its files are removed after the commit as a background task; a failed
    file delete is logged and never fails the request.
    """
    request_id = getattr(request.state, "request_id", "-")

    part = await db.get(Part, part_id)
    if part is None:
        raise ResourceNotFoundError(f"Part {part_id} not found", context={"part_id": part_id})

    blob_keys = [blob_key_from_reference(ref) for ref in part.blob_paths]
    blob_keys = [key for key in blob_keys if key]

    await db.execute(delete(StorageLog).where(StorageLog.part_id == part_id))
    await db.execute(delete(part_tags).where(part_tags.c.part_id == part_id))
    await db.execute(delete(Part).where(Part.id == part_id))
    await db.commit()

    logger.info(f"[{request_id}] Deleted part {part_id}; scheduling cleanup of {len(blob_keys)} file(s)")
    if blob_keys:
        background_tasks.add_task(discard_blobs, blob_store, blob_keys)

    return MessageResponse(message="Part deleted")
