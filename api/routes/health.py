"""
Health check endpoint with database and blob store status
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from api.dependencies import get_db, get_store
from core.config import settings
from core.exceptions import BlobStoreError
from schemas.backup import HealthCheckResponse
from storage.base import BlobStore, PLACEHOLDER_KEY
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(
    db: AsyncSession = Depends(get_db),
    blob_store: BlobStore = Depends(get_store)
):
    """
    Health check endpoint.

    Returns:
    - Database connectivity status
    - Blob store reachability (healthy without it is reported as degraded)
    """
    db_connected = False
    try:
        await db.execute(text("SELECT 1"))
        db_connected = True
    except Exception as e:
        logger.error(f"Database connection failed: {str(e)}")

    blob_store_reachable = False
    try:
        await blob_store.exists(PLACEHOLDER_KEY)
        blob_store_reachable = True
    except BlobStoreError as e:
        logger.error(f"Blob store check failed: {str(e)}")

    if not db_connected:
        status = "unhealthy"
    elif not blob_store_reachable:
        status = "degraded"
    else:
        status = "healthy"

    return HealthCheckResponse(
        status=status,
        database_connected=db_connected,
        blob_store=blob_store.describe(),
        blob_store_reachable=blob_store_reachable,
        environment=settings.ENVIRONMENT
    )
