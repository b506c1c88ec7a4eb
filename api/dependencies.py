"""
FastAPI dependencies shared by the routers.

Tests override these through app.dependency_overrides.
"""

from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from core.database import engine, get_session
from storage import get_archive_staging, get_blob_store
from storage.base import BlobStore
from storage.staging import ArchiveStaging


async def get_db() -> AsyncIterator[AsyncSession]:
    async for session in get_session():
        yield session


def get_engine() -> AsyncEngine:
    return engine


def get_store() -> BlobStore:
    return get_blob_store()


def get_staging() -> ArchiveStaging:
    return get_archive_staging()
