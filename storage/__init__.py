"""
Blob storage backends.

Modules:
    base: BlobStore contract and blob reference helpers
    local: Local filesystem backend (atomic writes)
    s3: S3-compatible object storage backend (aiobotocore)
    cleanup: Best-effort deletion with an explicit failure list
    staging: Pre-signed upload handoff for large restore archives

Which backend is active is a deployment setting (BLOB_BACKEND); the
store is built once per process by get_blob_store().
"""

import logging
from typing import Optional

from core.config import Settings, settings
from storage.base import BlobStore, UPLOADS_PREFIX, PLACEHOLDER_KEY, blob_key_from_reference, blob_reference
from storage.local import LocalBlobStore
from storage.s3 import S3BlobStore, S3ClientHolder, s3_client_kwargs
from storage.staging import ArchiveStaging

logger = logging.getLogger(__name__)

_blob_store: Optional[BlobStore] = None
_s3_clients: Optional[S3ClientHolder] = None


def get_s3_clients(config: Settings = settings) -> S3ClientHolder:
    global _s3_clients
    if _s3_clients is None:
        _s3_clients = S3ClientHolder(s3_client_kwargs(config))
    return _s3_clients


def build_blob_store(config: Settings = settings) -> BlobStore:
    """Create the blob store selected by BLOB_BACKEND"""
    backend = config.BLOB_BACKEND.lower()
    if backend == "s3":
        if not config.S3_IMAGES_BUCKET:
            raise ValueError("BLOB_BACKEND=s3 requires S3_IMAGES_BUCKET")
        return S3BlobStore(
            bucket=config.S3_IMAGES_BUCKET,
            prefix=config.S3_UPLOADS_PREFIX,
            clients=get_s3_clients(config),
        )
    if backend == "local":
        return LocalBlobStore(config.UPLOAD_DIR)
    raise ValueError(f"Unknown BLOB_BACKEND: {config.BLOB_BACKEND}")


def get_blob_store() -> BlobStore:
    """Process-wide blob store"""
    global _blob_store
    if _blob_store is None:
        _blob_store = build_blob_store()
        logger.info(f"Blob store: {_blob_store.describe()}")
    return _blob_store


def get_archive_staging() -> ArchiveStaging:
    return ArchiveStaging.from_settings(settings, get_s3_clients())


async def close_storage() -> None:
    global _blob_store, _s3_clients
    if _blob_store is not None:
        await _blob_store.close()
    if _s3_clients is not None:
        await _s3_clients.close()
    _blob_store = None
    _s3_clients = None


__all__ = [
    "BlobStore",
    "LocalBlobStore",
    "S3BlobStore",
    "S3ClientHolder",
    "ArchiveStaging",
    "UPLOADS_PREFIX",
    "PLACEHOLDER_KEY",
    "blob_key_from_reference",
    "blob_reference",
    "build_blob_store",
    "get_blob_store",
    "get_archive_staging",
    "close_storage",
]
