"""
Staged archive handoff for large restores.

Two-step protocol:
1. stage: the client asks for a pre-signed PUT URL and uploads the archive
   straight to object storage
2. restore: the client triggers the restore by staging key; the archive is
   downloaded to a local file before anything destructive happens

An abandoned stage never touches live data.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from botocore.exceptions import ClientError

from core.config import Settings
from core.exceptions import StagedArchiveNotFoundError, StagingError, StagingUnavailableError
from storage.s3 import S3ClientHolder, is_not_found

logger = logging.getLogger(__name__)

ARCHIVE_CONTENT_TYPE = "application/zip"


class ArchiveStaging:
    """Pre-signed upload, download and release of staged backup archives"""

    def __init__(
        self,
        bucket: Optional[str],
        prefix: str,
        clients: S3ClientHolder,
        expires_in: int = 900,
        chunk_size: int = 1024 * 1024
    ):
        self.bucket = bucket
        self.prefix = prefix
        self.clients = clients
        self.expires_in = expires_in
        self.chunk_size = chunk_size

    @classmethod
    def from_settings(cls, settings: Settings, clients: S3ClientHolder) -> "ArchiveStaging":
        return cls(
            bucket=settings.staging_bucket,
            prefix=settings.S3_STAGING_PREFIX,
            clients=clients,
            expires_in=settings.PRESIGNED_URL_EXPIRES,
            chunk_size=settings.ARCHIVE_CHUNK_SIZE,
        )

    def _require_bucket(self) -> str:
        if not self.bucket:
            raise StagingUnavailableError(
                "Staged uploads need object storage; set S3_BACKUP_BUCKET or S3_IMAGES_BUCKET",
                context={"prefix": self.prefix}
            )
        return self.bucket

    def validate_key(self, key: str) -> str:
        if not key.startswith(self.prefix) or ".." in key.split("/"):
            raise StagedArchiveNotFoundError(
                f"Not a staging key: {key}",
                context={"key": key, "prefix": self.prefix}
            )
        return key

    async def create_upload(self) -> Dict[str, Any]:
        """Reserve a staging key and return a pre-signed PUT URL for it"""
        bucket = self._require_bucket()
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
        key = f"{self.prefix}{stamp}-{uuid.uuid4().hex}.zip"
        client = await self.clients.get()
        try:
            url = await client.generate_presigned_url(
                "put_object",
                Params={"Bucket": bucket, "Key": key, "ContentType": ARCHIVE_CONTENT_TYPE},
                ExpiresIn=self.expires_in,
            )
        except ClientError as e:
            raise StagingError(
                "Failed to create pre-signed upload URL",
                context={"bucket": bucket, "key": key},
                original_exception=e
            )
        logger.info(f"Issued staging upload URL for s3://{bucket}/{key}")
        return {"key": key, "upload_url": url, "expires_in": self.expires_in}

    async def download(self, key: str, destination: Path) -> Path:
        """Copy a staged archive to a local file, chunk by chunk"""
        bucket = self._require_bucket()
        self.validate_key(key)
        client = await self.clients.get()
        try:
            response = await client.get_object(Bucket=bucket, Key=key)
        except ClientError as e:
            if is_not_found(e):
                raise StagedArchiveNotFoundError(
                    f"Staged archive not found: {key}",
                    context={"bucket": bucket, "key": key},
                    original_exception=e
                )
            raise StagingError(
                f"Failed to fetch staged archive: {key}",
                context={"bucket": bucket, "key": key},
                original_exception=e
            )

        size = 0
        body = response["Body"]
        f = await asyncio.to_thread(open, destination, "wb")
        try:
            while True:
                chunk = await body.read(self.chunk_size)
                if not chunk:
                    break
                await asyncio.to_thread(f.write, chunk)
                size += len(chunk)
        finally:
            await asyncio.to_thread(f.close)
        logger.info(f"Downloaded staged archive {key} ({size} bytes)")
        return destination

    async def release(self, key: str) -> None:
        """Delete a staged archive after it has been consumed"""
        bucket = self._require_bucket()
        client = await self.clients.get()
        await client.delete_object(Bucket=bucket, Key=key)
        logger.info(f"Released staged archive {key}")
