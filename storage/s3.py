"""
S3-compatible object storage blob store (aiobotocore)
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from aiobotocore.session import get_session
from botocore.exceptions import ClientError

from core.config import Settings
from core.exceptions import BlobNotFoundError, BlobStoreError
from storage.base import BlobStore, UPLOADS_PREFIX

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


def is_not_found(error: ClientError) -> bool:
    return str(error.response.get("Error", {}).get("Code")) in NOT_FOUND_CODES


def s3_client_kwargs(settings: Settings) -> Dict[str, Any]:
    """Build aiobotocore create_client() kwargs from settings"""
    client_kwargs: Dict[str, Any] = {
        "region_name": settings.S3_REGION,
    }
    if settings.S3_ENDPOINT_URL:
        client_kwargs["endpoint_url"] = settings.S3_ENDPOINT_URL
    if settings.AWS_ACCESS_KEY_ID:
        client_kwargs["aws_access_key_id"] = settings.AWS_ACCESS_KEY_ID
        client_kwargs["aws_secret_access_key"] = settings.AWS_SECRET_ACCESS_KEY
    return client_kwargs


class S3ClientHolder:
    """
    Lazily opened, shared aiobotocore S3 client.

    One client per process; opened on first use and closed on shutdown.
    A pre-built client can be injected (tests, custom sessions).
    """

    def __init__(self, client_kwargs: Optional[Dict[str, Any]] = None, client: Any = None):
        self.client_kwargs = client_kwargs or {}
        self._client = client
        self._owns_client = client is None
        self._ctx = None
        self._lock = asyncio.Lock()

    async def get(self) -> Any:
        if self._client is not None:
            return self._client
        async with self._lock:
            if self._client is None:
                session = get_session()
                self._ctx = session.create_client("s3", **self.client_kwargs)
                self._client = await self._ctx.__aenter__()
        return self._client

    async def close(self) -> None:
        if self._owns_client and self._ctx is not None:
            await self._ctx.__aexit__(None, None, None)
            self._ctx = None
            self._client = None


class S3BlobStore(BlobStore):
    """
    Blobs stored as objects named <prefix><key> in one bucket.

    Failures are wrapped into BlobStoreError; bulk callers decide whether
    to stop or log and continue (see storage.cleanup.discard_blobs).
    """

    backend = "s3"

    def __init__(self, bucket: str, prefix: str = UPLOADS_PREFIX, clients: Optional[S3ClientHolder] = None):
        self.bucket = bucket
        self.prefix = prefix
        self.clients = clients or S3ClientHolder()

    def _object_key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def _error(self, message: str, key: str, operation: str, error: Exception) -> BlobStoreError:
        return BlobStoreError(
            message,
            context={"key": key, "bucket": self.bucket, "operation": operation, "backend": self.backend},
            original_exception=error
        )

    async def list(self, prefix: str = "") -> List[str]:
        client = await self.clients.get()
        keys = []
        try:
            paginator = client.get_paginator("list_objects_v2")
            async for page in paginator.paginate(Bucket=self.bucket, Prefix=self._object_key(prefix)):
                for obj in page.get("Contents", []):
                    key = obj["Key"][len(self.prefix):]
                    if key and not key.endswith("/"):
                        keys.append(key)
        except ClientError as e:
            raise self._error("Failed to list blobs", prefix, "list", e)
        return sorted(keys)

    async def get(self, key: str) -> bytes:
        client = await self.clients.get()
        try:
            response = await client.get_object(Bucket=self.bucket, Key=self._object_key(key))
            return await response["Body"].read()
        except ClientError as e:
            if is_not_found(e):
                raise BlobNotFoundError(
                    f"Blob not found: {key}",
                    context={"key": key, "bucket": self.bucket, "operation": "get", "backend": self.backend},
                    original_exception=e
                )
            raise self._error(f"Failed to read blob: {key}", key, "get", e)

    async def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        client = await self.clients.get()
        params: Dict[str, Any] = {
            "Bucket": self.bucket,
            "Key": self._object_key(key),
            "Body": data,
        }
        if content_type:
            params["ContentType"] = content_type
        try:
            await client.put_object(**params)
        except ClientError as e:
            raise self._error(f"Failed to write blob: {key}", key, "put", e)
        logger.debug(f"Uploaded blob s3://{self.bucket}/{params['Key']} ({len(data)} bytes)")

    async def delete(self, key: str) -> None:
        client = await self.clients.get()
        try:
            await client.delete_object(Bucket=self.bucket, Key=self._object_key(key))
        except ClientError as e:
            raise self._error(f"Failed to delete blob: {key}", key, "delete", e)

    async def exists(self, key: str) -> bool:
        client = await self.clients.get()
        try:
            await client.head_object(Bucket=self.bucket, Key=self._object_key(key))
            return True
        except ClientError as e:
            if is_not_found(e):
                return False
            raise self._error(f"Failed to check blob: {key}", key, "exists", e)

    async def close(self) -> None:
        await self.clients.close()

    def describe(self) -> str:
        return f"s3://{self.bucket}/{self.prefix}"
