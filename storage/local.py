"""
Local filesystem blob store
"""

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import List, Optional, Union

from core.exceptions import BlobNotFoundError, BlobStoreError
from storage.base import BlobStore

logger = logging.getLogger(__name__)


class LocalBlobStore(BlobStore):
    """
    Blobs stored as files under a root directory.

    Ensures:
    - Keys never resolve outside the root
    - put() is atomic: content is written to a temp file in the target
      directory and renamed into place, so readers never see partial files
    - Blocking file I/O runs in worker threads
    """

    backend = "local"

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _path_for(self, key: str) -> Path:
        if not key or key.startswith("/") or "\\" in key:
            raise BlobStoreError(
                f"Invalid blob key: {key!r}",
                context={"key": key, "backend": self.backend}
            )
        path = (self.root / key).resolve()
        if path != self.root and self.root not in path.parents:
            raise BlobStoreError(
                f"Blob key escapes storage root: {key!r}",
                context={"key": key, "backend": self.backend}
            )
        return path

    async def list(self, prefix: str = "") -> List[str]:
        def _walk() -> List[str]:
            keys = []
            for path in self.root.rglob("*"):
                if not path.is_file() or path.name.startswith(".tmp-"):
                    continue
                key = path.relative_to(self.root).as_posix()
                if key.startswith(prefix):
                    keys.append(key)
            return sorted(keys)

        try:
            return await asyncio.to_thread(_walk)
        except OSError as e:
            raise BlobStoreError(
                "Failed to list blobs",
                context={"prefix": prefix, "operation": "list", "backend": self.backend},
                original_exception=e
            )

    async def get(self, key: str) -> bytes:
        path = self._path_for(key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as e:
            raise BlobNotFoundError(
                f"Blob not found: {key}",
                context={"key": key, "operation": "get", "backend": self.backend},
                original_exception=e
            )
        except OSError as e:
            raise BlobStoreError(
                f"Failed to read blob: {key}",
                context={"key": key, "operation": "get", "backend": self.backend},
                original_exception=e
            )

    async def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        path = self._path_for(key)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-", suffix=".part")
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, path)
            except BaseException:
                try:
                    os.unlink(tmp_name)
                except FileNotFoundError:
                    pass
                raise

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            raise BlobStoreError(
                f"Failed to write blob: {key}",
                context={"key": key, "operation": "put", "backend": self.backend},
                original_exception=e
            )
        logger.debug(f"Stored blob {key} ({len(data)} bytes)")

    async def delete(self, key: str) -> None:
        path = self._path_for(key)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError as e:
            raise BlobNotFoundError(
                f"Blob not found: {key}",
                context={"key": key, "operation": "delete", "backend": self.backend},
                original_exception=e
            )
        except OSError as e:
            raise BlobStoreError(
                f"Failed to delete blob: {key}",
                context={"key": key, "operation": "delete", "backend": self.backend},
                original_exception=e
            )

    async def exists(self, key: str) -> bool:
        path = self._path_for(key)
        return await asyncio.to_thread(path.is_file)

    def describe(self) -> str:
        return f"local:{self.root}"
