"""
Where a restore archive comes from.

Each source materializes the archive as a local file inside the restore's
scratch directory and releases whatever it holds afterwards. Both the
direct upload and the staged handoff converge on the same coordinator.
"""

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Union
import logging

from storage.staging import ArchiveStaging

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1024 * 1024


class ArchiveSource(ABC):
    """A restore archive that can be fetched once and released"""

    name: str = "archive"

    @abstractmethod
    async def fetch(self, workdir: Path) -> Path:
        """Make the archive available as a local file; return its path"""
        pass

    async def release(self) -> None:
        """Drop anything held for this archive (temp uploads, staged objects)"""
        return None


class FileArchiveSource(ArchiveSource):
    """An archive already on local disk (CLI, tests); left in place"""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.name = self.path.name

    async def fetch(self, workdir: Path) -> Path:
        return self.path


class UploadedArchiveSource(ArchiveSource):
    """
    A multipart upload (FastAPI UploadFile or anything with async read/close).

    The upload is copied into the scratch directory chunk by chunk.
    """

    def __init__(self, upload: Any, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.upload = upload
        self.chunk_size = chunk_size
        self.name = getattr(upload, "filename", None) or "upload.zip"

    async def fetch(self, workdir: Path) -> Path:
        destination = workdir / "upload.zip"
        size = 0
        f = await asyncio.to_thread(open, destination, "wb")
        try:
            while True:
                chunk = await self.upload.read(self.chunk_size)
                if not chunk:
                    break
                await asyncio.to_thread(f.write, chunk)
                size += len(chunk)
        finally:
            await asyncio.to_thread(f.close)
        logger.info(f"Received uploaded archive {self.name} ({size} bytes)")
        return destination

    async def release(self) -> None:
        await self.upload.close()


class StagedArchiveSource(ArchiveSource):
    """An archive previously uploaded through a pre-signed staging URL"""

    def __init__(self, staging: ArchiveStaging, key: str):
        self.staging = staging
        self.key = staging.validate_key(key)
        self.name = key.rsplit("/", 1)[-1]

    async def fetch(self, workdir: Path) -> Path:
        return await self.staging.download(self.key, workdir / "staged.zip")

    async def release(self) -> None:
        await self.staging.release(self.key)
