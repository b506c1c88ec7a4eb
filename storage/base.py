"""
Abstract blob store contract shared by the local and object-storage backends
"""

from abc import ABC, abstractmethod
from typing import List, Optional

# Prefix used by relational rows and by archive entries for blob references
UPLOADS_PREFIX = "uploads/"

# Reserved entry that keeps an empty uploads directory alive
PLACEHOLDER_KEY = ".gitkeep"


def blob_key_from_reference(reference: Optional[str]) -> Optional[str]:
    """
    Convert a row's blob reference into a store key.

    "uploads/a.jpg" and the legacy "/uploads/a.jpg" both map to "a.jpg".
    Returns None for empty references.
    """
    if not reference:
        return None
    key = reference.lstrip("/")
    if key.startswith(UPLOADS_PREFIX):
        key = key[len(UPLOADS_PREFIX):]
    return key or None


def blob_reference(key: str) -> str:
    """Inverse of blob_key_from_reference"""
    return f"{UPLOADS_PREFIX}{key}"


class BlobStore(ABC):
    """
    Uniform async interface over where binary assets live.

    Keys are relative, "/"-separated names (e.g. "1700000000-123.jpg").
    Exactly one implementation is active per deployment.
    """

    backend: str = "abstract"

    @abstractmethod
    async def list(self, prefix: str = "") -> List[str]:
        """Return all keys starting with prefix, sorted"""
        pass

    @abstractmethod
    async def get(self, key: str) -> bytes:
        """Return blob content; raises BlobNotFoundError if missing"""
        pass

    @abstractmethod
    async def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        """Create or overwrite a blob"""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete a blob; raises BlobStoreError on failure"""
        pass

    @abstractmethod
    async def exists(self, key: str) -> bool:
        pass

    async def close(self) -> None:
        """Release backend resources (clients, sessions)"""
        return None

    def describe(self) -> str:
        return self.backend
