"""
Reset operation: remove all parts, their tags, storage logs and files.

Master data (categories, locations, tags) is kept. The relational delete
is one transaction; blobs are only removed after it commits, and their
deletion is best-effort.
"""

from dataclasses import dataclass, field
from typing import Dict, List
import logging

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncEngine

from backup.constraints import foreign_keys_suspended
from backup.projection import reflect_tables
from backup.tables import WIPE_ORDER
from core.exceptions import BlobStoreError, TransactionFailedError
from storage.base import BlobStore, PLACEHOLDER_KEY
from storage.cleanup import discard_blobs

logger = logging.getLogger(__name__)


@dataclass
class WipeResult:
    deleted_rows: Dict[str, int] = field(default_factory=dict)
    deleted_blobs: int = 0
    failed_blob_keys: List[str] = field(default_factory=list)

    @property
    def status(self) -> str:
        return "completed_with_warnings" if self.failed_blob_keys else "success"


class WipeOperation:
    """Transactional reset of transactional data followed by blob cleanup"""

    def __init__(self, engine: AsyncEngine, blob_store: BlobStore):
        self.engine = engine
        self.blob_store = blob_store

    async def run(self) -> WipeResult:
        """
        Raises:
            TransactionFailedError: Row deletion failed and was rolled back;
                no blob has been touched
        """
        result = WipeResult()
        result.deleted_rows = await self._delete_rows()

        try:
            keys = [key for key in await self.blob_store.list() if key != PLACEHOLDER_KEY]
        except BlobStoreError as e:
            logger.error(f"Reset could not list blobs, files left in place: {e}")
            result.failed_blob_keys = ["*"]
            return result

        failed = await discard_blobs(self.blob_store, keys)
        result.deleted_blobs = len(keys) - len(failed)
        result.failed_blob_keys = failed

        logger.info(
            f"Reset finished ({result.status}): rows={result.deleted_rows}, "
            f"blobs={result.deleted_blobs}, failed_blobs={len(failed)}"
        )
        return result

    async def _delete_rows(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        current = None

        async with self.engine.connect() as conn:
            async with foreign_keys_suspended(conn):
                try:
                    async with conn.begin():
                        tables = await reflect_tables(conn, WIPE_ORDER)
                        for name in WIPE_ORDER:
                            if name not in tables:
                                continue
                            current = name
                            deleted = await conn.execute(delete(tables[name]))
                            counts[name] = deleted.rowcount
                except Exception as e:
                    raise TransactionFailedError(
                        "Reset failed; no data was deleted",
                        context={"phase": "delete", "table_name": current},
                        original_exception=e
                    )

        return counts
