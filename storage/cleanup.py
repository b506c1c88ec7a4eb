"""
Best-effort blob deletion.

Deleting a blob is never allowed to fail the operation that orphaned it
(row delete, reset). Failures go through this module: each one is logged
with its key and returned to the caller, nothing is raised. A blob whose
delete failed stays orphaned in the store until removed by hand.
"""

import logging
from typing import Iterable, List

from core.exceptions import BlobNotFoundError, BlobStoreError
from storage.base import BlobStore

logger = logging.getLogger(__name__)


async def discard_blobs(store: BlobStore, keys: Iterable[str]) -> List[str]:
    """
    Delete every key, continuing past failures.

    Returns:
        Keys whose deletion failed (missing blobs count as failures so
        they show up in the log, but are reported at WARNING level)
    """
    failed = []
    for key in keys:
        try:
            await store.delete(key)
        except BlobNotFoundError:
            logger.warning(f"Blob already missing, nothing to delete: {key}")
            failed.append(key)
        except BlobStoreError as e:
            logger.error(f"Failed to delete blob {key}: {e}")
            failed.append(key)
    return failed
