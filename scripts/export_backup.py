"""
Write a full backup archive to a local file.

Usage:
    python scripts/export_backup.py [output_path]

Defaults to full_backup_<date>.zip in the current directory.
"""

import asyncio
import logging
import sys
import os

# Add current directory to path to allow imports from core, backup, etc.
sys.path.append(os.getcwd())

from backup import SnapshotBuilder, archive_filename, stream_archive
from core.database import engine
from core.exceptions import BackupException
from core.logging import setup_logging
from storage import close_storage, get_blob_store

logger = logging.getLogger(__name__)


async def export_backup(output_path: str) -> int:
    """Stream the archive to output_path; returns bytes written"""
    blob_store = get_blob_store()
    written = 0
    try:
        async with engine.connect() as conn:
            document = await SnapshotBuilder(conn).build()
        keys = await blob_store.list()

        with open(output_path, "wb") as f:
            async for chunk in stream_archive(document, blob_store, keys):
                f.write(chunk)
                written += len(chunk)
    finally:
        await close_storage()
        await engine.dispose()

    logger.info(f"Backup written to {output_path} ({written} bytes)")
    return written


if __name__ == "__main__":
    setup_logging()
    path = sys.argv[1] if len(sys.argv) > 1 else archive_filename()
    try:
        asyncio.run(export_backup(path))
    except BackupException as e:
        logger.error(str(e))
        sys.exit(1)
