"""
Backup and restore engine.

Modules:
    tables: Managed table order and manifest aliases
    projection: Schema reflection and column projection for drift tolerance
    constraints: Dialect-specific foreign-key suspension
    snapshot: Relational snapshot builder (export side)
    archive: ZIP archive codec (streamed export, lazy import)
    sources: Upload, staged and local-file archive sources
    restore: Restore coordinator state machine
    wipe: Reset of parts, tags, logs and files
"""

from backup.archive import BackupArchive, archive_filename, stream_archive
from backup.restore import RestoreCoordinator, RestoreResult, RestoreState
from backup.snapshot import SnapshotBuilder
from backup.sources import ArchiveSource, FileArchiveSource, StagedArchiveSource, UploadedArchiveSource
from backup.wipe import WipeOperation, WipeResult

__all__ = [
    "BackupArchive",
    "archive_filename",
    "stream_archive",
    "RestoreCoordinator",
    "RestoreResult",
    "RestoreState",
    "SnapshotBuilder",
    "ArchiveSource",
    "FileArchiveSource",
    "StagedArchiveSource",
    "UploadedArchiveSource",
    "WipeOperation",
    "WipeResult",
]
