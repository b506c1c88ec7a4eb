"""
Restore Coordinator - replaces the full system state from a backup archive.

State machine:

    IDLE → VALIDATING → DB_REPLACING → DB_COMMITTED → BLOB_MIGRATING → DONE
      └──────┴── FAILED      └── ROLLED_BACK

Guarantees:
- Nothing destructive happens before the manifest has been validated
- The relational replacement is one transaction: on any error it is rolled
  back and no blob is touched
- Foreign-key enforcement is suspended for that transaction only and is
  restored whatever the outcome
- Blob migration runs only after commit and is not transactional; per-key
  failures are reported (completed_with_warnings), not raised
- Scratch files, the archive handle and staged objects are released on
  every exit path; release failures are logged only

Single-flight: callers must not run two restores against the same
database and blob store at once.
"""

import asyncio
import enum
import mimetypes
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
import logging

from sqlalchemy import delete, func, insert, select, text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from backup.archive import BackupArchive, blob_key_for_entry
from backup.constraints import foreign_keys_suspended
from backup.projection import ColumnProjector, reflect_tables
from backup.snapshot import SnapshotDocument
from backup.sources import ArchiveSource
from backup.tables import DELETE_ORDER, SNAPSHOT_TABLES
from core.exceptions import (
    BlobMigrationError,
    CleanupError,
    InvalidArchiveError,
    TransactionFailedError,
)
from storage.base import BlobStore

logger = logging.getLogger(__name__)


class RestoreState(str, enum.Enum):
    """Restore coordinator states"""
    IDLE = "idle"
    VALIDATING = "validating"
    DB_REPLACING = "db_replacing"
    DB_COMMITTED = "db_committed"
    BLOB_MIGRATING = "blob_migrating"
    DONE = "done"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


TERMINAL_STATES = {RestoreState.DONE, RestoreState.FAILED, RestoreState.ROLLED_BACK}


@dataclass
class RestoreResult:
    """Outcome of a completed restore"""
    tables: Dict[str, int] = field(default_factory=dict)
    skipped_tables: List[str] = field(default_factory=list)
    blobs_migrated: int = 0
    failed_blob_keys: List[str] = field(default_factory=list)

    @property
    def status(self) -> str:
        return "completed_with_warnings" if self.failed_blob_keys else "success"

    @property
    def message(self) -> str:
        if self.failed_blob_keys:
            return (
                f"Database restored; {len(self.failed_blob_keys)} file(s) could not be restored"
            )
        return "Full restore successful"


class RestoreCoordinator:
    """
    Orchestrates one restore: acquire → validate → replace DB → migrate blobs → clean up.

    Built per request with an explicit engine and blob store; not reusable.
    """

    def __init__(self, engine: AsyncEngine, blob_store: BlobStore, temp_dir: Optional[str] = None):
        self.engine = engine
        self.blob_store = blob_store
        self.temp_dir = temp_dir
        self.state = RestoreState.IDLE
        self.history: List[RestoreState] = [RestoreState.IDLE]
        self._current: Tuple[Optional[str], Optional[str]] = (None, None)

    def _transition(self, state: RestoreState) -> None:
        logger.info(f"Restore state: {self.state.value} → {state.value}")
        self.state = state
        self.history.append(state)

    async def restore(self, source: ArchiveSource) -> RestoreResult:
        """
        Run the full restore from an archive source.

        Raises:
            InvalidArchiveError: Manifest missing or corrupt (no side effects)
            TransactionFailedError: Relational phase failed and was rolled back
            StagingError: Staged archive could not be fetched (no side effects)
        """
        if self.state != RestoreState.IDLE:
            raise RuntimeError("RestoreCoordinator instances are single-use")

        workdir = Path(tempfile.mkdtemp(prefix="restore-", dir=self.temp_dir))
        archive: Optional[BackupArchive] = None

        try:
            archive_path = await source.fetch(workdir)

            self._transition(RestoreState.VALIDATING)
            archive = await asyncio.to_thread(BackupArchive.open, archive_path)

            result = RestoreResult()
            result.tables, result.skipped_tables = await self._replace_relational_state(archive.document)

            self._transition(RestoreState.BLOB_MIGRATING)
            result.blobs_migrated, result.failed_blob_keys = await self._migrate_blobs(archive)

            self._transition(RestoreState.DONE)
            logger.info(
                f"Restore finished ({result.status}): tables={result.tables}, "
                f"blobs={result.blobs_migrated}, failed_blobs={len(result.failed_blob_keys)}"
            )
            return result

        except Exception as e:
            failed_in = self.state
            if failed_in not in TERMINAL_STATES:
                self._transition(RestoreState.FAILED)
            if isinstance(e, InvalidArchiveError):
                logger.warning(f"Restore rejected: {e}")
            else:
                logger.error(f"Restore failed in state {failed_in.value}: {e}")
            raise

        finally:
            await self._release(archive, workdir, source)

    # ------------------------------------------------------------------
    # Relational phase
    # ------------------------------------------------------------------

    async def _replace_relational_state(self, document: SnapshotDocument) -> Tuple[Dict[str, int], List[str]]:
        self._transition(RestoreState.DB_REPLACING)

        async with self.engine.connect() as conn:
            async with foreign_keys_suspended(conn):
                try:
                    async with conn.begin():
                        tables = await reflect_tables(conn, SNAPSHOT_TABLES)
                        await self._delete_all(conn, tables)
                        counts, skipped = await self._insert_all(conn, ColumnProjector(tables), document)
                        if conn.dialect.name == "postgresql":
                            await self._resync_sequences(conn, tables)
                except Exception as e:
                    phase, table_name = self._current
                    self._transition(RestoreState.ROLLED_BACK)
                    raise TransactionFailedError(
                        "Restore failed; database rolled back to its previous state",
                        context={"phase": phase, "table_name": table_name, "state": self.state.value},
                        original_exception=e
                    )

        self._transition(RestoreState.DB_COMMITTED)
        return counts, skipped

    async def _delete_all(self, conn: AsyncConnection, tables) -> None:
        for name in DELETE_ORDER:
            if name not in tables:
                continue
            self._current = ("delete", name)
            result = await conn.execute(delete(tables[name]))
            logger.debug(f"Deleted {result.rowcount} rows from {name}")

    async def _insert_all(
        self,
        conn: AsyncConnection,
        projector: ColumnProjector,
        document: SnapshotDocument
    ) -> Tuple[Dict[str, int], List[str]]:
        counts: Dict[str, int] = {}
        skipped: List[str] = []

        for name in SNAPSHOT_TABLES:
            rows = document.get(name)
            if not rows:
                continue
            self._current = ("insert", name)

            projected = projector.project_rows(name, rows)
            if projected is None:
                skipped.append(name)
                continue

            table = projector.tables[name]
            for batch in _batches_by_columns(projected):
                await conn.execute(insert(table), batch)
            counts[name] = len(projected)
            logger.info(f"Restored {len(projected)} rows into {name}")

        return counts, skipped

    async def _resync_sequences(self, conn: AsyncConnection, tables) -> None:
        """Move serial sequences past the restored ids (PostgreSQL)"""
        for name, table in tables.items():
            pk = list(table.primary_key.columns)
            if len(pk) != 1 or not pk[0].autoincrement:
                continue
            self._current = ("resync_sequence", name)
            column = pk[0].name
            max_id = (await conn.execute(select(func.max(pk[0])))).scalar()
            await conn.execute(
                text("SELECT setval(pg_get_serial_sequence(:table, :column), :value, :called)"),
                {"table": name, "column": column, "value": max_id or 1, "called": max_id is not None},
            )

    # ------------------------------------------------------------------
    # Blob phase (after commit, not transactional)
    # ------------------------------------------------------------------

    async def _migrate_blobs(self, archive: BackupArchive) -> Tuple[int, List[str]]:
        migrated = 0
        failed: List[str] = []

        for entry_name in archive.blob_entries():
            key = blob_key_for_entry(entry_name)
            if key is None:
                logger.error(f"Refusing to restore unsafe archive entry: {entry_name}")
                failed.append(entry_name)
                continue
            try:
                data = await asyncio.to_thread(archive.read_blob, entry_name)
                content_type, _ = mimetypes.guess_type(key)
                await self.blob_store.put(key, data, content_type)
                migrated += 1
            except Exception as e:
                # zipfile raises NotImplementedError, RuntimeError or EOFError per entry
                error = BlobMigrationError(
                    f"Failed to restore file {key}",
                    context={"key": key, "backend": self.blob_store.backend},
                    original_exception=e
                )
                logger.error(str(error))
                failed.append(key)

        return migrated, failed

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    async def _release(self, archive: Optional[BackupArchive], workdir: Path, source: ArchiveSource) -> None:
        if archive is not None:
            try:
                archive.close()
            except Exception as e:
                logger.warning(str(CleanupError("Failed to close archive", original_exception=e)))

        try:
            await asyncio.to_thread(shutil.rmtree, workdir)
        except OSError as e:
            logger.warning(str(CleanupError(
                "Failed to remove restore scratch directory",
                context={"path": str(workdir)},
                original_exception=e
            )))

        try:
            await source.release()
        except Exception as e:
            logger.warning(str(CleanupError(
                "Failed to release archive source",
                context={"source": source.name},
                original_exception=e
            )))


def _batches_by_columns(rows: List[Dict[str, Any]]) -> List[List[Dict[str, Any]]]:
    """Split rows into runs sharing the same column set (one executemany each)"""
    batches: List[List[Dict[str, Any]]] = []
    current_columns = None
    for row in rows:
        columns = tuple(row.keys())
        if columns != current_columns:
            batches.append([])
            current_columns = columns
        batches[-1].append(row)
    return batches
