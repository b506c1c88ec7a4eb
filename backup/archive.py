"""
Backup archive codec.

Archive layout (ZIP):
    backup_data.json      manifest: table name -> rows, plus "metadata"
    uploads/<key>         one entry per blob, key suffix preserved exactly

Export streams the archive entry by entry so a large blob set is never
held in memory at once. Import validates the manifest eagerly but leaves
blob entries unread until the caller asks for them, which the restore
coordinator only does after the database transaction has committed.
"""

import asyncio
import json
import zipfile
import zlib
from datetime import date, datetime, time, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional, Union
import logging

from backup.snapshot import SnapshotDocument
from backup.tables import SNAPSHOT_TABLES, TABLE_ALIASES
from core.exceptions import BlobNotFoundError, InvalidArchiveError
from storage.base import BlobStore, UPLOADS_PREFIX

logger = logging.getLogger(__name__)

MANIFEST_NAME = "backup_data.json"
FORMAT_VERSION = "2"
COMPRESSION_LEVEL = 9


def archive_filename(export_date: Optional[date] = None) -> str:
    export_date = export_date or datetime.now(timezone.utc).date()
    return f"full_backup_{export_date.isoformat()}.zip"


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode_manifest(document: SnapshotDocument) -> bytes:
    """Pretty-printed UTF-8 JSON manifest"""
    manifest: Dict[str, Any] = {
        "metadata": {
            "created_at": datetime.now(timezone.utc).isoformat(),
            "format_version": FORMAT_VERSION,
            "counts": {name: len(rows) for name, rows in document.items()},
        }
    }
    manifest.update(document)
    return json.dumps(manifest, indent=2, ensure_ascii=False, default=_json_default).encode("utf-8")


def decode_manifest(manifest: Any, archive_name: str = "archive") -> SnapshotDocument:
    """
    Pull the known tables out of a parsed manifest.

    Unknown top-level keys (tables that no longer exist, metadata) are
    ignored; older key spellings are accepted through TABLE_ALIASES.
    """
    if not isinstance(manifest, dict):
        raise InvalidArchiveError(
            "Invalid backup file: backup_data.json is not a JSON object",
            context={"archive": archive_name, "reason": "corrupt_manifest"}
        )

    document: SnapshotDocument = {}
    for name in SNAPSHOT_TABLES:
        keys = (name,) + TABLE_ALIASES.get(name, ())
        rows = next((manifest[key] for key in keys if key in manifest), None)
        if rows is None:
            continue
        if not isinstance(rows, list) or not all(isinstance(row, dict) for row in rows):
            raise InvalidArchiveError(
                f"Invalid backup file: rows of {name} are not a list of objects",
                context={"archive": archive_name, "reason": "corrupt_manifest", "table_name": name}
            )
        document[name] = rows
    return document


def blob_key_for_entry(entry_name: str) -> Optional[str]:
    """
    Blob store key for an archive entry under uploads/.

    Returns None for entries that are not blobs or whose name would
    escape the blob root.
    """
    if not entry_name.startswith(UPLOADS_PREFIX) or entry_name.endswith("/"):
        return None
    key = entry_name[len(UPLOADS_PREFIX):]
    parts = key.split("/")
    if not key or "\\" in key or any(part in ("", ".", "..") for part in parts):
        return None
    return key


class _ChunkSink:
    """Write-only, unseekable file object collecting ZIP output"""

    def __init__(self):
        self._chunks: List[bytes] = []

    def write(self, data) -> int:
        self._chunks.append(bytes(data))
        return len(data)

    def flush(self) -> None:
        pass

    def drain(self) -> bytes:
        data = b"".join(self._chunks)
        self._chunks.clear()
        return data


async def stream_archive(
    document: SnapshotDocument,
    blob_store: BlobStore,
    keys: Optional[List[str]] = None
) -> AsyncIterator[bytes]:
    """
    Yield the archive bytes, manifest first, then one blob at a time.

    keys is the blob listing; HTTP callers list before the response
    starts so a listing failure is still a JSON error. When omitted the
    store is listed here, after the manifest has been yielded.

    A blob deleted between listing and reading is skipped; any other
    blob store error aborts the stream.
    """
    sink = _ChunkSink()
    archive = zipfile.ZipFile(sink, mode="w", compression=zipfile.ZIP_DEFLATED, compresslevel=COMPRESSION_LEVEL)

    manifest = encode_manifest(document)
    await asyncio.to_thread(archive.writestr, MANIFEST_NAME, manifest)
    yield sink.drain()

    if keys is None:
        keys = await blob_store.list()

    blob_count = 0
    for key in keys:
        try:
            data = await blob_store.get(key)
        except BlobNotFoundError:
            logger.warning(f"Blob vanished during export, skipped: {key}")
            continue
        await asyncio.to_thread(archive.writestr, f"{UPLOADS_PREFIX}{key}", data)
        blob_count += 1
        chunk = sink.drain()
        if chunk:
            yield chunk

    archive.close()
    yield sink.drain()
    logger.info(f"Archive streamed: manifest + {blob_count} blobs")


class BackupArchive:
    """
    An opened, validated backup archive.

    Usage:
        with BackupArchive.open(path) as archive:
            document = archive.document
            for name in archive.blob_entries():
                data = archive.read_blob(name)
    """

    def __init__(self, zip_file: zipfile.ZipFile, document: SnapshotDocument, metadata: Dict[str, Any], name: str):
        self._zip = zip_file
        self.document = document
        self.metadata = metadata
        self.name = name

    @classmethod
    def open(cls, path: Union[str, Path]) -> "BackupArchive":
        """
        Raises:
            InvalidArchiveError: Not a ZIP, manifest missing or unreadable
        """
        name = Path(path).name
        try:
            zip_file = zipfile.ZipFile(path)
        except (zipfile.BadZipFile, OSError) as e:
            raise InvalidArchiveError(
                "Invalid backup file: not a ZIP archive",
                context={"archive": name, "reason": "not_a_zip"},
                original_exception=e
            )

        try:
            manifest = cls._read_manifest(zip_file, name)
            document = decode_manifest(manifest, name)
        except InvalidArchiveError:
            zip_file.close()
            raise

        metadata = manifest.get("metadata") if isinstance(manifest.get("metadata"), dict) else {}
        logger.info(
            f"Opened archive {name}: "
            + ", ".join(f"{table}={len(rows)}" for table, rows in document.items())
        )
        return cls(zip_file, document, metadata, name)

    @staticmethod
    def _read_manifest(zip_file: zipfile.ZipFile, name: str) -> Any:
        try:
            raw = zip_file.read(MANIFEST_NAME)
        except KeyError:
            raise InvalidArchiveError(
                f"Invalid backup file: {MANIFEST_NAME} not found",
                context={"archive": name, "reason": "missing_manifest"}
            )
        except (zipfile.BadZipFile, zlib.error, OSError, NotImplementedError, RuntimeError, EOFError) as e:
            # unsupported compression, encrypted or truncated entry
            raise InvalidArchiveError(
                f"Invalid backup file: {MANIFEST_NAME} is corrupt",
                context={"archive": name, "reason": "corrupt_manifest"},
                original_exception=e
            )

        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise InvalidArchiveError(
                f"Invalid backup file: {MANIFEST_NAME} is not valid JSON",
                context={"archive": name, "reason": "corrupt_manifest"},
                original_exception=e
            )

    def blob_entries(self) -> List[str]:
        """Names of all file entries under uploads/"""
        return [
            info.filename
            for info in self._zip.infolist()
            if info.filename.startswith(UPLOADS_PREFIX) and not info.is_dir()
        ]

    def read_blob(self, entry_name: str) -> bytes:
        return self._zip.read(entry_name)

    def close(self) -> None:
        self._zip.close()

    def __enter__(self) -> "BackupArchive":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
