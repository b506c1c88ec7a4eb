"""
Integration tests for the restore coordinator

Covers round-trip identity, idempotence, schema drift, atomic failure,
derived-field stripping and partial blob failures.
"""

import json
import logging
import zipfile
import pytest
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock
from sqlalchemy import inspect, select, text

import backup.restore as restore_module

from backup.archive import MANIFEST_NAME, stream_archive
from backup.constraints import foreign_keys_suspended
from backup.restore import RestoreCoordinator, RestoreState
from backup.snapshot import SnapshotBuilder
from backup.sources import ArchiveSource, FileArchiveSource
from backup.tables import SNAPSHOT_TABLES
from backup.wipe import WipeOperation
from core.exceptions import BlobStoreError, InvalidArchiveError, StagedArchiveNotFoundError, TransactionFailedError
from models import Part


async def export_to_file(engine, blob_store, path):
    async with engine.connect() as conn:
        document = await SnapshotBuilder(conn).build()
    with open(path, "wb") as f:
        async for chunk in stream_archive(document, blob_store):
            f.write(chunk)
    return path


async def snapshot_without_derived(engine):
    async with engine.connect() as conn:
        document = await SnapshotBuilder(conn).build()
    for part in document["parts"]:
        part.pop("tags_list", None)
    return document


def write_archive(path, manifest, blobs=None):
    with zipfile.ZipFile(path, "w") as archive:
        archive.writestr(MANIFEST_NAME, json.dumps(manifest))
        for key, data in (blobs or {}).items():
            archive.writestr(f"uploads/{key}", data)
    return path


async def count(engine, table):
    async with engine.connect() as conn:
        return (await conn.execute(text(f"SELECT COUNT(*) FROM {table}"))).scalar()


@pytest.mark.asyncio
async def test_round_trip_identity(test_engine, blob_store, seeded_inventory, inventory_blobs, tmp_path):
    before = await snapshot_without_derived(test_engine)
    archive_path = await export_to_file(test_engine, blob_store, tmp_path / "backup.zip")

    await WipeOperation(test_engine, blob_store).run()
    assert await count(test_engine, "parts") == 0

    coordinator = RestoreCoordinator(test_engine, blob_store)
    result = await coordinator.restore(FileArchiveSource(archive_path))

    assert result.status == "success"
    assert coordinator.state == RestoreState.DONE
    assert await snapshot_without_derived(test_engine) == before
    for key, data in inventory_blobs.items():
        assert await blob_store.get(key) == data


@pytest.mark.asyncio
async def test_restore_is_idempotent(test_engine, blob_store, seeded_inventory, tmp_path):
    archive_path = await export_to_file(test_engine, blob_store, tmp_path / "backup.zip")

    await RestoreCoordinator(test_engine, blob_store).restore(FileArchiveSource(archive_path))
    first = await snapshot_without_derived(test_engine)
    await RestoreCoordinator(test_engine, blob_store).restore(FileArchiveSource(archive_path))
    second = await snapshot_without_derived(test_engine)

    assert first == second
    assert await count(test_engine, "part_tags") == 3


@pytest.mark.asyncio
async def test_state_history(test_engine, blob_store, seeded_inventory, tmp_path):
    archive_path = await export_to_file(test_engine, blob_store, tmp_path / "backup.zip")
    coordinator = RestoreCoordinator(test_engine, blob_store)

    await coordinator.restore(FileArchiveSource(archive_path))

    assert coordinator.history == [
        RestoreState.IDLE,
        RestoreState.VALIDATING,
        RestoreState.DB_REPLACING,
        RestoreState.DB_COMMITTED,
        RestoreState.BLOB_MIGRATING,
        RestoreState.DONE,
    ]


@pytest.mark.asyncio
async def test_coordinator_is_single_use(test_engine, blob_store, seeded_inventory, tmp_path):
    archive_path = await export_to_file(test_engine, blob_store, tmp_path / "backup.zip")
    coordinator = RestoreCoordinator(test_engine, blob_store)
    await coordinator.restore(FileArchiveSource(archive_path))

    with pytest.raises(RuntimeError):
        await coordinator.restore(FileArchiveSource(archive_path))


@pytest.mark.asyncio
async def test_schema_drift_tolerated(test_engine, blob_store, tmp_path):
    archive_path = write_archive(tmp_path / "old.zip", {
        "categories": [{"id": 1, "name": "Resistors", "legacy_color": "brown"}],
        "parts": [{"id": 7, "name": "Old part", "category_id": 1, "obsolete_field": "x"}],
        "gadgets": [{"id": 1}],
    })

    result = await RestoreCoordinator(test_engine, blob_store).restore(FileArchiveSource(archive_path))

    assert result.tables == {"categories": 1, "parts": 1}
    async with test_engine.connect() as conn:
        part = (await conn.execute(select(Part.__table__).where(Part.id == 7))).mappings().one()
    # Columns absent from the archive fall back to table defaults
    assert part["quantity"] == 0
    assert part["created_at"] is not None


@pytest.mark.asyncio
async def test_derived_fields_are_stripped(test_engine, blob_store, tmp_path):
    archive_path = write_archive(tmp_path / "derived.zip", {
        "categories": [{"id": 1, "name": "ICs"}],
        "parts": [{
            "id": 1, "name": "NE555", "category_id": 1, "quantity": 3,
            "tags_list": "timer,dip", "category_name": "ICs", "location_name": None,
        }],
    })

    result = await RestoreCoordinator(test_engine, blob_store).restore(FileArchiveSource(archive_path))

    assert result.status == "success"
    async with test_engine.connect() as conn:
        columns = await conn.run_sync(
            lambda sync_conn: [column["name"] for column in inspect(sync_conn).get_columns("parts")]
        )
        part = (await conn.execute(select(Part.__table__))).mappings().one()
    assert not {"tags_list", "category_name", "location_name"} & set(columns)
    assert part["name"] == "NE555"
    assert part["quantity"] == 3


@pytest.mark.asyncio
async def test_legacy_timestamps_and_alias(test_engine, blob_store, tmp_path):
    archive_path = write_archive(tmp_path / "legacy.zip", {
        "tags": [{"id": 1, "name": "smd"}],
        "parts": [{"id": 1, "name": "R1", "created_at": "2024-01-15T10:30:00Z", "updated_at": "2024-01-15T10:30:00Z"}],
        "partTags": [{"part_id": 1, "tag_id": 1}],
    })

    result = await RestoreCoordinator(test_engine, blob_store).restore(FileArchiveSource(archive_path))

    assert result.tables["part_tags"] == 1


@pytest.mark.asyncio
async def test_atomic_failure_leaves_database_untouched(test_engine, blob_store, seeded_inventory, tmp_path):
    before = await snapshot_without_derived(test_engine)
    # Duplicate primary key fails the insert phase after every delete has run
    archive_path = write_archive(
        tmp_path / "bad.zip",
        {"categories": [{"id": 1, "name": "A"}, {"id": 1, "name": "B"}]},
        {"new.jpg": b"must not be written"},
    )
    coordinator = RestoreCoordinator(test_engine, blob_store)

    with pytest.raises(TransactionFailedError) as exc_info:
        await coordinator.restore(FileArchiveSource(archive_path))

    assert coordinator.state == RestoreState.ROLLED_BACK
    assert exc_info.value.context["table_name"] == "categories"
    assert await snapshot_without_derived(test_engine) == before
    assert not await blob_store.exists("new.jpg")


@pytest.fixture
def restore_connection_foreign_keys(monkeypatch):
    """
    Record PRAGMA foreign_keys on the restore connection itself, read
    right after enforcement has been switched back on.
    """
    observed = []

    @asynccontextmanager
    async def recording(conn):
        try:
            async with foreign_keys_suspended(conn):
                yield
        finally:
            observed.append((await conn.execute(text("PRAGMA foreign_keys"))).scalar())

    monkeypatch.setattr(restore_module, "foreign_keys_suspended", recording)
    return observed


@pytest.mark.asyncio
async def test_foreign_keys_enforced_after_restore(
    test_engine, blob_store, seeded_inventory, tmp_path, restore_connection_foreign_keys
):
    archive_path = await export_to_file(test_engine, blob_store, tmp_path / "backup.zip")
    await RestoreCoordinator(test_engine, blob_store).restore(FileArchiveSource(archive_path))

    assert restore_connection_foreign_keys == [1]


@pytest.mark.asyncio
async def test_foreign_keys_enforced_after_rolled_back_restore(
    test_engine, blob_store, seeded_inventory, tmp_path, restore_connection_foreign_keys
):
    archive_path = write_archive(
        tmp_path / "bad.zip",
        {"categories": [{"id": 1, "name": "A"}, {"id": 1, "name": "B"}]},
    )
    coordinator = RestoreCoordinator(test_engine, blob_store)

    with pytest.raises(TransactionFailedError):
        await coordinator.restore(FileArchiveSource(archive_path))

    assert coordinator.state == RestoreState.ROLLED_BACK
    assert restore_connection_foreign_keys == [1]


@pytest.mark.asyncio
async def test_invalid_archive_has_no_side_effects(test_engine, blob_store, seeded_inventory, tmp_path):
    before = await snapshot_without_derived(test_engine)
    path = tmp_path / "broken.zip"
    path.write_bytes(b"not a zip at all")
    coordinator = RestoreCoordinator(test_engine, blob_store)

    with pytest.raises(InvalidArchiveError):
        await coordinator.restore(FileArchiveSource(path))

    assert coordinator.state == RestoreState.FAILED
    assert await snapshot_without_derived(test_engine) == before


@pytest.mark.asyncio
async def test_partial_blob_failure_reports_warnings(test_engine, blob_store, tmp_path):
    archive_path = write_archive(
        tmp_path / "blobs.zip",
        {"categories": [{"id": 1, "name": "ICs"}]},
        {"ok.jpg": b"fine", "bad.jpg": b"fails"},
    )
    real_put = blob_store.put

    async def flaky_put(key, data, content_type=None):
        if key == "bad.jpg":
            raise BlobStoreError("disk full", context={"key": key})
        await real_put(key, data, content_type)

    blob_store.put = AsyncMock(side_effect=flaky_put)
    coordinator = RestoreCoordinator(test_engine, blob_store)

    result = await coordinator.restore(FileArchiveSource(archive_path))

    assert result.status == "completed_with_warnings"
    assert result.failed_blob_keys == ["bad.jpg"]
    assert result.blobs_migrated == 1
    assert coordinator.state == RestoreState.DONE
    assert await count(test_engine, "categories") == 1


@pytest.mark.asyncio
async def test_scratch_directory_and_source_released(test_engine, blob_store, tmp_path):
    archive_path = write_archive(tmp_path / "a.zip", {"tags": [{"id": 1, "name": "smd"}]})
    scratch = tmp_path / "scratch"
    scratch.mkdir()

    source = FileArchiveSource(archive_path)
    source.release = AsyncMock()
    await RestoreCoordinator(test_engine, blob_store, temp_dir=str(scratch)).restore(source)

    assert list(scratch.iterdir()) == []
    source.release.assert_awaited_once()
    # Local-file sources are left in place
    assert archive_path.exists()


@pytest.mark.asyncio
async def test_managed_tables_absent_from_archive_are_emptied(test_engine, blob_store, seeded_inventory, tmp_path):
    archive_path = write_archive(tmp_path / "only_tags.zip", {"tags": [{"id": 5, "name": "new"}]})

    await RestoreCoordinator(test_engine, blob_store).restore(FileArchiveSource(archive_path))

    for table in SNAPSHOT_TABLES:
        expected = 1 if table == "tags" else 0
        assert await count(test_engine, table) == expected


@pytest.mark.asyncio
async def test_unreadable_blob_entry_reports_warnings(test_engine, blob_store, tmp_path, make_entry_unreadable):
    archive_path = write_archive(
        tmp_path / "mixed.zip",
        {"categories": [{"id": 1, "name": "ICs"}]},
        {"a.jpg": b"unsupported method", "b.jpg": b"stored fine"},
    )
    make_entry_unreadable(archive_path, "uploads/a.jpg")
    coordinator = RestoreCoordinator(test_engine, blob_store)

    result = await coordinator.restore(FileArchiveSource(archive_path))

    assert result.status == "completed_with_warnings"
    assert result.failed_blob_keys == ["a.jpg"]
    assert result.blobs_migrated == 1
    assert await blob_store.get("b.jpg") == b"stored fine"
    assert not await blob_store.exists("a.jpg")
    assert coordinator.state == RestoreState.DONE
    assert coordinator.history[-2:] == [RestoreState.BLOB_MIGRATING, RestoreState.DONE]
    assert await count(test_engine, "categories") == 1


@pytest.mark.asyncio
async def test_unreadable_manifest_is_invalid_archive(test_engine, blob_store, seeded_inventory, tmp_path, make_entry_unreadable):
    before = await snapshot_without_derived(test_engine)
    archive_path = write_archive(tmp_path / "manifest.zip", {"tags": [{"id": 9, "name": "x"}]})
    make_entry_unreadable(archive_path, MANIFEST_NAME)
    coordinator = RestoreCoordinator(test_engine, blob_store)

    with pytest.raises(InvalidArchiveError) as exc_info:
        await coordinator.restore(FileArchiveSource(archive_path))

    assert exc_info.value.context["reason"] == "corrupt_manifest"
    assert coordinator.state == RestoreState.FAILED
    assert await snapshot_without_derived(test_engine) == before


class MissingStagedSource(ArchiveSource):
    name = "missing.zip"

    async def fetch(self, workdir):
        raise StagedArchiveNotFoundError("Staged archive not found", context={"key": "staging/missing.zip"})


@pytest.mark.asyncio
async def test_failure_logs_state_it_happened_in(test_engine, blob_store, caplog):
    coordinator = RestoreCoordinator(test_engine, blob_store)

    with caplog.at_level(logging.ERROR, logger="backup.restore"):
        with pytest.raises(StagedArchiveNotFoundError):
            await coordinator.restore(MissingStagedSource())

    assert coordinator.state == RestoreState.FAILED
    assert "Restore failed in state idle" in caplog.text
    assert "in state failed" not in caplog.text


@pytest.mark.asyncio
async def test_rolled_back_restore_logs_rolled_back_state(test_engine, blob_store, tmp_path, caplog):
    archive_path = write_archive(
        tmp_path / "bad.zip",
        {"categories": [{"id": 1, "name": "A"}, {"id": 1, "name": "B"}]},
    )

    with caplog.at_level(logging.ERROR, logger="backup.restore"):
        with pytest.raises(TransactionFailedError):
            await RestoreCoordinator(test_engine, blob_store).restore(FileArchiveSource(archive_path))

    assert "Restore failed in state rolled_back" in caplog.text
