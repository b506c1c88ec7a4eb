"""
Pytest configuration and fixtures
"""

import os
import struct
import tempfile

# Settings are read at import time; point them at throwaway resources first
_TEST_ROOT = tempfile.mkdtemp(prefix="inventory-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_TEST_ROOT}/app.db")
os.environ.setdefault("BLOB_BACKEND", "local")
os.environ.setdefault("UPLOAD_DIR", os.path.join(_TEST_ROOT, "uploads"))
os.environ.setdefault("ENVIRONMENT", "test")

import pytest
import pytest_asyncio
import httpx
from datetime import datetime
from typing import AsyncGenerator
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

from core.database import enable_sqlite_foreign_keys
from models import Base, Category, Location, Tag, Part, StorageLog, part_tags
from storage.local import LocalBlobStore


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """SQLite test database with foreign keys enforced"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
        poolclass=NullPool,  # Disable connection pooling for tests
    )
    enable_sqlite_foreign_keys(engine)

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests"""
    async_session_maker = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def blob_store(tmp_path):
    store = LocalBlobStore(tmp_path / "uploads")
    (tmp_path / "uploads" / ".gitkeep").touch()
    return store


@pytest.fixture
def inventory_blobs():
    """Blob contents referenced by the seeded parts"""
    return {
        "1700000000-resistor.jpg": b"\xff\xd8\xff\xe0 fake jpeg",
        "datasheets/ne555.pdf": b"%PDF-1.4 fake datasheet",
    }


@pytest_asyncio.fixture
async def seeded_inventory(test_engine, blob_store, inventory_blobs):
    """
    Two categories, two locations, two tags, two parts (one with files),
    tag links and a storage log, plus the files in the blob store.
    """
    created = datetime(2024, 1, 15, 10, 30, 0)
    async with test_engine.begin() as conn:
        await conn.execute(insert(Category.__table__), [
            {"id": 1, "name": "Resistors", "display_order": 0},
            {"id": 2, "name": "ICs", "display_order": 1},
        ])
        await conn.execute(insert(Location.__table__), [
            {"id": 1, "name": "Box A", "description": "Red huge box", "qr_code": "LOC-A", "display_order": 0},
            {"id": 2, "name": "Box B", "description": "Blue small box", "qr_code": None, "display_order": 1},
        ])
        await conn.execute(insert(Tag.__table__), [
            {"id": 1, "name": "smd", "display_order": 0},
            {"id": 2, "name": "through-hole", "display_order": 1},
        ])
        await conn.execute(insert(Part.__table__), [
            {
                "id": 1, "name": "10k resistor", "description": "1/4W", "category_id": 1, "location_id": 1,
                "quantity": 250, "image_path": "uploads/1700000000-resistor.jpg", "datasheet_url": None,
                "datasheet_path": None, "qr_code": "PART-1", "created_at": created, "updated_at": created,
            },
            {
                "id": 2, "name": "NE555", "description": "Timer IC", "category_id": 2, "location_id": 2,
                "quantity": 12, "image_path": None, "datasheet_url": "https://example.com/ne555",
                "datasheet_path": "uploads/datasheets/ne555.pdf", "qr_code": None,
                "created_at": created, "updated_at": created,
            },
        ])
        await conn.execute(insert(part_tags), [
            {"part_id": 1, "tag_id": 1},
            {"part_id": 1, "tag_id": 2},
            {"part_id": 2, "tag_id": 2},
        ])
        await conn.execute(insert(StorageLog.__table__), [
            {"id": 1, "part_id": 1, "location_id": 1, "memo": "initial stock", "created_at": created},
        ])

    for key, data in inventory_blobs.items():
        await blob_store.put(key, data)

    return {"created_at": created}


@pytest_asyncio.fixture
async def client(test_engine, db_session, blob_store):
    """API client with database and blob store overridden"""
    from api.main import app
    from api.dependencies import get_db, get_engine, get_store

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_engine] = lambda: test_engine
    app.dependency_overrides[get_store] = lambda: blob_store

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client

    app.dependency_overrides.clear()


def _set_compression_method(path, entry_name, method):
    """Rewrite one stored entry's compression method in both ZIP headers"""
    data = bytearray(path.read_bytes())
    name = entry_name.encode()
    patched = 0
    # (signature, name length offset, name offset, method offset)
    for signature, name_len_at, name_at, method_at in (
        (b"PK\x03\x04", 26, 30, 8),
        (b"PK\x01\x02", 28, 46, 10),
    ):
        start = 0
        while True:
            i = data.find(signature, start)
            if i < 0:
                break
            length = struct.unpack_from("<H", data, i + name_len_at)[0]
            if bytes(data[i + name_at:i + name_at + length]) == name:
                struct.pack_into("<H", data, i + method_at, method)
                patched += 1
            start = i + 4
    assert patched == 2, f"{entry_name} not found in {path}"
    path.write_bytes(bytes(data))
    return path


@pytest.fixture
def make_entry_unreadable():
    """Mark an archive entry with a compression method zipfile cannot read"""
    def _make(path, entry_name):
        return _set_compression_method(path, entry_name, 99)
    return _make
