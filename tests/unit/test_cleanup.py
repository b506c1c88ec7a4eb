"""
Unit tests for best-effort blob deletion
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from core.exceptions import BlobNotFoundError, BlobStoreError
from storage.cleanup import discard_blobs


@pytest.mark.asyncio
async def test_deletes_every_key():
    store = MagicMock()
    store.delete = AsyncMock()

    failed = await discard_blobs(store, ["a.jpg", "b.pdf"])

    assert failed == []
    assert store.delete.await_count == 2


@pytest.mark.asyncio
async def test_continues_past_failures_and_reports_them():
    store = MagicMock()
    store.delete = AsyncMock(side_effect=[
        BlobStoreError("boom", context={"key": "a.jpg"}),
        None,
        BlobNotFoundError("gone", context={"key": "c.jpg"}),
    ])

    failed = await discard_blobs(store, ["a.jpg", "b.jpg", "c.jpg"])

    assert failed == ["a.jpg", "c.jpg"]
    assert store.delete.await_count == 3


@pytest.mark.asyncio
async def test_real_store_missing_key(blob_store):
    await blob_store.put("a.jpg", b"data")

    failed = await discard_blobs(blob_store, ["a.jpg", "never-existed.jpg"])

    assert failed == ["never-existed.jpg"]
    assert not await blob_store.exists("a.jpg")
