"""Tests for the local storage engine."""
import hashlib

import pytest

from asset_cdn.errors import ErrorCode, StorageError
from asset_cdn.services.storage import StorageEngine

pytestmark = pytest.mark.anyio


@pytest.fixture
async def storage(tmp_path):
    engine = StorageEngine(tmp_path / "store")
    await engine.ensure_directories()
    return engine


async def test_save_streams_hashes_and_partitions(storage, as_chunks):
    data = b"hello world" * 5000
    saved = await storage.save(as_chunks(data, 1000), "greeting.TXT", "document")

    assert saved.size == len(data)
    assert saved.hash_sha256 == hashlib.sha256(data).hexdigest()
    assert saved.stored_filename.endswith(".txt")
    assert saved.storage_path == f"raw/document/{saved.stored_filename}"
    assert not saved.truncated
    assert storage.get_path(saved.stored_filename, "document").read_bytes() == data


async def test_save_stops_past_max_bytes(storage, as_chunks):
    """Oversized streams are cut off instead of being written in full."""
    data = b"x" * 50_000
    saved = await storage.save(as_chunks(data, 4096), "big.txt", "document", max_bytes=10_000)

    assert saved.truncated
    assert saved.size > 10_000
    assert storage.get_path(saved.stored_filename, "document").stat().st_size <= 10_000


async def test_save_exactly_at_max_bytes_is_not_truncated(storage, as_chunks):
    saved = await storage.save(as_chunks(b"y" * 10_000, 4096), "ok.txt", "document", max_bytes=10_000)
    assert not saved.truncated
    assert saved.size == 10_000


async def test_delete_is_idempotent(storage, as_chunks):
    saved = await storage.save(as_chunks(b"abc"), "a.txt", "document")
    assert await storage.exists(saved.stored_filename, "document")
    assert await storage.delete(saved.stored_filename, "document") is True
    assert await storage.delete(saved.stored_filename, "document") is False
    assert not await storage.exists(saved.stored_filename, "document")


async def test_discard_never_raises(storage):
    await storage.discard("../../escape", "document")


@pytest.mark.parametrize("name", ["../outside.txt", "../../etc/passwd", "..", "", "sub/dir.txt"])
def test_safe_join_rejects_escapes(tmp_path, name):
    storage = StorageEngine(tmp_path / "store")
    with pytest.raises(StorageError) as exc:
        storage.get_path(name, "image")
    assert exc.value.error is ErrorCode.SECURITY_PATH_TRAVERSAL


def test_unknown_category_is_rejected(tmp_path):
    storage = StorageEngine(tmp_path / "store")
    with pytest.raises(StorageError):
        storage.get_path("file.png", "../raw")


async def test_read_bytes_and_stream(storage, as_chunks):
    data = bytes(range(256)) * 1000
    saved = await storage.save(as_chunks(data), "blob.bin", "other")

    assert await storage.read_bytes(saved.stored_filename, "other") == data
    streamed = b"".join([c async for c in storage.open_stream(saved.stored_filename, "other", chunk_size=777)])
    assert streamed == data
    assert await storage.size(saved.stored_filename, "other") == len(data)


async def test_read_missing_file(storage):
    with pytest.raises(StorageError) as exc:
        await storage.read_bytes("missing.png", "image")
    assert exc.value.error is ErrorCode.FILE_NOT_FOUND


async def test_write_atomic_replaces_content(storage):
    path = storage.cache_path("abc_q80.webp", "image")
    await storage.write_atomic(path, b"first")
    await storage.write_atomic(path, b"second")

    assert path.read_bytes() == b"second"
    assert [p.name for p in path.parent.iterdir()] == ["abc_q80.webp"]
