"""Tests for the download service."""
import asyncio

import pytest

from asset_cdn.errors import CDNError, ErrorCode
from asset_cdn.services.download import CACHE_CONTROL, DownloadService
from asset_cdn.services.image_processor import TransformOptions

pytestmark = pytest.mark.anyio


@pytest.fixture
def stored_file(services, as_chunks):
    """Write bytes through storage and insert a safe record for them, skipping validation."""

    async def _store(data: bytes, filename: str, category: str, mime_type: str, optimizable: bool = True):
        saved = await services.storage.save(as_chunks(data), filename, category)
        async with services.files.session_factory() as db:
            record = await services.files.add_validated(
                db,
                filename=filename,
                stored_filename=saved.stored_filename,
                category=category,
                mime_type=mime_type,
                file_size=saved.size,
                file_extension="." + filename.rsplit(".", 1)[-1],
                storage_path=saved.storage_path,
                is_optimizable=optimizable,
                hash_sha256=saved.hash_sha256,
            )
            await db.commit()
            await db.refresh(record)
        return record

    return _store


async def test_fetch_by_id_and_by_stored_filename(services, stored_file):
    record = await stored_file(b"%PDF-1.4 test", "doc.pdf", "document", "application/pdf")

    by_id = await services.downloads.fetch(str(record.id))
    by_name = await services.downloads.fetch(record.stored_filename)

    for result in (by_id, by_name):
        assert result.record.id == record.id
        assert result.media_type == "application/pdf"
        assert result.path.read_bytes() == b"%PDF-1.4 test"
        assert result.headers["Cache-Control"] == CACHE_CONTROL
        assert result.headers["ETag"] == f'"{record.hash_sha256}"'


async def test_unknown_identifier_is_not_found(services):
    for identifier in ("00000000-0000-0000-0000-000000000000", "nothing.png", "../../etc/passwd"):
        with pytest.raises(CDNError) as exc:
            await services.downloads.fetch(identifier)
        assert exc.value.error is ErrorCode.FILE_NOT_FOUND


async def test_record_without_bytes_is_not_found(services, stored_file):
    record = await stored_file(b"hello", "a.txt", "document", "text/plain")
    await services.storage.delete(record.stored_filename, "document")

    with pytest.raises(CDNError) as exc:
        await services.downloads.fetch(str(record.id))
    assert exc.value.status_code == 404


async def test_download_counter_survives_concurrency(services, stored_file):
    """Ten downloads, some simultaneous, add exactly ten."""
    record = await stored_file(b"count me", "c.txt", "document", "text/plain")

    await asyncio.gather(*(services.downloads.fetch(str(record.id)) for _ in range(5)))
    for _ in range(5):
        await services.downloads.fetch(record.stored_filename)

    assert (await services.files.find_by_id(record.id)).download_count == 10


async def test_image_transform(services, stored_file, make_image):
    record = await stored_file(make_image("PNG", size=(400, 200)), "p.png", "image", "image/png")

    result = await services.downloads.fetch(str(record.id), TransformOptions(width=100, format=None))

    assert result.transformed
    assert result.media_type == "image/webp"
    assert result.content
    assert result.path is None
    assert result.headers["ETag"] != f'"{record.hash_sha256}"'


async def test_plain_request_serves_original_image(services, stored_file, make_image):
    data = make_image("PNG")
    record = await stored_file(data, "p.png", "image", "image/png")

    result = await services.downloads.fetch(str(record.id), TransformOptions(format=None))
    assert not result.transformed
    assert result.path.read_bytes() == data


async def test_transform_failure_falls_back_to_original(services, stored_file):
    data = b"\x89PNG\r\n\x1a\nbroken image bytes"
    record = await stored_file(data, "bad.png", "image", "image/png")

    result = await services.downloads.fetch(str(record.id), TransformOptions(width=50, format="webp"))

    assert not result.transformed
    assert result.media_type == "image/png"
    assert result.path.read_bytes() == data


async def test_non_images_ignore_transform_parameters(services, stored_file):
    record = await stored_file(b"a,b\n", "t.csv", "document", "text/csv")
    result = await services.downloads.fetch(str(record.id), TransformOptions(width=50, format="png"))
    assert not result.transformed
    assert result.media_type == "text/csv"


async def test_optimization_disabled_serves_original(services, stored_file, make_image):
    record = await stored_file(make_image("PNG"), "p.png", "image", "image/png")
    downloads = DownloadService(services.files, services.storage, services.transforms, enable_optimization=False)

    result = await downloads.fetch(str(record.id), TransformOptions(width=10, format="png"))
    assert not result.transformed
