"""Tests for the category table and classifier."""
import pytest

from asset_cdn.services.categories import (
    ARCHIVE,
    AUDIO,
    CATEGORIES,
    DOCUMENT,
    IMAGE,
    OTHER,
    VIDEO,
    category_from_extension,
    category_from_mime,
    classify,
    get_max_size,
    is_allowed_extension,
    is_allowed_mime,
    is_optimizable,
    normalize_mime,
)

MB = 1024 * 1024


def test_all_categories_present():
    assert set(CATEGORIES) == {IMAGE, VIDEO, DOCUMENT, AUDIO, ARCHIVE, OTHER}


@pytest.mark.parametrize(
    "category, size",
    [(IMAGE, 10 * MB), (VIDEO, 500 * MB), (DOCUMENT, 20 * MB), (AUDIO, 50 * MB), (ARCHIVE, 100 * MB), (OTHER, 10 * MB)],
)
def test_max_sizes(category, size):
    assert get_max_size(category) == size


def test_optimizable_flags():
    assert is_optimizable(IMAGE)
    assert is_optimizable(VIDEO)
    assert not is_optimizable(DOCUMENT)
    assert not is_optimizable(OTHER)


def test_normalize_mime():
    assert normalize_mime("Image/JPEG; charset=binary") == "image/jpeg"
    assert normalize_mime(None) == ""


def test_category_from_extension():
    assert category_from_extension("a.PNG") == IMAGE
    assert category_from_extension("clip.mkv") == VIDEO
    assert category_from_extension("notes.txt") == DOCUMENT
    assert category_from_extension("song.flac") == AUDIO
    assert category_from_extension("backup.7z") == ARCHIVE
    assert category_from_extension("binary.exe") == OTHER
    assert category_from_extension("noext") == OTHER


def test_category_from_mime():
    assert category_from_mime("image/webp") == IMAGE
    assert category_from_mime("application/pdf") == DOCUMENT
    assert category_from_mime("application/x-msdownload") == OTHER
    assert category_from_mime("") == OTHER


def test_classify_prefers_mime_over_extension():
    """A spoofed filename does not override a recognized declared type."""
    assert classify("picture.pdf", "image/png") == IMAGE


def test_classify_falls_back_to_extension_then_other():
    assert classify("picture.png", "application/octet-stream") == IMAGE
    assert classify("thing.bin", "application/octet-stream") == OTHER
    assert classify(None, None) == OTHER


def test_allowed_extension_and_mime():
    assert is_allowed_extension("x.jpeg", IMAGE)
    assert not is_allowed_extension("x.exe", IMAGE)
    assert not is_allowed_extension("noext", IMAGE)
    assert is_allowed_mime("text/csv", DOCUMENT)
    assert not is_allowed_mime("text/html", DOCUMENT)
    assert not is_allowed_mime("anything/at-all", OTHER)
