"""Tests for hashing and naming helpers."""
import hashlib
import re

from asset_cdn.services.file_utils import (
    format_file_size,
    generate_secure_token,
    generate_unique_filename,
    get_file_extension,
    sanitize_filename,
    sha256_hex,
)


def test_secure_token_is_64_hex_chars():
    """Default tokens carry 32 bytes of entropy, hex encoded."""
    token = generate_secure_token()
    assert re.fullmatch(r"[0-9a-f]{64}", token)
    assert generate_secure_token() != token


def test_sha256_hex_matches_hashlib():
    assert sha256_hex(b"abc") == hashlib.sha256(b"abc").hexdigest()


def test_get_file_extension():
    assert get_file_extension("photo.JPG") == ".jpg"
    assert get_file_extension("archive.tar.gz") == ".gz"
    assert get_file_extension("README") == ""
    assert get_file_extension(".bashrc") == ""
    assert get_file_extension("dir\\sub/file.Png") == ".png"
    assert get_file_extension("") == ""


def test_unique_filename_keeps_safe_extension_only():
    """Stored names never carry anything from the client except a short extension."""
    name = generate_unique_filename("../../etc/passwd.png")
    assert re.fullmatch(r"[0-9a-f]{32}\.png", name)

    weird = generate_unique_filename("payload.p$p")
    assert re.fullmatch(r"[0-9a-f]{32}", weird)

    assert generate_unique_filename("a.png") != generate_unique_filename("a.png")


def test_sanitize_filename_strips_directories_and_specials():
    assert sanitize_filename("../../secret file (1).pdf") == "secret_file_1_.pdf"
    assert sanitize_filename("C:\\Users\\me\\pic.png") == "pic.png"
    assert len(sanitize_filename("a" * 400 + ".txt")) == 255


def test_format_file_size():
    assert format_file_size(512) == "512.00 B"
    assert format_file_size(1024 * 1024) == "1.00 MB"
    assert format_file_size(1536) == "1.50 KB"
