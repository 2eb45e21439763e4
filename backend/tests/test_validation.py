"""Tests for the content validator and MIME sniffing."""
import pytest

from asset_cdn.services import sniffing
from asset_cdn.services.validation import ContentValidator, ValidationOptions
from conftest import requires_libmagic

pytestmark = pytest.mark.anyio

NO_SNIFF = ValidationOptions(enable_mime_verification=False)


@pytest.fixture
def validator():
    return ContentValidator()


def write(tmp_path, name: str, data: bytes):
    path = tmp_path / name
    path.write_bytes(data)
    return path


# ============================================================================
# STRUCTURAL CHECKS
# ============================================================================


async def test_valid_png_passes(tmp_path, validator, make_image):
    path = write(tmp_path, "stored.png", make_image("PNG"))
    result = await validator.validate(path, "image", "image/png", filename="photo.png", options=NO_SNIFF)

    assert result.valid, result.errors
    assert result.file_size == path.stat().st_size
    assert result.malware_scan is not None and result.malware_scan.safe


async def test_all_failures_are_reported(tmp_path, validator):
    """Errors are aggregated rather than stopping at the first one."""
    path = write(tmp_path, "stored", b"MZ\x90\x00" + b"\x00" * 64)
    result = await validator.validate(
        path, "image", "application/x-msdownload", filename="tool.exe", options=NO_SNIFF
    )

    assert not result.valid
    joined = " | ".join(result.errors)
    assert "extension '.exe'" in joined
    assert "MIME type 'application/x-msdownload'" in joined
    assert result.malware_detected
    assert len(result.errors) >= 3


async def test_extension_check_uses_client_filename(tmp_path, validator, make_image):
    path = write(tmp_path, "0123abcd.png", make_image("PNG"))
    result = await validator.validate(path, "image", "image/png", filename="photo.txt", options=NO_SNIFF)
    assert not result.valid
    assert any("'.txt'" in e for e in result.errors)


async def test_size_limit_uses_tighter_override(tmp_path, validator, make_image):
    data = make_image("PNG", size=(256, 256))
    path = write(tmp_path, "big.png", data)

    tight = ValidationOptions(enable_mime_verification=False, max_size=len(data) - 1)
    result = await validator.validate(path, "image", "image/png", filename="big.png", options=tight)
    assert not result.valid
    assert any("exceeds maximum allowed size" in e for e in result.errors)

    exact = ValidationOptions(enable_mime_verification=False, max_size=len(data))
    result = await validator.validate(path, "image", "image/png", filename="big.png", options=exact)
    assert result.valid


async def test_script_disguised_as_jpeg_fails(tmp_path, validator):
    path = write(tmp_path, "evil.jpg", b"<?php system($_GET['cmd']); ?>")
    result = await validator.validate(path, "image", "image/jpeg", filename="evil.jpg", options=NO_SNIFF)
    assert not result.valid
    assert result.malware_detected


async def test_malware_scan_can_be_disabled(tmp_path, validator):
    path = write(tmp_path, "notes.txt", b"<script>alert(1)</script>")
    options = ValidationOptions(enable_malware_scan=False, enable_mime_verification=False)
    result = await validator.validate(path, "document", "text/plain", filename="notes.txt", options=options)
    assert result.valid
    assert result.malware_scan is None


async def test_missing_file(tmp_path, validator):
    result = await validator.validate(tmp_path / "nope.png", "image", "image/png", options=NO_SNIFF)
    assert not result.valid
    assert result.errors == ["File does not exist"]


# ============================================================================
# IMAGE INTEGRITY
# ============================================================================


async def test_corrupt_image_fails_integrity(tmp_path, validator):
    path = write(tmp_path, "broken.png", b"\x89PNG\r\n\x1a\n" + b"\x00garbage" * 20)
    result = await validator.validate(path, "image", "image/png", filename="broken.png", options=NO_SNIFF)
    assert not result.valid
    assert any("corrupted or invalid" in e for e in result.errors)


async def test_integrity_skipped_when_earlier_checks_fail(tmp_path, validator):
    path = write(tmp_path, "broken.png", b"\x89PNG\r\n\x1a\n" + b"\x00garbage" * 20)
    result = await validator.validate(path, "image", "image/png", filename="broken.bin", options=NO_SNIFF)
    assert not result.valid
    assert not any("corrupted" in e for e in result.errors)


async def test_clean_svg_passes_and_scripted_svg_fails(tmp_path, validator):
    clean = write(tmp_path, "logo.svg", b'<?xml version="1.0"?><svg xmlns="http://www.w3.org/2000/svg"><rect/></svg>')
    result = await validator.validate(clean, "image", "image/svg+xml", filename="logo.svg", options=NO_SNIFF)
    assert result.valid, result.errors

    scripted = write(tmp_path, "x.svg", b'<svg xmlns="http://www.w3.org/2000/svg" onload="steal()"/>')
    result = await validator.validate(scripted, "image", "image/svg+xml", filename="x.svg", options=NO_SNIFF)
    assert result.malware_detected


async def test_svg_root_after_long_prolog(tmp_path, validator):
    """The root element may sit well past the first few KB."""
    prolog = b'<?xml version="1.0"?>\n<!-- ' + b"layer notes " * 1000 + b"-->\n"
    assert len(prolog) > 4096
    path = write(tmp_path, "badge.svg", prolog + b'<svg xmlns="http://www.w3.org/2000/svg"><circle r="4"/></svg>')
    result = await validator.validate(path, "image", "image/svg+xml", filename="badge.svg", options=NO_SNIFF)
    assert result.valid, result.errors

    not_svg = write(tmp_path, "fake.svg", prolog + b"<html><body></body></html>")
    result = await validator.validate(not_svg, "image", "image/svg+xml", filename="fake.svg", options=NO_SNIFF)
    assert any("not an SVG document" in e for e in result.errors)


# ============================================================================
# MIME SNIFFING
# ============================================================================


async def test_undetermined_type_passes_only_for_text(tmp_path, validator, monkeypatch):
    """When nothing can be sniffed, only text-like declarations pass."""
    monkeypatch.setattr(sniffing, "detect_mime", lambda raw: None)
    options = ValidationOptions(enable_malware_scan=False)

    text = write(tmp_path, "a.csv", b"a,b\n1,2\n")
    assert (await validator.validate(text, "document", "text/csv", filename="a.csv", options=options)).valid

    pdf = write(tmp_path, "a.pdf", b"not really a pdf")
    result = await validator.validate(pdf, "document", "application/pdf", filename="a.pdf", options=options)
    assert not result.valid
    assert any("MIME type mismatch" in e for e in result.errors)


def test_mime_aliases():
    assert sniffing.mime_matches("image/bmp", "image/x-ms-bmp")
    assert sniffing.mime_matches("audio/wav", "audio/x-wav")
    assert sniffing.mime_matches("text/csv", "text/plain")
    assert not sniffing.mime_matches("image/jpeg", "image/png")


@requires_libmagic
async def test_sniffing_detects_real_jpeg(tmp_path, validator, make_image):
    path = write(tmp_path, "p.jpg", make_image("JPEG"))
    result = await validator.validate(path, "image", "image/jpeg", filename="p.jpg")
    assert result.valid, result.errors
    assert result.detected_mime == "image/jpeg"


@requires_libmagic
async def test_sniffing_rejects_png_declared_as_jpeg(tmp_path, validator, make_image):
    path = write(tmp_path, "p.jpg", make_image("PNG"))
    result = await validator.validate(path, "image", "image/jpeg", filename="p.jpg")
    assert not result.valid
    assert any("declared 'image/jpeg', detected 'image/png'" in e for e in result.errors)
