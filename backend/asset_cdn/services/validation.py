"""Multi-layer content validation for stored uploads.

Checks, in order:
1. Extension whitelist for the category (client filename)
2. Declared MIME whitelist for the category
3. MIME sniffing: magic bytes of the first few KB must agree with the
   declared type
4. Size limit (the tighter of the category and token limits)
5. Heuristic malware scan
6. Image integrity, image category only and only when 1-5 passed

Every check runs and every failure is reported, so callers get the full list
of reasons. Any `valid=False` means reject and roll back storage.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path

import aiofiles
import aiofiles.os
from PIL import Image

from asset_cdn.services.categories import (
    IMAGE,
    get_max_size,
    is_allowed_extension,
    is_allowed_mime,
    normalize_mime,
)
from asset_cdn.services.file_utils import format_file_size, get_file_extension
from asset_cdn.services.malware import MalwareScanner, MalwareScanResult
from asset_cdn.services.sniffing import verify_mime

logger = logging.getLogger(__name__)

SVG_MIME = "image/svg+xml"
# XML declarations, doctypes and comments can push the root well past the sniff window
SVG_ROOT_SCAN_BYTES = 256 * 1024


@dataclass
class ValidationOptions:
    enable_malware_scan: bool = True
    enable_mime_verification: bool = True
    max_size: int | None = None


@dataclass
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    category: str | None = None
    detected_mime: str | None = None
    file_size: int | None = None
    malware_scan: MalwareScanResult | None = None

    @property
    def malware_detected(self) -> bool:
        return self.malware_scan is not None and not self.malware_scan.safe


def check_image_integrity(file_path: Path) -> str | None:
    """Decode a raster image. Returns an error string, or None when it is sound."""
    try:
        with Image.open(file_path) as img:
            img.verify()
        # verify() leaves the image unusable; reopen to read the real size
        with Image.open(file_path) as img:
            width, height = img.size
    except Exception as e:
        return f"Image file is corrupted or invalid: {type(e).__name__}"
    if width <= 0 or height <= 0:
        return "Image file is corrupted or invalid: no dimensions"
    return None


def check_svg_integrity(file_path: Path, limit: int = SVG_ROOT_SCAN_BYTES) -> str | None:
    """The <svg> root must appear within the first `limit` bytes, after any prolog."""
    with open(file_path, "rb") as f:
        head = f.read(limit)
    text = head.lstrip(b"\xef\xbb\xbf \t\r\n").lower()
    if not text.startswith(b"<") or b"<svg" not in text:
        return "Image file is corrupted or invalid: not an SVG document"
    return None


class ContentValidator:
    """Runs the ordered chain of independent checks over a stored file."""

    def __init__(self, scanner: MalwareScanner | None = None, sniff_bytes: int = 4096):
        self.scanner = scanner or MalwareScanner()
        self.sniff_bytes = sniff_bytes

    async def validate(
        self,
        file_path: Path | str,
        category: str,
        declared_mime: str,
        *,
        filename: str | None = None,
        options: ValidationOptions | None = None,
    ) -> ValidationResult:
        """Validate a file on disk.

        Args:
            file_path: Where the bytes were stored.
            category: Category the upload was classified as.
            declared_mime: Client-declared content type.
            filename: Client filename, used for the extension check. Defaults
                to the stored file's name.
            options: Feature flags and an optional tighter size limit.
        """
        options = options or ValidationOptions()
        file_path = Path(file_path)
        filename = filename or file_path.name
        declared_mime = normalize_mime(declared_mime)
        errors: list[str] = []
        warnings: list[str] = []

        if not await aiofiles.os.path.isfile(file_path):
            return ValidationResult(valid=False, errors=["File does not exist"], category=category)

        # 1. Extension
        if not is_allowed_extension(filename, category):
            ext = get_file_extension(filename) or "(none)"
            errors.append(f"File extension '{ext}' is not allowed for category '{category}'")

        # 2. Declared MIME whitelist
        if not is_allowed_mime(declared_mime, category):
            errors.append(f"MIME type '{declared_mime or '(none)'}' is not allowed for category '{category}'")

        # 3. Sniffing
        detected_mime = declared_mime
        head = b""
        try:
            async with aiofiles.open(file_path, "rb") as f:
                head = await f.read(self.sniff_bytes)
        except OSError as e:
            logger.warning(f"Could not read {file_path.name} for MIME sniffing: {e}")
            warnings.append("Could not verify MIME type")
        else:
            if options.enable_mime_verification:
                verified, detected = verify_mime(head, declared_mime)
                detected_mime = detected
                if not verified:
                    errors.append(
                        f"MIME type mismatch: declared '{declared_mime}', detected '{detected or 'unknown'}'"
                    )

        # 4. Size
        stat = await aiofiles.os.stat(file_path)
        max_size = get_max_size(category)
        if options.max_size is not None:
            max_size = min(max_size, options.max_size)
        if stat.st_size > max_size:
            errors.append(
                f"File size {format_file_size(stat.st_size)} exceeds maximum allowed size "
                f"{format_file_size(max_size)} for category '{category}'"
            )

        # 5. Malware heuristics
        malware_scan = None
        if options.enable_malware_scan:
            malware_scan = await self.scanner.scan_file(file_path, category)
            if not malware_scan.safe:
                errors.append(f"Security validation failed: {malware_scan.details}")

        # 6. Image integrity
        if category == IMAGE and not errors:
            if declared_mime == SVG_MIME or get_file_extension(filename) == ".svg":
                problem = await asyncio.to_thread(check_svg_integrity, file_path)
            else:
                problem = await asyncio.to_thread(check_image_integrity, file_path)
            if problem:
                errors.append(problem)

        return ValidationResult(
            valid=not errors,
            errors=errors,
            warnings=warnings,
            category=category,
            detected_mime=detected_mime,
            file_size=stat.st_size,
            malware_scan=malware_scan,
        )

