"""MIME sniffing from magic bytes.

Design decisions:
- python-magic (libmagic) detects the real type from the file prefix
- Client-declared types are never trusted on their own
- libmagic reports some formats under a different (older or more generic)
  name than browsers send; MIME_ALIASES lists the sniffer answers that count
  as a match for each declared type
- "application/octet-stream" and the empty markers mean "could not tell";
  callers then only accept text-like declared types
"""
import logging

from asset_cdn.services.categories import normalize_mime

logger = logging.getLogger(__name__)

UNDETERMINED = {"application/octet-stream", "application/x-empty", "inode/x-empty"}

TEXT_LIKE = {"application/json", "application/xml"}

_OOXML_CONTAINERS = {"application/zip", "application/octet-stream"}
_OLE_CONTAINERS = {"application/cdfv2", "application/x-ole-storage", "application/vnd.ms-office"}

MIME_ALIASES: dict[str, set[str]] = {
    "image/bmp": {"image/x-ms-bmp", "image/x-bmp"},
    "image/x-icon": {"image/vnd.microsoft.icon", "image/ico"},
    "image/svg+xml": {"text/xml", "application/xml", "text/plain"},
    "video/x-ms-wmv": {"video/x-ms-asf"},
    "video/x-matroska": {"video/webm"},
    "audio/wav": {"audio/x-wav", "audio/wave", "audio/vnd.wave"},
    "audio/ogg": {"application/ogg", "audio/x-vorbis+ogg"},
    "audio/mp4": {"audio/x-m4a", "video/mp4", "audio/m4a"},
    "audio/flac": {"audio/x-flac"},
    "audio/aac": {"audio/x-hx-aac-adts", "audio/x-aac"},
    "audio/x-ms-wma": {"video/x-ms-asf", "audio/x-ms-asf"},
    "text/csv": {"text/plain"},
    "application/gzip": {"application/x-gzip"},
    "application/x-rar-compressed": {"application/x-rar", "application/vnd.rar"},
    "application/msword": _OLE_CONTAINERS,
    "application/vnd.ms-excel": _OLE_CONTAINERS,
    "application/vnd.ms-powerpoint": _OLE_CONTAINERS,
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": _OOXML_CONTAINERS,
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": _OOXML_CONTAINERS,
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": _OOXML_CONTAINERS,
}


def detect_mime(raw: bytes) -> str | None:
    """Detect the MIME type of a byte prefix with libmagic.

    Returns None when libmagic is unavailable or cannot tell.
    """
    try:
        import magic  # type: ignore
    except Exception:
        logger.warning("python-magic unavailable, MIME sniffing disabled")
        return None

    try:
        detected = normalize_mime(magic.from_buffer(raw, mime=True))
    except Exception as e:
        logger.warning(f"MIME detection failed: {e}")
        return None
    if not detected or detected in UNDETERMINED:
        return None
    return detected


def is_text_like(mime_type: str) -> bool:
    mime = normalize_mime(mime_type)
    return mime.startswith("text/") or mime in TEXT_LIKE


def mime_matches(declared: str, detected: str) -> bool:
    declared = normalize_mime(declared)
    detected = normalize_mime(detected)
    return detected == declared or detected in MIME_ALIASES.get(declared, ())


def verify_mime(raw: bytes, declared: str) -> tuple[bool, str | None]:
    """Check a declared MIME type against the sniffed one.

    Returns (ok, detected). When nothing can be detected, only text-like
    declared types pass.
    """
    detected = detect_mime(raw)
    if detected is None:
        return is_text_like(declared), None
    return mime_matches(declared, detected), detected
