"""File categories and the classifier.

FILE_CATEGORIES is the single source of truth for allowed extensions, MIME
types, size ceilings and whether on-demand transforms are permitted. The
classifier, the content validator and the storage layout all read it.
"""
from dataclasses import dataclass
from typing import Literal

from asset_cdn.services.file_utils import get_file_extension

FileCategory = Literal["image", "video", "document", "audio", "archive", "other"]

IMAGE = "image"
VIDEO = "video"
DOCUMENT = "document"
AUDIO = "audio"
ARCHIVE = "archive"
OTHER = "other"

MB = 1024 * 1024


@dataclass(frozen=True)
class CategoryConfig:
    extensions: frozenset[str]
    mime_types: frozenset[str]
    max_size: int
    allow_optimization: bool


FILE_CATEGORIES: dict[str, CategoryConfig] = {
    IMAGE: CategoryConfig(
        extensions=frozenset({".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg", ".bmp", ".ico"}),
        mime_types=frozenset({
            "image/jpeg", "image/png", "image/gif", "image/webp",
            "image/svg+xml", "image/bmp", "image/x-icon",
        }),
        max_size=10 * MB,
        allow_optimization=True,
    ),
    VIDEO: CategoryConfig(
        extensions=frozenset({".mp4", ".webm", ".mov", ".avi", ".mkv", ".flv", ".wmv"}),
        mime_types=frozenset({
            "video/mp4", "video/webm", "video/quicktime", "video/x-msvideo",
            "video/x-matroska", "video/x-flv", "video/x-ms-wmv",
        }),
        max_size=500 * MB,
        # Flagged optimizable, but only images are ever transformed
        allow_optimization=True,
    ),
    DOCUMENT: CategoryConfig(
        extensions=frozenset({".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx", ".txt", ".csv"}),
        mime_types=frozenset({
            "application/pdf",
            "application/msword",
            "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
            "application/vnd.ms-excel",
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            "application/vnd.ms-powerpoint",
            "application/vnd.openxmlformats-officedocument.presentationml.presentation",
            "text/plain",
            "text/csv",
        }),
        max_size=20 * MB,
        allow_optimization=False,
    ),
    AUDIO: CategoryConfig(
        extensions=frozenset({".mp3", ".wav", ".ogg", ".m4a", ".flac", ".aac", ".wma"}),
        mime_types=frozenset({
            "audio/mpeg", "audio/wav", "audio/ogg", "audio/mp4",
            "audio/flac", "audio/aac", "audio/x-ms-wma",
        }),
        max_size=50 * MB,
        allow_optimization=False,
    ),
    ARCHIVE: CategoryConfig(
        extensions=frozenset({".zip", ".tar", ".gz", ".7z", ".rar", ".bz2"}),
        mime_types=frozenset({
            "application/zip", "application/x-tar", "application/gzip",
            "application/x-7z-compressed", "application/x-rar-compressed", "application/x-bzip2",
        }),
        max_size=100 * MB,
        allow_optimization=False,
    ),
    OTHER: CategoryConfig(
        extensions=frozenset(),
        mime_types=frozenset(),
        max_size=10 * MB,
        allow_optimization=False,
    ),
}

CATEGORIES: tuple[str, ...] = tuple(FILE_CATEGORIES)


def normalize_mime(mime_type: str | None) -> str:
    """'Image/JPEG; charset=binary' -> 'image/jpeg'."""
    return (mime_type or "").split(";")[0].strip().lower()


def category_from_extension(filename: str) -> str:
    ext = get_file_extension(filename)
    if not ext:
        return OTHER
    for category, config in FILE_CATEGORIES.items():
        if ext in config.extensions:
            return category
    return OTHER


def category_from_mime(mime_type: str | None) -> str:
    mime = normalize_mime(mime_type)
    if not mime:
        return OTHER
    for category, config in FILE_CATEGORIES.items():
        if mime in config.mime_types:
            return category
    return OTHER


def classify(filename: str | None, mime_type: str | None) -> str:
    """Pick exactly one category. A non-default MIME match beats the extension."""
    from_mime = category_from_mime(mime_type)
    if from_mime != OTHER:
        return from_mime
    return category_from_extension(filename or "")


def is_allowed_extension(filename: str, category: str) -> bool:
    ext = get_file_extension(filename)
    return bool(ext) and ext in FILE_CATEGORIES[category].extensions


def is_allowed_mime(mime_type: str | None, category: str) -> bool:
    return normalize_mime(mime_type) in FILE_CATEGORIES[category].mime_types


def get_max_size(category: str) -> int:
    return FILE_CATEGORIES[category].max_size


def is_optimizable(category: str) -> bool:
    return FILE_CATEGORIES[category].allow_optimization
