"""Resolve a public identifier to bytes: the original file or a cached transform."""
import logging
from dataclasses import dataclass, field
from pathlib import Path

from asset_cdn.errors import CDNError, ErrorCode, StorageError
from asset_cdn.models.file_record import FileRecord
from asset_cdn.services.categories import IMAGE
from asset_cdn.services.file_store import FileRecordStore, parse_uuid
from asset_cdn.services.image_processor import (
    MEDIA_TYPES,
    TransformCache,
    TransformError,
    TransformOptions,
    build_cache_key,
    clamp_quality,
)
from asset_cdn.services.storage import StorageEngine

logger = logging.getLogger(__name__)

# Stored filenames are never reused or rewritten, so responses can be cached forever
CACHE_CONTROL = "public, max-age=31536000, immutable"


@dataclass
class DownloadResult:
    record: FileRecord
    media_type: str
    headers: dict[str, str] = field(default_factory=dict)
    path: Path | None = None
    content: bytes | None = None
    transformed: bool = False


def wants_transform(options: TransformOptions | None) -> bool:
    return options is not None and bool(options.width or options.height or options.format)


class DownloadService:
    def __init__(
        self,
        file_store: FileRecordStore,
        storage: StorageEngine,
        transforms: TransformCache,
        *,
        enable_optimization: bool = True,
    ):
        self.file_store = file_store
        self.storage = storage
        self.transforms = transforms
        self.enable_optimization = enable_optimization

    async def resolve(self, identifier: str) -> FileRecord | None:
        """Try the record id first, then the stored filename."""
        record = None
        if parse_uuid(identifier) is not None:
            record = await self.file_store.find_by_id(identifier)
        if record is None:
            record = await self.file_store.find_by_stored_filename(identifier)
        return record

    async def fetch(self, identifier: str, options: TransformOptions | None = None) -> DownloadResult:
        """Look up a file and produce what should be sent back.

        Raises CDNError(FILE_NOT_FOUND) when the record or its bytes are missing.
        """
        record = await self.resolve(identifier)
        if record is None:
            raise CDNError(ErrorCode.FILE_NOT_FOUND)
        if not await self.storage.exists(record.stored_filename, record.category):
            logger.error(f"File record {record.id} has no bytes at {record.storage_path}")
            raise CDNError(ErrorCode.FILE_NOT_FOUND)

        await self.file_store.increment_download_count(record.id)

        headers = {"Cache-Control": CACHE_CONTROL, "ETag": f'"{record.hash_sha256}"'}

        if (
            self.enable_optimization
            and record.category == IMAGE
            and record.is_optimizable
            and wants_transform(options)
        ):
            transformed = await self._transform(record, options)
            if transformed is not None:
                content, normalized = transformed
                # Each variant needs its own validator
                variant = build_cache_key(record.stored_filename, normalized)
                headers["ETag"] = f'"{record.hash_sha256}-{variant}"'
                return DownloadResult(
                    record=record,
                    media_type=MEDIA_TYPES[normalized.format],
                    headers=headers,
                    content=content,
                    transformed=True,
                )

        return DownloadResult(
            record=record,
            media_type=record.mime_type or "application/octet-stream",
            headers=headers,
            path=self.storage.get_path(record.stored_filename, record.category),
        )

    async def _transform(self, record: FileRecord, options: TransformOptions) -> tuple[bytes, TransformOptions] | None:
        """Transformed bytes and the normalized options, or None to serve the original."""
        options = TransformOptions(
            width=options.width,
            height=options.height,
            quality=clamp_quality(options.quality),
            format=(options.format or "webp").lower(),
        )
        try:
            content = await self.transforms.process(record.stored_filename, options)
        except TransformError as e:
            logger.warning(f"Transform failed for {record.id}, serving original: {e}")
            return None
        except StorageError as e:
            if e.error is ErrorCode.FILE_NOT_FOUND:
                raise CDNError(ErrorCode.FILE_NOT_FOUND) from e
            raise
        return content, options
