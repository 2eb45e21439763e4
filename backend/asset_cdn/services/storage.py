"""Local filesystem storage for raw uploads and derived transforms.

Layout under the storage root:
    raw/<category>/<stored_filename>     original bytes, never modified
    cache/<category>/<cache_key>         regenerable transforms

Stored filenames are random (file_utils.generate_unique_filename), so
concurrent writers never touch the same path. Every path is resolved and
checked against its partition before use.
"""
import hashlib
import logging
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass
from pathlib import Path

import aiofiles
import aiofiles.os

from asset_cdn.errors import ErrorCode, StorageError
from asset_cdn.services.categories import CATEGORIES
from asset_cdn.services.file_utils import generate_unique_filename

logger = logging.getLogger(__name__)

RAW_DIR = "raw"
CACHE_DIR = "cache"
READ_CHUNK_SIZE = 64 * 1024


@dataclass
class SavedFile:
    stored_filename: str
    storage_path: str  # relative to the storage root, posix separators
    hash_sha256: str
    size: int
    truncated: bool = False  # writing stopped because the stream passed max_bytes


class StorageEngine:
    """Handles file read/write on local disk."""

    def __init__(self, base_path: str | Path):
        self.base_path = Path(base_path).resolve()

    def _partition(self, kind: str, category: str) -> Path:
        if category not in CATEGORIES:
            raise StorageError(ErrorCode.SECURITY_PATH_TRAVERSAL, f"unknown category '{category}'")
        return self.base_path / kind / category

    def safe_join(self, root: Path, name: str) -> Path:
        """Join `name` onto `root`, refusing anything that resolves outside it."""
        if not name or name in (".", ".."):
            raise StorageError(ErrorCode.SECURITY_PATH_TRAVERSAL, "empty file name")
        root = root.resolve()
        candidate = (root / name).resolve()
        if candidate.parent != root or not candidate.is_relative_to(self.base_path):
            raise StorageError(ErrorCode.SECURITY_PATH_TRAVERSAL, name)
        return candidate

    def get_path(self, stored_filename: str, category: str) -> Path:
        return self.safe_join(self._partition(RAW_DIR, category), stored_filename)

    def cache_path(self, cache_key: str, category: str) -> Path:
        return self.safe_join(self._partition(CACHE_DIR, category), cache_key)

    def cache_dir(self, category: str) -> Path:
        return self._partition(CACHE_DIR, category)

    async def ensure_directories(self) -> None:
        """Create raw/ and cache/ partitions for every category."""
        for category in CATEGORIES:
            await aiofiles.os.makedirs(self._partition(RAW_DIR, category), exist_ok=True)
            await aiofiles.os.makedirs(self._partition(CACHE_DIR, category), exist_ok=True)

    async def save(
        self,
        chunks: AsyncIterator[bytes],
        original_filename: str,
        category: str,
        *,
        max_bytes: int | None = None,
    ) -> SavedFile:
        """Stream chunks to a freshly named file, hashing as they are written.

        When `max_bytes` is given, writing stops as soon as the stream goes
        past it; the result is then marked truncated and its size is only a
        lower bound. A failed write removes the partial file before raising.
        """
        stored_filename = generate_unique_filename(original_filename)
        target = self.get_path(stored_filename, category)
        hasher = hashlib.sha256()
        size = 0
        truncated = False

        try:
            await aiofiles.os.makedirs(target.parent, exist_ok=True)
            async with aiofiles.open(target, "wb") as f:
                async for chunk in chunks:
                    if not chunk:
                        continue
                    size += len(chunk)
                    if max_bytes is not None and size > max_bytes:
                        truncated = True
                        break
                    hasher.update(chunk)
                    await f.write(chunk)
        except OSError as e:
            logger.error(f"Write failed for {category}/{stored_filename}: {e}")
            await self.discard(stored_filename, category)
            raise StorageError(ErrorCode.STORAGE_WRITE_FAILED) from e

        return SavedFile(
            stored_filename=stored_filename,
            storage_path=target.relative_to(self.base_path).as_posix(),
            hash_sha256=hasher.hexdigest(),
            size=size,
            truncated=truncated,
        )

    async def exists(self, stored_filename: str, category: str) -> bool:
        try:
            path = self.get_path(stored_filename, category)
        except StorageError:
            return False
        return await aiofiles.os.path.isfile(path)

    async def delete(self, stored_filename: str, category: str) -> bool:
        """Remove a raw file. Missing files are not an error; returns whether one was removed."""
        path = self.get_path(stored_filename, category)
        try:
            await aiofiles.os.remove(path)
            return True
        except FileNotFoundError:
            return False

    async def discard(self, stored_filename: str, category: str) -> None:
        """Rollback delete. Failures are logged, never raised, so they cannot mask the original error."""
        try:
            await self.delete(stored_filename, category)
        except Exception as e:
            logger.error(f"Rollback delete failed for {category}/{stored_filename}: {e}")

    async def size(self, stored_filename: str, category: str) -> int:
        stat = await aiofiles.os.stat(self.get_path(stored_filename, category))
        return stat.st_size

    async def read_bytes(self, stored_filename: str, category: str) -> bytes:
        path = self.get_path(stored_filename, category)
        try:
            async with aiofiles.open(path, "rb") as f:
                return await f.read()
        except FileNotFoundError:
            raise StorageError(ErrorCode.FILE_NOT_FOUND, stored_filename)
        except OSError as e:
            raise StorageError(ErrorCode.STORAGE_READ_FAILED) from e

    async def open_stream(
        self, stored_filename: str, category: str, chunk_size: int = READ_CHUNK_SIZE
    ) -> AsyncIterator[bytes]:
        """Yield the raw file in chunks."""
        path = self.get_path(stored_filename, category)
        async with aiofiles.open(path, "rb") as f:
            while True:
                chunk = await f.read(chunk_size)
                if not chunk:
                    break
                yield chunk

    async def write_atomic(self, path: Path, data: bytes) -> None:
        """Write via a temp file and rename, so readers never see partial content."""
        await aiofiles.os.makedirs(path.parent, exist_ok=True)
        tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
        try:
            async with aiofiles.open(tmp, "wb") as f:
                await f.write(data)
            await aiofiles.os.replace(tmp, path)
        except OSError:
            try:
                await aiofiles.os.remove(tmp)
            except FileNotFoundError:
                pass
            raise
