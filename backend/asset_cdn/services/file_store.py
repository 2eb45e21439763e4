"""File record persistence and dedup lookups."""
import logging
import uuid

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from asset_cdn.models.file_record import VALIDATION_PENDING, VALIDATION_SAFE, FileRecord

logger = logging.getLogger(__name__)


def parse_uuid(value) -> uuid.UUID | None:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError, AttributeError):
        return None


class FileRecordStore:
    """Reads and writes FileRecord rows."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def find_by_id(self, file_id) -> FileRecord | None:
        """Lookup by UUID (object or string). Anything that is not a UUID resolves to None."""
        parsed = parse_uuid(file_id)
        if parsed is None:
            return None
        async with self.session_factory() as db:
            return await db.get(FileRecord, parsed)

    async def find_by_stored_filename(self, stored_filename: str) -> FileRecord | None:
        async with self.session_factory() as db:
            result = await db.execute(
                select(FileRecord).where(FileRecord.stored_filename == stored_filename)
            )
            return result.scalar_one_or_none()

    async def find_by_hash(self, hash_sha256: str) -> FileRecord | None:
        """Only validated, safe records count as duplicates."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(FileRecord).where(
                    FileRecord.hash_sha256 == hash_sha256,
                    FileRecord.validation_status == VALIDATION_SAFE,
                    FileRecord.is_validated.is_(True),
                )
            )
            return result.scalar_one_or_none()

    async def add_validated(self, db: AsyncSession, **fields) -> FileRecord:
        """Insert a record inside the caller's transaction and mark it safe.

        The row goes in as pending and is flipped in the same transaction, so
        no other session ever sees it before the caller commits. Unique
        constraint violations surface from the first flush.
        """
        record = FileRecord(validation_status=VALIDATION_PENDING, is_validated=False, **fields)
        db.add(record)
        await db.flush()
        record.validation_status = VALIDATION_SAFE
        record.is_validated = True
        await db.flush()
        return record

    async def mark_validated(self, file_id, status: str = VALIDATION_SAFE) -> bool:
        parsed = parse_uuid(file_id)
        if parsed is None:
            return False
        async with self.session_factory() as db:
            result = await db.execute(
                update(FileRecord)
                .where(FileRecord.id == parsed)
                .values(validation_status=status, is_validated=status == VALIDATION_SAFE)
            )
            await db.commit()
        return result.rowcount == 1

    async def increment_download_count(self, file_id) -> None:
        """Best effort; a failure here is logged and never reaches the download response."""
        try:
            async with self.session_factory() as db:
                await db.execute(
                    update(FileRecord)
                    .where(FileRecord.id == file_id)
                    .values(download_count=FileRecord.download_count + 1)
                    .execution_options(synchronize_session=False)
                )
                await db.commit()
        except Exception as e:
            logger.warning(f"Failed to increment download count for {file_id}: {e}")

    async def find_by_category(self, category: str, limit: int = 50, offset: int = 0) -> list[FileRecord]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(FileRecord)
                .where(FileRecord.category == category, FileRecord.validation_status == VALIDATION_SAFE)
                .order_by(FileRecord.created_at.desc())
                .limit(limit)
                .offset(offset)
            )
            return list(result.scalars().all())

    async def stats(self) -> dict:
        """File count, total bytes and downloads per category."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(
                    FileRecord.category,
                    func.count(FileRecord.id),
                    func.coalesce(func.sum(FileRecord.file_size), 0),
                    func.coalesce(func.sum(FileRecord.download_count), 0),
                )
                .where(FileRecord.validation_status == VALIDATION_SAFE)
                .group_by(FileRecord.category)
            )
            by_category = {
                category: {"count": count, "total_size": int(size), "downloads": int(downloads)}
                for category, count, size, downloads in result.all()
            }
        return {
            "total_files": sum(c["count"] for c in by_category.values()),
            "total_size": sum(c["total_size"] for c in by_category.values()),
            "by_category": by_category,
        }
