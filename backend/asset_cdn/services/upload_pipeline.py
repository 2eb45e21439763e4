"""Upload admission pipeline.

Stages run strictly in order, each consuming the previous one's result:

    classify -> category gate -> storage write -> size check -> dedup lookup
    -> content validation -> record insert + token consume (one transaction)
    -> audit log

Expected failures come back as an UploadOutcome with kind "rejected"; only
infrastructure faults (disk, database) raise. Once bytes are on disk, the
physical file survives only if the outcome is "created": every other path,
including exceptions and cancellation, deletes it.

Dedup only matches validated-safe records. Two identical uploads that are
both mid-validation are stored and validated independently; whichever
commits second hits the unique hash constraint and is turned into a
duplicate of the winner.
"""
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from asset_cdn.errors import ErrorCode, format_message
from asset_cdn.models.file_record import FileRecord
from asset_cdn.models.upload_token import ANY_CATEGORY, USAGE_FAILED, USAGE_REJECTED, USAGE_SUCCESS, UploadToken
from asset_cdn.services.categories import classify, get_max_size, is_optimizable, normalize_mime
from asset_cdn.services.file_store import FileRecordStore
from asset_cdn.services.file_utils import format_file_size, get_file_extension, sanitize_filename
from asset_cdn.services.storage import SavedFile, StorageEngine
from asset_cdn.services.token_store import TokenStore, mask_token
from asset_cdn.services.validation import ContentValidator, ValidationOptions

logger = logging.getLogger(__name__)

CREATED = "created"
DUPLICATE = "duplicate"
REJECTED = "rejected"


@dataclass
class UploadOutcome:
    kind: str
    file: FileRecord | None = None
    error: ErrorCode | None = None
    message: str | None = None
    reasons: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.kind != REJECTED


def rejected(error: ErrorCode, detail: str | None = None, reasons: list[str] | None = None) -> UploadOutcome:
    return UploadOutcome(REJECTED, error=error, message=format_message(error, detail), reasons=reasons or [])


class UploadPipeline:
    """Admits one upload at a time per call; safe to share across requests."""

    def __init__(
        self,
        storage: StorageEngine,
        validator: ContentValidator,
        token_store: TokenStore,
        file_store: FileRecordStore,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        enable_malware_scan: bool = True,
        enable_mime_verification: bool = True,
    ):
        self.storage = storage
        self.validator = validator
        self.token_store = token_store
        self.file_store = file_store
        self.session_factory = session_factory
        self.enable_malware_scan = enable_malware_scan
        self.enable_mime_verification = enable_mime_verification

    async def run(
        self,
        chunks: AsyncIterator[bytes],
        filename: str,
        content_type: str | None,
        token: UploadToken,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> UploadOutcome:
        """Admit an upload made with an already validated token."""
        try:
            outcome = await self._admit(chunks, filename, content_type, token)
        except Exception as e:
            logger.error(f"Upload of '{filename}' with token {mask_token(token.token)} failed: {e}")
            await self.token_store.log_usage(
                token.id, USAGE_FAILED,
                ip_address=ip_address, user_agent=user_agent, error_message=str(e),
            )
            raise

        if outcome.ok:
            logger.info(f"Upload {outcome.kind}: {outcome.file.id} ({outcome.file.category}, {outcome.file.file_size} bytes)")
            await self.token_store.log_usage(
                token.id, USAGE_SUCCESS,
                file_id=outcome.file.id, ip_address=ip_address, user_agent=user_agent,
            )
        else:
            logger.info(f"Upload rejected ({outcome.error.name}): {'; '.join(outcome.reasons) or outcome.message}")
            error_message = outcome.message
            if outcome.reasons:
                error_message += ": " + "; ".join(outcome.reasons)
            await self.token_store.log_usage(
                token.id, USAGE_REJECTED,
                ip_address=ip_address, user_agent=user_agent, error_message=error_message,
            )
        return outcome

    async def _admit(
        self,
        chunks: AsyncIterator[bytes],
        filename: str,
        content_type: str | None,
        token: UploadToken,
    ) -> UploadOutcome:
        # Classify and gate before any byte touches the disk
        category = classify(filename, content_type)
        allowed = token.allowed_category or ANY_CATEGORY
        if allowed not in (ANY_CATEGORY, category):
            return rejected(
                ErrorCode.FILE_CATEGORY_MISMATCH,
                reasons=[f"Token allows '{allowed}' uploads, file was classified as '{category}'"],
            )

        limit = get_max_size(category)
        if token.max_file_size:
            limit = min(limit, token.max_file_size)

        saved = await self.storage.save(chunks, filename, category, max_bytes=limit)
        outcome = None
        try:
            outcome = await self._admit_saved(saved, filename, content_type, category, limit, token)
            return outcome
        finally:
            if outcome is None or outcome.kind != CREATED:
                await self.storage.discard(saved.stored_filename, category)

    async def _admit_saved(
        self,
        saved: SavedFile,
        filename: str,
        content_type: str | None,
        category: str,
        limit: int,
        token: UploadToken,
    ) -> UploadOutcome:
        if saved.size == 0:
            return rejected(ErrorCode.FILE_NOT_PROVIDED, reasons=["Uploaded file is empty"])
        if saved.truncated or saved.size > limit:
            return rejected(
                ErrorCode.FILE_TOO_LARGE,
                reasons=[f"File exceeds the {format_file_size(limit)} limit for this upload"],
            )

        existing = await self.file_store.find_by_hash(saved.hash_sha256)
        if existing is not None:
            return await self._duplicate_of(existing, token)

        result = await self.validator.validate(
            self.storage.get_path(saved.stored_filename, category),
            category,
            content_type or "",
            filename=filename,
            options=ValidationOptions(
                enable_malware_scan=self.enable_malware_scan,
                enable_mime_verification=self.enable_mime_verification,
                max_size=limit,
            ),
        )
        if not result.valid:
            error = (
                ErrorCode.SECURITY_MALWARE_DETECTED if result.malware_detected
                else ErrorCode.SECURITY_VALIDATION_FAILED
            )
            return rejected(error, reasons=result.errors)

        return await self._commit(saved, filename, content_type, category, token)

    async def _duplicate_of(self, existing: FileRecord, token: UploadToken) -> UploadOutcome:
        """A duplicate still counts as a use of the token."""
        if not await self.token_store.consume(token.id):
            return rejected(ErrorCode.AUTH_TOKEN_USED)
        logger.info(f"Duplicate content, returning existing file {existing.id}")
        return UploadOutcome(DUPLICATE, file=existing)

    async def _commit(
        self,
        saved: SavedFile,
        filename: str,
        content_type: str | None,
        category: str,
        token: UploadToken,
    ) -> UploadOutcome:
        """Insert the record and consume the token together, or neither."""
        async with self.session_factory() as db:
            try:
                record = await self.file_store.add_validated(
                    db,
                    filename=sanitize_filename(filename) or saved.stored_filename,
                    stored_filename=saved.stored_filename,
                    category=category,
                    mime_type=normalize_mime(content_type),
                    file_size=saved.size,
                    file_extension=get_file_extension(filename),
                    storage_path=saved.storage_path,
                    is_optimizable=is_optimizable(category),
                    hash_sha256=saved.hash_sha256,
                    uploaded_by_token=token.id,
                )
                if not await self.token_store.consume(token.id, db=db):
                    await db.rollback()
                    return rejected(ErrorCode.AUTH_TOKEN_USED)
                await db.commit()
            except IntegrityError:
                await db.rollback()
                winner = await self.file_store.find_by_hash(saved.hash_sha256)
                if winner is None:
                    raise
                logger.info(f"Lost insert race for hash {saved.hash_sha256[:12]}, using {winner.id}")
                return await self._duplicate_of(winner, token)
            await db.refresh(record)
        return UploadOutcome(CREATED, file=record)
