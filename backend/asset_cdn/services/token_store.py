"""Upload token persistence and lifecycle.

A token is consumable iff it is active, has uses left and has not expired.
Single-use tokens that were ever used stay unusable even if the counter
were somehow behind.

consume() is the only writer of the usage counters and is a single
conditional UPDATE, so two requests racing on the same token cannot both
succeed: the second one matches zero rows.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy import case, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from asset_cdn.errors import ErrorCode
from asset_cdn.models.file_record import FileRecord
from asset_cdn.models.upload_token import ANY_CATEGORY, TokenUsageLog, UploadToken
from asset_cdn.services.file_utils import generate_secure_token

logger = logging.getLogger(__name__)

REASON_NOT_FOUND = "Token not found"
REASON_INACTIVE = "Token is not active"
REASON_MAX_USES = "Token has reached maximum usage limit"
REASON_USED = "Token has already been used"
REASON_EXPIRED = "Token has expired"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; every stored timestamp is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def mask_token(secret: str) -> str:
    return f"{secret[:8]}..." if secret else "(empty)"


@dataclass
class TokenGenerationResult:
    token: str
    expires_at: datetime | None
    restrictions: dict = field(default_factory=dict)


@dataclass
class TokenValidation:
    valid: bool
    reason: str | None = None
    token: UploadToken | None = None
    code: ErrorCode | None = None


def _usable_clause(now: datetime):
    """SQL form of the consumable predicate."""
    return (
        UploadToken.is_active.is_(True),
        UploadToken.current_uses < UploadToken.max_uses,
        or_(UploadToken.max_uses != 1, UploadToken.is_used.is_(False)),
        or_(UploadToken.expires_at.is_(None), UploadToken.expires_at > now),
    )


class TokenStore:
    """Creates, validates and consumes upload tokens."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        token_length: int = 32,
        default_expiry: int = 3600,
    ):
        self.session_factory = session_factory
        self.token_length = token_length
        self.default_expiry = default_expiry

    async def generate(
        self,
        category: str | None = None,
        max_file_size: int | None = None,
        expires_in: int | None = None,
        created_by: str | None = None,
        metadata: dict | None = None,
        max_uses: int = 1,
    ) -> TokenGenerationResult:
        """Create a token. The plaintext secret is only ever returned here."""
        secret = generate_secure_token(self.token_length)
        expiry_seconds = expires_in if expires_in is not None else self.default_expiry
        expires_at = utcnow() + timedelta(seconds=expiry_seconds) if expiry_seconds > 0 else None

        token = UploadToken(
            token=secret,
            allowed_category=category or ANY_CATEGORY,
            max_file_size=max_file_size,
            max_uses=max(1, max_uses),
            current_uses=0,
            created_by=created_by,
            extra=metadata,
            is_active=True,
            is_used=False,
            expires_at=expires_at,
        )
        async with self.session_factory() as db:
            db.add(token)
            await db.commit()
            await db.refresh(token)

        logger.info(
            f"Generated upload token {token.id} ({mask_token(secret)}) "
            f"category={token.allowed_category} max_uses={token.max_uses}"
        )
        return TokenGenerationResult(
            token=secret,
            expires_at=expires_at,
            restrictions={
                "category": token.allowed_category,
                "max_file_size": token.max_file_size,
                "max_uses": token.max_uses,
            },
        )

    async def find_by_secret(self, secret: str) -> UploadToken | None:
        if not secret:
            return None
        async with self.session_factory() as db:
            result = await db.execute(select(UploadToken).where(UploadToken.token == secret))
            return result.scalar_one_or_none()

    async def find_by_id(self, token_id: int) -> UploadToken | None:
        async with self.session_factory() as db:
            return await db.get(UploadToken, token_id)

    async def validate(self, secret: str) -> TokenValidation:
        """Check a presented secret. Any non-matching secret gets the same answer."""
        token = await self.find_by_secret(secret)
        if token is None:
            return TokenValidation(False, REASON_NOT_FOUND, code=ErrorCode.AUTH_TOKEN_INVALID)
        if not token.is_active:
            return TokenValidation(False, REASON_INACTIVE, token, ErrorCode.AUTH_TOKEN_INACTIVE)
        if token.max_uses == 1 and token.is_used:
            return TokenValidation(False, REASON_USED, token, ErrorCode.AUTH_TOKEN_USED)
        if token.current_uses >= token.max_uses:
            return TokenValidation(False, REASON_MAX_USES, token, ErrorCode.AUTH_TOKEN_USED)
        expires_at = _as_utc(token.expires_at)
        if expires_at is not None and expires_at <= utcnow():
            return TokenValidation(False, REASON_EXPIRED, token, ErrorCode.AUTH_TOKEN_EXPIRED)
        return TokenValidation(True, token=token)

    async def consume(self, token_id: int, db: AsyncSession | None = None) -> bool:
        """Atomically take one use. Returns False when the token was no longer usable.

        With `db` the update joins the caller's transaction and is committed
        (or rolled back) by the caller.
        """
        now = utcnow()
        stmt = (
            update(UploadToken)
            .where(UploadToken.id == token_id, *_usable_clause(now))
            .values(
                current_uses=UploadToken.current_uses + 1,
                used_at=now,
                is_used=case(
                    (UploadToken.current_uses + 1 >= UploadToken.max_uses, True),
                    else_=UploadToken.is_used,
                ),
            )
            .execution_options(synchronize_session=False)
        )
        if db is not None:
            result = await db.execute(stmt)
            return result.rowcount == 1

        async with self.session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
        consumed = result.rowcount == 1
        if not consumed:
            logger.info(f"Token {token_id} was not consumable at consume time")
        return consumed

    async def deactivate(self, token_id: int) -> bool:
        async with self.session_factory() as db:
            result = await db.execute(
                update(UploadToken).where(UploadToken.id == token_id).values(is_active=False)
            )
            await db.commit()
        return result.rowcount == 1

    async def log_usage(
        self,
        token_id: int,
        status: str,
        *,
        file_id=None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        error_message: str | None = None,
    ) -> None:
        """Append an audit row. Never raises: the audit trail must not fail a request."""
        try:
            async with self.session_factory() as db:
                db.add(TokenUsageLog(
                    token_id=token_id,
                    file_id=file_id,
                    ip_address=(ip_address or None) and ip_address[:45],
                    user_agent=(user_agent or None) and user_agent[:500],
                    status=status,
                    error_message=error_message,
                ))
                await db.commit()
        except Exception as e:
            logger.error(f"Failed to write usage log for token {token_id}: {e}")

    async def usage_history(self, token_id: int, limit: int = 100) -> list[TokenUsageLog]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(TokenUsageLog)
                .where(TokenUsageLog.token_id == token_id)
                .order_by(TokenUsageLog.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def delete_expired(self) -> int:
        """Remove expired tokens and their audit rows. Returns how many tokens were removed."""
        now = utcnow()
        expired_ids = select(UploadToken.id).where(
            UploadToken.expires_at.is_not(None), UploadToken.expires_at < now
        )
        async with self.session_factory() as db:
            # Done explicitly so SQLite (no FK enforcement by default) ends up the same as Postgres
            await db.execute(
                update(FileRecord)
                .where(FileRecord.uploaded_by_token.in_(expired_ids))
                .values(uploaded_by_token=None)
                .execution_options(synchronize_session=False)
            )
            await db.execute(
                delete(TokenUsageLog)
                .where(TokenUsageLog.token_id.in_(expired_ids))
                .execution_options(synchronize_session=False)
            )
            result = await db.execute(
                delete(UploadToken)
                .where(UploadToken.expires_at.is_not(None), UploadToken.expires_at < now)
                .execution_options(synchronize_session=False)
            )
            await db.commit()

        removed = result.rowcount or 0
        if removed:
            logger.info(f"Deleted {removed} expired upload token(s)")
        return removed

    async def stats(self) -> dict:
        now = utcnow()
        async with self.session_factory() as db:
            result = await db.execute(
                select(
                    func.count(UploadToken.id),
                    func.count(case((UploadToken.is_active.is_(True), 1))),
                    func.count(case((UploadToken.is_used.is_(True), 1))),
                    func.count(case((UploadToken.expires_at < now, 1))),
                )
            )
            total, active, used, expired = result.one()
        return {"total": total, "active": active, "used": used, "expired": expired}
