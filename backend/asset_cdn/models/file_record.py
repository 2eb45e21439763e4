"""FileRecord model - metadata for an uploaded file (bytes live on disk)."""
import uuid
from sqlalchemy import BigInteger, Boolean, ForeignKey, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from asset_cdn.models.base import Base, TimestampMixin

VALIDATION_PENDING = "pending"
VALIDATION_SAFE = "safe"
VALIDATION_MALICIOUS = "malicious"
VALIDATION_FAILED = "failed"


class FileRecord(Base, TimestampMixin):
    __tablename__ = "files"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    stored_filename: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    category: Mapped[str] = mapped_column(String(20), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    file_extension: Mapped[str] = mapped_column(String(20), nullable=False, default="")
    storage_path: Mapped[str] = mapped_column(String(500), nullable=False)
    is_optimizable: Mapped[bool] = mapped_column(Boolean, default=False)

    # Security
    hash_sha256: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    is_validated: Mapped[bool] = mapped_column(Boolean, default=False)
    validation_status: Mapped[str] = mapped_column(String(20), default=VALIDATION_PENDING)
    # 'pending' | 'safe' | 'malicious' | 'failed'

    # Tracking
    uploaded_by_token: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("upload_tokens.id", ondelete="SET NULL"), nullable=True
    )
    download_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        Index("idx_files_category", "category"),
        Index("idx_files_created_at", "created_at"),
        Index("idx_files_validation_status", "validation_status"),
    )
