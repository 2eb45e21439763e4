"""Import all models so SQLAlchemy metadata knows about them."""
from asset_cdn.models.base import Base
from asset_cdn.models.file_record import FileRecord
from asset_cdn.models.upload_token import UploadToken, TokenUsageLog

__all__ = ["Base", "FileRecord", "UploadToken", "TokenUsageLog"]
