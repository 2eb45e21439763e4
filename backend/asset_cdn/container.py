"""Composition root: builds every service from settings and a session factory.

Nothing here is a module-level singleton; create_app() owns the lifetime and
stores the result on app.state.
"""
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from asset_cdn.config import Settings
from asset_cdn.services.download import DownloadService
from asset_cdn.services.file_store import FileRecordStore
from asset_cdn.services.image_processor import TransformCache
from asset_cdn.services.malware import MalwareScanner
from asset_cdn.services.storage import StorageEngine
from asset_cdn.services.token_store import TokenStore
from asset_cdn.services.upload_pipeline import UploadPipeline
from asset_cdn.services.validation import ContentValidator


@dataclass
class Services:
    storage: StorageEngine
    tokens: TokenStore
    files: FileRecordStore
    transforms: TransformCache
    uploads: UploadPipeline
    downloads: DownloadService


def build_services(settings: Settings, session_factory: async_sessionmaker[AsyncSession]) -> Services:
    storage = StorageEngine(settings.UPLOAD_DIR)
    tokens = TokenStore(
        session_factory,
        token_length=settings.TOKEN_LENGTH,
        default_expiry=settings.TOKEN_DEFAULT_EXPIRY,
    )
    files = FileRecordStore(session_factory)
    transforms = TransformCache(storage)
    validator = ContentValidator(MalwareScanner(), sniff_bytes=settings.MIME_SNIFF_BYTES)
    uploads = UploadPipeline(
        storage,
        validator,
        tokens,
        files,
        session_factory,
        enable_malware_scan=settings.ENABLE_MALWARE_SCAN,
        enable_mime_verification=settings.ENABLE_MIME_VERIFICATION,
    )
    downloads = DownloadService(
        files,
        storage,
        transforms,
        enable_optimization=settings.ENABLE_AUTO_OPTIMIZATION,
    )
    return Services(
        storage=storage,
        tokens=tokens,
        files=files,
        transforms=transforms,
        uploads=uploads,
        downloads=downloads,
    )
