import io

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from asset_cdn.config import Settings
from asset_cdn.container import build_services
from asset_cdn.database import create_engine, create_session_factory, init_models
from asset_cdn.main import create_app


def _libmagic_available() -> bool:
    try:
        import magic  # type: ignore

        return magic.from_buffer(b"%PDF-1.4\n", mime=True) == "application/pdf"
    except Exception:
        return False


requires_libmagic = pytest.mark.skipif(not _libmagic_available(), reason="libmagic not installed")


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def settings(tmp_path):
    # File-backed SQLite so concurrent sessions see each other's commits
    return Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'cdn.db'}",
        UPLOAD_DIR=str(tmp_path / "uploads"),
        ENABLE_MIME_VERIFICATION=False,
        ENABLE_RATE_LIMIT=False,
        LOG_LEVEL="DEBUG",
    )


@pytest.fixture
async def session_factory(settings):
    engine = create_engine(settings.DATABASE_URL)
    await init_models(engine)
    try:
        yield create_session_factory(engine)
    finally:
        await engine.dispose()


@pytest.fixture
async def services(settings, session_factory):
    built = build_services(settings, session_factory)
    await built.storage.ensure_directories()
    return built


@pytest.fixture
def client(settings):
    app = create_app(settings)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_image():
    """Factory for real encoded images: make_image(fmt="PNG", size=(64, 32), color=(200, 10, 10))."""

    def _make(fmt: str = "PNG", size: tuple[int, int] = (64, 32), color=(200, 10, 10)) -> bytes:
        buf = io.BytesIO()
        Image.new("RGB", size, color).save(buf, format=fmt)
        return buf.getvalue()

    return _make


@pytest.fixture
def as_chunks():
    """Turn bytes into the async chunk stream the pipeline consumes."""

    def _chunks(data: bytes, size: int = 8192):
        async def gen():
            for i in range(0, len(data), size):
                yield data[i:i + size]

        return gen()

    return _chunks
