"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from asset_cdn import __version__
from asset_cdn.config import Settings
from asset_cdn.container import build_services
from asset_cdn.database import create_engine, create_session_factory, init_models
from asset_cdn.errors import CDNError, ErrorCode, StorageError
from asset_cdn.logging_config import configure_logging
from asset_cdn.rate_limit import FixedWindowRateLimiter
from asset_cdn.schemas.common import ErrorResponse
from asset_cdn.security_headers import SecurityHeadersMiddleware

logger = logging.getLogger(__name__)


def error_body(error: ErrorCode, message: str | None = None, details: list | None = None) -> dict:
    body = ErrorResponse(
        error=message or error.message,
        code=error.code,
        details=[str(d) for d in details] if details else None,
    )
    return body.model_dump(exclude_none=True)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(CDNError)
    async def cdn_error_handler(request: Request, exc: CDNError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path}: {exc}")
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.error, str(exc), exc.details),
            headers=exc.headers,
        )

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError):
        if exc.error is ErrorCode.SECURITY_PATH_TRAVERSAL:
            logger.warning(f"{request.method} {request.url.path}: {exc}")
            return JSONResponse(status_code=exc.error.status_code, content=error_body(exc.error))
        if exc.error is ErrorCode.FILE_NOT_FOUND:
            return JSONResponse(status_code=404, content=error_body(exc.error))
        # Full detail goes to the log only; clients never see paths
        logger.exception(f"Storage failure on {request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content=error_body(ErrorCode.INTERNAL_SERVER_ERROR))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        details = [
            f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg', '')}"
            for err in exc.errors()
        ]
        return JSONResponse(status_code=400, content=error_body(ErrorCode.INVALID_REQUEST, details=details))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content=error_body(ErrorCode.INTERNAL_SERVER_ERROR))


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application. Engine, stores and services live on app.state."""
    settings = settings or Settings()
    configure_logging(settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Create tables and storage directories on startup, dispose the engine on shutdown."""
        engine = create_engine(
            settings.DATABASE_URL,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
        )
        await init_models(engine)
        session_factory = create_session_factory(engine)
        services = build_services(settings, session_factory)
        await services.storage.ensure_directories()

        app.state.engine = engine
        app.state.session_factory = session_factory
        app.state.services = services
        logger.info(f"Asset CDN {__version__} ready, storage at {services.storage.base_path}")

        yield

        await engine.dispose()

    app = FastAPI(
        title="Asset CDN API",
        version=__version__,
        description="Token-gated uploads with validation, dedup and on-demand image transforms.",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.rate_limiter = (
        FixedWindowRateLimiter(settings.RATE_LIMIT_MAX, settings.RATE_LIMIT_WINDOW)
        if settings.ENABLE_RATE_LIMIT
        else None
    )

    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)

    from asset_cdn.routes.auth import router as auth_router
    from asset_cdn.routes.cdn import router as cdn_router
    from asset_cdn.routes.health import router as health_router
    app.include_router(auth_router)
    app.include_router(cdn_router)
    app.include_router(health_router)

    return app


app = create_app()
