"""Health check route."""
import logging
from datetime import datetime, timezone

import aiofiles.os
from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from asset_cdn import __version__
from asset_cdn.database import get_db
from asset_cdn.schemas.common import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request, db: AsyncSession = Depends(get_db)):
    """Verify database connectivity and that the storage root exists."""
    database = True
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Health check: database unreachable: {e}")
        database = False

    storage = await aiofiles.os.path.isdir(request.app.state.services.storage.base_path)

    if database and storage:
        status = "ok"
    elif database or storage:
        status = "degraded"
    else:
        status = "down"
    return HealthResponse(
        status=status,
        version=__version__,
        timestamp=datetime.now(timezone.utc).isoformat(),
        database=database,
        storage=storage,
    )
