"""Tests for the database maintenance commands."""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import update

from asset_cdn.database import create_engine, create_session_factory
from asset_cdn.db_tools import run_command
from asset_cdn.models.upload_token import UploadToken
from asset_cdn.services.token_store import TokenStore

pytestmark = pytest.mark.anyio


async def test_init_then_sweep_expired_tokens(settings):
    assert await run_command("init", settings) == 0

    engine = create_engine(settings.DATABASE_URL)
    try:
        store = TokenStore(create_session_factory(engine))
        stale = await store.generate(expires_in=60)
        fresh = await store.generate(expires_in=3600)
        async with store.session_factory() as db:
            await db.execute(
                update(UploadToken)
                .where(UploadToken.token == stale.token)
                .values(expires_at=datetime.now(timezone.utc) - timedelta(seconds=1))
            )
            await db.commit()

        assert await run_command("sweep-tokens", settings) == 1
        assert await store.find_by_secret(stale.token) is None
        assert await store.find_by_secret(fresh.token) is not None

        assert await run_command("fresh", settings) == 0
        assert await store.find_by_secret(fresh.token) is None
    finally:
        await engine.dispose()


async def test_unknown_command(settings):
    with pytest.raises(ValueError):
        await run_command("drop-everything", settings)
