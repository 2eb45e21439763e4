"""Database maintenance commands.

    python -m asset_cdn.db_tools init          create missing tables
    python -m asset_cdn.db_tools fresh         drop and recreate every table
    python -m asset_cdn.db_tools sweep-tokens  delete expired upload tokens
"""
import argparse
import asyncio
import logging

from asset_cdn.config import Settings
from asset_cdn.database import create_engine, create_session_factory, init_models
from asset_cdn.logging_config import configure_logging
from asset_cdn.services.token_store import TokenStore

logger = logging.getLogger(__name__)


async def run_command(command: str, settings: Settings) -> int:
    engine = create_engine(
        settings.DATABASE_URL,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
    )
    try:
        if command == "init":
            await init_models(engine)
            logger.info("Tables created")
            return 0
        if command == "fresh":
            await init_models(engine, drop=True)
            logger.warning("All tables dropped and recreated")
            return 0
        if command == "sweep-tokens":
            await init_models(engine)
            store = TokenStore(create_session_factory(engine))
            removed = await store.delete_expired()
            logger.info(f"Removed {removed} expired token(s)")
            return removed
        raise ValueError(f"Unknown command '{command}'")
    finally:
        await engine.dispose()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="asset_cdn.db_tools", description="Asset CDN database tools")
    parser.add_argument("command", choices=["init", "fresh", "sweep-tokens"])
    args = parser.parse_args(argv)

    settings = Settings()
    configure_logging(settings.LOG_LEVEL)
    asyncio.run(run_command(args.command, settings))


if __name__ == "__main__":
    main()
