"""Async engine, session factory and the `get_db` request dependency."""

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from payrecon.config import settings
from payrecon.logger import get_logger

logger = get_logger(__name__)


class Base(DeclarativeBase):
    pass


def _engine_options() -> dict[str, Any]:
    if settings.uses_sqlite:
        # SQLite rejects QueuePool sizing arguments
        return {"echo": settings.debug}
    return {
        "echo": settings.debug,
        "pool_pre_ping": True,
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
        "pool_recycle": 3600,
    }


engine = create_async_engine(settings.database_url, **_engine_options())
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

# Overridden by the test suite to point requests at a throwaway database
_test_session_maker: async_sessionmaker[AsyncSession] | None = None


def set_test_session_maker(
    maker: async_sessionmaker[AsyncSession] | None,
) -> async_sessionmaker[AsyncSession] | None:
    """Install `maker` for `get_db` and return the one it replaces."""
    global _test_session_maker
    previous, _test_session_maker = _test_session_maker, maker
    return previous


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    maker = _test_session_maker or async_session_maker
    async with maker() as session:
        yield session


async def init_db() -> None:
    """Create the tables when AUTO_CREATE_SCHEMA is set; otherwise only log."""
    from payrecon import models  # noqa: F401

    if not settings.auto_create_schema:
        logger.info("Database schema managed externally")
        return

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema created", tables=sorted(Base.metadata.tables))
