"""Test fixtures and configuration."""

import asyncio
import logging
import os
import sys
from uuid import uuid4

import pytest
import pytest_asyncio
import structlog
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# Set ENVIRONMENT for pydantic settings
os.environ["ENVIRONMENT"] = "testing"

from payrecon.logger import SHARED_PROCESSORS, get_logger  # noqa: E402

logger = get_logger(__name__)

RECONCILIATION_ENV_VARS = (
    "RECONCILIATION_AUTO_ACCEPT_THRESHOLD",
    "RECONCILIATION_HIGH_CONFIDENCE_THRESHOLD",
    "RECONCILIATION_ENFORCE_EXCLUSIVITY",
)


# --- Structlog Configuration for Tests ---
@pytest.fixture(autouse=True, scope="session")
def configure_structlog_for_tests():
    """Configure structlog for proper capsys capture in tests."""
    processors = [*SHARED_PROCESSORS, structlog.stdlib.ProcessorFormatter.wrap_for_formatter]

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=structlog.dev.ConsoleRenderer(),
        foreign_pre_chain=processors[:-1],
    )

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.DEBUG)

    yield

    structlog.reset_defaults()


# --- Reconciliation config isolation ---
@pytest.fixture(autouse=True)
def reset_reconciliation_config(monkeypatch):
    """Drop cached tuning and env overrides so each test sees the YAML defaults."""
    from payrecon.services import reconciliation

    for name in RECONCILIATION_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    reconciliation._config_cache = None
    yield
    reconciliation._config_cache = None


# --- Database ---
@pytest_asyncio.fixture(scope="function")
async def db_engine(tmp_path):
    """Per-test SQLite database with the full schema.

    A file-backed database with NullPool gives every session its own
    connection, so API handlers and the test session see committed data the
    same way they would against PostgreSQL.
    """
    from payrecon import models  # noqa: F401
    from payrecon.database import Base

    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'reconciliation.db'}",
        echo=False,
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    try:
        await asyncio.wait_for(engine.dispose(), timeout=10.0)
    except asyncio.TimeoutError:
        logger.error("Engine disposal timed out - connections may be leaked")


@pytest_asyncio.fixture(scope="function")
async def session_maker(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function", autouse=True)
async def patch_database_connection(session_maker):
    """Override global database session maker to use test engine."""
    from payrecon import database

    previous = database.set_test_session_maker(session_maker)
    yield
    database.set_test_session_maker(previous)


@pytest_asyncio.fixture(scope="function")
async def db(session_maker):
    """Test session. Commit data that API calls need to see."""
    async with session_maker() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def test_user(db):
    """Create a committed user for authenticated requests."""
    from payrecon.models import User

    user = User(email=f"test-{uuid4()}@example.com")
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest_asyncio.fixture(scope="function")
async def other_user(db):
    from payrecon.models import User

    user = User(email=f"other-{uuid4()}@example.com")
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest_asyncio.fixture(scope="function")
async def client(test_user):
    """Create async test client authenticated as test_user."""
    from payrecon.main import app
    from payrecon.security import create_access_token

    token = create_access_token(test_user.id)
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"Authorization": f"Bearer {token}"},
    ) as client_instance:
        yield client_instance


@pytest_asyncio.fixture(scope="function")
async def public_client():
    """Create async test client without auth headers."""
    from payrecon.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client_instance:
        yield client_instance
