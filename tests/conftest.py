import os

# Settings are read on first import; point them at a throwaway SQLite file and mock mode
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test_tokendesk.db")
os.environ["CMC_API_KEY"] = ""
os.environ["COALESCE_REFRESHES"] = "false"

from unittest.mock import AsyncMock, patch

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker

from tokendesk.core import database
# Explicit import to ensure metadata is populated
from tokendesk.db.models import Base, PriceCache, ExchangeRateCache, ApiUsageLog, Token
from fakes import InMemoryPriceCacheStore, FakeRates, RecordingUsage, UpstreamStub


@pytest.fixture
def store():
    return InMemoryPriceCacheStore()


@pytest.fixture
def rates():
    return FakeRates()


@pytest.fixture
def usage():
    return RecordingUsage()


@pytest.fixture
def upstream():
    return UpstreamStub()


# 1. Function-Scoped Engine
@pytest.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(database.settings.DATABASE_URL, echo=False)
    yield engine
    await engine.dispose()

# 2. Patch Startup Events
@pytest.fixture(scope="function", autouse=True)
async def mock_startup_handlers():
    with patch("tokendesk.main.init_db", new_callable=AsyncMock) as mock_init:
        yield mock_init

# 3. Function-Scoped DB Setup
@pytest.fixture(scope="function", autouse=True)
async def setup_test_db(db_engine):
    # Snapshot global
    original_engine = database.db_manager._engine
    original_maker = database.db_manager._session_maker

    # Patch global
    database.db_manager._engine = db_engine
    database.db_manager._session_maker = sessionmaker(
        bind=db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )

    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    # Restore global
    database.db_manager._engine = original_engine
    database.db_manager._session_maker = original_maker


@pytest.fixture
async def db_session():
    async with database.AsyncSessionLocal() as session:
        yield session


@pytest_asyncio.fixture
async def api_client(upstream):
    from tokendesk.main import app
    from tokendesk.api.routes import get_http_client

    async def upstream_client():
        async with httpx.AsyncClient(transport=upstream.transport()) as client:
            yield client

    app.dependency_overrides[get_http_client] = upstream_client
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
