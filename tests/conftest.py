"""Shared pytest fixtures for API, store, cache and analytics tests.

Tests run against an in-memory SQLite database (aiosqlite) and the lookup cache's
in-process fallback, so no PostgreSQL or Redis server is needed.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("APP_ENV", "test")

from typing import AsyncGenerator  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from shortener.config import Settings  # noqa: E402
from shortener.database import Base, get_db  # noqa: E402
from shortener.dependencies import RequestContext, ServiceManager, get_service_manager  # noqa: E402
from shortener.main import app  # noqa: E402
from shortener.service import ShortLinkService  # noqa: E402


@pytest.fixture
def settings() -> Settings:
    return Settings(
        APP_ENV="test",
        BASE_URL="http://sho.rt",
        DATABASE_URL="sqlite+aiosqlite://",
        REDIS_URL="",
        ANALYTICS_WORKERS=1,
        ANALYTICS_RETRY_DELAY_SECONDS=0.01,
        RATE_LIMIT_MAX_REQUESTS=10000,
        EXPIRY_SWEEP_INTERVAL_SECONDS=3600,
        CACHE_RECONNECT_INTERVAL_SECONDS=3600,
    )


@pytest_asyncio.fixture(scope="function")
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    # One shared connection so every session sees the same in-memory database.
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        pool_reset_on_return=None,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def manager(
    settings: Settings, session_factory: async_sessionmaker[AsyncSession]
) -> AsyncGenerator[ServiceManager, None]:
    manager = ServiceManager()
    await manager.initialize(settings=settings, session_factory=session_factory)
    yield manager
    await manager.cleanup()


@pytest.fixture
def link_service(db_session: AsyncSession, manager: ServiceManager) -> ShortLinkService:
    return ShortLinkService.from_context(RequestContext(database=db_session, service_manager=manager))


@pytest_asyncio.fixture(scope="function")
async def client(
    manager: ServiceManager, session_factory: async_sessionmaker[AsyncSession]
) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    async def override_get_service_manager() -> ServiceManager:
        return manager

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_service_manager] = override_get_service_manager

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
