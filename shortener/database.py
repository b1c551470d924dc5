"""Async engine and session lifecycle for the short link store.

One engine per process. Request handlers receive a session through ``get_db``;
background components (click recorder, expiry sweeper) open their own sessions
from ``async_session`` so they never share a transaction with a request.

Session Ownership
=================
::
    HTTP request ──▶ get_db() ──▶ AsyncSession ──▶ ShortLinkStore ──▶ close
                                      (one per request)

    ClickRecorder worker ─┐
                          ├──▶ async_session() ──▶ ShortLinkStore ──▶ close
    ExpirySweeper tick ───┘       (one per event / sweep)

How to Use
===========
**Step 1 — Create tables on startup**::
    await init_db()

**Step 2 — Depend on a session in a route**::
    @router.get("/stats/{short_id}")
    async def stats(short_id: str, db: AsyncSession = Depends(get_db)):
        return await ShortLinkStore(db).find_by_short_id(short_id)

**Step 3 — Open a session from a background task**::
    async with async_session() as session:
        await ShortLinkStore(session).delete_expired(now)

**Step 4 — Dispose of the pool on shutdown**::
    await close_db()

Key Behaviours
===============
- expire_on_commit is off, so links returned by the store stay readable after commit.
- PostgreSQL URLs get a sized, pre-pinged pool; SQLite URLs keep the driver default.
- SQL echo is only enabled for development runs at DEBUG level.
"""

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from shortener.config import get_settings

__all__ = ["Base", "async_session", "engine", "engine_options", "get_db", "init_db", "close_db"]

settings = get_settings()


def engine_options(database_url: str) -> dict[str, Any]:
    options: dict[str, Any] = {"echo": settings.APP_ENV == "development" and settings.LOG_LEVEL == "DEBUG"}
    if not database_url.startswith("sqlite"):
        options.update(pool_size=20, max_overflow=10, pool_pre_ping=True)
    return options


engine = create_async_engine(settings.DATABASE_URL, **engine_options(settings.DATABASE_URL))

async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()
