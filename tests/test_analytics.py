"""Click recorder tests: queueing, retries and drain."""

import datetime
from typing import AsyncGenerator
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortener.analytics import ClickRecorder
from shortener.exceptions import StorageError
from shortener.models import ShortLink, utcnow
from shortener.store import ShortLinkStore


@pytest_asyncio.fixture
async def recorder(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[ClickRecorder, None]:
    async with session_factory() as session:
        await ShortLinkStore(session).insert_unique(ShortLink.create("abc1234", "https://example.com", 300))

    recorder = ClickRecorder(session_factory, workers=1, max_retries=2, retry_delay_seconds=0.001)
    yield recorder
    await recorder.stop(timeout=1)


async def _clicks(session_factory: async_sessionmaker[AsyncSession], short_id: str) -> int:
    async with session_factory() as session:
        link = await ShortLinkStore(session).find_by_short_id(short_id, include_expired=True)
        return link.clicks


@pytest.mark.asyncio
async def test_submitted_clicks_are_applied(
    recorder: ClickRecorder, session_factory: async_sessionmaker[AsyncSession]
) -> None:
    for _ in range(10):
        assert recorder.submit("abc1234") is True
    assert recorder.pending == 10

    await recorder.start()
    await recorder.drain()

    assert await _clicks(session_factory, "abc1234") == 10
    assert recorder.stats() == {"pending": 0, "processed": 10, "failed": 0, "dropped": 0}


@pytest.mark.asyncio
async def test_transient_failure_is_retried(recorder: ClickRecorder) -> None:
    flaky = AsyncMock(side_effect=[StorageError("db blip"), StorageError("db blip"), True])
    with patch.object(ShortLinkStore, "increment_clicks_and_touch", flaky):
        recorder.submit("abc1234")
        await recorder.start()
        await recorder.drain()

    assert flaky.await_count == 3
    assert recorder.processed == 1
    assert recorder.failed == 0


@pytest.mark.asyncio
async def test_exhausted_retries_are_counted_as_failed(recorder: ClickRecorder) -> None:
    broken = AsyncMock(side_effect=StorageError("db down"))
    with patch.object(ShortLinkStore, "increment_clicks_and_touch", broken):
        recorder.submit("abc1234")
        await recorder.start()
        await recorder.drain()

    # One attempt plus max_retries retries.
    assert broken.await_count == 3
    assert recorder.processed == 0
    assert recorder.failed == 1


@pytest.mark.asyncio
async def test_full_queue_drops_events(session_factory: async_sessionmaker[AsyncSession]) -> None:
    recorder = ClickRecorder(session_factory, queue_size=1)
    assert recorder.submit("abc1234") is True
    assert recorder.submit("abc1234") is False
    assert recorder.dropped == 1
    assert recorder.pending == 1


@pytest.mark.asyncio
async def test_click_for_missing_record_is_not_a_failure(recorder: ClickRecorder) -> None:
    recorder.submit("missing")
    await recorder.start()
    await recorder.drain()
    assert recorder.processed == 1
    assert recorder.failed == 0


@pytest.mark.asyncio
async def test_access_extends_expiry(session_factory: async_sessionmaker[AsyncSession]) -> None:
    now = utcnow()
    async with session_factory() as session:
        await ShortLinkStore(session).insert_unique(
            ShortLink.create("ext0001", "https://example.com", 300, now=now)
        )

    recorder = ClickRecorder(session_factory, workers=1, expiry_extension_seconds=3600)
    recorder.submit("ext0001", accessed_at=now)
    await recorder.start()
    await recorder.drain()
    await recorder.stop()

    async with session_factory() as session:
        link = await ShortLinkStore(session).find_by_short_id(
            "ext0001", now=now + datetime.timedelta(minutes=30)
        )
    assert link is not None
    assert link.clicks == 1


@pytest.mark.asyncio
async def test_stop_is_idempotent(recorder: ClickRecorder) -> None:
    await recorder.start()
    assert recorder.running is True
    await recorder.stop()
    assert recorder.running is False
    await recorder.stop()
