"""ShortLinkStore tests against an in-memory SQLite database."""

import datetime

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from shortener.exceptions import DuplicateKeyError
from shortener.models import ShortLink, utcnow
from shortener.store import ShortLinkStore


@pytest.fixture
def store(db_session: AsyncSession) -> ShortLinkStore:
    return ShortLinkStore(db_session)


@pytest.mark.asyncio
async def test_insert_and_find(store: ShortLinkStore) -> None:
    await store.insert_unique(ShortLink.create("abc1234", "https://example.com", 300))

    link = await store.find_by_short_id("abc1234")
    assert link is not None
    assert link.original_url == "https://example.com"
    assert link.clicks == 0
    assert link.last_accessed is None
    assert await store.find_by_short_id("missing") is None


@pytest.mark.asyncio
async def test_insert_duplicate_short_id(store: ShortLinkStore) -> None:
    await store.insert_unique(ShortLink.create("abc1234", "https://example.com", 300))

    with pytest.raises(DuplicateKeyError):
        await store.insert_unique(ShortLink.create("abc1234", "https://other.example.com", 300))

    # The session stays usable after the rollback.
    link = await store.find_by_short_id("abc1234")
    assert link.original_url == "https://example.com"


@pytest.mark.asyncio
async def test_expired_link_is_hidden_but_still_exists(store: ShortLinkStore) -> None:
    await store.insert_unique(ShortLink.create("old0001", "https://example.com", grace_period_seconds=-1))

    assert await store.find_by_short_id("old0001") is None
    assert await store.find_by_short_id("old0001", include_expired=True) is not None
    assert await store.exists("old0001") is True


@pytest.mark.asyncio
async def test_increment_clicks_and_touch(store: ShortLinkStore) -> None:
    await store.insert_unique(ShortLink.create("abc1234", "https://example.com", 300))
    now = utcnow()

    assert await store.increment_clicks_and_touch("abc1234", 1, now) is True
    assert await store.increment_clicks_and_touch("abc1234", 4, now) is True

    link = await store.find_by_short_id("abc1234")
    assert link.clicks == 5
    assert link.last_accessed is not None


@pytest.mark.asyncio
async def test_increment_missing_record(store: ShortLinkStore) -> None:
    assert await store.increment_clicks_and_touch("missing", 1, utcnow()) is False


@pytest.mark.asyncio
async def test_increment_rejects_non_positive_delta(store: ShortLinkStore) -> None:
    with pytest.raises(AssertionError):
        await store.increment_clicks_and_touch("abc1234", 0, utcnow())


@pytest.mark.asyncio
async def test_expiry_extension_only_moves_forward(store: ShortLinkStore) -> None:
    now = utcnow()
    await store.insert_unique(ShortLink.create("abc1234", "https://example.com", 300, now=now))

    # An earlier target leaves the original expiry in place.
    await store.increment_clicks_and_touch(
        "abc1234", 1, now, extend_expiry_to=now + datetime.timedelta(seconds=10)
    )
    assert await store.find_by_short_id("abc1234", now=now + datetime.timedelta(seconds=200)) is not None

    await store.increment_clicks_and_touch(
        "abc1234", 1, now, extend_expiry_to=now + datetime.timedelta(hours=1)
    )
    assert await store.find_by_short_id("abc1234", now=now + datetime.timedelta(minutes=30)) is not None
    assert await store.find_by_short_id("abc1234", now=now + datetime.timedelta(hours=2)) is None


@pytest.mark.asyncio
async def test_aggregates(store: ShortLinkStore) -> None:
    now = utcnow()
    await store.insert_unique(ShortLink.create("aaaaaaa", "https://a.example.com", 300, now=now))
    await store.insert_unique(
        ShortLink.create(
            "bbbbbbb", "https://b.example.com", 7 * 86400, now=now - datetime.timedelta(days=2)
        )
    )
    await store.insert_unique(ShortLink.create("ccccccc", "https://c.example.com", 300, now=now))
    await store.increment_clicks_and_touch("bbbbbbb", 7, now)
    await store.increment_clicks_and_touch("aaaaaaa", 2, now)

    assert await store.count_all() == 3
    assert await store.count_created_since(now - datetime.timedelta(hours=24)) == 2
    assert await store.sum_clicks() == 9

    top = await store.top_n_by_clicks(2)
    assert [link.short_id for link in top] == ["bbbbbbb", "aaaaaaa"]


@pytest.mark.asyncio
async def test_aggregates_on_empty_store(store: ShortLinkStore) -> None:
    assert await store.count_all() == 0
    assert await store.sum_clicks() == 0
    assert await store.top_n_by_clicks(10) == []


@pytest.mark.asyncio
async def test_delete_expired(store: ShortLinkStore) -> None:
    await store.insert_unique(ShortLink.create("live001", "https://example.com", 300))
    await store.insert_unique(ShortLink.create("dead001", "https://example.com", -1))

    assert await store.delete_expired() == ["dead001"]
    assert await store.exists("dead001") is False
    assert await store.exists("live001") is True
    assert await store.delete_expired() == []


@pytest.mark.asyncio
async def test_ping(store: ShortLinkStore) -> None:
    await store.ping()
