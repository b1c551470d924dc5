"""Durable store for short links.

``ShortLinkStore`` wraps one ``AsyncSession`` and exposes exactly the operations the
workflows need. Every write commits on its own; there are no multi-row transactions.

Responsibilities:
    - Look up live (non-expired) links by short identifier;
    - Insert new links, turning unique-constraint violations into DuplicateKeyError;
    - Apply the atomic click increment used by both redirect paths;
    - Provide the read-only aggregates behind the metrics endpoint;
    - Delete expired links for the expiry sweeper.

Any other SQLAlchemy failure is rolled back and re-raised as StorageError so that no
driver detail (DSNs, SQL text) leaks past this layer.

Example:
    >>> async with async_session() as session:
    ...     store = ShortLinkStore(session)
    ...     await store.insert_unique(ShortLink.create("abc1234", "https://example.com", 300))
    ...     await store.increment_clicks_and_touch("abc1234", 1, utcnow())
    True
"""

import datetime
import functools
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from sqlalchemy import case, delete, func, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shortener.exceptions import DuplicateKeyError, StorageError
from shortener.models import ShortLink, utcnow

__all__ = ["ShortLinkStore"]

logger = logging.getLogger("urlshortener")

T = TypeVar("T")


def handle_storage_errors(method: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    """Roll back and re-raise SQLAlchemy failures as StorageError."""

    @functools.wraps(method)
    async def wrapper(self: "ShortLinkStore", *args: Any, **kwargs: Any) -> T:
        try:
            return await method(self, *args, **kwargs)
        except SQLAlchemyError as exc:
            await self._safe_rollback()
            raise StorageError(f"Store operation '{method.__name__}' failed") from exc

    return wrapper


class ShortLinkStore:
    def __init__(self, session: AsyncSession) -> None:
        self._db = session

    @handle_storage_errors
    async def find_by_short_id(
        self,
        short_id: str,
        include_expired: bool = False,
        now: datetime.datetime | None = None,
    ) -> ShortLink | None:
        query = select(ShortLink).where(ShortLink.short_id == short_id)
        if not include_expired:
            query = query.where(ShortLink.expires_at > (now or utcnow()))
        result = await self._db.execute(query.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    @handle_storage_errors
    async def exists(self, short_id: str) -> bool:
        # Expired rows still hold the unique key until the sweeper removes them.
        result = await self._db.execute(select(ShortLink.id).where(ShortLink.short_id == short_id))
        return result.first() is not None

    @handle_storage_errors
    async def insert_unique(self, link: ShortLink) -> ShortLink:
        self._db.add(link)
        try:
            await self._db.commit()
        except IntegrityError as exc:
            await self._safe_rollback()
            raise DuplicateKeyError(f"Short id '{link.short_id}' already exists") from exc
        return link

    @handle_storage_errors
    async def increment_clicks_and_touch(
        self,
        short_id: str,
        delta: int,
        timestamp: datetime.datetime,
        extend_expiry_to: datetime.datetime | None = None,
    ) -> bool:
        """Atomically add ``delta`` clicks and set last_accessed.

        The increment is computed by the database (``clicks = clicks + delta``), so
        concurrent callers never lose updates. ``extend_expiry_to`` only ever moves
        expires_at forward.

        Returns:
            bool: False when no row matched the short id.
        """
        assert isinstance(delta, int) and delta > 0, f"delta must be positive int, got {delta!r}"
        values: dict[str, Any] = {
            "clicks": ShortLink.clicks + delta,
            "last_accessed": timestamp,
        }
        if extend_expiry_to is not None:
            values["expires_at"] = case(
                (ShortLink.expires_at < extend_expiry_to, extend_expiry_to),
                else_=ShortLink.expires_at,
            )
        result = await self._db.execute(
            update(ShortLink)
            .where(ShortLink.short_id == short_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self._db.commit()
        return result.rowcount > 0

    @handle_storage_errors
    async def count_all(self) -> int:
        result = await self._db.execute(select(func.count(ShortLink.id)))
        return int(result.scalar_one())

    @handle_storage_errors
    async def count_created_since(self, timestamp: datetime.datetime) -> int:
        result = await self._db.execute(select(func.count(ShortLink.id)).where(ShortLink.created_at >= timestamp))
        return int(result.scalar_one())

    @handle_storage_errors
    async def sum_clicks(self) -> int:
        result = await self._db.execute(select(func.coalesce(func.sum(ShortLink.clicks), 0)))
        return int(result.scalar_one())

    @handle_storage_errors
    async def top_n_by_clicks(self, n: int) -> list[ShortLink]:
        result = await self._db.execute(
            select(ShortLink)
            .order_by(ShortLink.clicks.desc(), ShortLink.created_at.desc())
            .limit(n)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    @handle_storage_errors
    async def delete_expired(self, now: datetime.datetime | None = None) -> list[str]:
        cutoff = now or utcnow()
        result = await self._db.execute(select(ShortLink.short_id).where(ShortLink.expires_at <= cutoff))
        expired = list(result.scalars().all())
        if not expired:
            return []
        await self._db.execute(
            delete(ShortLink)
            .where(ShortLink.short_id.in_(expired), ShortLink.expires_at <= cutoff)
            .execution_options(synchronize_session=False)
        )
        await self._db.commit()
        return expired

    @handle_storage_errors
    async def ping(self) -> None:
        await self._db.execute(text("SELECT 1"))

    async def _safe_rollback(self) -> None:
        try:
            await self._db.rollback()
        except SQLAlchemyError as exc:
            logger.debug(f"Rollback after store failure also failed: {exc}")
