"""Periodic removal of expired short links."""

import asyncio
import contextlib
import logging

from prometheus_client import Counter
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortener.cache import LookupCache, cache_key
from shortener.models import utcnow
from shortener.store import ShortLinkStore

__all__ = ["ExpirySweeper"]

EXPIRED_LINKS_DELETED_TOTAL = Counter(
    "url_shortener_expired_links_deleted_total",
    "Short links deleted by the expiry sweeper",
)


class ExpirySweeper:
    """Deletes links past ``expires_at`` and invalidates their cache entries.

    Lookups already treat expired rows as absent, so the sweep only reclaims space
    and shortens the window in which a cached entry can outlive its record.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: LookupCache,
        interval_seconds: float = 60.0,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._cache = cache
        self._interval = interval_seconds
        self._logger = logger or logging.getLogger("urlshortener")
        self._task: asyncio.Task | None = None

    async def sweep_once(self) -> list[str]:
        async with self._session_factory() as session:
            removed = await ShortLinkStore(session).delete_expired(utcnow())
        for short_id in removed:
            await self._cache.delete(cache_key(short_id))
        if removed:
            EXPIRED_LINKS_DELETED_TOTAL.inc(len(removed))
            self._logger.info(f"Expiry sweep removed {len(removed)} links")
        return removed

    async def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name="expiry-sweeper")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.sweep_once()
            except Exception as exc:
                self._logger.error(f"Expiry sweep failed: {exc}")
