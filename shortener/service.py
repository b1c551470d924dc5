"""URL Shortener Service Layer - Core Business Logic

This module holds the four workflows behind the HTTP surface: shorten, redirect,
stats and metrics. Each request gets a ShortLinkService built from its
RequestContext; the long-lived collaborators (lookup cache, click recorder) are
shared across requests through the ServiceManager.

Architecture Overview
=====================
::
    ┌─────────────────────────────────────────────────────────────┐
    │                    ShortLinkService                         │
    │  ┌──────────────┐ ┌──────────────┐ ┌──────────┐ ┌─────────┐ │
    │  │   shorten    │ │   resolve    │ │  stats   │ │ metrics │ │
    │  └──────────────┘ └──────────────┘ └──────────┘ └─────────┘ │
    └─────────────────────────────────────────────────────────────┘
            │                  │                │           │
            ▼                  ▼                ▼           ▼
    ┌──────────────┐  ┌──────────────┐  ┌─────────────────────────┐
    │ LookupCache  │  │ClickRecorder │  │     ShortLinkStore      │
    │ (Redis/local)│  │ (queue)      │  │ (PostgreSQL, atomic ops)│
    └──────────────┘  └──────────────┘  └─────────────────────────┘

Shorten Flow
------------
::
    validate URL ──▶ generate id ──▶ exists? ──yes──▶ retry (bounded)
                                       │ no
                                       ▼
                                 insert_unique ──DuplicateKey──▶ retry
                                       │ ok
                                       ▼
                                 warm cache (best-effort) ──▶ {shortUrl, shortId}

Redirect Flow
-------------
::
    cache get ──hit──▶ submit click to recorder (not awaited) ──▶ 302
        │
       miss
        ▼
    store find ──absent/expired──▶ 404
        │ found
        ▼
    warm cache ──▶ increment_clicks_and_touch (awaited) ──▶ 302

Key Behaviours
===============
- Identifier collisions are retried up to SHORT_ID_MAX_ATTEMPTS times, after
  which IdentifierSpaceExhaustedError is raised.
- The same URL shortened twice yields two independent records.
- Cache failures never fail a request; the cache degrades to its local map.
- A cache-hit redirect returns without waiting for, or depending on, the
  analytics write.
- Stats and metrics read the store only; the cache is never consulted.
"""

import datetime
import platform
import sys
import time
from typing import TYPE_CHECKING

import psutil
from prometheus_client import Counter, Histogram
from pydantic import ValidationError

from shortener.cache import cache_key
from shortener.enums import CacheStatus, RequestStatus
from shortener.exceptions import (
    DuplicateKeyError,
    IdentifierSpaceExhaustedError,
    InvalidInputError,
    NotFoundError,
)
from shortener.id_gen import generate_short_id, is_valid_url
from shortener.models import ShortLink, utcnow
from shortener.schemas import (
    AnalyticsMetrics,
    CacheMetrics,
    CachedLinkPayload,
    DatabaseMetrics,
    MetricsResponse,
    SystemMetrics,
    TopLink,
)
from shortener.store import ShortLinkStore

if TYPE_CHECKING:
    from shortener.dependencies import RequestContext

__all__ = ["ShortLinkService", "format_uptime", "memory_usage_mb"]


# ============================================================================
# PROMETHEUS METRICS
# ============================================================================

SHORTEN_REQUESTS_TOTAL = Counter(
    "url_shortener_shorten_requests_total",
    "Total shorten requests",
    ["status"],
)
SHORTEN_DURATION = Histogram(
    "url_shortener_shorten_duration_seconds",
    "Time taken to create short links",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)
SHORT_ID_COLLISIONS_TOTAL = Counter(
    "url_shortener_short_id_collisions_total",
    "Generated short ids that were already taken",
)
REDIRECT_REQUESTS_TOTAL = Counter(
    "url_shortener_redirect_requests_total",
    "Total redirect lookups",
    ["status", "cache_hit"],
)
REDIRECT_DURATION = Histogram(
    "url_shortener_redirect_duration_seconds",
    "Time taken to resolve a short id",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25],
)


def format_uptime(seconds: float) -> str:
    return f"{int(seconds // 3600)}h {int((seconds % 3600) // 60)}m"


def memory_usage_mb() -> dict[str, float]:
    memory = psutil.Process().memory_info()
    return {
        "rss": round(memory.rss / 1024 / 1024, 1),
        "vms": round(memory.vms / 1024 / 1024, 1),
    }


# ============================================================================
# CORE SERVICE CLASS
# ============================================================================


class ShortLinkService:
    """Workflows for creating, resolving and reporting on short links.

    Example:
        >>> service = ShortLinkService.from_context(ctx)
        >>> link = await service.shorten("https://example.com")
        >>> await service.resolve(link.short_id)
        'https://example.com'
    """

    def __init__(self, ctx: "RequestContext"):
        self._store = ShortLinkStore(ctx.database)
        self._cache = ctx.cache
        self._recorder = ctx.click_recorder
        self._logger = ctx.logger
        self._settings = ctx.settings
        self._started_at = ctx.started_at

    @classmethod
    def from_context(cls, ctx: "RequestContext") -> "ShortLinkService":
        return cls(ctx)

    def short_url_for(self, short_id: str) -> str:
        return f"{self._settings.BASE_URL.rstrip('/')}/{short_id}"

    # ========================================================================
    # SHORTEN
    # ========================================================================

    async def shorten(self, url: str | None) -> ShortLink:
        """Persist a new short link for ``url`` and warm the cache.

        Raises:
            InvalidInputError: If url is missing or not an absolute http(s) URL.
            IdentifierSpaceExhaustedError: If every generated id collided.
            StorageError: If the store rejects the write.
        """
        start_time = time.perf_counter()
        try:
            if not url:
                raise InvalidInputError("url required")
            if not is_valid_url(url):
                raise InvalidInputError("Invalid URL provided")

            link = await self._insert_with_unique_id(url)
            await self._warm_cache(link.short_id, link.original_url)

            SHORTEN_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
            self._logger.info(
                f"Short link created: {link.short_id} in {time.perf_counter() - start_time:.3f}s"
            )
            return link

        except InvalidInputError as exc:
            SHORTEN_REQUESTS_TOTAL.labels(status=RequestStatus.VALIDATION_ERROR).inc()
            self._logger.warning(f"Shorten rejected: {exc}")
            raise

        except Exception as exc:
            SHORTEN_REQUESTS_TOTAL.labels(status=RequestStatus.ERROR).inc()
            self._logger.error(f"Shorten failed: {exc}")
            raise

        finally:
            SHORTEN_DURATION.observe(time.perf_counter() - start_time)

    async def _insert_with_unique_id(self, url: str) -> ShortLink:
        max_attempts = self._settings.SHORT_ID_MAX_ATTEMPTS
        for attempt in range(1, max_attempts + 1):
            short_id = generate_short_id(self._settings.SHORT_ID_LENGTH)
            if await self._store.exists(short_id):
                SHORT_ID_COLLISIONS_TOTAL.inc()
                self._logger.warning(f"Short id {short_id} already taken (attempt {attempt})")
                continue

            link = ShortLink.create(short_id, url, self._settings.RECORD_GRACE_PERIOD_SECONDS)
            try:
                return await self._store.insert_unique(link)
            except DuplicateKeyError:
                # Lost a race with a concurrent insert of the same id.
                SHORT_ID_COLLISIONS_TOTAL.inc()
                self._logger.warning(f"Short id {short_id} collided on insert (attempt {attempt})")

        raise IdentifierSpaceExhaustedError(f"No free short id after {max_attempts} attempts")

    # ========================================================================
    # REDIRECT
    # ========================================================================

    async def resolve(self, short_id: str) -> str:
        """Return the original URL for ``short_id`` and account for the click.

        Raises:
            NotFoundError: If no live record exists for short_id.
        """
        start_time = time.perf_counter()
        try:
            cached_url = await self._lookup_cached(short_id)
            if cached_url is not None:
                self._recorder.submit(short_id, utcnow())
                REDIRECT_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS, cache_hit=CacheStatus.HIT).inc()
                return cached_url

            now = utcnow()
            link = await self._store.find_by_short_id(short_id, now=now)
            if link is None:
                REDIRECT_REQUESTS_TOTAL.labels(status=RequestStatus.NOT_FOUND, cache_hit=CacheStatus.MISS).inc()
                raise NotFoundError(f"Short id '{short_id}' not found")

            original_url = link.original_url
            await self._warm_cache(short_id, original_url)
            await self._store.increment_clicks_and_touch(
                short_id, 1, now, extend_expiry_to=self._expiry_extension(now)
            )
            REDIRECT_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS, cache_hit=CacheStatus.MISS).inc()
            return original_url

        finally:
            REDIRECT_DURATION.observe(time.perf_counter() - start_time)

    async def _lookup_cached(self, short_id: str) -> str | None:
        key = cache_key(short_id)
        cached = await self._cache.get(key)
        if cached is None:
            return None
        try:
            return CachedLinkPayload.model_validate_json(cached).original_url
        except ValidationError as exc:
            self._logger.error(f"Discarding unreadable cache entry for {short_id}: {exc}")
            await self._cache.delete(key)
            return None

    async def _warm_cache(self, short_id: str, original_url: str) -> None:
        payload = CachedLinkPayload(original_url=original_url).model_dump_json(by_alias=True)
        try:
            await self._cache.set(cache_key(short_id), payload, self._settings.CACHE_TTL_SECONDS)
        except Exception as exc:
            self._logger.warning(f"Cache warm failed for {short_id}: {exc}")

    def _expiry_extension(self, now: datetime.datetime) -> datetime.datetime | None:
        extension = self._settings.ACCESS_EXPIRY_EXTENSION_SECONDS
        if extension <= 0:
            return None
        return now + datetime.timedelta(seconds=extension)

    # ========================================================================
    # STATS & METRICS
    # ========================================================================

    async def get_stats(self, short_id: str) -> ShortLink:
        link = await self._store.find_by_short_id(short_id)
        if link is None:
            raise NotFoundError(f"Short id '{short_id}' not found")
        return link

    async def get_metrics(self) -> MetricsResponse:
        now = utcnow()
        total_urls = await self._store.count_all()
        recent_urls = await self._store.count_created_since(now - datetime.timedelta(hours=24))
        total_clicks = await self._store.sum_clicks()
        top_links = await self._store.top_n_by_clicks(self._settings.METRICS_TOP_N)

        uptime_seconds = time.monotonic() - self._started_at
        return MetricsResponse(
            timestamp=now,
            uptime=format_uptime(uptime_seconds),
            uptime_seconds=round(uptime_seconds, 3),
            database=DatabaseMetrics(
                total_urls=total_urls,
                recent_urls_24h=recent_urls,
                total_clicks=total_clicks,
                average_clicks_per_url=round(total_clicks / total_urls, 2) if total_urls else 0,
            ),
            top_urls=[
                TopLink(
                    short_id=link.short_id,
                    short_url=self.short_url_for(link.short_id),
                    original_url=link.original_url,
                    clicks=link.clicks,
                    last_accessed=link.last_accessed,
                )
                for link in top_links
            ],
            cache=CacheMetrics(**self._cache.stats()),
            analytics=AnalyticsMetrics(**self._recorder.stats()),
            system=SystemMetrics(
                python_version=platform.python_version(),
                platform=sys.platform,
                memory=memory_usage_mb(),
            ),
        )
