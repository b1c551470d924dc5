"""Lookup cache with Redis as primary backend and an in-process fallback.

The cache is never authoritative: every entry can be rebuilt from the durable
store, so every operation here is best-effort and none of them raise.

State Diagram — Backend Selection
=================================
::
    ┌─────────────┐   first RedisError    ┌─────────────┐
    │   PRIMARY   │ ────────────────────▶ │  FALLBACK   │
    │ (redis)     │                       │ (local map) │
    └─────────────┘ ◀──────────────────── └─────────────┘
                      background ping ok

- PRIMARY: reads and writes go to Redis, each call bounded by the client's
  socket timeouts so an outage costs at most one timeout.
- FALLBACK: entered on the first failed Redis call; Redis is not retried per
  request. A background task pings Redis every reconnect interval and switches
  back to PRIMARY once it answers. The same task purges expired local entries.
- With no Redis client configured the cache stays in FALLBACK permanently.

The local map is process-wide state owned by one LookupCache instance. It is not
shared between service instances, so it only buys availability, not consistency.

How to Use
===========
::
    cache = LookupCache.from_settings(settings, logger)
    await cache.start()
    await cache.set("short:abc1234", payload)
    value = await cache.get("short:abc1234")
    await cache.stop()
"""

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable

import redis.asyncio as redis
from prometheus_client import Counter
from redis.exceptions import RedisError

from shortener.config import Settings
from shortener.enums import CacheMode
from shortener.exceptions import CacheError

__all__ = ["LocalTTLCache", "LookupCache", "cache_key"]

CACHE_KEY_PREFIX = "short:"

CACHE_HITS_TOTAL = Counter(
    "url_shortener_cache_hits_total",
    "Total lookup cache hits",
    ["mode"],
)
CACHE_MISSES_TOTAL = Counter(
    "url_shortener_cache_misses_total",
    "Total lookup cache misses",
    ["mode"],
)
CACHE_DEGRADATIONS_TOTAL = Counter(
    "url_shortener_cache_degradations_total",
    "Times the lookup cache switched from Redis to the in-process fallback",
)


def cache_key(short_id: str) -> str:
    return f"{CACHE_KEY_PREFIX}{short_id}"


class LocalTTLCache:
    """In-process key/value map whose entries expire after their TTL.

    Expiry is lazy on read; ``purge_expired`` removes the rest.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}

    def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, deadline = entry
        if deadline <= self._clock():
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: str, ttl_seconds: float) -> None:
        self._entries[key] = (value, self._clock() + ttl_seconds)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [key for key, (_, deadline) in self._entries.items() if deadline <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class LookupCache:
    def __init__(
        self,
        client: redis.Redis | None,
        ttl_seconds: int,
        reconnect_interval_seconds: float = 30.0,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
        local: LocalTTLCache | None = None,
    ) -> None:
        self._client = client
        self._ttl_seconds = ttl_seconds
        self._reconnect_interval = reconnect_interval_seconds
        self._logger = logger or logging.getLogger("urlshortener")
        self._local = local if local is not None else LocalTTLCache()
        self._mode = CacheMode.PRIMARY if client is not None else CacheMode.FALLBACK
        self._maintenance_task: asyncio.Task | None = None
        self.hits = 0
        self.misses = 0

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> "LookupCache":
        client = None
        if settings.REDIS_URL:
            client = redis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                socket_timeout=settings.CACHE_SOCKET_TIMEOUT_SECONDS,
                socket_connect_timeout=settings.CACHE_SOCKET_TIMEOUT_SECONDS,
            )
        return cls(
            client,
            ttl_seconds=settings.CACHE_TTL_SECONDS,
            reconnect_interval_seconds=settings.CACHE_RECONNECT_INTERVAL_SECONDS,
            logger=logger,
        )

    @property
    def mode(self) -> CacheMode:
        return self._mode

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    # ------------------------------------------------------------------
    # Key/value operations
    # ------------------------------------------------------------------

    async def get(self, key: str) -> str | None:
        value: str | None
        if self._mode is CacheMode.PRIMARY:
            try:
                value = await self._primary("get", key)
            except CacheError as exc:
                self._degrade(exc)
                value = self._local.get(key)
        else:
            value = self._local.get(key)

        if value is None:
            self.misses += 1
            CACHE_MISSES_TOTAL.labels(mode=self._mode).inc()
        else:
            self.hits += 1
            CACHE_HITS_TOTAL.labels(mode=self._mode).inc()
        return value

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else self._ttl_seconds
        if self._mode is CacheMode.PRIMARY:
            try:
                await self._primary("set", key, value, ex=ttl)
                return
            except CacheError as exc:
                self._degrade(exc)
        self._local.set(key, value, ttl)

    async def delete(self, key: str) -> None:
        self._local.delete(key)
        if self._mode is CacheMode.PRIMARY:
            try:
                await self._primary("delete", key)
            except CacheError as exc:
                self._degrade(exc)

    async def ping(self) -> bool:
        """Probe Redis without touching the current mode."""
        if self._client is None:
            return False
        try:
            await self._primary("ping")
        except CacheError:
            return False
        return True

    def stats(self) -> dict[str, object]:
        total = self.hits + self.misses
        return {
            "hits": self.hits,
            "misses": self.misses,
            "hitRate": round(self.hits / total * 100, 2) if total else 0.0,
            "mode": self._mode.value,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._maintenance_task is None:
            self._maintenance_task = asyncio.create_task(self._maintain(), name="lookup-cache-maintenance")

    async def stop(self) -> None:
        if self._maintenance_task is not None:
            self._maintenance_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._maintenance_task
            self._maintenance_task = None
        if self._client is not None:
            await self._client.aclose()

    async def try_reconnect(self) -> bool:
        if self._client is None or self._mode is CacheMode.PRIMARY:
            return self._mode is CacheMode.PRIMARY
        if not await self.ping():
            return False
        self._mode = CacheMode.PRIMARY
        self._local.clear()
        self._logger.info("Redis reachable again, lookup cache restored to primary backend")
        return True

    async def _maintain(self) -> None:
        while True:
            await asyncio.sleep(self._reconnect_interval)
            purged = self._local.purge_expired()
            if purged:
                self._logger.debug(f"Purged {purged} expired local cache entries")
            if self._mode is CacheMode.FALLBACK:
                await self.try_reconnect()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _primary(self, command: str, *args: object, **kwargs: object) -> object:
        assert self._client is not None, "primary backend is not configured"
        try:
            return await getattr(self._client, command)(*args, **kwargs)
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            raise CacheError(f"Redis {command} failed: {exc.__class__.__name__}") from exc

    def _degrade(self, exc: Exception) -> None:
        if self._mode is CacheMode.FALLBACK:
            return
        self._mode = CacheMode.FALLBACK
        CACHE_DEGRADATIONS_TOTAL.inc()
        self._logger.warning(f"Redis unavailable ({exc}), lookup cache using in-memory fallback")
