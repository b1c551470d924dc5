"""Runtime settings for the URL shortener service.

Every tunable is an upper-case field on ``Settings`` and can be overridden by an
environment variable of the same name or a ``.env`` file. ``get_settings()`` is
cached, so the environment is read once per process; tests build ``Settings``
directly and hand it to a ServiceManager instead.

Settings Groups
===============
::
    Settings
    ├─ service      APP_NAME, APP_ENV, LOG_LEVEL, BASE_URL
    ├─ store        DATABASE_URL
    ├─ cache        REDIS_URL, CACHE_TTL_SECONDS, CACHE_SOCKET_TIMEOUT_SECONDS,
    │               CACHE_RECONNECT_INTERVAL_SECONDS
    ├─ identifiers  SHORT_ID_LENGTH, SHORT_ID_MAX_ATTEMPTS
    ├─ expiry       RECORD_GRACE_PERIOD_SECONDS, ACCESS_EXPIRY_EXTENSION_SECONDS,
    │               EXPIRY_SWEEP_INTERVAL_SECONDS
    ├─ analytics    ANALYTICS_WORKERS, ANALYTICS_QUEUE_SIZE, ANALYTICS_MAX_RETRIES,
    │               ANALYTICS_RETRY_DELAY_SECONDS
    ├─ throttling   RATE_LIMIT_MAX_REQUESTS, RATE_LIMIT_WINDOW_SECONDS, TRUSTED_PROXIES
    └─ reporting    METRICS_TOP_N

How to Use
===========
**Step 1 — Read settings**::
    from shortener.config import get_settings
    ttl = get_settings().CACHE_TTL_SECONDS

**Step 2 — Disable Redis for local runs**::
    REDIS_URL="" uvicorn shortener.main:app

Key Behaviours
===============
- An empty REDIS_URL runs the lookup cache on its in-process fallback only.
- ACCESS_EXPIRY_EXTENSION_SECONDS=0 keeps the single grace period set at creation;
  any positive value pushes expires_at forward on every recorded click.
- BASE_URL is the public prefix of every shortUrl; a trailing slash is ignored.
"""

__all__ = ["Settings", "get_settings"]

import ipaddress
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "url-shortener"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"
    BASE_URL: str = "http://localhost:3000"

    # PostgreSQL
    DATABASE_URL: str = "postgresql+asyncpg://urlshortener:urlshortener@db:5432/urlshortener"

    # Redis lookup cache
    REDIS_URL: str = "redis://redis:6379/0"
    CACHE_TTL_SECONDS: int = 3600
    CACHE_SOCKET_TIMEOUT_SECONDS: float = 0.5
    CACHE_RECONNECT_INTERVAL_SECONDS: float = 30.0

    # Short identifier config
    SHORT_ID_LENGTH: int = 7
    SHORT_ID_MAX_ATTEMPTS: int = 8

    # Record expiry
    RECORD_GRACE_PERIOD_SECONDS: int = 300
    ACCESS_EXPIRY_EXTENSION_SECONDS: int = 0
    EXPIRY_SWEEP_INTERVAL_SECONDS: float = 60.0

    # Click analytics
    ANALYTICS_WORKERS: int = 2
    ANALYTICS_QUEUE_SIZE: int = 10000
    ANALYTICS_MAX_RETRIES: int = 3
    ANALYTICS_RETRY_DELAY_SECONDS: float = 0.2

    # Rate limiting
    RATE_LIMIT_MAX_REQUESTS: int = 100
    RATE_LIMIT_WINDOW_SECONDS: float = 60.0
    # Peers (addresses or CIDR blocks) whose X-Forwarded-For header is honoured,
    # given as a JSON list, e.g. TRUSTED_PROXIES='["10.0.0.0/8"]'
    TRUSTED_PROXIES: list[str] = []

    METRICS_TOP_N: int = 10

    @field_validator("TRUSTED_PROXIES")
    @classmethod
    def _check_trusted_proxies(cls, value: list[str]) -> list[str]:
        for entry in value:
            ipaddress.ip_network(entry, strict=False)
        return value

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
