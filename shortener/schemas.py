"""Pydantic schemas for request/response validation in the URL shortener.

This module defines Pydantic models for API input parsing and output serialization,
plus the payloads exchanged with the lookup cache and the click recorder.

Schema Hierarchy
=================
::
    ShortenRequest (Input)
    └─ url: str | None (validated by the shorten workflow, 400 on failure)

    ShortenResponse (Output)
    ├─ shortUrl: str
    └─ shortId: str

    StatsResponse (Output)
    ├─ shortId, originalUrl, clicks
    └─ createdAt, lastAccessed

    MetricsResponse (Output)
    ├─ timestamp, uptime, uptimeSeconds
    ├─ database: DatabaseMetrics
    ├─ topUrls: list[TopLink]
    ├─ cache: CacheMetrics
    ├─ analytics: AnalyticsMetrics
    └─ system: SystemMetrics

    HealthResponse (Output)
    ├─ status, timestamp, uptime
    └─ services: ServiceHealth (store, cache, server)

    CachedLinkPayload (cache value)   ClickEvent (analytics queue item)

Key Behaviours
===============
- JSON field names are camelCase; Python attributes stay snake_case.
- Models accept either spelling on input (populate_by_name).
- Output models read directly from ORM objects (from_attributes).
- Timestamps serialize as ISO 8601.
"""

import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from shortener.enums import HealthStatus

__all__ = [
    "ShortenRequest",
    "ShortenResponse",
    "StatsResponse",
    "TopLink",
    "DatabaseMetrics",
    "CacheMetrics",
    "AnalyticsMetrics",
    "SystemMetrics",
    "MetricsResponse",
    "ServiceHealth",
    "HealthResponse",
    "CachedLinkPayload",
    "ClickEvent",
]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class ShortenRequest(CamelModel):
    url: str | None = None


class ShortenResponse(CamelModel):
    short_url: str
    short_id: str


class StatsResponse(CamelModel):
    short_id: str
    original_url: str
    clicks: int
    created_at: datetime.datetime
    last_accessed: datetime.datetime | None = None


class TopLink(CamelModel):
    short_id: str
    short_url: str
    original_url: str
    clicks: int
    last_accessed: datetime.datetime | None = None


class DatabaseMetrics(CamelModel):
    total_urls: int
    recent_urls_24h: int = Field(alias="recentUrls24h")
    total_clicks: int
    average_clicks_per_url: float


class CacheMetrics(CamelModel):
    hits: int
    misses: int
    hit_rate: float
    mode: str


class AnalyticsMetrics(CamelModel):
    pending: int
    processed: int
    failed: int
    dropped: int


class SystemMetrics(CamelModel):
    python_version: str
    platform: str
    memory: dict[str, float]


class MetricsResponse(CamelModel):
    timestamp: datetime.datetime
    uptime: str
    uptime_seconds: float
    database: DatabaseMetrics
    top_urls: list[TopLink]
    cache: CacheMetrics
    analytics: AnalyticsMetrics
    system: SystemMetrics


class ServiceHealth(CamelModel):
    store: HealthStatus
    cache: HealthStatus
    server: HealthStatus = HealthStatus.HEALTHY


class HealthResponse(CamelModel):
    status: HealthStatus
    timestamp: datetime.datetime
    uptime: float
    services: ServiceHealth
    memory: dict[str, float]


class CachedLinkPayload(CamelModel):
    """Lookup cache value for ``short:<id>``; only what a redirect needs."""

    original_url: str


class ClickEvent(BaseModel):
    """Analytics queue item for one redirect served from the cache."""

    short_id: str = Field(..., description="Short identifier that was resolved, e.g. 'abc1234'")
    accessed_at: datetime.datetime
    delta: int = Field(
        1,
        description="How many clicks to add for this short_id (typically 1).",
        ge=1,
    )
