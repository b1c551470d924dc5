"""FastAPI route definitions for the URL shortener REST API.

API Endpoint Overview
=====================
::
    GET  /health
        └─ HealthResponse (200 healthy, 503 degraded)

    GET  /metrics
        └─ MetricsResponse (200) or 500

    POST /shorten
        ├─ ShortenRequest (request body)
        └─ ShortenResponse (200) or 400/429/500

    GET  /stats/:short_id
        └─ StatsResponse (200) or 404

    GET  /:short_id
        └─ 302 Redirect, 404 "Not found" or 500 "Server error"

Key Behaviours
===============
- Every route except /health passes through the per-client rate limiter.
- The redirect route answers in plain text on failure; everything else in JSON.
- Error bodies never carry internal detail; the cause is logged instead.
- /metrics/prometheus (registered in main) serves the Prometheus exposition.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse, Response

from shortener.dependencies import (
    RequestContext,
    enforce_rate_limit,
    get_link_service,
    get_request_context,
)
from shortener.enums import CacheMode, HealthStatus
from shortener.exceptions import NotFoundError, StorageError
from shortener.models import utcnow
from shortener.schemas import (
    HealthResponse,
    MetricsResponse,
    ServiceHealth,
    ShortenRequest,
    ShortenResponse,
    StatsResponse,
)
from shortener.service import ShortLinkService, memory_usage_mb
from shortener.store import ShortLinkStore

__all__ = ["router"]

router = APIRouter()
rate_limited = [Depends(enforce_rate_limit)]


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(ctx: RequestContext = Depends(get_request_context)) -> JSONResponse:
    store_status = HealthStatus.HEALTHY
    try:
        await ShortLinkStore(ctx.database).ping()
    except StorageError as exc:
        ctx.logger.error(f"Store health check failed: {exc}")
        store_status = HealthStatus.UNHEALTHY

    cache_status = HealthStatus.HEALTHY
    if ctx.cache.mode is CacheMode.FALLBACK or not await ctx.cache.ping():
        cache_status = HealthStatus.DEGRADED

    status = (
        HealthStatus.HEALTHY
        if store_status is HealthStatus.HEALTHY and cache_status is HealthStatus.HEALTHY
        else HealthStatus.DEGRADED
    )
    health = HealthResponse(
        status=status,
        timestamp=utcnow(),
        uptime=round(ctx.get_uptime(), 3),
        services=ServiceHealth(store=store_status, cache=cache_status),
        memory=memory_usage_mb(),
    )
    ctx.logger.debug(f"Health check completed: {status.value}")
    return JSONResponse(
        status_code=200 if status is HealthStatus.HEALTHY else 503,
        content=health.model_dump(mode="json", by_alias=True),
    )


@router.get("/metrics", response_model=MetricsResponse, tags=["metrics"], dependencies=rate_limited)
async def get_metrics(
    ctx: RequestContext = Depends(get_request_context),
    service: ShortLinkService = Depends(get_link_service),
) -> MetricsResponse | JSONResponse:
    try:
        return await service.get_metrics()
    except Exception:
        ctx.logger.exception("Metrics aggregation failed")
        return JSONResponse(status_code=500, content={"error": "Failed to fetch metrics"})


@router.post(
    "/shorten",
    response_model=ShortenResponse,
    tags=["links"],
    dependencies=rate_limited,
)
async def shorten_url(
    payload: ShortenRequest,
    ctx: RequestContext = Depends(get_request_context),
    service: ShortLinkService = Depends(get_link_service),
) -> ShortenResponse:
    ctx.logger.info(f"Shorten requested for: {payload.url}")
    link = await service.shorten(payload.url)
    ctx.logger.info(f"Shortened {link.short_id} in {ctx.get_duration():.1f}ms")
    return ShortenResponse(short_url=service.short_url_for(link.short_id), short_id=link.short_id)


@router.get("/stats/{short_id}", response_model=StatsResponse, tags=["links"], dependencies=rate_limited)
async def get_stats(
    short_id: str,
    service: ShortLinkService = Depends(get_link_service),
) -> StatsResponse:
    link = await service.get_stats(short_id)
    return StatsResponse.model_validate(link)


@router.get("/{short_id}", tags=["redirect"], dependencies=rate_limited)
async def redirect_to_url(
    short_id: str,
    ctx: RequestContext = Depends(get_request_context),
    service: ShortLinkService = Depends(get_link_service),
) -> Response:
    try:
        original_url = await service.resolve(short_id)
    except NotFoundError:
        ctx.logger.info(f"Redirect failed - short id not found: {short_id}")
        return PlainTextResponse("Not found", status_code=404)
    except Exception:
        ctx.logger.exception(f"Redirect failed for {short_id}")
        return PlainTextResponse("Server error", status_code=500)

    ctx.logger.debug(f"Redirect {short_id} -> {original_url} in {ctx.get_duration():.1f}ms")
    return RedirectResponse(url=original_url, status_code=302)
