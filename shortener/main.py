"""FastAPI application entry point for the URL shortener service.

This module configures and initializes the FastAPI application with middleware,
lifecycle management, error mapping and route registration.

Application Lifecycle Diagram
=============================
::
    ┌──────────────────┐
    │ uvicorn startup  │
    └────────┬─────────┘
             ▼
    ┌──────────────────┐
    │ lifespan()       │
    │ init_db()        │
    │ manager.init():  │
    │  cache + ping    │
    │  click recorder  │
    │  expiry sweeper  │
    └────────┬─────────┘
             ▼
    ┌──────────────────┐
    │ Serve HTTP       │
    └────────┬─────────┘
             ▼
    ┌──────────────────┐
    │ lifespan()       │
    │ manager.cleanup()│
    │  (drain clicks)  │
    │ close_db()       │
    └──────────────────┘

How to Use
===========
**Step 1 — Run with uvicorn**::
    uvicorn shortener.main:app --host 0.0.0.0 --port 3000

**Step 2 — Make API calls**::
    curl -X POST http://localhost:3000/shorten \
         -H "Content-Type: application/json" \
         -d '{"url": "https://example.com"}'

    curl -i http://localhost:3000/<shortId>
    curl http://localhost:3000/stats/<shortId>
    curl http://localhost:3000/metrics
    curl http://localhost:3000/health

Error Mapping
=============
- InvalidInputError and malformed request bodies -> 400 {"error": ...}
- NotFoundError -> 404 {"error": "Not found"}
- RateLimitExceededError -> 429 {"error": "Too many requests"} + Retry-After
- anything else -> 500 {"error": "server error"}, logged with traceback
"""

__all__ = ["app"]

import logging
import math
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from shortener.config import get_settings
from shortener.database import close_db, init_db
from shortener.dependencies import _service_manager
from shortener.exceptions import InvalidInputError, NotFoundError, RateLimitExceededError, ShortenerError
from shortener.routes import router

settings = get_settings()
logger = logging.getLogger("urlshortener")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    await init_db()
    await _service_manager.initialize()
    yield
    # Shutdown
    await _service_manager.cleanup()
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="URL shortener with cached redirects and click analytics",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=False,
    should_respect_env_var=False,
).instrument(app).expose(app, endpoint="/metrics/prometheus", include_in_schema=False)


@app.exception_handler(InvalidInputError)
async def invalid_input_handler(request: Request, exc: InvalidInputError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": "Invalid request body"})


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": "Not found"})


@app.exception_handler(RateLimitExceededError)
async def rate_limit_handler(request: Request, exc: RateLimitExceededError) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        headers={"Retry-After": str(max(1, math.ceil(exc.retry_after)))},
        content={"error": "Too many requests", "retryAfter": round(exc.retry_after, 3)},
    )


@app.exception_handler(ShortenerError)
async def shortener_error_handler(request: Request, exc: ShortenerError) -> JSONResponse:
    logger.error(f"{exc.error_code} on {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "server error"})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "server error"})


app.include_router(router)
