"""Dependency injection with a shared service manager.

This module provides a centralized way to inject the database session and the
long-lived collaborators (lookup cache, click recorder, rate limiter) into every
API endpoint. The collaborators are created once per process by the
ServiceManager and are explicit objects rather than module globals, so tests can
build a manager of their own and override ``get_service_manager``.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortener.analytics import ClickRecorder
from shortener.cache import LookupCache
from shortener.config import Settings, get_settings
from shortener.database import async_session, get_db
from shortener.exceptions import RateLimitExceededError
from shortener.expiry import ExpirySweeper
from shortener.rate_limit import SlidingWindowRateLimiter, get_client_ip
from shortener.service import ShortLinkService


# ============================================================================
# SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Owner of the shared, process-wide resources.

    Lifecycle: ``initialize()`` at application startup builds and starts the
    lookup cache, click recorder workers and expiry sweeper; ``cleanup()`` at
    shutdown stops them in reverse order, draining queued click events first.
    """

    def __init__(self) -> None:
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(
        self,
        settings: Settings | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        cache: LookupCache | None = None,
    ) -> None:
        """Initialize shared resources once at startup."""
        if self._initialized:
            return
        self.settings = settings or get_settings()
        self.logger = self._setup_logger()
        self.session_factory = session_factory or async_session
        self.started_at = time.monotonic()

        self.cache = cache or LookupCache.from_settings(self.settings, self.logger)
        self.click_recorder = ClickRecorder(
            self.session_factory,
            workers=self.settings.ANALYTICS_WORKERS,
            max_retries=self.settings.ANALYTICS_MAX_RETRIES,
            retry_delay_seconds=self.settings.ANALYTICS_RETRY_DELAY_SECONDS,
            queue_size=self.settings.ANALYTICS_QUEUE_SIZE,
            expiry_extension_seconds=self.settings.ACCESS_EXPIRY_EXTENSION_SECONDS,
            logger=self.logger,
        )
        self.expiry_sweeper = ExpirySweeper(
            self.session_factory,
            self.cache,
            interval_seconds=self.settings.EXPIRY_SWEEP_INTERVAL_SECONDS,
            logger=self.logger,
        )
        self.rate_limiter = SlidingWindowRateLimiter(
            max_requests=self.settings.RATE_LIMIT_MAX_REQUESTS,
            window_seconds=self.settings.RATE_LIMIT_WINDOW_SECONDS,
        )

        await self.cache.start()
        await self.click_recorder.start()
        await self.expiry_sweeper.start()
        self._initialized = True
        self.logger.info(f"Service manager initialized (cache mode: {self.cache.mode.value})")

    def _setup_logger(self) -> logging.Logger:
        """Setup logger once."""
        logger = logging.getLogger("urlshortener")
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
        logger.setLevel(self.settings.LOG_LEVEL.upper())
        return logger

    async def cleanup(self) -> None:
        """Cleanup shared resources at shutdown."""
        if not self._initialized:
            return
        await self.expiry_sweeper.stop()
        await self.click_recorder.stop()
        await self.cache.stop()
        self._initialized = False


# Global instance used by the application lifespan
_service_manager = ServiceManager()


# ============================================================================
# REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Per-request view over the shared resources.

    Attributes:
        database: Async database session (only per-request resource)
        service_manager: Service manager with shared resources
        request_id: Unique identifier for this request
        user_agent: Client user agent string
        client_ip: Client IP address
        start_time: Request start timestamp
    """

    database: AsyncSession
    service_manager: ServiceManager
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    user_agent: Optional[str] = None
    client_ip: Optional[str] = None
    start_time: float = field(default_factory=lambda: time.time())

    @property
    def cache(self) -> LookupCache:
        return self.service_manager.cache

    @property
    def click_recorder(self) -> ClickRecorder:
        return self.service_manager.click_recorder

    @property
    def settings(self) -> Settings:
        return self.service_manager.settings

    @property
    def started_at(self) -> float:
        return self.service_manager.started_at

    @property
    def logger(self) -> logging.LoggerAdapter:
        """Get shared logger with request context."""
        return logging.LoggerAdapter(
            self.service_manager.logger,
            {
                "request_id": self.request_id,
                "client_ip": self.client_ip,
                "user_agent": self.user_agent,
            },
        )

    def get_duration(self) -> float:
        """Get request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000

    def get_uptime(self) -> float:
        """Get process uptime in seconds."""
        return time.monotonic() - self.started_at


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


async def get_service_manager() -> ServiceManager:
    if not _service_manager.initialized:
        await _service_manager.initialize()
    return _service_manager


async def get_request_context(
    request: Request,
    db: AsyncSession = Depends(get_db),
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    return RequestContext(
        database=db,
        service_manager=manager,
        request_id=request.headers.get("x-request-id") or str(uuid.uuid4()),
        user_agent=request.headers.get("user-agent"),
        client_ip=get_client_ip(request, manager.settings.TRUSTED_PROXIES),
    )


def get_link_service(ctx: RequestContext = Depends(get_request_context)) -> ShortLinkService:
    return ShortLinkService.from_context(ctx)


async def enforce_rate_limit(
    request: Request,
    manager: ServiceManager = Depends(get_service_manager),
) -> None:
    client_ip = get_client_ip(request, manager.settings.TRUSTED_PROXIES)
    result = manager.rate_limiter.check(client_ip)
    if not result.allowed:
        manager.logger.warning(f"Rate limit exceeded for {client_ip}")
        raise RateLimitExceededError(result.retry_after)
