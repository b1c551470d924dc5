"""Detached click analytics for the cache-hit redirect path.

A redirect served from the cache must not wait on a database write. Instead the
route submits a ClickEvent to this recorder and returns immediately; a small pool
of worker tasks applies the events to the store with the atomic
``clicks + delta`` update.

Flow Diagram — Click Recording
==============================
::
    ┌─────────────┐  submit()   ┌─────────────┐  get()   ┌─────────────┐
    │  redirect   │ ──────────▶ │ asyncio     │ ───────▶ │  worker N   │
    │  (cache hit)│ put_nowait  │ Queue       │          │             │
    └─────────────┘             └─────────────┘          └──────┬──────┘
                                                                ▼
                                                  ┌──────────────────────────┐
                                                  │ own session:             │
                                                  │ increment_clicks_and_    │
                                                  │ touch(); retry w/ backoff│
                                                  └──────────────────────────┘

Key Behaviours
===============
- submit() never blocks and never raises; a full queue drops the event and logs it.
- Every event gets up to ``max_retries`` retries with linear backoff, then is
  logged as exhausted and counted as failed.
- drain() waits for the queue to empty; stop() drains (bounded) and cancels the
  workers. Events still queued when the process dies are lost.
"""

import asyncio
import contextlib
import datetime
import logging

from prometheus_client import Counter
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortener.models import utcnow
from shortener.schemas import ClickEvent
from shortener.store import ShortLinkStore

__all__ = ["ClickRecorder"]

CLICK_EVENTS_SUBMITTED_TOTAL = Counter(
    "url_shortener_click_events_submitted_total",
    "Click events queued for asynchronous recording",
)
CLICK_EVENTS_DROPPED_TOTAL = Counter(
    "url_shortener_click_events_dropped_total",
    "Click events dropped because the analytics queue was full",
)
CLICK_EVENTS_RECORDED_TOTAL = Counter(
    "url_shortener_click_events_recorded_total",
    "Click events applied to the durable store",
)
CLICK_EVENTS_FAILED_TOTAL = Counter(
    "url_shortener_click_events_failed_total",
    "Click events abandoned after exhausting retries",
)


class ClickRecorder:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        workers: int = 2,
        max_retries: int = 3,
        retry_delay_seconds: float = 0.2,
        queue_size: int = 10000,
        expiry_extension_seconds: int = 0,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        assert workers > 0, f"workers must be positive, got {workers!r}"
        self._session_factory = session_factory
        self._worker_count = workers
        self._max_retries = max_retries
        self._retry_delay = retry_delay_seconds
        self._expiry_extension = expiry_extension_seconds
        self._logger = logger or logging.getLogger("urlshortener")
        self._queue: asyncio.Queue[ClickEvent] = asyncio.Queue(maxsize=queue_size)
        self._workers: list[asyncio.Task] = []
        self.processed = 0
        self.failed = 0
        self.dropped = 0

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return bool(self._workers)

    def stats(self) -> dict[str, int]:
        return {
            "pending": self.pending,
            "processed": self.processed,
            "failed": self.failed,
            "dropped": self.dropped,
        }

    def submit(self, short_id: str, accessed_at: datetime.datetime | None = None) -> bool:
        event = ClickEvent(short_id=short_id, accessed_at=accessed_at or utcnow())
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            CLICK_EVENTS_DROPPED_TOTAL.inc()
            self._logger.warning(f"Analytics queue full, dropping click for {short_id}")
            return False
        CLICK_EVENTS_SUBMITTED_TOTAL.inc()
        return True

    async def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._run_worker(index), name=f"click-recorder-{index}")
            for index in range(self._worker_count)
        ]
        self._logger.info(f"Click recorder started with {self._worker_count} workers")

    async def drain(self) -> None:
        await self._queue.join()

    async def stop(self, timeout: float = 5.0) -> None:
        if not self._workers:
            return
        try:
            await asyncio.wait_for(self.drain(), timeout=timeout)
        except asyncio.TimeoutError:
            self._logger.warning(f"Click recorder stopped with {self.pending} events still queued")
        for task in self._workers:
            task.cancel()
        for task in self._workers:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._workers = []

    async def _run_worker(self, index: int) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._record_with_retry(event)
            finally:
                self._queue.task_done()

    async def _record_with_retry(self, event: ClickEvent) -> None:
        attempts = self._max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                await self._record(event)
            except Exception as exc:
                if attempt == attempts:
                    self.failed += 1
                    CLICK_EVENTS_FAILED_TOTAL.inc()
                    self._logger.error(
                        f"Click recording for {event.short_id} failed after {attempts} attempts: {exc}"
                    )
                    return
                self._logger.warning(f"Click recording for {event.short_id} failed (attempt {attempt}): {exc}")
                await asyncio.sleep(self._retry_delay * attempt)
            else:
                self.processed += 1
                CLICK_EVENTS_RECORDED_TOTAL.inc()
                return

    async def _record(self, event: ClickEvent) -> None:
        extend_to = None
        if self._expiry_extension > 0:
            extend_to = event.accessed_at + datetime.timedelta(seconds=self._expiry_extension)
        async with self._session_factory() as session:
            updated = await ShortLinkStore(session).increment_clicks_and_touch(
                event.short_id, event.delta, event.accessed_at, extend_expiry_to=extend_to
            )
        if not updated:
            self._logger.debug(f"Click for {event.short_id} skipped, record no longer exists")
