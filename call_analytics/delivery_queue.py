"""
Ordered, at-least-once delivery of analytics records.

Idle sessions and call history go to an external sink that can be slow or
briefly unavailable. Records are buffered here and written one by one in
enqueue order by a single worker:

- at most ``batch_size`` records per drain cycle;
- on a failed write the record goes back to the front, draining stops and
  nothing is attempted again for ``backoff_seconds``.

A failing record therefore holds up everything behind it. That keeps the
sink's view ordered; an operator can ``purge()`` a poisoned queue.
"""

import asyncio
from collections import deque
from datetime import datetime, timedelta
from typing import Any, Optional

from call_analytics.logging_config import get_logger
from call_analytics.metrics import delivery_queue_depth, delivery_queue_failures, delivery_queue_delivered
from call_analytics.timeutil import Clock

logger = get_logger(__name__)


class _QueuedRecord:
    __slots__ = ("record", "enqueued_at", "attempts")

    def __init__(self, record: Any, enqueued_at: datetime):
        self.record = record
        self.enqueued_at = enqueued_at
        self.attempts = 0


class DeliveryQueue:

    def __init__(
        self,
        sink,
        batch_size: int = 5,
        backoff_seconds: float = 5.0,
        poll_interval: float = 2.0,
        clock: Optional[Clock] = None,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")

        self.sink = sink
        self.batch_size = batch_size
        self.backoff = timedelta(seconds=backoff_seconds)
        self.poll_interval = poll_interval
        self.clock = clock or Clock()

        self._items: deque[_QueuedRecord] = deque()
        self._processing = False
        self._retry_at: Optional[datetime] = None
        self._delivered = 0
        self._failures = 0

        self._wakeup: Optional[asyncio.Event] = None
        self._worker: Optional[asyncio.Task] = None
        self._running = False

    def enqueue(self, record: Any) -> int:
        """Append a record. Returns the new queue depth."""
        self._items.append(_QueuedRecord(record, self.clock.now()))
        delivery_queue_depth.set(len(self._items))
        logger.info(
            "record_queued",
            record_type=getattr(record, "record_type", type(record).__name__),
            agent_code=getattr(record, "agent_code", None),
            queue_size=len(self._items),
        )
        if self._wakeup is not None:
            self._wakeup.set()
        return len(self._items)

    async def process(self, force: bool = False) -> int:
        """
        Run one drain cycle.

        Args:
            force: ignore a pending backoff

        Returns:
            Number of records delivered in this cycle
        """
        if self._processing or not self._items:
            return 0

        if not force and self._retry_at is not None and self.clock.now() < self._retry_at:
            return 0

        self._processing = True
        delivered = 0
        try:
            while self._items and delivered < self.batch_size:
                item = self._items.popleft()
                item.attempts += 1
                try:
                    await self.sink.write(item.record)
                except asyncio.CancelledError:
                    # Interrupted mid-write: the record was never confirmed.
                    self._items.appendleft(item)
                    raise
                except Exception as e:
                    self._items.appendleft(item)
                    self._failures += 1
                    self._retry_at = self.clock.now() + self.backoff
                    delivery_queue_failures.inc()
                    logger.warning(
                        "record_delivery_failed",
                        record_type=getattr(item.record, "record_type", type(item.record).__name__),
                        agent_code=getattr(item.record, "agent_code", None),
                        attempts=item.attempts,
                        retry_in_seconds=self.backoff.total_seconds(),
                        queue_size=len(self._items),
                        error=str(e),
                    )
                    break

                delivered += 1
                self._delivered += 1
                self._retry_at = None
                delivery_queue_delivered.inc()
        finally:
            self._processing = False
            delivery_queue_depth.set(len(self._items))

        if delivered and self._items:
            logger.info("records_remaining", queue_size=len(self._items))
        return delivered

    async def force_process(self) -> int:
        """Manual trigger: drain one batch now, regardless of backoff."""
        logger.info("queue_force_process", queue_size=len(self._items))
        return await self.process(force=True)

    def purge(self) -> int:
        """Drop everything still queued. Returns how many records were dropped."""
        dropped = len(self._items)
        self._items.clear()
        self._retry_at = None
        delivery_queue_depth.set(0)
        logger.warning("queue_purged", dropped=dropped)
        return dropped

    def pending(self) -> list[Any]:
        return [item.record for item in self._items]

    def get_status(self) -> dict:
        now = self.clock.now()
        oldest_age_ms = 0
        if self._items:
            oldest_age_ms = int((now - self._items[0].enqueued_at).total_seconds() * 1000)

        return {
            "queueSize": len(self._items),
            "isProcessing": self._processing,
            "oldestItemAgeMs": oldest_age_ms,
            "retryAt": self._retry_at.isoformat() if self._retry_at else None,
            "delivered": self._delivered,
            "failures": self._failures,
        }

    # -- worker -------------------------------------------------------------

    def start(self) -> None:
        if self._worker is not None:
            return
        self._running = True
        self._wakeup = asyncio.Event()
        self._worker = asyncio.create_task(self._run(), name="delivery-queue")
        logger.info("delivery_queue_started", batch_size=self.batch_size, backoff_seconds=self.backoff.total_seconds())

    async def stop(self) -> None:
        """Let the worker finish its cycle, then drain whatever is still queued."""
        self._running = False
        if self._worker is not None:
            self._wakeup.set()
            await self._worker
            self._worker = None
            self._wakeup = None

        if self._items:
            logger.info("delivery_queue_final_drain", queue_size=len(self._items))
            while self._items and await self.process(force=True):
                pass
        logger.info("delivery_queue_stopped", queue_size=len(self._items))

    async def _run(self) -> None:
        while self._running:
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
            self._wakeup.clear()

            try:
                await self.process()
            except Exception as e:
                logger.error("delivery_queue_cycle_failed", error=str(e), exc_info=True)
