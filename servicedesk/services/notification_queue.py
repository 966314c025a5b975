"""
In-process queue feeding the notification dispatcher.

Workflow services call ``enqueue`` after their transaction commits; a small
pool of worker tasks drains the queue in the background. ``enqueue`` never
raises and never blocks the request.
"""

import asyncio
import logging
from typing import List, Optional, Set

from servicedesk.core.config import settings
from servicedesk.services.notification_dispatcher import NotificationDispatcher
from servicedesk.services.notification_jobs import NotificationJob

logger = logging.getLogger(__name__)


class NotificationQueue:
    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        workers: Optional[int] = None,
        maxsize: Optional[int] = None,
        max_attempts: Optional[int] = None,
    ):
        self.dispatcher = dispatcher
        self.worker_count = workers if workers is not None else settings.NOTIFICATION_WORKERS
        self.max_attempts = max_attempts if max_attempts is not None else settings.NOTIFICATION_MAX_ATTEMPTS
        self._queue: asyncio.Queue = asyncio.Queue(
            maxsize=maxsize if maxsize is not None else settings.NOTIFICATION_QUEUE_MAXSIZE
        )
        self._workers: List[asyncio.Task] = []
        self._in_flight: Set[asyncio.Future] = set()
        self._running = False
        self._processed = 0
        self._dropped = 0

    def enqueue(self, job: Optional[NotificationJob]) -> bool:
        if job is None or not job.recipients:
            return False
        if not settings.NOTIFICATION_ENABLED:
            logger.debug(f"Notifications disabled, discarding {job.type.value}")
            return False
        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            self._dropped += 1
            logger.error(
                f"Notification queue full, dropping {job.type.value} for "
                f"{len(job.recipients)} recipient(s)"
            )
            return False
        return True

    def pending(self) -> int:
        return self._queue.qsize()

    async def process(self, job: NotificationJob) -> None:
        """Dispatch one job and schedule a retry for recipients that failed."""
        try:
            failed = await self.dispatcher.dispatch(job)
        except Exception as e:
            logger.exception(f"Notification job {job.type.value} crashed: {e}")
            failed = set(job.recipients)

        self._processed += 1
        if not failed:
            return
        if job.attempt >= self.max_attempts:
            logger.error(
                f"Giving up on {job.type.value} for users {sorted(failed)} "
                f"after {job.attempt} attempts"
            )
            return
        self.enqueue(job.retry_for(failed))

    async def drain(self) -> int:
        """Process every queued job inline, retries included. Returns jobs processed."""
        count = 0
        while True:
            try:
                job = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return count
            try:
                await self.process(job)
            finally:
                self._queue.task_done()
            count += 1

    async def _worker(self, index: int):
        logger.debug(f"Notification worker {index} started")
        while self._running:
            job = await self._queue.get()
            delivery = asyncio.ensure_future(self.process(job))
            self._in_flight.add(delivery)
            delivery.add_done_callback(self._finish_delivery)
            # Cancelling the worker leaves the delivery running for stop() to await
            await asyncio.shield(delivery)

    def _finish_delivery(self, delivery: asyncio.Future):
        self._in_flight.discard(delivery)
        self._queue.task_done()

    def start(self):
        if self._running:
            logger.warning("Notification queue is already running")
            return
        self._running = True
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"notification-worker-{i}")
            for i in range(self.worker_count)
        ]
        logger.info(f"Notification queue started with {self.worker_count} worker(s)")

    async def stop(self, timeout: Optional[float] = None):
        """
        Stop taking jobs off the queue, wait for the jobs already being
        delivered, then deliver whatever is still queued.

        Deliveries still running after ``timeout`` seconds are cancelled.
        """
        if not self._running:
            return
        self._running = False
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

        in_flight = list(self._in_flight)
        if in_flight:
            _, unfinished = await asyncio.wait(in_flight, timeout=timeout)
            for delivery in unfinished:
                delivery.cancel()
            if unfinished:
                logger.warning(f"Cancelled {len(unfinished)} notification delivery(ies) at shutdown")
                await asyncio.gather(*unfinished, return_exceptions=True)

        remaining = await self.drain()
        logger.info(f"Notification queue stopped, delivered {remaining} pending job(s)")

    def get_status(self) -> dict:
        return {
            "running": self._running,
            "workers": len(self._workers),
            "pending": self.pending(),
            "in_flight": len(self._in_flight),
            "processed": self._processed,
            "dropped": self._dropped,
        }
