"""
In-process retry of failed deliveries.

The router enqueues a delivery id after a retryable failure; the worker
waits an exponential backoff and reprocesses the stored payload. Deliveries
that used up their attempts are dead-lettered and stay failed.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Set

from .config import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass
class RetryItem:
    delivery_id: str
    attempts: int


class RetryQueue:
    def __init__(self, max_attempts: int = 5, backoff_base: float = 30.0, max_backoff: float = 900.0):
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.max_backoff = max_backoff
        self.dead_letters: List[str] = []
        self._queue: asyncio.Queue = asyncio.Queue()

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "RetryQueue":
        settings = settings or get_settings()
        return cls(settings.retry_max_attempts, settings.retry_backoff_base, settings.retry_max_backoff)

    def compute_backoff(self, attempts: int) -> float:
        """base * 2^(attempts-1), capped at max_backoff"""
        delay = self.backoff_base * (2 ** max(attempts - 1, 0))
        return min(delay, self.max_backoff)

    def enqueue(self, delivery_id: str, attempts: int) -> bool:
        """
        Queue a failed delivery for another attempt.

        Never raises. Returns False when the delivery was dead-lettered instead.
        """
        if attempts >= self.max_attempts:
            logger.error(f"[{delivery_id}] Giving up after {attempts} attempts")
            self.dead_letters.append(delivery_id)
            return False
        self._queue.put_nowait(RetryItem(delivery_id, attempts))
        logger.info(f"[{delivery_id}] Added to retry queue (attempt {attempts} of {self.max_attempts})")
        return True

    async def get(self) -> RetryItem:
        return await self._queue.get()

    def task_done(self) -> None:
        self._queue.task_done()

    def qsize(self) -> int:
        return self._queue.qsize()


class RetryWorker:
    """Consumes the retry queue; each retry is scheduled after its own backoff"""

    def __init__(self, queue: RetryQueue, reprocess: Callable[[str], Awaitable[object]]):
        self.queue = queue
        self.reprocess = reprocess
        self._task: Optional[asyncio.Task] = None
        self._pending: Set[asyncio.Task] = set()

    async def _retry_later(self, item: RetryItem) -> None:
        delay = self.queue.compute_backoff(item.attempts)
        logger.info(f"[{item.delivery_id}] Retrying in {delay:.0f}s")
        await asyncio.sleep(delay)
        try:
            await self.reprocess(item.delivery_id)
        except Exception:
            logger.exception(f"[{item.delivery_id}] Retry failed")

    async def run(self) -> None:
        while True:
            item = await self.queue.get()
            task = asyncio.create_task(self._retry_later(item))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            self.queue.task_done()

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self.run())
            logger.info("Retry worker started")

    async def stop(self) -> None:
        tasks = list(self._pending)
        if self._task is not None:
            tasks.append(self._task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._task = None
        self._pending.clear()
        logger.info("Retry worker stopped")
