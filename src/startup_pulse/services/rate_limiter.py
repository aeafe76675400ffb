"""Rate-limited execution queue for calls against a shared provider budget."""

import asyncio
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from startup_pulse.services.inference import is_rate_limited

logger = logging.getLogger(__name__)

T = TypeVar("T")

SECOND_BUDGET_PAUSE = 1.0
MINUTE_BUDGET_PAUSE = 5.0


class QueueClearedError(Exception):
    """Raised to callers whose pending operation was dropped by clear_queue."""

    pass


class QueueItemStatus(str, Enum):
    QUEUED = "queued"
    EXECUTING = "executing"
    SUCCEEDED = "succeeded"
    REQUEUED = "requeued"
    REJECTED = "rejected"


@dataclass
class QueueItem:
    """Operation waiting for budget, with its own throttling retry counter."""

    operation: Callable[[], Awaitable[Any]]
    future: asyncio.Future
    item_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    retries: int = 0
    status: QueueItemStatus = QueueItemStatus.QUEUED


class RateLimitedQueue:
    """Single-consumer queue enforcing per-second and per-minute budgets.

    Throttling errors are retried at the front of the queue with
    exponential backoff; every other error is returned to the caller
    untouched.
    """

    def __init__(
        self,
        max_per_second: int = 2,
        max_per_minute: int = 60,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        backoff_multiplier: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        name: str = "default",
    ):
        if max_per_second < 1:
            raise ValueError("max_per_second must be at least 1")
        if max_per_minute < 1:
            raise ValueError("max_per_minute must be at least 1")
        if max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if retry_delay < 0:
            raise ValueError("retry_delay must be non-negative")
        if backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")

        self._max_per_second = max_per_second
        self._max_per_minute = max_per_minute
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._backoff_multiplier = backoff_multiplier
        self._clock = clock
        self._sleep = sleep
        self._name = name

        self._queue: deque[QueueItem] = deque()
        self._worker: asyncio.Task | None = None
        self._requeues: set[asyncio.Task] = set()

        now = clock()
        self._second_started = now
        self._minute_started = now
        self._second_count = 0
        self._minute_count = 0

    @property
    def spacing(self) -> float:
        """Pause after each completed operation."""
        return 1.0 / self._max_per_second

    def backoff_delay(self, attempt: int) -> float:
        """Delay before the given throttling retry (1-based)."""
        return self._retry_delay * self._backoff_multiplier ** (attempt - 1)

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run operation once budget allows and return its result."""
        if operation is None:
            raise ValueError("operation is required")

        future = asyncio.get_running_loop().create_future()
        self._queue.append(QueueItem(operation=operation, future=future))
        self._ensure_worker()
        return await future

    def queue_size(self) -> int:
        return len(self._queue)

    def clear_queue(self) -> int:
        """Drop every queued operation. Returns how many were dropped."""
        dropped = 0
        while self._queue:
            item = self._queue.popleft()
            item.status = QueueItemStatus.REJECTED
            if not item.future.done():
                item.future.set_exception(QueueClearedError("Queue cleared"))
            dropped += 1
        return dropped

    async def close(self) -> None:
        """Stop the consumer loop and reject anything still pending."""
        tasks = [t for t in (self._worker, *self._requeues) if t is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._worker = None
        self._requeues.clear()
        self.clear_queue()

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(
                self._process(), name=f"rate-limiter:{self._name}"
            )

    def _roll_windows(self, now: float) -> None:
        if now - self._second_started >= 1.0:
            self._second_started = now
            self._second_count = 0
        if now - self._minute_started >= 60.0:
            self._minute_started = now
            self._minute_count = 0

    async def _process(self) -> None:
        while self._queue:
            self._roll_windows(self._clock())

            if self._second_count >= self._max_per_second:
                await self._sleep(SECOND_BUDGET_PAUSE)
                continue
            if self._minute_count >= self._max_per_minute:
                await self._sleep(MINUTE_BUDGET_PAUSE)
                continue

            item = self._queue.popleft()
            if item.future.done():
                # Caller gave up while the item was queued
                continue

            self._second_count += 1
            self._minute_count += 1
            item.status = QueueItemStatus.EXECUTING

            try:
                result = await item.operation()
            except Exception as e:
                self._handle_failure(item, e)
                continue

            item.status = QueueItemStatus.SUCCEEDED
            if not item.future.done():
                item.future.set_result(result)
            await self._sleep(self.spacing)

    def _handle_failure(self, item: QueueItem, error: Exception) -> None:
        if is_rate_limited(error) and item.retries < self._max_retries:
            item.retries += 1
            item.status = QueueItemStatus.REQUEUED
            delay = self.backoff_delay(item.retries)
            logger.warning(
                f"Rate limit hit on {self._name}, retrying in {delay:.1f}s "
                f"(attempt {item.retries}/{self._max_retries})"
            )
            task = asyncio.create_task(self._requeue_after(item, delay))
            self._requeues.add(task)
            task.add_done_callback(self._requeues.discard)
            return

        item.status = QueueItemStatus.REJECTED
        if not item.future.done():
            item.future.set_exception(error)

    async def _requeue_after(self, item: QueueItem, delay: float) -> None:
        await self._sleep(delay)
        if item.future.done():
            return
        item.status = QueueItemStatus.QUEUED
        self._queue.appendleft(item)
        self._ensure_worker()
