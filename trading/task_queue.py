"""Single-flight FIFO task queues for trade-triggering work."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable

import config

logger = logging.getLogger(__name__)

Task = Callable[[], Awaitable[None]]


class TaskQueue:
    """Runs enqueued tasks one at a time, in enqueue order.

    A single drain worker awaits each task to completion before taking the
    next one, so no two task bodies ever overlap on one queue instance.
    """

    def __init__(self, name: str = "trade") -> None:
        self.name = name
        self._pending: deque[Task] = deque()
        self._worker: asyncio.Task[None] | None = None
        self._idle = asyncio.Event()
        self._idle.set()
        self.completed = 0
        self.failed = 0

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def is_processing(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def enqueue(self, task: Task) -> None:
        self._pending.append(task)
        self._idle.clear()
        if not self.is_processing:
            self._worker = asyncio.get_running_loop().create_task(self._drain(), name=f"task-queue-{self.name}")

    async def join(self) -> None:
        await self._idle.wait()

    async def _before_task(self) -> None:
        return None

    async def _drain(self) -> None:
        try:
            while self._pending:
                task = self._pending.popleft()
                await self._before_task()
                try:
                    await task()
                    self.completed += 1
                except Exception:
                    self.failed += 1
                    logger.exception("TASK_QUEUE_FAIL queue=%s pending=%s", self.name, len(self._pending))
        finally:
            if not self._pending:
                self._idle.set()


class TaskQueueDelayed(TaskQueue):
    """TaskQueue that waits a fixed delay before every task to throttle triggers."""

    def __init__(self, name: str = "trade-delayed", delay_seconds: float | None = None) -> None:
        super().__init__(name)
        if delay_seconds is None:
            delay_seconds = float(getattr(config, "TASK_QUEUE_DELAY_SECONDS", 2.0))
        self.delay_seconds = max(0.0, float(delay_seconds))

    async def _before_task(self) -> None:
        await asyncio.sleep(self.delay_seconds)
