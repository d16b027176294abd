"""In-process periodic task runner.

Each PeriodicTask runs in its own asyncio task on its own interval. A task
function receives the current UTC time and returns an optional summary
string, logged when non-empty. Exceptions are logged and the loop goes on.

Example:
    ```python
    async def purge(now: datetime) -> str | None:
        deleted = await purge_expired_events(storage, now)
        return f"deleted={deleted}" if deleted else None

    scheduler = BackgroundScheduler([PeriodicTask("webhook_retention", purge, 3600.0)])
    scheduler.start()
    ...
    await scheduler.stop()
    ```
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from herald.logging import get_logger, log_context
from herald.models import utc_now

logger = get_logger(__name__)

TaskFn = Callable[[datetime], Awaitable[str | None]]


@dataclass
class PeriodicTask:
    """A named task executed every ``interval_seconds``.

    Attributes:
        name: Label used in logs.
        fn: Coroutine function called with the current UTC time.
        interval_seconds: Sleep between runs.
        run_immediately: Run once at start instead of after the first sleep.
    """

    name: str
    fn: TaskFn
    interval_seconds: float
    run_immediately: bool = False


@dataclass
class BackgroundScheduler:
    """Runs PeriodicTasks until stopped."""

    tasks: Sequence[PeriodicTask] = field(default_factory=list)
    _running: dict[str, asyncio.Task[None]] = field(default_factory=dict, init=False, repr=False)

    @property
    def is_running(self) -> bool:
        return bool(self._running)

    def start(self) -> None:
        """Start one asyncio task per PeriodicTask. Must run inside an event loop."""
        if self._running:
            return
        for task in self.tasks:
            self._running[task.name] = asyncio.create_task(
                self._loop(task), name=f"herald:{task.name}"
            )
        logger.info("Scheduler started", tasks=[t.name for t in self.tasks])

    async def stop(self) -> None:
        """Cancel all task loops and wait for them to finish."""
        running = list(self._running.values())
        self._running.clear()
        for task in running:
            task.cancel()
        for task in running:
            try:
                await task
            except asyncio.CancelledError:
                pass
        if running:
            logger.info("Scheduler stopped")

    async def run_once(self, task: PeriodicTask, now: datetime | None = None) -> str | None:
        """Run a task a single time, logging its summary or failure."""
        with log_context(task=task.name):
            try:
                summary = await task.fn(now or utc_now())
            except Exception:
                logger.exception("Scheduled task failed")
                return None
            if summary:
                logger.info("Scheduled task completed", summary=summary)
            return summary

    async def _loop(self, task: PeriodicTask) -> None:
        if task.run_immediately:
            await self.run_once(task)
        while True:
            await asyncio.sleep(task.interval_seconds)
            await self.run_once(task)


__all__ = ["BackgroundScheduler", "PeriodicTask", "TaskFn"]
