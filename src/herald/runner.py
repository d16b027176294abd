"""Standalone worker process.

Runs HeraldService with its background scheduler until SIGINT or SIGTERM.
"""

from __future__ import annotations

import asyncio
import os
import signal
import socket

from herald.config import Settings
from herald.logging import bind_context, clear_context, configure_logging, get_logger
from herald.service import HeraldService

logger = get_logger(__name__)


def worker_id() -> str:
    """Identifier for this worker process in logs."""
    return f"{socket.gethostname()}-{os.getpid()}"


async def run(settings: Settings | None = None, stop_event: asyncio.Event | None = None) -> None:
    """Run delivery and maintenance until ``stop_event`` is set.

    Args:
        settings: Optional settings. Uses defaults if None.
        stop_event: Event that ends the run. Signal handlers set it when
            none is given.
    """
    settings = settings or Settings()
    stop = stop_event or asyncio.Event()

    clear_context()
    bind_context(worker_id=worker_id())

    if stop_event is None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
            except NotImplementedError:
                # Windows event loops have no signal handlers
                pass

    async with HeraldService.create(settings) as herald:
        herald.start_workers()
        logger.info(
            "Herald worker running",
            env=settings.env,
            dispatch_interval=settings.webhook_dispatch_interval_seconds,
            batch_size=settings.webhook_batch_size,
        )
        await stop.wait()
        logger.info("Herald worker shutting down")


def main() -> None:
    """Console entry point."""
    settings = Settings()
    configure_logging(level=settings.log_level, format=settings.log_format)
    asyncio.run(run(settings))


__all__ = ["main", "run", "worker_id"]
