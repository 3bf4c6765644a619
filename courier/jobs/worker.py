"""
Standalone worker pool.

Run with: python -m courier.jobs.worker

Runs queue workers without the API or scheduler, for deployments that scale
workers separately. Stops cleanly on SIGINT/SIGTERM after in-flight jobs finish.
"""

import asyncio
import signal

from courier.config import get_settings
from courier.core.database import AsyncSessionLocal
from courier.core.logging import get_logger, setup_logging
from courier.services import posthog_client
from courier.services.worker import WorkerPool

logger = get_logger(__name__)


async def main(size: int | None = None) -> None:
    setup_logging()
    settings = get_settings()
    pool = WorkerPool(AsyncSessionLocal, size=size or settings.worker_pool_size, settings=settings)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await pool.start()
    await stop.wait()
    logger.info("worker_shutdown_requested")
    await pool.stop()
    posthog_client.shutdown()


if __name__ == "__main__":
    asyncio.run(main())
