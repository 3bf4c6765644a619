"""
Digest tick job.

Run with: python -m courier.jobs.digest_tick

This job:
1. Finds users whose preferred send hour is the current local hour
2. Claims each user's delivery slot for their local day
3. Enqueues a digest job per newly claimed slot
"""

import asyncio

from courier.core.logging import get_logger, setup_logging
from courier.services.digest_scheduler import TickResult, get_digest_scheduler

logger = get_logger(__name__)


async def main() -> TickResult:
    """Run one digest tick."""
    setup_logging()
    logger.info("digest_tick_job_started")

    try:
        result = await get_digest_scheduler().run_tick()
    except Exception as e:
        logger.bind(error=str(e)).error("digest_tick_job_failed")
        raise

    logger.bind(
        eligible=result.eligible,
        enqueued=result.enqueued,
        deduplicated=result.deduplicated,
        rejected=result.rejected,
    ).info("digest_tick_job_completed")
    return result


if __name__ == "__main__":
    asyncio.run(main())
