"""
Grace-period sweep job.

Run with: python -m courier.jobs.grace_sweep
"""

import asyncio

from courier.core.logging import get_logger, setup_logging
from courier.services.digest_scheduler import get_digest_scheduler
from courier.services.grace_period import SweepResult

logger = get_logger(__name__)


async def main(trigger: str = "manual") -> SweepResult:
    """Suspend accounts whose grace period has ended."""
    setup_logging()
    logger.info("grace_sweep_job_started")

    try:
        result = await get_digest_scheduler().run_sweep(trigger=trigger)
    except Exception as e:
        logger.bind(error=str(e)).error("grace_sweep_job_failed")
        raise

    for error in result.errors:
        logger.bind(**error).warning("grace_sweep_account_error")
    return result


if __name__ == "__main__":
    asyncio.run(main())
