"""Backoff computation for job retries.

Retries are not slept in-process: a failed job is rescheduled with
``scheduled_for = now + backoff_delay(...)`` and picked up again by any worker.
"""

import random
from dataclasses import dataclass


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    backoff_base: float = 30.0
    backoff_max: float = 300.0
    jitter: bool = False


def backoff_delay(retry_count: int, config: RetryConfig | None = None) -> float:
    """
    Seconds to wait before the given retry.

    Each retry waits for: min(backoff_base * 2^retry_count, backoff_max) seconds,
    with random jitter (x0.5 to x1.5, still capped) applied if enabled.

    Args:
        retry_count: The retry number being scheduled (1 for the first retry)
        config: Retry configuration, uses defaults if not provided

    Returns:
        Delay in seconds
    """
    config = config or RetryConfig()
    delay = min(config.backoff_base * (2 ** max(retry_count, 0)), config.backoff_max)
    if config.jitter:
        delay = min(delay * (0.5 + random.random()), config.backoff_max)
    return delay
