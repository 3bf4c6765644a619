"""
PostHog sink for delivery and subscription lifecycle events.

The client is created once per process from POSTHOG_API_KEY / POSTHOG_HOST.
Without a key every call is a no-op. Capture failures are logged and never
reach the caller, so a PostHog outage cannot change a job's outcome.
"""

import os
import uuid
from functools import lru_cache
from typing import Any

from posthog import Posthog

from courier.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_HOST = "https://us.i.posthog.com"


class Events:
    EMAIL_DELIVERED = "email_delivered"
    EMAIL_DELIVERY_FAILED = "email_delivery_failed"
    GRACE_PERIOD_STARTED = "grace_period_started"
    ACCOUNT_SUSPENDED = "account_suspended"
    ACCOUNT_RESTORED = "account_restored"


@lru_cache(maxsize=1)
def get_posthog_client() -> Posthog | None:
    """Build the shared client, or None when analytics are not configured."""
    api_key = os.getenv("POSTHOG_API_KEY")
    if not api_key:
        logger.debug("posthog_disabled")
        return None

    host = os.getenv("POSTHOG_HOST", DEFAULT_HOST)
    logger.bind(host=host).info("posthog_initialized")
    return Posthog(api_key=api_key, host=host, debug=os.getenv("DEBUG", "false").lower() == "true")


def capture(user_id: uuid.UUID | str, event: str, properties: dict[str, Any] | None = None) -> None:
    client = get_posthog_client()
    if client is None:
        return

    try:
        client.capture(distinct_id=str(user_id), event=event, properties=properties or {})
    except Exception as e:
        logger.bind(event=event, user_id=str(user_id), error=str(e)).warning("posthog_capture_failed")


def track_delivery(
    user_id: uuid.UUID,
    job_type: str,
    outcome: str,
    delivered: bool,
    job_id: uuid.UUID | None = None,
) -> None:
    """Mirror a delivery outcome as email_delivered or email_delivery_failed."""
    capture(
        user_id,
        Events.EMAIL_DELIVERED if delivered else Events.EMAIL_DELIVERY_FAILED,
        {"job_type": job_type, "outcome": outcome, "job_id": str(job_id) if job_id else None},
    )


def track_lifecycle(user_id: uuid.UUID, event: str, **properties: Any) -> None:
    """Mirror a subscription transition (grace started, suspended, restored)."""
    capture(user_id, event, properties)


def shutdown() -> None:
    """Flush queued events. Called on app and worker shutdown."""
    client = get_posthog_client()
    if client is not None:
        client.shutdown()
