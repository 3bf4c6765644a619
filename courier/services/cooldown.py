"""Durable cooldowns for repeatable admin actions.

A cooldown is a row keyed by action (e.g. ``test_send:<user_id>``). Taking it
is a single conditional write, so the cooldown holds across processes and
restarts and can be tested by moving an injected clock.
"""

from datetime import datetime, timedelta

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from courier.core.database import insert_if_absent
from courier.core.exceptions import CooldownActive
from courier.core.logging import get_logger
from courier.models.cooldown import Cooldown

logger = get_logger(__name__)


def send_test_key(user_id) -> str:
    return f"test_send:{user_id}"


async def acquire_cooldown(db: AsyncSession, key: str, seconds: int, now: datetime) -> datetime:
    """Start a cooldown for key unless one is still running.

    Returns:
        When the new cooldown expires

    Raises:
        CooldownActive: If the previous cooldown has not expired yet
    """
    expires_at = now + timedelta(seconds=seconds)

    inserted = await insert_if_absent(
        db,
        Cooldown,
        {"key": key, "last_triggered_at": now, "expires_at": expires_at},
    )
    if inserted:
        return expires_at

    result = await db.execute(
        update(Cooldown)
        .where(Cooldown.key == key, Cooldown.expires_at <= now)
        .values(last_triggered_at=now, expires_at=expires_at)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        return expires_at

    current = await db.get(Cooldown, key, populate_existing=True)
    retry_at = current.expires_at if current else expires_at
    logger.bind(key=key, retry_at=retry_at.isoformat()).info("cooldown_active")
    raise CooldownActive(key, retry_at)
