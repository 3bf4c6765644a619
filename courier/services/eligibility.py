"""Eligibility scanner.

Selects the users whose preferred send hour matches the current local hour
in their own zone. Runs once per hourly tick, so delivery precision is
capped to the hour.
"""

import uuid
from dataclasses import dataclass
from datetime import date, datetime, tzinfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from courier.core.datetime_utils import InvalidZoneError, local_day, local_hour, resolve_zone
from courier.core.logging import get_logger
from courier.models.delivery_preference import DeliveryPreference
from courier.models.user import User

logger = get_logger(__name__)


@dataclass(frozen=True)
class EligibleUser:
    """A user due a digest at this tick."""

    user_id: uuid.UUID
    email: str
    zone: tzinfo
    local_date: date
    send_hour: int


def is_due(tick_time: datetime, send_hour: int, zone: tzinfo) -> bool:
    """Whether tick_time falls in the user's preferred local hour."""
    return local_hour(tick_time, zone) == send_hour


def user_local_day(zone: tzinfo, instant: datetime) -> date:
    """Calendar day used as the dedup key for a delivery at instant."""
    return local_day(instant, zone)


async def scan(
    db: AsyncSession,
    tick_time: datetime,
    default_offset: str,
) -> list[EligibleUser]:
    """Find users due a digest at tick_time.

    A user is due if:
    1. Their delivery preference is enabled
    2. tick_time, converted to their zone (or the deployment default offset),
       falls in their preferred send hour

    Malformed preferences (unknown zone, hour outside 0-23) are skipped and
    logged; they never abort the scan.

    Args:
        db: Database session
        tick_time: Trigger instant (naive UTC)
        default_offset: Offset used for users without a stored zone

    Returns:
        Users due a digest, with their local calendar day for dedup
    """
    result = await db.execute(
        select(DeliveryPreference, User.email)
        .join(User, User.id == DeliveryPreference.user_id)
        .where(DeliveryPreference.enabled == True)  # noqa: E712
    )

    eligible: list[EligibleUser] = []
    skipped = 0
    for preference, email in result.all():
        if not 0 <= preference.send_hour <= 23:
            skipped += 1
            logger.bind(
                user_id=str(preference.user_id),
                send_hour=preference.send_hour,
            ).warning("preference_skipped_bad_hour")
            continue

        try:
            zone = resolve_zone(preference.timezone, default_offset)
        except InvalidZoneError as e:
            skipped += 1
            logger.bind(
                user_id=str(preference.user_id),
                timezone=preference.timezone,
                error=str(e),
            ).warning("preference_skipped_bad_zone")
            continue

        if not is_due(tick_time, preference.send_hour, zone):
            continue

        eligible.append(
            EligibleUser(
                user_id=preference.user_id,
                email=email,
                zone=zone,
                local_date=user_local_day(zone, tick_time),
                send_hour=preference.send_hour,
            )
        )

    logger.bind(
        tick_time=tick_time.isoformat(),
        eligible=len(eligible),
        skipped=skipped,
    ).debug("eligibility_scan_completed")
    return eligible
