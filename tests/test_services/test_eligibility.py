"""Tests for the eligibility scanner."""

from datetime import date, datetime

import pytest

from courier.services.eligibility import scan

pytestmark = pytest.mark.asyncio

DEFAULT_OFFSET = "+02:00"


class TestScan:
    """Tests for scan."""

    async def test_selects_user_in_send_hour(self, db_session, user_factory):
        """07:00 local (05:00 UTC at +02:00) selects a send_hour=7 user."""
        user = await user_factory(send_hour=7, timezone="+02:00")

        eligible = await scan(db_session, datetime(2026, 3, 2, 5, 0), DEFAULT_OFFSET)

        assert [e.user_id for e in eligible] == [user.id]
        assert eligible[0].email == user.email
        assert eligible[0].local_date == date(2026, 3, 2)
        assert eligible[0].send_hour == 7

    async def test_whole_hour_is_eligible(self, db_session, user_factory):
        """Any minute inside the local hour counts."""
        await user_factory(send_hour=7, timezone="+02:00")

        eligible = await scan(db_session, datetime(2026, 3, 2, 5, 59), DEFAULT_OFFSET)

        assert len(eligible) == 1

    async def test_outside_send_hour_not_selected(self, db_session, user_factory):
        """06:59 and 08:01 local are outside a 7 o'clock send hour."""
        await user_factory(send_hour=7, timezone="+02:00")

        before = await scan(db_session, datetime(2026, 3, 2, 4, 59), DEFAULT_OFFSET)
        after = await scan(db_session, datetime(2026, 3, 2, 6, 1), DEFAULT_OFFSET)

        assert before == []
        assert after == []

    async def test_iana_zone(self, db_session, user_factory):
        """IANA zones are honoured (Johannesburg is UTC+2 all year)."""
        user = await user_factory(send_hour=7, timezone="Africa/Johannesburg")
        await user_factory(send_hour=7, timezone="Europe/London")

        eligible = await scan(db_session, datetime(2026, 3, 2, 5, 0), DEFAULT_OFFSET)

        assert [e.user_id for e in eligible] == [user.id]

    async def test_empty_zone_uses_default_offset(self, db_session, user_factory):
        """Users without a stored zone use the deployment default."""
        user = await user_factory(send_hour=7, timezone="")

        eligible = await scan(db_session, datetime(2026, 3, 2, 5, 0), DEFAULT_OFFSET)

        assert [e.user_id for e in eligible] == [user.id]

    async def test_disabled_preference_excluded(self, db_session, user_factory):
        """Users who opted out are never selected."""
        await user_factory(send_hour=7, enabled=False)

        eligible = await scan(db_session, datetime(2026, 3, 2, 5, 0), DEFAULT_OFFSET)

        assert eligible == []

    async def test_bad_zone_skipped(self, db_session, user_factory):
        """An unknown zone skips that user without aborting the scan."""
        await user_factory(send_hour=7, timezone="Mars/Olympus_Mons")
        good = await user_factory(send_hour=7, timezone="+02:00")

        eligible = await scan(db_session, datetime(2026, 3, 2, 5, 0), DEFAULT_OFFSET)

        assert [e.user_id for e in eligible] == [good.id]

    async def test_bad_hour_skipped(self, db_session, user_factory):
        """A send hour outside 0-23 is skipped."""
        await user_factory(send_hour=25)
        good = await user_factory(send_hour=7)

        eligible = await scan(db_session, datetime(2026, 3, 2, 5, 0), DEFAULT_OFFSET)

        assert [e.user_id for e in eligible] == [good.id]

    async def test_local_date_in_users_zone(self, db_session, user_factory):
        """The dedup day is the user's local calendar day, not the UTC day."""
        user = await user_factory(send_hour=1, timezone="+02:00")

        eligible = await scan(db_session, datetime(2026, 3, 2, 23, 30), DEFAULT_OFFSET)

        assert [e.user_id for e in eligible] == [user.id]
        assert eligible[0].local_date == date(2026, 3, 3)
