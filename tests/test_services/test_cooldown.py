"""Tests for durable admin cooldowns."""

import uuid
from datetime import timedelta

import pytest

from courier.core.exceptions import CooldownActive
from courier.services.cooldown import acquire_cooldown, send_test_key

pytestmark = pytest.mark.asyncio


class TestAcquireCooldown:
    """Tests for acquire_cooldown."""

    async def test_first_use(self, db_session, clock):
        expires = await acquire_cooldown(db_session, "test_send:a", 300, clock.now())
        assert expires == clock.now() + timedelta(seconds=300)

    async def test_repeat_within_cooldown_rejected(self, db_session, clock):
        """A second trigger inside the window raises with the expiry instant."""
        first_expiry = await acquire_cooldown(db_session, "test_send:a", 300, clock.now())
        await db_session.commit()

        clock.advance(seconds=120)
        with pytest.raises(CooldownActive) as exc_info:
            await acquire_cooldown(db_session, "test_send:a", 300, clock.now())

        assert exc_info.value.retry_at == first_expiry

    async def test_allowed_after_expiry(self, db_session, clock):
        await acquire_cooldown(db_session, "test_send:a", 300, clock.now())
        await db_session.commit()

        clock.advance(seconds=300)
        expires = await acquire_cooldown(db_session, "test_send:a", 300, clock.now())

        assert expires == clock.now() + timedelta(seconds=300)

    async def test_keys_are_independent(self, db_session, clock):
        await acquire_cooldown(db_session, send_test_key(uuid.uuid4()), 300, clock.now())
        await acquire_cooldown(db_session, send_test_key(uuid.uuid4()), 300, clock.now())
