"""
Pytest configuration and fixtures for Courier tests.

Provides:
- Async test database with SQLite
- A fixed clock and a DigestScheduler wired to the test database
- Fake composer and mailer collaborators
- Test client for API testing
- Factory fixtures for creating test data
"""

import uuid
from collections.abc import AsyncGenerator
from datetime import date, datetime

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import StaticPool
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from courier.config import AppConfig, Settings, get_settings
from courier.core.clock import FixedClock
from courier.core.database import get_db
from courier.dependencies import get_clock
from courier.main import app
from courier.models import Base
from courier.models.delivery_preference import DeliveryPreference
from courier.models.job import Job, JobType
from courier.models.subscription import PlanType, Subscription, SubscriptionStatus
from courier.models.user import User
from courier.schemas.content import DigestContent
from courier.schemas.job import JobCreate
from courier.services import job_queue, posthog_client
from courier.services.composer import BaseComposer
from courier.services.digest_scheduler import DigestScheduler, get_digest_scheduler
from courier.services.mailer import BaseMailer
from courier.services.worker import Worker

# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

ADMIN_KEY = "test-admin-key"

# 05:00 UTC is 07:00 at the default +02:00 offset
TICK_TIME = datetime(2026, 3, 2, 5, 0, 0)


# Override settings for testing
class TestSettings(Settings):
    database_url: str = TEST_DATABASE_URL
    debug: bool = True
    admin_api_key: str = ADMIN_KEY
    resend_api_key: str = ""
    composer_url: str = ""
    default_timezone_offset: str = "+02:00"
    max_retries: int = 3
    backoff_base_seconds: float = 30.0
    backoff_max_seconds: float = 300.0
    backoff_jitter: bool = False
    test_send_cooldown_seconds: int = 300


SAMPLE_CONTENT = DigestContent(
    subject="Your Bizzin morning digest",
    html="<p>Three invoices are due this week.</p>",
    text="Three invoices are due this week.",
)


class FakeComposer(BaseComposer):
    """Returns fixed content, raising queued errors first."""

    def __init__(self, content: DigestContent | None = SAMPLE_CONTENT, errors: list[Exception] | None = None):
        self.content = content
        self.errors = list(errors or [])
        self.calls: list[uuid.UUID] = []

    async def compose(self, user_id: uuid.UUID) -> DigestContent | None:
        self.calls.append(user_id)
        if self.errors:
            raise self.errors.pop(0)
        return self.content


class FakeMailer(BaseMailer):
    """Records sends, raising queued errors first."""

    def __init__(self, accept: bool = True, errors: list[Exception] | None = None):
        self.accept = accept
        self.errors = list(errors or [])
        self.sent: list[tuple[str, DigestContent]] = []

    async def send(self, address: str, content: DigestContent) -> bool:
        if self.errors:
            raise self.errors.pop(0)
        if self.accept:
            self.sent.append((address, content))
        return self.accept


@pytest.fixture(autouse=True)
def _no_posthog(monkeypatch):
    """Keep analytics local: no PostHog client in tests."""
    monkeypatch.delenv("POSTHOG_API_KEY", raising=False)
    posthog_client.get_posthog_client.cache_clear()
    yield
    posthog_client.get_posthog_client.cache_clear()


@pytest.fixture
def test_settings() -> Settings:
    return TestSettings()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(TICK_TIME)


@pytest_asyncio.fixture
async def db_engine():
    """Create async test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory handed to schedulers and workers under test."""
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests.

    Every session shares one in-memory connection, so factories commit
    rather than flush; anything left uncommitted would be rolled back when
    another session returns the connection.
    """
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def scheduler(session_factory, clock, test_settings) -> DigestScheduler:
    return DigestScheduler(session_factory, clock=clock, settings=test_settings, config=AppConfig())


@pytest.fixture
def sample_content() -> DigestContent:
    return SAMPLE_CONTENT


@pytest.fixture
def composer() -> FakeComposer:
    return FakeComposer()


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def make_worker(session_factory, clock, test_settings, composer, mailer):
    """Factory for workers wired to the shared fake composer and mailer."""

    def _make(settings: Settings | None = None, worker_id: str = "worker-test-1") -> Worker:
        return Worker(
            session_factory,
            clock=clock,
            settings=settings or test_settings,
            composer=composer,
            mailer=mailer,
            worker_id=worker_id,
        )

    return _make


@pytest_asyncio.fixture
async def client(db_session: AsyncSession, scheduler, clock, test_settings) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client with database, clock and scheduler overrides."""
    from courier.core.rate_limit import limiter

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_digest_scheduler] = lambda: scheduler

    # Reset rate limiter storage before each test
    limiter.reset()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-Admin-Key": ADMIN_KEY}


# ============================================================================
# Factory Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def user_factory(db_session: AsyncSession, clock):
    """Factory for creating test users with a delivery preference."""

    async def _create_user(
        email: str | None = None,
        send_hour: int | None = 7,
        timezone: str = "+02:00",
        enabled: bool = True,
    ) -> User:
        if email is None:
            email = f"owner-{uuid.uuid4().hex[:8]}@mail.bizzin.app"

        user = User(id=uuid.uuid4(), email=email, created_at=clock.now())
        db_session.add(user)

        if send_hour is not None:
            db_session.add(
                DeliveryPreference(
                    id=uuid.uuid4(),
                    user_id=user.id,
                    send_hour=send_hour,
                    timezone=timezone,
                    enabled=enabled,
                    created_at=clock.now(),
                    updated_at=clock.now(),
                )
            )
        await db_session.commit()
        return user

    return _create_user


@pytest_asyncio.fixture
async def subscription_factory(db_session: AsyncSession, user_factory, clock):
    """Factory for creating test subscriptions."""

    async def _create_subscription(
        user: User | None = None,
        plan_type: PlanType = PlanType.PREMIUM,
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
        grace_period_end: datetime | None = None,
        failed_payment_count: int = 0,
    ) -> Subscription:
        if user is None:
            user = await user_factory(send_hour=None)

        subscription = Subscription(
            id=uuid.uuid4(),
            user_id=user.id,
            plan_type=plan_type,
            status=status,
            grace_period_end=grace_period_end,
            failed_payment_count=failed_payment_count,
            created_at=clock.now(),
            updated_at=clock.now(),
        )
        db_session.add(subscription)
        await db_session.commit()
        return subscription

    return _create_subscription


@pytest_asyncio.fixture
async def job_factory(db_session: AsyncSession, user_factory, clock):
    """Factory for creating pending jobs."""

    async def _create_job(
        user: User | None = None,
        job_type: JobType = JobType.REMINDER,
        priority: int = 5,
        payload: dict | None = None,
        delivery_date: date | None = None,
        max_retries: int = 3,
        scheduled_for: datetime | None = None,
    ) -> Job:
        if user is None:
            user = await user_factory()
        if payload is None and job_type != JobType.DIGEST:
            payload = SAMPLE_CONTENT.model_dump()

        job = await job_queue.enqueue(
            db_session,
            JobCreate(
                job_type=job_type,
                user_id=user.id,
                user_email=user.email,
                priority=priority,
                payload=payload or {},
                delivery_date=delivery_date,
                max_retries=max_retries,
                scheduled_for=scheduled_for,
            ),
            clock.now(),
        )
        await db_session.commit()
        return job

    return _create_job


@pytest.fixture
def reload(db_session: AsyncSession):
    """Re-read a row, bypassing the session's identity map."""

    async def _reload(model: type, pk):
        return await db_session.get(model, pk, populate_existing=True)

    return _reload