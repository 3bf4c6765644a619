import ssl
from collections.abc import AsyncGenerator
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from courier.config import get_settings
from courier.core.logging import get_logger

logger = get_logger(__name__)

settings = get_settings()


def _fix_postgres_url(url: str) -> tuple[str, dict]:
    """
    Fix a hosted Postgres connection URL for asyncpg compatibility.

    Managed providers include params like sslmode, channel_binding that asyncpg
    doesn't accept. We strip them and handle SSL via connect_args.

    - Remote hosts: Use SSL with default context
    - Local dev (localhost/127.0.0.1/db) and SQLite: No SSL
    """
    parsed = urlparse(url)
    if parsed.scheme.startswith("sqlite"):
        return url, {}

    params = parse_qs(parsed.query)

    # Remove unsupported asyncpg params
    unsupported = ["sslmode", "channel_binding", "options"]
    for param in unsupported:
        params.pop(param, None)

    # Rebuild URL without unsupported params
    new_query = urlencode(params, doseq=True)
    clean_url = urlunparse(parsed._replace(query=new_query))

    hostname = parsed.hostname or ""
    is_local = hostname in ("localhost", "127.0.0.1", "db")

    if is_local:
        return clean_url, {}
    else:
        ssl_context = ssl.create_default_context()
        return clean_url, {"ssl": ssl_context}


clean_url, connect_args = _fix_postgres_url(settings.database_url)

if clean_url.startswith("sqlite"):
    engine = create_async_engine(clean_url, echo=settings.debug, connect_args=connect_args)
else:
    # Workers, the scheduler and the API share this pool
    engine = create_async_engine(
        clean_url,
        echo=settings.debug,
        pool_pre_ping=True,
        pool_size=5 + settings.worker_pool_size,
        max_overflow=10,
        pool_recycle=280,
        connect_args=connect_args,
    )

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency that provides a database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.bind(error=str(e)).error("database_transaction_rollback")
            await session.rollback()
            raise


def is_postgres(session: AsyncSession) -> bool:
    """Whether the session is bound to PostgreSQL (enables SKIP LOCKED)."""
    return session.get_bind().dialect.name == "postgresql"


async def insert_if_absent(session: AsyncSession, model: type, values: dict) -> bool:
    """INSERT ... ON CONFLICT DO NOTHING for a mapped class.

    A single statement, so concurrent callers racing on the same unique key
    get exactly one winner.

    Returns:
        True if this call inserted the row, False if it already existed
    """
    if is_postgres(session):
        from sqlalchemy.dialects.postgresql import insert
    else:
        from sqlalchemy.dialects.sqlite import insert

    table = model.__table__
    pk = list(table.primary_key.columns)[0]
    stmt = insert(table).values(**values).on_conflict_do_nothing().returning(pk)
    result = await session.execute(stmt)
    return result.first() is not None
