from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from slowapi.errors import RateLimitExceeded

from courier.api.router import api_router
from courier.config import get_settings
from courier.core.database import AsyncSessionLocal
from courier.core.logging import get_logger, setup_logging
from courier.core.rate_limit import limiter, rate_limit_exceeded_handler
from courier.core.scheduler import start_scheduler, stop_scheduler
from courier.services import posthog_client
from courier.services.worker import WorkerPool

logger = get_logger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    # Startup
    setup_logging()
    await start_scheduler()

    pool: WorkerPool | None = None
    if settings.workers_enabled:
        pool = WorkerPool(AsyncSessionLocal, size=settings.worker_pool_size, settings=settings)
        await pool.start()
    else:
        logger.info("workers_disabled_by_config")

    yield

    # Shutdown: drain in-flight jobs before the scheduler goes away
    if pool is not None:
        await pool.stop()
    await stop_scheduler()
    posthog_client.shutdown()


app = FastAPI(
    title="Courier",
    description="Scheduled delivery and subscription lifecycle engine for Bizzin",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/api/docs" if settings.debug else None,
    redoc_url="/api/redoc" if settings.debug else None,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

# Include API routes
app.include_router(api_router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Liveness check for load balancers. Queue health lives at /api/admin/status."""
    return {"status": "healthy"}
