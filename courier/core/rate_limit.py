"""HTTP rate limiting for admin endpoints using SlowAPI.

This guards the admin surface itself. Delivery quotas (composer, mailer,
per-user sends) live in courier.services.rate_limiter and are shared
across processes through the database.
"""

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

# Create limiter with IP-based key function
limiter = Limiter(key_func=get_remote_address)

ADMIN_ACTION_LIMIT = "30/minute"


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """Custom handler for rate limit exceeded errors."""
    return JSONResponse(
        status_code=429,
        content={"detail": "Too many requests. Please try again later."},
    )
