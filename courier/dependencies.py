from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from courier.config import Settings, get_settings
from courier.core.clock import Clock, SystemClock
from courier.core.database import get_db
from courier.core.security import verify_admin_key
from courier.services.digest_scheduler import DigestScheduler, get_digest_scheduler


@lru_cache(maxsize=1)
def get_clock() -> Clock:
    return SystemClock()


# Type aliases for dependency injection
DBSession = Annotated[AsyncSession, Depends(get_db)]
AppSettings = Annotated[Settings, Depends(get_settings)]
AppClock = Annotated[Clock, Depends(get_clock)]
Scheduler = Annotated[DigestScheduler, Depends(get_digest_scheduler)]


async def require_admin(
    settings: AppSettings,
    x_admin_key: str | None = Header(default=None, alias="X-Admin-Key"),
) -> None:
    """Reject requests without a valid X-Admin-Key header."""
    if not verify_admin_key(x_admin_key, settings.admin_api_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin key",
        )


RequireAdmin = Depends(require_admin)
