"""Digest composer collaborators.

The composer builds a user's digest. It may return None when there is
nothing worth sending today; that is not an error.
"""

import uuid
from abc import ABC, abstractmethod
from functools import lru_cache

import httpx
from pydantic import ValidationError

from courier.config import get_settings
from courier.core.exceptions import PermanentDeliveryError, TransientDeliveryError
from courier.core.logging import get_logger
from courier.schemas.content import DigestContent

logger = get_logger(__name__)


class BaseComposer(ABC):
    @abstractmethod
    async def compose(self, user_id: uuid.UUID) -> DigestContent | None:
        """Build the digest for user_id, or None if there is nothing to send."""


class NullComposer(BaseComposer):
    """Composer used when no composer service is configured. Never has content."""

    async def compose(self, user_id: uuid.UUID) -> DigestContent | None:
        logger.bind(user_id=str(user_id)).debug("composer_not_configured")
        return None


class HttpComposer(BaseComposer):
    """Composer backed by an HTTP service.

    POST {url} with {"user_id": ...}:
    - 200 with a DigestContent body: content to send
    - 204: nothing to send today
    - 404 / 410: user unknown to the composer (permanent)
    - 429 / 5xx: transient
    """

    def __init__(self, url: str, api_key: str = "", client: httpx.AsyncClient | None = None) -> None:
        self.url = url
        self.api_key = api_key
        self._client = client

    async def _post(self, client: httpx.AsyncClient, user_id: uuid.UUID) -> httpx.Response:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return await client.post(self.url, json={"user_id": str(user_id)}, headers=headers)

    async def compose(self, user_id: uuid.UUID) -> DigestContent | None:
        try:
            if self._client is not None:
                resp = await self._post(self._client, user_id)
            else:
                async with httpx.AsyncClient(timeout=30.0) as client:
                    resp = await self._post(client, user_id)
        except httpx.HTTPError as e:
            raise TransientDeliveryError(f"Composer request failed: {e}") from e

        if resp.status_code == 204:
            return None

        if resp.status_code in (404, 410):
            raise PermanentDeliveryError(f"Composer does not know user {user_id}")

        if resp.status_code == 429 or resp.status_code >= 500:
            logger.bind(status_code=resp.status_code, user_id=str(user_id)).warning(
                "composer_unavailable"
            )
            raise TransientDeliveryError(f"Composer returned HTTP {resp.status_code}")

        if resp.status_code != 200:
            error_detail = resp.text[:500] if resp.text else "Unknown error"
            logger.bind(status_code=resp.status_code, response=error_detail).error("composer_api_error")
            raise PermanentDeliveryError(f"Composer returned HTTP {resp.status_code}: {error_detail}")

        try:
            return DigestContent.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            raise PermanentDeliveryError(f"Composer returned malformed content: {e}") from e


@lru_cache(maxsize=1)
def get_composer() -> BaseComposer:
    settings = get_settings()
    if settings.composer_url:
        return HttpComposer(settings.composer_url, settings.composer_api_key)
    return NullComposer()
