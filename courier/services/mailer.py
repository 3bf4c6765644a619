"""Mailer collaborators.

``send`` returns True when the provider accepted the message. False means
the provider declined without a reason we can act on; the worker treats it
as transient. Invalid recipients raise PermanentDeliveryError.
"""

import asyncio
from abc import ABC, abstractmethod
from functools import lru_cache

import resend
from resend.exceptions import ResendError

from courier.config import get_settings
from courier.core.exceptions import PermanentDeliveryError, TransientDeliveryError
from courier.core.logging import get_logger
from courier.schemas.content import DigestContent

logger = get_logger(__name__)

# Resend error types that will never succeed on retry
_PERMANENT_RESEND_ERRORS = ("validation_error", "invalid_to_address", "invalid_from_address")


class BaseMailer(ABC):
    @abstractmethod
    async def send(self, address: str, content: DigestContent) -> bool:
        """Hand content to the provider for delivery to address."""


class LogMailer(BaseMailer):
    """Logs messages instead of sending them. Used when no Resend key is set."""

    async def send(self, address: str, content: DigestContent) -> bool:
        logger.bind(email=address, subject=content.subject).warning("resend_api_key_not_set")
        return True


class ResendMailer(BaseMailer):
    def __init__(self, api_key: str, from_address: str) -> None:
        self.from_address = from_address
        resend.api_key = api_key

    async def send(self, address: str, content: DigestContent) -> bool:
        if "@" not in address:
            raise PermanentDeliveryError(f"Invalid recipient address: {address!r}")

        params: dict = {
            "from": self.from_address,
            "to": [address],
            "subject": content.subject,
            "html": content.html,
        }
        if content.text:
            params["text"] = content.text
        if content.tags:
            params["tags"] = [{"name": k, "value": v} for k, v in content.tags.items()]

        try:
            # resend's client is synchronous
            response = await asyncio.to_thread(resend.Emails.send, params)
        except ResendError as e:
            error_type = getattr(e, "error_type", "")
            if error_type in _PERMANENT_RESEND_ERRORS:
                raise PermanentDeliveryError(f"Resend rejected {address}: {e}") from e
            raise TransientDeliveryError(f"Resend error: {e}") from e

        message_id = response.get("id") if isinstance(response, dict) else None
        if not message_id:
            logger.bind(email=address).warning("resend_no_message_id")
            return False

        logger.bind(email=address, message_id=message_id).info("email_sent")
        return True


@lru_cache(maxsize=1)
def get_mailer() -> BaseMailer:
    settings = get_settings()
    if settings.resend_api_key:
        return ResendMailer(
            settings.resend_api_key,
            f"{settings.mail_from_name} <digest@{settings.email_domain}>",
        )
    return LogMailer()
