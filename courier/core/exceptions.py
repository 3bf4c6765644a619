"""Error taxonomy for delivery and lifecycle processing."""

from datetime import datetime


class DeliveryError(Exception):
    """Base class for errors raised while processing a job."""


class TransientDeliveryError(DeliveryError):
    """Retryable failure: network timeout, provider hiccup, lock conflict."""


class PermanentDeliveryError(DeliveryError):
    """Non-retryable failure: invalid address, deleted user, bad payload."""


class RateLimitExceeded(DeliveryError):
    """A shared rate-limit counter is exhausted until reset_at."""

    def __init__(self, limit_key: str, reset_at: datetime) -> None:
        super().__init__(f"Rate limit {limit_key} exhausted until {reset_at.isoformat()}")
        self.limit_key = limit_key
        self.reset_at = reset_at


class CooldownActive(Exception):
    """An admin action was repeated before its cooldown expired."""

    def __init__(self, key: str, retry_at: datetime) -> None:
        super().__init__(f"Cooldown {key} active until {retry_at.isoformat()}")
        self.key = key
        self.retry_at = retry_at


class SubscriptionNotFound(Exception):
    """No subscription row exists for the user."""


class SubscriptionStateError(Exception):
    """The requested lifecycle transition is not allowed from the current state."""


class DuplicateDelivery(PermanentDeliveryError):
    """The (user, job type, day) delivery slot is already owned by another job."""


class UserNotFound(Exception):
    """The target user does not exist."""
