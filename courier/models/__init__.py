from courier.models.base import Base
from courier.models.batch_run import BatchRun
from courier.models.cooldown import Cooldown
from courier.models.delivery_event import DeliveryEvent
from courier.models.delivery_preference import DeliveryPreference
from courier.models.delivery_record import DeliveryOutcome, DeliveryRecord
from courier.models.job import Job, JobStatus, JobType
from courier.models.job_run import JobRun
from courier.models.rate_limit_counter import LimitType, RateLimitCounter
from courier.models.subscription import (
    PlanType,
    Subscription,
    SubscriptionEvent,
    SubscriptionEventType,
    SubscriptionStatus,
)
from courier.models.sweep_run import SweepRun
from courier.models.user import User
from courier.models.worker_status import WorkerState, WorkerStatus

__all__ = [
    "Base",
    "User",
    "DeliveryPreference",
    "Job",
    "JobStatus",
    "JobType",
    "DeliveryRecord",
    "DeliveryOutcome",
    "WorkerStatus",
    "WorkerState",
    "RateLimitCounter",
    "LimitType",
    "Subscription",
    "SubscriptionEvent",
    "SubscriptionEventType",
    "SubscriptionStatus",
    "PlanType",
    "BatchRun",
    "DeliveryEvent",
    "Cooldown",
    "SweepRun",
    "JobRun",
]
