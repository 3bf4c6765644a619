from courier.schemas.admin import (
    QueueDepth,
    StatusResponse,
    SweepResponse,
    SendTestResponse,
    TickResponse,
    WorkerResponse,
)
from courier.schemas.content import DigestContent
from courier.schemas.job import AdHocJobRequest, JobCreate, JobResponse
from courier.schemas.schedule import JobRunResponse, ScheduleResponse, ScheduleStatsResponse
from courier.schemas.subscription import (
    ExtendGracePeriodRequest,
    GracePeriodStatusResponse,
    StartGracePeriodRequest,
    SubscriptionActionResponse,
)

__all__ = [
    "DigestContent",
    "JobCreate",
    "JobResponse",
    "AdHocJobRequest",
    "JobRunResponse",
    "ScheduleResponse",
    "ScheduleStatsResponse",
    "QueueDepth",
    "StatusResponse",
    "SweepResponse",
    "SendTestResponse",
    "TickResponse",
    "WorkerResponse",
    "StartGracePeriodRequest",
    "ExtendGracePeriodRequest",
    "GracePeriodStatusResponse",
    "SubscriptionActionResponse",
]
