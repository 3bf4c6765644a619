import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict

from courier.models.rate_limit_counter import LimitType
from courier.models.worker_status import WorkerState


class QueueDepth(BaseModel):
    """Job counts by status."""

    pending: int = 0
    processing: int = 0
    retrying: int = 0
    completed: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.processing + self.retrying + self.completed + self.failed


class SweepSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    trigger: str
    started_at: datetime
    finished_at: datetime
    examined: int
    suspended: int
    errors: list[dict]


class BatchSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    tick_time: datetime
    target_hour: int
    eligible_users: int
    total_jobs: int
    skipped_jobs: int
    completed_jobs: int
    failed_jobs: int


class StatusResponse(BaseModel):
    """Admin health/status snapshot."""

    status: str
    checked_at: datetime
    queue: QueueDepth
    active_workers: int
    last_sweep: SweepSummary | None = None
    last_batch: BatchSummary | None = None


class WorkerResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    worker_id: str
    state: WorkerState
    current_job_id: uuid.UUID | None
    last_heartbeat: datetime
    jobs_processed_today: int
    error_count: int
    started_at: datetime


class TickResponse(BaseModel):
    tick_time: datetime
    skipped: bool
    eligible: int
    enqueued: int
    deduplicated: int
    rejected: int = 0
    batch_id: uuid.UUID | None = None


class SweepResponse(BaseModel):
    examined: int
    suspended: int
    errors: list[dict]


class SendTestResponse(BaseModel):
    ok: bool = True
    job_id: uuid.UUID
    message: str = "Test digest queued"


class DeliveryEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: uuid.UUID
    job_type: str
    outcome: str
    job_id: uuid.UUID | None
    detail: str | None
    occurred_at: datetime


class DeliveryAnalytics(BaseModel):
    """Delivery outcomes over a trailing window."""

    days: int
    since: datetime
    outcomes: dict[str, int]
    total: int
    sent: int
    failed: int
    delivery_rate: float
    recent: list[DeliveryEventResponse]


class RateLimitCounterResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    limit_key: str
    limit_type: LimitType
    limit_value: int
    current_usage: int
    reset_at: datetime
