import uuid
from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from courier.models.job import JobStatus, JobType


class JobCreate(BaseModel):
    """Validated input for enqueueing a job."""

    job_type: JobType
    user_id: uuid.UUID
    user_email: EmailStr
    priority: int = Field(default=5, ge=1, le=10)
    scheduled_for: datetime | None = None  # None = now
    max_retries: int = Field(default=3, ge=0, le=10)
    payload: dict = Field(default_factory=dict)
    delivery_date: date | None = None
    batch_id: uuid.UUID | None = None


class AdHocJobRequest(BaseModel):
    """Admin request to queue a single job for a user."""

    user_id: uuid.UUID
    job_type: JobType = JobType.REMINDER
    payload: dict = Field(default_factory=dict)
    scheduled_for: datetime | None = None


class JobResponse(BaseModel):
    """Queue entry as shown on the admin surface."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    job_type: JobType
    user_id: uuid.UUID
    user_email: str
    status: JobStatus
    priority: int
    scheduled_for: datetime
    delivery_date: date | None
    retry_count: int
    max_retries: int
    last_error: str | None
    worker_id: str | None
    created_at: datetime
    started_at: datetime | None
    completed_at: datetime | None
    failed_at: datetime | None
