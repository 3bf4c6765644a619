"""Delivery job queue model."""

import enum
import uuid
from datetime import date, datetime

from sqlalchemy import JSON, CheckConstraint, Date, Enum, Index, Integer, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from courier.models.base import Base, TimestampMixin, str_enum_values


class JobType(str, enum.Enum):
    """Kinds of scheduled work."""

    DIGEST = "digest"
    REMINDER = "reminder"
    ALERT = "alert"
    WELCOME = "welcome"
    PASSWORD_RESET = "password_reset"


class JobStatus(str, enum.Enum):
    """Job lifecycle.

    pending -> processing -> completed
    processing -> retrying -> pending
    processing -> failed
    """

    PENDING = "pending"
    PROCESSING = "processing"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)


class Job(Base, TimestampMixin):
    """A unit of scheduled delivery work, claimed by exactly one worker at a time."""

    __tablename__ = "jobs"
    __table_args__ = (
        CheckConstraint("priority BETWEEN 1 AND 10", name="ck_jobs_priority"),
        CheckConstraint("retry_count <= max_retries", name="ck_jobs_retry_cap"),
        Index("ix_jobs_claim", "status", "scheduled_for", "priority"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    job_type: Mapped[JobType] = mapped_column(
        Enum(JobType, native_enum=False, length=20, values_callable=str_enum_values)
    )
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True)
    user_email: Mapped[str] = mapped_column(String(255))
    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus, native_enum=False, length=20, values_callable=str_enum_values),
        default=JobStatus.PENDING,
        index=True,
    )
    priority: Mapped[int] = mapped_column(Integer, default=5)
    scheduled_for: Mapped[datetime] = mapped_column()

    # Calendar day in the user's zone; set for jobs under the daily dedup guard
    delivery_date: Mapped[date | None] = mapped_column(Date, default=None)

    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, default=3)
    last_error: Mapped[str | None] = mapped_column(Text, default=None)

    payload: Mapped[dict] = mapped_column(JSON, default=dict)
    batch_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, default=None, index=True)
    worker_id: Mapped[str | None] = mapped_column(String(64), default=None, index=True)

    started_at: Mapped[datetime | None] = mapped_column(default=None)
    completed_at: Mapped[datetime | None] = mapped_column(default=None)
    failed_at: Mapped[datetime | None] = mapped_column(default=None)
    updated_at: Mapped[datetime] = mapped_column(default=func.now(), onupdate=func.now())

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self) -> str:
        return f"<Job {self.id} {self.job_type.value} status={self.status.value}>"
