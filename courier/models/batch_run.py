"""Per-tick batch bookkeeping."""

import uuid
from datetime import datetime

from sqlalchemy import Integer, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from courier.models.base import Base


class BatchRun(Base):
    """One row per digest tick. Observational only; the pipeline never reads it."""

    __tablename__ = "batch_runs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tick_time: Mapped[datetime] = mapped_column(index=True)
    target_hour: Mapped[int] = mapped_column(Integer)
    eligible_users: Mapped[int] = mapped_column(Integer, default=0)
    total_jobs: Mapped[int] = mapped_column(Integer, default=0)
    skipped_jobs: Mapped[int] = mapped_column(Integer, default=0)
    completed_jobs: Mapped[int] = mapped_column(Integer, default=0)
    failed_jobs: Mapped[int] = mapped_column(Integer, default=0)
    started_at: Mapped[datetime] = mapped_column()
    finished_at: Mapped[datetime | None] = mapped_column(default=None)

    def __repr__(self) -> str:
        return f"<BatchRun {self.tick_time:%Y-%m-%d %H:%M} jobs={self.total_jobs}>"
