"""Worker heartbeat records."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import Enum, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from courier.models.base import Base, str_enum_values


class WorkerState(str, enum.Enum):
    ACTIVE = "active"
    IDLE = "idle"
    ERROR = "error"
    STOPPED = "stopped"


class WorkerStatus(Base):
    """Liveness of a queue worker. Stale heartbeats make its jobs reclaimable."""

    __tablename__ = "worker_status"

    worker_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    state: Mapped[WorkerState] = mapped_column(
        Enum(WorkerState, native_enum=False, length=20, values_callable=str_enum_values),
        default=WorkerState.IDLE,
    )
    current_job_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, default=None)
    last_heartbeat: Mapped[datetime] = mapped_column(index=True)
    jobs_processed_today: Mapped[int] = mapped_column(Integer, default=0)
    error_count: Mapped[int] = mapped_column(Integer, default=0)
    started_at: Mapped[datetime] = mapped_column()

    def __repr__(self) -> str:
        return f"<WorkerStatus {self.worker_id} {self.state.value}>"
