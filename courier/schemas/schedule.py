from datetime import datetime

from pydantic import BaseModel, ConfigDict, computed_field


class ScheduleResponse(BaseModel):
    """A registered APScheduler schedule (tick, sweep, reaper, cleanup)."""

    id: str
    task_id: str
    trigger: str
    next_fire_time: str | None
    last_fire_time: str | None


class JobRunResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    schedule_id: str
    scheduled_at: datetime
    started_at: datetime
    finished_at: datetime
    outcome: str
    error: str | None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()


class ScheduleStatsResponse(BaseModel):
    schedule_id: str
    total_runs: int
    successful_runs: int
    failed_runs: int
    success_rate: float
    last_run: datetime | None
    last_outcome: str | None
