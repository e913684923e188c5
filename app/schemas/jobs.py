from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.core.enums import JobRunStatus


class JobResult(BaseModel):
    success: bool
    message: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)


class JobRunResponse(BaseModel):
    id: int
    job_name: str
    run_key: str
    status: JobRunStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    result: Optional[dict[str, Any]] = None
    error_message: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class JobRunOutcome(BaseModel):
    job_name: str
    run_key: str
    result: JobResult


class JobInfo(BaseModel):
    name: str
    description: str
    schedule: str
    enabled: bool
    current_run_key: str
    last_run_at: Optional[datetime] = None


class JobsStatus(BaseModel):
    running: bool
    jobs: list[JobInfo] = Field(default_factory=list)
    recent_runs: list[JobRunResponse] = Field(default_factory=list)


class JobRunRequest(BaseModel):
    force_new_key: bool = False
