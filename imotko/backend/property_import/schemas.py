from pydantic import BaseModel, Field
from datetime import datetime
from typing import Any


class ImportErrorEntry(BaseModel):
    type: str
    stage: str
    property: str
    external_id: str | None = None
    message: str


class RunStatsOut(BaseModel):
    total: int = Field(0, ge=0)
    processed: int = Field(0, ge=0)
    created: int = Field(0, ge=0)
    duplicates: int = Field(0, ge=0)
    failed: int = Field(0, ge=0)
    errors: list[ImportErrorEntry] = Field(default_factory=list)


class RunSummaryOut(BaseModel):
    execution_id: int | None = None
    triggered_by: str
    status: str
    started_at: datetime
    duration_ms: int
    stats: RunStatsOut
    cancelled: bool = False
    error: str | None = None


class SchedulerStatusOut(BaseModel):
    is_running: bool
    is_scheduled: bool
    schedule: str
    timezone: str


class ImportExecutionOut(BaseModel):
    id: int
    job_name: str
    triggered_by: str
    status: str

    started_at: datetime
    finished_at: datetime | None = None
    duration_ms: int | None = None

    total: int
    processed: int
    created: int
    duplicates: int
    failed: int

    consecutive_failures: int
    last_error: str | None = None
    errors: list[dict[str, Any]] = Field(default_factory=list)


class ImportHistoryOut(BaseModel):
    items: list[ImportExecutionOut]
    total: int
    limit: int
    offset: int


class ImportStatisticsOut(BaseModel):
    days: int
    runs: int
    by_status: dict[str, int]
    success_rate: float | None = None
    avg_duration_ms: float | None = None
    properties_created: int
    duplicates: int
    failed_properties: int
