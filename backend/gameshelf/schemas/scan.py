"""Scan, job and schedule schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from gameshelf.models import ScanType


class ScanRequest(BaseModel):
    """Request to scan libraries."""

    type: ScanType = ScanType.QUICK
    library_ids: list[int] | None = Field(None, description="Libraries to scan, or null for all")


class SingleScanRequest(BaseModel):
    """Request to scan one library."""

    type: ScanType = ScanType.QUICK


class ScanStartResponse(BaseModel):
    """Response after starting scans."""

    scan_ids: list[str]
    message: str


class ScanStepResponse(BaseModel):
    description: str
    current: int | None = None
    total: int | None = None


class ScanProgressResponse(BaseModel):
    """Progress and result of one scan."""

    scan_id: str
    library_id: int
    type: str
    status: str
    current_step: ScanStepResponse
    result: dict[str, Any] | None = None
    error_message: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None


class JobRunResponse(BaseModel):
    """One recorded scheduler run."""

    id: int
    job_name: str
    status: str
    message: str | None
    started_at: datetime
    finished_at: datetime

    class Config:
        from_attributes = True


class ScanScheduleResponse(BaseModel):
    """Current library scan schedule."""

    cron_expression: str
    enabled: bool
    next_run_time: datetime | None = None


class ScanScheduleUpdate(BaseModel):
    """Change the library scan schedule."""

    cron_expression: str | None = Field(None, min_length=1)
    enabled: bool | None = None
