"""Scheduled job endpoints."""

from fastapi import APIRouter, Query

from gameshelf.api.deps import AppServices
from gameshelf.schemas import JobRunResponse

router = APIRouter()


@router.get("/runs", response_model=list[JobRunResponse])
async def list_job_runs(
    services: AppServices,
    job_name: str | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
) -> list[JobRunResponse]:
    """Audit log of scheduled job runs, newest first."""
    runs = await services.scheduler.list_job_runs(limit=limit, job_name=job_name)
    return [JobRunResponse.model_validate(run) for run in runs]
