"""Settings API endpoints."""

from typing import Any

from fastapi import APIRouter

from gameshelf.api.deps import AppServices
from gameshelf.schemas import ScanScheduleResponse, ScanScheduleUpdate
from gameshelf.services import Services
from gameshelf.services.config_service import ConfigKeys

router = APIRouter()


async def schedule_response(services: Services) -> ScanScheduleResponse:
    return ScanScheduleResponse(
        cron_expression=await services.config.get(ConfigKeys.SCAN_SCHEDULE),
        enabled=await services.config.get(ConfigKeys.SCAN_SCHEDULE_ENABLED),
        next_run_time=services.scheduler.next_run_time(),
    )


@router.get("")
async def get_settings(services: AppServices) -> dict[str, Any]:
    """All runtime configuration values."""
    return await services.config.get_all()


@router.get("/scan-schedule", response_model=ScanScheduleResponse)
async def get_scan_schedule(services: AppServices) -> ScanScheduleResponse:
    """Current library scan schedule."""
    return await schedule_response(services)


@router.put("/scan-schedule", response_model=ScanScheduleResponse)
async def update_scan_schedule(services: AppServices, data: ScanScheduleUpdate) -> ScanScheduleResponse:
    """Change the library scan schedule. An invalid cron expression is rejected."""
    values = {}
    if data.cron_expression is not None:
        values[ConfigKeys.SCAN_SCHEDULE] = data.cron_expression.strip()
    if data.enabled is not None:
        values[ConfigKeys.SCAN_SCHEDULE_ENABLED] = data.enabled
    if values:
        await services.config.set_many(values)
    return await schedule_response(services)
