"""Scan progress endpoints."""

from fastapi import APIRouter, Query

from gameshelf.api.deps import AppServices
from gameshelf.schemas import ScanProgressResponse

router = APIRouter()


@router.get("", response_model=list[ScanProgressResponse])
async def list_scans(
    services: AppServices,
    library_id: int | None = Query(None, description="Only scans of this library"),
    limit: int = Query(50, ge=1, le=500),
) -> list[ScanProgressResponse]:
    """Most recent scans first."""
    scans = await services.scans.list_scans(library_id=library_id, limit=limit)
    return [ScanProgressResponse(**scan.to_dict()) for scan in scans]


@router.get("/{scan_id}", response_model=ScanProgressResponse)
async def get_scan(services: AppServices, scan_id: str) -> ScanProgressResponse:
    """Progress and result of one scan."""
    scan = await services.scans.get_scan(scan_id)
    return ScanProgressResponse(**scan.to_dict())
