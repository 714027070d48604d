"""Library API endpoints."""

from fastapi import APIRouter, Response
from sqlalchemy import func, select

from gameshelf.api.deps import AppServices, DbSession
from gameshelf.exceptions import NotFoundError
from gameshelf.models import Game, Library
from gameshelf.schemas import (
    DirectoryMappingSchema,
    IgnoredPathRequest,
    IgnoredPathResponse,
    LibraryCreate,
    LibraryResponse,
    LibraryUpdate,
    ScanRequest,
    ScanStartResponse,
    SingleScanRequest,
)
from gameshelf.services import Services
from gameshelf.services.libraries import DirectorySpec

router = APIRouter()


async def game_counts(db: DbSession) -> dict[int, int]:
    query = select(Game.library_id, func.count()).where(Game.library_id.is_not(None)).group_by(Game.library_id)
    result = await db.execute(query)
    return {library_id: count for library_id, count in result.all()}


def to_response(library: Library, services: Services, game_count: int = 0) -> LibraryResponse:
    return LibraryResponse(
        id=library.id,
        name=library.name,
        directories=[DirectoryMappingSchema.model_validate(d) for d in library.directories],
        platforms=library.platforms or [],
        display_on_homepage=library.display_on_homepage,
        created_at=library.created_at,
        updated_at=library.updated_at,
        game_count=game_count,
        scanning=services.scans.is_scanning(library.id),
    )


def to_specs(directories: list[DirectoryMappingSchema]) -> list[DirectorySpec]:
    return [DirectorySpec(d.internal_path, d.external_path) for d in directories]


@router.get("", response_model=list[LibraryResponse])
async def list_libraries(db: DbSession, services: AppServices) -> list[LibraryResponse]:
    """List all libraries."""
    libraries = await services.libraries.list_libraries()
    counts = await game_counts(db)
    return [to_response(library, services, counts.get(library.id, 0)) for library in libraries]


@router.post("", response_model=LibraryResponse, status_code=201)
async def create_library(services: AppServices, data: LibraryCreate) -> LibraryResponse:
    """Create a library."""
    library = await services.libraries.create_library(
        name=data.name,
        directories=to_specs(data.directories),
        platforms=data.platforms,
        display_on_homepage=data.display_on_homepage,
    )
    return to_response(library, services)


@router.post("/scan", response_model=ScanStartResponse, status_code=202)
async def scan_libraries(services: AppServices, request: ScanRequest) -> ScanStartResponse:
    """Scan several libraries, skipping those already being scanned."""
    scan_ids = await services.scans.trigger_scan(request.type, request.library_ids)
    return ScanStartResponse(
        scan_ids=scan_ids,
        message=f"Started {len(scan_ids)} {request.type.value} scan(s)",
    )


@router.get("/{library_id}", response_model=LibraryResponse)
async def get_library(db: DbSession, services: AppServices, library_id: int) -> LibraryResponse:
    """Get a single library."""
    library = await services.libraries.get_library(library_id)
    counts = await game_counts(db)
    return to_response(library, services, counts.get(library_id, 0))


@router.patch("/{library_id}", response_model=LibraryResponse)
async def update_library(
    db: DbSession, services: AppServices, library_id: int, data: LibraryUpdate
) -> LibraryResponse:
    """Update a library."""
    library = await services.libraries.update_library(
        library_id,
        name=data.name,
        directories=to_specs(data.directories) if data.directories is not None else None,
        platforms=data.platforms,
        display_on_homepage=data.display_on_homepage,
    )
    counts = await game_counts(db)
    return to_response(library, services, counts.get(library_id, 0))


@router.delete("/{library_id}", status_code=204)
async def delete_library(services: AppServices, library_id: int) -> Response:
    """Delete a library. Its games are kept."""
    await services.libraries.delete_library(library_id)
    return Response(status_code=204)


@router.post("/{library_id}/scan", response_model=ScanStartResponse, status_code=202)
async def scan_library(
    services: AppServices, library_id: int, request: SingleScanRequest | None = None
) -> ScanStartResponse:
    """Scan one library."""
    scan_type = request.type if request else SingleScanRequest().type
    scan_id = await services.scans.start_scan(library_id, scan_type)
    return ScanStartResponse(scan_ids=[scan_id], message=f"Started {scan_type.value} scan")


@router.get("/{library_id}/ignored-paths", response_model=list[IgnoredPathResponse])
async def list_ignored_paths(services: AppServices, library_id: int) -> list[IgnoredPathResponse]:
    """List the paths a library's scans skip."""
    ignored = await services.libraries.list_ignored_paths(library_id)
    return [IgnoredPathResponse.model_validate(p) for p in ignored]


@router.post("/{library_id}/ignored-paths", response_model=IgnoredPathResponse, status_code=201)
async def ignore_path(
    services: AppServices, library_id: int, request: IgnoredPathRequest
) -> IgnoredPathResponse:
    """Exclude a path from scanning."""
    ignored = await services.libraries.ignore_path(library_id, request.path, request.user_id)
    return IgnoredPathResponse.model_validate(ignored)


@router.delete("/{library_id}/ignored-paths", status_code=204)
async def unignore_path(services: AppServices, library_id: int, request: IgnoredPathRequest) -> Response:
    """Let scans consider an ignored path again."""
    if not await services.libraries.unignore_path(library_id, request.path):
        raise NotFoundError(f"Path '{request.path}' is not ignored in library {library_id}")
    return Response(status_code=204)
