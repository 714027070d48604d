"""Pydantic schemas for API validation."""

from gameshelf.schemas.game import GameResponse, GameUpdate, ManualMatchRequest
from gameshelf.schemas.library import (
    DirectoryMappingSchema,
    IgnoredPathRequest,
    IgnoredPathResponse,
    LibraryCreate,
    LibraryResponse,
    LibraryUpdate,
)
from gameshelf.schemas.scan import (
    JobRunResponse,
    ScanProgressResponse,
    ScanRequest,
    ScanScheduleResponse,
    ScanScheduleUpdate,
    ScanStartResponse,
    ScanStepResponse,
    SingleScanRequest,
)

__all__ = [
    "GameResponse",
    "GameUpdate",
    "ManualMatchRequest",
    "DirectoryMappingSchema",
    "IgnoredPathRequest",
    "IgnoredPathResponse",
    "LibraryCreate",
    "LibraryResponse",
    "LibraryUpdate",
    "JobRunResponse",
    "ScanProgressResponse",
    "ScanRequest",
    "ScanScheduleResponse",
    "ScanScheduleUpdate",
    "ScanStartResponse",
    "ScanStepResponse",
    "SingleScanRequest",
]
