"""SQLAlchemy models."""

from gameshelf.models.library import DirectoryMapping, Library
from gameshelf.models.image import Image, ImageType
from gameshelf.models.game import FieldSourceType, Game, GameFieldMetadata, GameImage, game_images
from gameshelf.models.ignored_path import IgnoredPath, IgnoredPathSource
from gameshelf.models.scan_progress import (
    FullScanResult,
    LibraryScanProgress,
    LibraryScanResult,
    QuickScanResult,
    ScanStatus,
    ScanType,
)
from gameshelf.models.job_run import JobRunResult, JobRunStatus
from gameshelf.models.setting import Setting

__all__ = [
    "DirectoryMapping",
    "Library",
    "Image",
    "ImageType",
    "FieldSourceType",
    "Game",
    "GameFieldMetadata",
    "GameImage",
    "game_images",
    "IgnoredPath",
    "IgnoredPathSource",
    "FullScanResult",
    "LibraryScanProgress",
    "LibraryScanResult",
    "QuickScanResult",
    "ScanStatus",
    "ScanType",
    "JobRunResult",
    "JobRunStatus",
    "Setting",
]
