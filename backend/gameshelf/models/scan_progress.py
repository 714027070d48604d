"""Scan progress model for tracking library scans."""

from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from gameshelf.database import Base


class ScanType(str, Enum):
    """Kind of library scan."""
    QUICK = "quick"          # New and removed paths only
    FULL = "full"            # Also re-verifies existing games
    SCHEDULED = "scheduled"  # Full scan triggered by the job scheduler


class ScanStatus(str, Enum):
    """Status of a library scan."""
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class QuickScanResult:
    new: int
    removed: int
    unmatched: int
    failed: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"type": "quick", **asdict(self)}


@dataclass(frozen=True)
class FullScanResult:
    new: int
    removed: int
    unmatched: int
    updated: int
    failed: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"type": "full", **asdict(self)}


LibraryScanResult = QuickScanResult | FullScanResult


def scan_result_from_dict(data: dict[str, Any] | None) -> LibraryScanResult | None:
    """Rebuild a scan result from its stored JSON."""
    if not data:
        return None
    values = {k: v for k, v in data.items() if k != "type"}
    if data.get("type") == "full":
        return FullScanResult(**values)
    return QuickScanResult(**values)


class LibraryScanProgress(Base):
    """Progress and outcome of one library scan."""

    __tablename__ = "library_scan_progress"

    # Opaque token handed to callers
    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    library_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    scan_type: Mapped[str] = mapped_column(String(20), nullable=False)

    status: Mapped[str] = mapped_column(String(20), default=ScanStatus.IN_PROGRESS.value)
    current_step: Mapped[str] = mapped_column(String(100), nullable=False)
    step_current: Mapped[int | None] = mapped_column(Integer, nullable=True)
    step_total: Mapped[int | None] = mapped_column(Integer, nullable=True)

    result: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    started_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in (ScanStatus.COMPLETED.value, ScanStatus.FAILED.value)

    @property
    def scan_result(self) -> LibraryScanResult | None:
        return scan_result_from_dict(self.result)

    def to_dict(self) -> dict[str, Any]:
        return {
            "scan_id": self.id,
            "library_id": self.library_id,
            "type": self.scan_type,
            "status": self.status,
            "current_step": {
                "description": self.current_step,
                "current": self.step_current,
                "total": self.step_total,
            },
            "result": self.result,
            "error_message": self.error_message,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }

    def __repr__(self) -> str:
        return f"<LibraryScanProgress(id='{self.id}', library_id={self.library_id}, status='{self.status}')>"
