"""Job run audit log."""

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from gameshelf.database import Base


class JobRunStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class JobRunResult(Base):
    """One execution of a scheduled job. Rows are never updated."""

    __tablename__ = "job_run_results"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    finished_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    def __repr__(self) -> str:
        return f"<JobRunResult(id={self.id}, job='{self.job_name}', status='{self.status}')>"
