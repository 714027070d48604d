"""IgnoredPath model - library paths that are not (or must not be) games."""

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gameshelf.database import Base

if TYPE_CHECKING:
    from gameshelf.models.library import Library


class IgnoredPathSource(str, Enum):
    """Why a path is ignored."""
    PLUGIN = "plugin"  # No metadata provider could match it
    USER = "user"      # Excluded by a user


class IgnoredPath(Base):
    """A filesystem path the scanner skips."""

    __tablename__ = "ignored_paths"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    library_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("libraries.id", ondelete="CASCADE"), nullable=False
    )
    path: Mapped[str] = mapped_column(Text, nullable=False, unique=True)

    source_type: Mapped[str] = mapped_column(String(20), nullable=False)
    # Plugin source: ids of the providers that were consulted
    plugin_ids: Mapped[list[str]] = mapped_column(JSON, default=list)
    # User source: who ignored it
    user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )

    library: Mapped["Library"] = relationship("Library", back_populates="ignored_paths")

    @property
    def is_plugin_sourced(self) -> bool:
        return self.source_type == IgnoredPathSource.PLUGIN.value

    def __repr__(self) -> str:
        return f"<IgnoredPath(id={self.id}, source='{self.source_type}', path='{self.path}')>"
