"""Library and DirectoryMapping models."""

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gameshelf.database import Base

if TYPE_CHECKING:
    from gameshelf.models.game import Game
    from gameshelf.models.ignored_path import IgnoredPath


class Library(Base):
    """A named set of directories containing games."""

    __tablename__ = "libraries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    platforms: Mapped[list[str]] = mapped_column(JSON, default=list)
    display_on_homepage: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    directories: Mapped[list["DirectoryMapping"]] = relationship(
        "DirectoryMapping",
        back_populates="library",
        order_by="DirectoryMapping.position",
        cascade="all, delete-orphan",
    )
    games: Mapped[list["Game"]] = relationship("Game", back_populates="library")
    ignored_paths: Mapped[list["IgnoredPath"]] = relationship(
        "IgnoredPath",
        back_populates="library",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Library(id={self.id}, name='{self.name}')>"


class DirectoryMapping(Base):
    """A directory scanned for games, with the path shown to users."""

    __tablename__ = "directory_mappings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    library_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("libraries.id", ondelete="CASCADE"), nullable=False
    )
    internal_path: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    external_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    position: Mapped[int] = mapped_column(Integer, default=0)

    library: Mapped["Library"] = relationship("Library", back_populates="directories")

    @property
    def display_path(self) -> str:
        return self.external_path or self.internal_path

    def __repr__(self) -> str:
        return f"<DirectoryMapping(id={self.id}, internal_path='{self.internal_path}')>"
