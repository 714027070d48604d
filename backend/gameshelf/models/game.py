"""Game model - a single matched game installation in a library."""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    func,
)
from sqlalchemy.ext.orderinglist import ordering_list
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gameshelf.database import Base

if TYPE_CHECKING:
    from gameshelf.models.image import Image
    from gameshelf.models.library import Library


class FieldSourceType(str, Enum):
    """Who set a game field."""
    PLUGIN = "plugin"
    USER = "user"


@dataclass(frozen=True)
class GameFieldMetadata:
    """Provenance of a single game field."""
    source: FieldSourceType
    updated_at: datetime
    plugin_id: str | None = None
    user_id: int | None = None

    @classmethod
    def from_plugin(cls, plugin_id: str, updated_at: datetime) -> "GameFieldMetadata":
        return cls(source=FieldSourceType.PLUGIN, plugin_id=plugin_id, updated_at=updated_at)

    @classmethod
    def from_user(cls, user_id: int, updated_at: datetime) -> "GameFieldMetadata":
        return cls(source=FieldSourceType.USER, user_id=user_id, updated_at=updated_at)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GameFieldMetadata":
        return cls(
            source=FieldSourceType(data["source"]),
            plugin_id=data.get("plugin_id"),
            user_id=data.get("user_id"),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source.value,
            "plugin_id": self.plugin_id,
            "user_id": self.user_id,
            "updated_at": self.updated_at.isoformat(),
        }


# Gallery images, ordered
game_images = Table(
    "game_images",
    Base.metadata,
    Column("game_id", Integer, ForeignKey("games.id", ondelete="CASCADE"), primary_key=True),
    Column("image_id", Integer, ForeignKey("images.id", ondelete="CASCADE"), primary_key=True),
    Column("position", Integer, nullable=False, default=0),
)


class GameImage(Base):
    """Gallery entry linking a game to a screenshot."""

    __table__ = game_images

    game: Mapped["Game"] = relationship("Game", back_populates="gallery")
    image: Mapped["Image"] = relationship("Image", lazy="joined")


class Game(Base):
    """A game in a library."""

    __tablename__ = "games"
    __table_args__ = (
        Index("ix_games_title", "title"),
        Index("ix_games_library_id", "library_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    library_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("libraries.id", ondelete="SET NULL"), nullable=True
    )

    # File information
    path: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    file_size: Mapped[int] = mapped_column(BigInteger, default=0)
    download_count: Mapped[int] = mapped_column(Integer, default=0)
    match_confirmed: Mapped[bool] = mapped_column(Boolean, default=False)

    # Metadata
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    release_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    developers: Mapped[list[str]] = mapped_column(JSON, default=list)
    publishers: Mapped[list[str]] = mapped_column(JSON, default=list)
    genres: Mapped[list[str]] = mapped_column(JSON, default=list)
    user_rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    critic_rating: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Provenance: field name -> GameFieldMetadata dict, provider id -> provider-side id
    field_metadata: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    original_ids: Mapped[dict[str, str]] = mapped_column(JSON, default=dict)

    # Images
    cover_image_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("images.id", ondelete="SET NULL"), nullable=True
    )
    header_image_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("images.id", ondelete="SET NULL"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    library: Mapped["Library | None"] = relationship("Library", back_populates="games")
    cover_image: Mapped["Image | None"] = relationship(
        "Image", foreign_keys=[cover_image_id], lazy="joined"
    )
    header_image: Mapped["Image | None"] = relationship(
        "Image", foreign_keys=[header_image_id], lazy="joined"
    )
    gallery: Mapped[list[GameImage]] = relationship(
        GameImage,
        back_populates="game",
        order_by=game_images.c.position,
        collection_class=ordering_list("position"),
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def images(self) -> list["Image"]:
        """Gallery images in display order."""
        return [entry.image for entry in self.gallery]

    def referenced_image_ids(self) -> set[int]:
        """Ids of every image this game points at."""
        ids = {entry.image_id for entry in self.gallery}
        if self.cover_image_id is not None:
            ids.add(self.cover_image_id)
        if self.header_image_id is not None:
            ids.add(self.header_image_id)
        return ids

    def field_source(self, field_name: str) -> GameFieldMetadata | None:
        data = (self.field_metadata or {}).get(field_name)
        return GameFieldMetadata.from_dict(data) if data else None

    def set_field_source(self, field_name: str, source: GameFieldMetadata) -> None:
        # Reassign so the JSON column is flagged dirty
        self.field_metadata = {**(self.field_metadata or {}), field_name: source.to_dict()}

    def __repr__(self) -> str:
        return f"<Game(id={self.id}, title='{self.title}', path='{self.path}')>"
