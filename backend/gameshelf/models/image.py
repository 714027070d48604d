"""Image model - downloaded artwork, deduplicated by source URL."""

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from gameshelf.database import Base


class ImageType(str, Enum):
    """Role of an image."""
    COVER = "cover"
    HEADER = "header"
    SCREENSHOT = "screenshot"


class Image(Base):
    """An image fetched from a provider URL and stored locally."""

    __tablename__ = "images"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    original_url: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    image_type: Mapped[str] = mapped_column(String(20), default=ImageType.COVER.value)

    # Stored content
    content_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    content_length: Mapped[int | None] = mapped_column(Integer, nullable=True)
    mime_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    height: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )

    @property
    def has_content(self) -> bool:
        return self.content_id is not None and bool(self.content_length)

    def __repr__(self) -> str:
        return f"<Image(id={self.id}, original_url='{self.original_url}')>"
