"""Game schemas for API validation."""

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, Field

from gameshelf.models import Game


class GameResponse(BaseModel):
    """Schema for game response."""

    id: int
    library_id: int | None
    path: str
    title: str
    description: str | None = None
    release_date: date | None = None
    developers: list[str] = Field(default_factory=list)
    publishers: list[str] = Field(default_factory=list)
    genres: list[str] = Field(default_factory=list)
    user_rating: int | None = None
    critic_rating: int | None = None
    file_size: int = 0
    download_count: int = 0
    match_confirmed: bool = False
    original_ids: dict[str, str] = Field(default_factory=dict)
    cover_image_id: int | None = None
    header_image_id: int | None = None
    image_ids: list[int] = Field(default_factory=list)
    field_metadata: dict[str, dict[str, Any]] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_game(cls, game: Game) -> "GameResponse":
        return cls(
            id=game.id,
            library_id=game.library_id,
            path=game.path,
            title=game.title,
            description=game.description,
            release_date=game.release_date,
            developers=game.developers or [],
            publishers=game.publishers or [],
            genres=game.genres or [],
            user_rating=game.user_rating,
            critic_rating=game.critic_rating,
            file_size=game.file_size or 0,
            download_count=game.download_count or 0,
            match_confirmed=bool(game.match_confirmed),
            original_ids=game.original_ids or {},
            cover_image_id=game.cover_image_id,
            header_image_id=game.header_image_id,
            image_ids=[entry.image_id for entry in game.gallery],
            field_metadata=game.field_metadata or {},
            created_at=game.created_at,
            updated_at=game.updated_at,
        )


class GameUpdate(BaseModel):
    """User edits; only the fields sent are changed."""

    title: str | None = Field(None, min_length=1, max_length=500)
    description: str | None = None
    release_date: date | None = None
    developers: list[str] | None = None
    publishers: list[str] | None = None
    genres: list[str] | None = None
    user_rating: int | None = Field(None, ge=0, le=100)
    critic_rating: int | None = Field(None, ge=0, le=100)
    match_confirmed: bool | None = None
    user_id: int | None = None


class ManualMatchRequest(BaseModel):
    """Match a path to provider entries picked by the user."""

    path: str = Field(..., min_length=1)
    library_id: int
    original_ids: dict[str, str] = Field(..., min_length=1, description="Provider id -> provider-side id")
    replace_game_id: int | None = None
