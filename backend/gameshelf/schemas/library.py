"""Library schemas for API validation."""

from datetime import datetime

from pydantic import BaseModel, Field


class DirectoryMappingSchema(BaseModel):
    """A directory mapped into a library."""

    internal_path: str = Field(..., min_length=1)
    external_path: str | None = None

    class Config:
        from_attributes = True


class LibraryCreate(BaseModel):
    """Schema for creating a library."""

    name: str = Field(..., min_length=1, max_length=255)
    directories: list[DirectoryMappingSchema] = Field(default_factory=list)
    platforms: list[str] = Field(default_factory=list)
    display_on_homepage: bool = True


class LibraryUpdate(BaseModel):
    """Schema for updating a library."""

    name: str | None = Field(None, min_length=1, max_length=255)
    directories: list[DirectoryMappingSchema] | None = None
    platforms: list[str] | None = None
    display_on_homepage: bool | None = None


class LibraryResponse(BaseModel):
    """Schema for library response."""

    id: int
    name: str
    directories: list[DirectoryMappingSchema]
    platforms: list[str]
    display_on_homepage: bool
    created_at: datetime
    updated_at: datetime
    game_count: int = 0
    scanning: bool = False

    class Config:
        from_attributes = True


class IgnoredPathRequest(BaseModel):
    """A path to ignore or un-ignore."""

    path: str = Field(..., min_length=1)
    user_id: int | None = None


class IgnoredPathResponse(BaseModel):
    """Schema for ignored path response."""

    id: int
    library_id: int
    path: str
    source_type: str
    plugin_ids: list[str] = Field(default_factory=list)
    user_id: int | None = None

    class Config:
        from_attributes = True
