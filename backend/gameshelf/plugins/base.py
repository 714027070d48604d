"""Metadata provider plugin interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from typing import Any


@dataclass
class MetadataCandidate:
    """Metadata a provider returned for a game."""
    original_id: str
    title: str
    description: str | None = None
    release_date: date | None = None
    developers: list[str] | None = None
    publishers: list[str] | None = None
    genres: list[str] | None = None
    user_rating: int | None = None
    critic_rating: int | None = None
    cover_urls: list[str] = field(default_factory=list)
    header_urls: list[str] = field(default_factory=list)
    screenshot_urls: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MetadataCandidate":
        release = data.get("release_date")
        if isinstance(release, str):
            release = date.fromisoformat(release)
        return cls(
            original_id=str(data.get("original_id", "")),
            title=data.get("title", ""),
            description=data.get("description"),
            release_date=release,
            developers=data.get("developers"),
            publishers=data.get("publishers"),
            genres=data.get("genres"),
            user_rating=data.get("user_rating"),
            critic_rating=data.get("critic_rating"),
            cover_urls=list(data.get("cover_urls") or []),
            header_urls=list(data.get("header_urls") or []),
            screenshot_urls=list(data.get("screenshot_urls") or []),
        )


class MetadataProvider(ABC):
    """A pluggable source of game metadata.

    Implementations are synchronous and may block (network I/O); the
    matching engine runs them in a worker thread with a timeout.
    Returning ``None`` means "no match" and is not an error.
    """

    #: Unique, stable identifier stored in provenance records
    id: str = ""
    #: Higher priority providers are consulted first
    priority: int = 0

    @abstractmethod
    def fetch_metadata(self, query: str) -> MetadataCandidate | None:
        """Look a game up by (file-derived) title."""

    def fetch_by_id(self, original_id: str) -> MetadataCandidate | None:
        """Look a game up by this provider's own id, if supported."""
        return None

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(id='{self.id}', priority={self.priority})>"
