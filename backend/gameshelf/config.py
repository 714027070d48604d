"""Application configuration using pydantic-settings."""

from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_GAME_FILE_EXTENSIONS = [
    "zip", "tar", "gz", "rar", "7z", "bz2", "xz", "iso", "jar", "tgz",
    "exe", "bat", "cmd", "com", "msi", "bin", "run", "app", "dmg", "elf",
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="GAMESHELF_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    debug: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///./data/gameshelf.db"

    # Paths
    data_dir: Path = Path("./data")
    images_dir: Path = Path("./data/images")

    # Metadata providers
    provider_timeout: float = 30.0  # seconds, a timed-out provider counts as "no match"

    # Images
    image_download_timeout: float = 20.0
    image_max_bytes: int = 25 * 1024 * 1024

    # Scheduling
    timezone: str = "UTC"

    # Defaults for runtime keys (overridable through the settings table)
    scan_schedule: str = "@daily"
    scan_schedule_enabled: bool = True
    filesystem_watcher_enabled: bool = False
    scan_empty_directories: bool = False
    extract_title_using_regex: bool = False
    title_extraction_regex: str = r"^[^\[]+"
    game_file_extensions: list[str] = Field(
        default_factory=lambda: list(DEFAULT_GAME_FILE_EXTENSIONS)
    )

    # CORS
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:8080"]

    @field_validator("game_file_extensions")
    @classmethod
    def normalize_extensions(cls, v: list[str]) -> list[str]:
        """Store extensions lowercase and without leading dots."""
        return [ext.strip().lower().lstrip(".") for ext in v if ext.strip()]

    def ensure_directories(self) -> None:
        """Create the data and image directories if missing."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.images_dir.mkdir(parents=True, exist_ok=True)


settings = Settings()
