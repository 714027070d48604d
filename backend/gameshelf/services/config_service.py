"""Runtime configuration backed by the settings table.

Every key has a default taken from the static ``Settings`` object; values
written through this service are stored as JSON in the ``settings`` table
and take precedence.
"""

import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from pydantic import TypeAdapter, ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gameshelf.config import Settings
from gameshelf.exceptions import GameshelfError
from gameshelf.models import Setting
from gameshelf.services.cron import parse_cron_expression

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConfigKey:
    """A typed runtime configuration key."""
    key: str
    value_type: Any
    settings_attr: str
    description: str


class ConfigKeys:
    SCAN_SCHEDULE = ConfigKey(
        "library.scan.schedule", str, "scan_schedule",
        "Schedule for periodic library scans in cron format",
    )
    SCAN_SCHEDULE_ENABLED = ConfigKey(
        "library.scan.schedule-enabled", bool, "scan_schedule_enabled",
        "Enable periodic library scans",
    )
    FILESYSTEM_WATCHER_ENABLED = ConfigKey(
        "library.scan.enable-filesystem-watcher", bool, "filesystem_watcher_enabled",
        "Scan libraries automatically when their directories change",
    )
    SCAN_EMPTY_DIRECTORIES = ConfigKey(
        "library.scan.scan-empty-directories", bool, "scan_empty_directories",
        "Treat empty directories as game candidates",
    )
    EXTRACT_TITLE_USING_REGEX = ConfigKey(
        "library.scan.extract-title-using-regex", bool, "extract_title_using_regex",
        "Extract the title from file names using a regex",
    )
    TITLE_EXTRACTION_REGEX = ConfigKey(
        "library.scan.title-extraction-regex", str, "title_extraction_regex",
        "Regex used to extract the title from file names",
    )
    GAME_FILE_EXTENSIONS = ConfigKey(
        "library.scan.game-file-extensions", list[str], "game_file_extensions",
        "File extensions considered to be games",
    )

    @classmethod
    def all(cls) -> list[ConfigKey]:
        return [v for v in vars(cls).values() if isinstance(v, ConfigKey)]

    @classmethod
    def by_name(cls, key: str) -> ConfigKey:
        for config_key in cls.all():
            if config_key.key == key:
                return config_key
        raise GameshelfError(f"Unknown configuration key '{key}'")


SCHEDULE_KEYS = {ConfigKeys.SCAN_SCHEDULE.key, ConfigKeys.SCAN_SCHEDULE_ENABLED.key}
WATCHER_KEYS = {ConfigKeys.FILESYSTEM_WATCHER_ENABLED.key}


@dataclass(frozen=True)
class ScanSettings:
    """Snapshot of the keys a scan reads, taken once per scan."""
    game_file_extensions: frozenset[str]
    scan_empty_directories: bool
    extract_title_using_regex: bool
    title_extraction_regex: str


Listener = Callable[[], Awaitable[None] | None]


class ConfigService:
    """Typed access to runtime configuration with change notifications."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        settings: Settings,
    ):
        self._session_maker = session_maker
        self._settings = settings
        self._listeners: list[tuple[frozenset[str], Listener]] = []

    @property
    def settings(self) -> Settings:
        return self._settings

    def add_listener(self, keys: set[str], callback: Listener) -> None:
        """Call ``callback`` after any of ``keys`` is written."""
        self._listeners.append((frozenset(keys), callback))

    async def get(self, config_key: ConfigKey) -> Any:
        async with self._session_maker() as db:
            return await self._get(db, config_key)

    async def get_all(self) -> dict[str, Any]:
        async with self._session_maker() as db:
            return {k.key: await self._get(db, k) for k in ConfigKeys.all()}

    async def set_value(self, config_key: ConfigKey, value: Any) -> Any:
        """Validate and store a value, then notify listeners."""
        return (await self.set_many({config_key: value}))[config_key.key]

    async def set_many(self, values: dict[ConfigKey, Any]) -> dict[str, Any]:
        validated = {k: self._validate(k, v) for k, v in values.items()}
        await self._validate_schedule(validated)

        async with self._session_maker() as db:
            for config_key, value in validated.items():
                setting = await db.get(Setting, config_key.key)
                if setting:
                    setting.value = json.dumps(value)
                else:
                    db.add(Setting(key=config_key.key, value=json.dumps(value)))
            await db.commit()

        changed = {k.key for k in validated}
        logger.info(f"Updated configuration keys: {', '.join(sorted(changed))}")
        await self._notify(changed)
        return {k.key: v for k, v in validated.items()}

    async def reset(self, config_key: ConfigKey) -> None:
        """Drop the stored override so the default applies again."""
        async with self._session_maker() as db:
            setting = await db.get(Setting, config_key.key)
            if setting:
                await db.delete(setting)
                await db.commit()
        await self._notify({config_key.key})

    async def scan_settings(self) -> ScanSettings:
        async with self._session_maker() as db:
            extensions = await self._get(db, ConfigKeys.GAME_FILE_EXTENSIONS)
            return ScanSettings(
                game_file_extensions=frozenset(
                    e.strip().lower().lstrip(".") for e in extensions if e.strip()
                ),
                scan_empty_directories=await self._get(db, ConfigKeys.SCAN_EMPTY_DIRECTORIES),
                extract_title_using_regex=await self._get(db, ConfigKeys.EXTRACT_TITLE_USING_REGEX),
                title_extraction_regex=await self._get(db, ConfigKeys.TITLE_EXTRACTION_REGEX),
            )

    async def _get(self, db: AsyncSession, config_key: ConfigKey) -> Any:
        setting = await db.get(Setting, config_key.key)
        if setting is None:
            return getattr(self._settings, config_key.settings_attr)
        try:
            return self._validate(config_key, json.loads(setting.value))
        except (json.JSONDecodeError, GameshelfError):
            logger.warning(f"Ignoring invalid stored value for '{config_key.key}'")
            return getattr(self._settings, config_key.settings_attr)

    def _validate(self, config_key: ConfigKey, value: Any) -> Any:
        try:
            return TypeAdapter(config_key.value_type).validate_python(value, strict=True)
        except ValidationError as e:
            raise GameshelfError(f"Invalid value for '{config_key.key}': {e.errors()[0]['msg']}") from e

    async def _validate_schedule(self, validated: dict[ConfigKey, Any]) -> None:
        """Reject a bad cron expression before anything is stored."""
        if not SCHEDULE_KEYS & {k.key for k in validated}:
            return
        expression = validated.get(ConfigKeys.SCAN_SCHEDULE)
        if expression is None:
            expression = await self.get(ConfigKeys.SCAN_SCHEDULE)
        enabled = validated.get(ConfigKeys.SCAN_SCHEDULE_ENABLED)
        if enabled is None:
            enabled = await self.get(ConfigKeys.SCAN_SCHEDULE_ENABLED)
        if enabled and expression:
            parse_cron_expression(expression, timezone=self._settings.timezone)

    async def _notify(self, changed: set[str]) -> None:
        for keys, callback in list(self._listeners):
            if keys & changed:
                result = callback()
                if inspect.isawaitable(result):
                    await result
