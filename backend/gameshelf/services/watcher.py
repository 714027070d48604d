"""File watcher service - scans libraries when their directories change."""

import asyncio
import logging
from pathlib import Path
from typing import Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from watchfiles import Change, awatch

from gameshelf.events import Event, EventPublisher, LibraryCreated, LibraryDeleted, LibraryUpdated
from gameshelf.exceptions import GameshelfError
from gameshelf.models import DirectoryMapping, ScanType
from gameshelf.services.config_service import WATCHER_KEYS, ConfigKeys, ConfigService
from gameshelf.services.filesystem import is_below, normalize_path
from gameshelf.services.scan_service import LibraryScanService

logger = logging.getLogger(__name__)


def libraries_for_changes(changes: set[tuple[Change, str]], roots: dict[str, int]) -> set[int]:
    """Ids of the libraries whose directories contain any changed path."""
    library_ids = set()
    for _change, path_str in changes:
        path = normalize_path(path_str)
        for root, library_id in roots.items():
            if is_below(path, root):
                library_ids.add(library_id)
    return library_ids


class LibraryWatcher:
    """Watches library directories and triggers quick scans on change."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        scan_service: LibraryScanService,
        config_service: ConfigService,
        events: EventPublisher,
        debounce_ms: int = 5000,
    ):
        self._session_maker = session_maker
        self.scan_service = scan_service
        self.config_service = config_service
        self.debounce_ms = debounce_ms
        self._task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None
        self._roots: dict[str, int] = {}
        self._events = events
        self._unsubscribe: list[Callable[[], None]] = []
        # Serializes starting and stopping the watch task
        self._lock = asyncio.Lock()

        config_service.add_listener(WATCHER_KEYS, self.reload)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def roots(self) -> dict[str, int]:
        return dict(self._roots)

    async def start(self) -> None:
        """Start watching if enabled and there is anything to watch."""
        if not await self.config_service.get(ConfigKeys.FILESYSTEM_WATCHER_ENABLED):
            logger.debug("Filesystem watcher is disabled")
            return
        if not self._unsubscribe:
            self._unsubscribe = [
                self._events.subscribe(self._on_library_event, event_type)
                for event_type in (LibraryCreated, LibraryUpdated, LibraryDeleted)
            ]
        async with self._lock:
            await self._start_watching()

    async def stop(self) -> None:
        """Stop the watcher."""
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []
        async with self._lock:
            await self._stop_watching()

    async def reload(self) -> None:
        await self.stop()
        await self.start()

    async def _start_watching(self) -> None:
        if self.running:
            return
        self._roots = await self._load_roots()
        watch_paths = [root for root in self._roots if Path(root).is_dir()]
        if not watch_paths:
            logger.info("No library directories to watch, file watcher not started")
            return

        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._watch(watch_paths, self._stop_event))
        logger.info(f"File watcher started for {len(watch_paths)} directories")

    async def _stop_watching(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("File watcher stopped")
        self._stop_event = None

    async def _on_library_event(self, event: Event) -> None:
        # A finished scan also updates its library; only mapping changes matter
        async with self._lock:
            if not self._unsubscribe:
                return  # stopped meanwhile
            if self.running and await self._load_roots() == self._roots:
                return
            await self._stop_watching()
            await self._start_watching()

    async def _load_roots(self) -> dict[str, int]:
        async with self._session_maker() as db:
            result = await db.execute(select(DirectoryMapping.internal_path, DirectoryMapping.library_id))
            return {normalize_path(row.internal_path): row.library_id for row in result}

    async def _watch(self, paths: list[str], stop_event: asyncio.Event) -> None:
        try:
            async for changes in awatch(*paths, recursive=True, debounce=self.debounce_ms, stop_event=stop_event):
                await self.handle_changes(changes)
        except OSError as e:
            # Usually a watched directory went away
            logger.error(f"File watcher stopped unexpectedly: {e}")

    async def handle_changes(self, changes: set[tuple[Change, str]]) -> list[str]:
        """Trigger a quick scan of every library affected by ``changes``."""
        library_ids = libraries_for_changes(changes, self._roots)
        if not library_ids:
            return []
        logger.debug(f"Detected {len(changes)} change(s) in libraries {sorted(library_ids)}")
        try:
            return await self.scan_service.trigger_scan(ScanType.QUICK, sorted(library_ids))
        except GameshelfError as e:
            logger.warning(f"Could not scan changed libraries: {e.message}")
            return []
