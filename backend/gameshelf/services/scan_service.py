"""Library scan orchestration.

A scan walks a library's directories, diffs the result against the catalog,
refreshes existing games (full scans), processes new paths one by one and
finally applies removals. At most one scan per library runs at a time; scans
of different libraries run concurrently.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from gameshelf.events import EventPublisher, GameDeleted, LibraryUpdated, ScanProgressUpdated
from gameshelf.exceptions import (
    GameNotMatchedError,
    LibraryNotFoundError,
    NoMetadataProvidersError,
    NotFoundError,
    ScanAlreadyRunningError,
)
from gameshelf.models import (
    DirectoryMapping,
    FullScanResult,
    Game,
    IgnoredPath,
    IgnoredPathSource,
    Library,
    LibraryScanProgress,
    LibraryScanResult,
    QuickScanResult,
    ScanStatus,
    ScanType,
)
from gameshelf.services.config_service import ConfigService, ScanSettings
from gameshelf.services.filesystem import FilesystemWalker, is_below
from gameshelf.services.game_processor import GameProcessor, Relocatable
from gameshelf.services.games import utcnow
from gameshelf.services.scan_diff import FilesystemScanResult, diff_paths

logger = logging.getLogger(__name__)

STEP_SCANNING = "Scanning filesystem"
STEP_UPDATING_GAMES = "Updating existing games"
STEP_PROCESSING_NEW = "Processing new games"
STEP_UPDATING_LIBRARY = "Updating library"
STEP_FINISHED = "Finished"


@dataclass
class ScanCounters:
    new: int = 0
    moved: int = 0
    removed: int = 0
    updated: int = 0
    failed: int = 0
    unmatched: list[tuple[str, list[str]]] = field(default_factory=list)


@dataclass
class LibrarySnapshot:
    """What a scan needs to know about a library, read once at its start."""
    library: Library
    roots: list[str]
    other_roots: list[str]
    games: dict[int, tuple[str, dict[str, str]]]  # id -> (path, original ids)
    ignored: list[IgnoredPath]

    @property
    def game_paths(self) -> set[str]:
        return {path for path, _ in self.games.values()}


class LibraryScanService:
    """Runs and tracks library scans."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        processor: GameProcessor,
        config_service: ConfigService,
        events: EventPublisher,
    ):
        self._session_maker = session_maker
        self.processor = processor
        self.config_service = config_service
        self.events = events
        self._running: set[int] = set()
        self._tasks: set[asyncio.Task] = set()

    # Entry points

    def is_scanning(self, library_id: int) -> bool:
        return library_id in self._running

    async def start_scan(self, library_id: int, scan_type: ScanType = ScanType.QUICK) -> str:
        """Start a scan of one library in the background.

        Returns:
            The scan id

        Raises:
            LibraryNotFoundError: If the library does not exist
            ScanAlreadyRunningError: If the library is already being scanned
            NoMetadataProvidersError: If no metadata provider is registered
        """
        self._ensure_providers()
        await self._require_library(library_id)
        self._acquire(library_id)
        return await self._launch(library_id, scan_type)

    async def trigger_scan(
        self,
        scan_type: ScanType = ScanType.QUICK,
        library_ids: list[int] | None = None,
    ) -> list[str]:
        """Start background scans, skipping libraries that are already scanning.

        Returns:
            Ids of the scans that were started
        """
        self._ensure_providers()
        scan_ids = []
        for library_id in await self._library_ids(library_ids):
            if self.is_scanning(library_id):
                logger.info(f"Scan already in progress for library {library_id}, skipping")
                continue
            self._acquire(library_id)
            scan_ids.append(await self._launch(library_id, scan_type))
        return scan_ids

    async def scan_all(self, scan_type: ScanType = ScanType.SCHEDULED) -> list[LibraryScanProgress]:
        """Scan every library and wait for all scans to finish.

        Libraries that are already being scanned are skipped.
        """
        self._ensure_providers()
        library_ids = []
        for library_id in await self._library_ids(None):
            if self.is_scanning(library_id):
                logger.info(f"Scan already in progress for library {library_id}, skipping")
                continue
            self._acquire(library_id)
            library_ids.append(library_id)

        async def run(library_id: int) -> LibraryScanProgress:
            try:
                scan_id = await self._create_progress(library_id, scan_type)
                return await self._execute(library_id, scan_type, scan_id)
            finally:
                self._release(library_id)

        return list(await asyncio.gather(*(run(library_id) for library_id in library_ids)))

    async def run_scan(self, library_id: int, scan_type: ScanType = ScanType.QUICK) -> LibraryScanProgress:
        """Scan one library in the calling task and return the finished record."""
        self._ensure_providers()
        await self._require_library(library_id)
        self._acquire(library_id)
        try:
            scan_id = await self._create_progress(library_id, scan_type)
            return await self._execute(library_id, scan_type, scan_id)
        finally:
            self._release(library_id)

    async def wait_idle(self) -> None:
        """Wait for all background scans started by this service."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # Progress records

    async def recover_interrupted_scans(self) -> int:
        """Fail scans left IN_PROGRESS by a previous process."""
        async with self._session_maker() as db:
            result = await db.execute(
                update(LibraryScanProgress)
                .where(LibraryScanProgress.status == ScanStatus.IN_PROGRESS.value)
                .values(
                    status=ScanStatus.FAILED.value,
                    error_message="Scan was interrupted",
                    finished_at=utcnow(),
                )
            )
            await db.commit()
        if result.rowcount:
            logger.warning(f"Marked {result.rowcount} interrupted scan(s) as failed")
        return result.rowcount or 0

    async def get_scan(self, scan_id: str) -> LibraryScanProgress:
        async with self._session_maker() as db:
            progress = await db.get(LibraryScanProgress, scan_id)
        if progress is None:
            raise NotFoundError(f"Scan '{scan_id}' not found")
        return progress

    async def list_scans(self, library_id: int | None = None, limit: int = 50) -> list[LibraryScanProgress]:
        query = select(LibraryScanProgress).order_by(
            LibraryScanProgress.started_at.desc(), LibraryScanProgress.id
        )
        if library_id is not None:
            query = query.where(LibraryScanProgress.library_id == library_id)
        async with self._session_maker() as db:
            result = await db.execute(query.limit(limit))
            return list(result.scalars().all())

    async def _create_progress(self, library_id: int, scan_type: ScanType) -> str:
        progress = LibraryScanProgress(
            id=uuid.uuid4().hex,
            library_id=library_id,
            scan_type=scan_type.value,
            status=ScanStatus.IN_PROGRESS.value,
            current_step=STEP_SCANNING,
            started_at=utcnow(),
        )
        async with self._session_maker() as db:
            db.add(progress)
            await db.commit()
        self._publish_progress(progress)
        return progress.id

    async def _set_step(
        self,
        scan_id: str,
        description: str,
        current: int | None = None,
        total: int | None = None,
    ) -> None:
        await self._update_progress(
            scan_id, current_step=description, step_current=current, step_total=total
        )

    async def _update_progress(self, scan_id: str, **values) -> LibraryScanProgress | None:
        async with self._session_maker() as db:
            progress = await db.get(LibraryScanProgress, scan_id)
            if progress is None:
                return None
            if progress.is_terminal:
                logger.warning(f"Ignoring update of finished scan {scan_id}")
                return progress
            for key, value in values.items():
                setattr(progress, key, value)
            await db.commit()
        self._publish_progress(progress)
        return progress

    def _publish_progress(self, progress: LibraryScanProgress) -> None:
        self.events.publish(
            ScanProgressUpdated(
                scan_id=progress.id,
                library_id=progress.library_id,
                snapshot=progress.to_dict(),
            )
        )

    # Guard

    def _acquire(self, library_id: int) -> None:
        if library_id in self._running:
            raise ScanAlreadyRunningError(library_id)
        self._running.add(library_id)

    def _release(self, library_id: int) -> None:
        self._running.discard(library_id)

    async def _launch(self, library_id: int, scan_type: ScanType) -> str:
        try:
            scan_id = await self._create_progress(library_id, scan_type)
        except Exception:
            self._release(library_id)
            raise

        async def run() -> None:
            try:
                await self._execute(library_id, scan_type, scan_id)
            finally:
                self._release(library_id)

        task = asyncio.create_task(run(), name=f"library-scan-{library_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return scan_id

    def _ensure_providers(self) -> None:
        if len(self.processor.matcher.registry) == 0:
            raise NoMetadataProvidersError()

    async def _require_library(self, library_id: int) -> None:
        async with self._session_maker() as db:
            if await db.get(Library, library_id) is None:
                raise LibraryNotFoundError(library_id)

    async def _library_ids(self, library_ids: list[int] | None) -> list[int]:
        query = select(Library.id).order_by(Library.id)
        if library_ids is not None:
            query = query.where(Library.id.in_(library_ids))
        async with self._session_maker() as db:
            return list((await db.execute(query)).scalars().all())

    # The scan itself

    async def _execute(self, library_id: int, scan_type: ScanType, scan_id: str) -> LibraryScanProgress:
        """Run the pipeline and finalize the progress record. Never raises."""
        logger.info(f"Starting {scan_type.value} scan {scan_id} of library {library_id}")
        try:
            result = await self._scan(library_id, scan_type, scan_id)
            progress = await self._update_progress(
                scan_id,
                status=ScanStatus.COMPLETED.value,
                current_step=STEP_FINISHED,
                step_current=None,
                step_total=None,
                result=result.to_dict(),
                finished_at=utcnow(),
            )
            logger.info(f"Finished {scan_type.value} scan of library {library_id}: {result}")
            return progress or await self.get_scan(scan_id)
        except Exception as e:
            logger.error(f"Error during {scan_type.value} scan of library {library_id}: {e}")
            logger.debug("Scan failure", exc_info=True)
            error_message = str(e) or type(e).__name__

        finished_at = utcnow()
        try:
            progress = await self._update_progress(
                scan_id,
                status=ScanStatus.FAILED.value,
                error_message=error_message,
                finished_at=finished_at,
            )
            if progress is not None:
                return progress
        except Exception as e:
            logger.error(f"Could not record the failure of scan {scan_id}: {e}")

        # Unstored record, so callers still see how the scan ended
        return LibraryScanProgress(
            id=scan_id,
            library_id=library_id,
            scan_type=scan_type.value,
            status=ScanStatus.FAILED.value,
            current_step=STEP_FINISHED,
            error_message=error_message,
            started_at=finished_at,
            finished_at=finished_at,
        )

    async def _scan(self, library_id: int, scan_type: ScanType, scan_id: str) -> LibraryScanResult:
        full = scan_type in (ScanType.FULL, ScanType.SCHEDULED)
        scan_settings = await self.config_service.scan_settings()
        snapshot = await self._load_snapshot(library_id)

        # Discover
        walker = FilesystemWalker(
            scan_settings.game_file_extensions,
            scan_empty_directories=scan_settings.scan_empty_directories,
        )
        walk = await asyncio.to_thread(walker.walk, snapshot.roots, snapshot.other_roots)
        diff = diff_paths(
            walk.paths,
            snapshot.game_paths,
            {p.path for p in snapshot.ignored},
            walk.unavailable_roots,
        )
        logger.debug(
            f"Library {library_id}: {len(diff.new_paths)} new, "
            f"{len(diff.removed_game_paths)} removed, "
            f"{len(diff.removed_unmatched_paths)} removed unmatched paths"
        )

        counters = ScanCounters()
        removed_paths = set(diff.removed_game_paths)

        if full:
            # Games below an unreadable root are neither removed nor refreshed
            existing = [
                gid
                for gid, (path, _) in snapshot.games.items()
                if path not in removed_paths
                and not any(is_below(path, root) for root in walk.unavailable_roots)
            ]
            await self._update_existing_games(scan_id, existing, scan_settings, counters)

        # Unmatched paths are retried on every scan while they exist
        retry_paths = sorted(
            p.path for p in snapshot.ignored if p.is_plugin_sourced and p.path in walk.paths
        )
        removed_games = {
            gid: ids for gid, (path, ids) in snapshot.games.items() if path in removed_paths
        }
        relocated = await self._process_new_paths(
            scan_id,
            snapshot.library,
            diff.new_paths + retry_paths,
            removed_games,
            scan_settings,
            counters,
        )

        await self._set_step(scan_id, STEP_UPDATING_LIBRARY)
        await self._update_library(library_id, diff, set(removed_games) - relocated, counters)

        if full:
            return FullScanResult(
                new=counters.new,
                removed=counters.removed,
                unmatched=len(counters.unmatched),
                updated=counters.updated + counters.moved,
                failed=counters.failed,
            )
        return QuickScanResult(
            new=counters.new,
            removed=counters.removed,
            unmatched=len(counters.unmatched),
            failed=counters.failed,
        )

    async def _load_snapshot(self, library_id: int) -> LibrarySnapshot:
        async with self._session_maker() as db:
            library = await db.get(
                Library, library_id, options=[selectinload(Library.directories)]
            )
            if library is None:
                raise LibraryNotFoundError(library_id)

            other_roots = await db.execute(
                select(DirectoryMapping.internal_path).where(DirectoryMapping.library_id != library_id)
            )
            games = await db.execute(
                select(Game.id, Game.path, Game.original_ids).where(Game.library_id == library_id)
            )
            ignored = await db.execute(select(IgnoredPath).where(IgnoredPath.library_id == library_id))

            return LibrarySnapshot(
                library=library,
                roots=[d.internal_path for d in library.directories],
                other_roots=list(other_roots.scalars().all()),
                games={row.id: (row.path, row.original_ids or {}) for row in games},
                ignored=list(ignored.scalars().all()),
            )

    async def _update_existing_games(
        self,
        scan_id: str,
        game_ids: list[int],
        scan_settings: ScanSettings,
        counters: ScanCounters,
    ) -> None:
        total = len(game_ids)
        await self._set_step(scan_id, STEP_UPDATING_GAMES, 0, total)
        for index, game_id in enumerate(game_ids, start=1):
            try:
                if await self.processor.process_existing_game(game_id, scan_settings) is not None:
                    counters.updated += 1
            except Exception as e:
                logger.warning(f"Error updating game with id {game_id}: {e}")
                counters.failed += 1
            await self._set_step(scan_id, STEP_UPDATING_GAMES, index, total)

    async def _process_new_paths(
        self,
        scan_id: str,
        library: Library,
        paths: list[str],
        removed_games: dict[int, dict[str, str]],
        scan_settings: ScanSettings,
        counters: ScanCounters,
    ) -> set[int]:
        """Process new paths; returns ids of removed games that were relocated."""
        relocatable: Relocatable = {}
        for game_id, original_ids in removed_games.items():
            for provider_id, original_id in original_ids.items():
                relocatable.setdefault((provider_id, original_id), game_id)

        relocated: set[int] = set()
        total = len(paths)
        await self._set_step(scan_id, STEP_PROCESSING_NEW, 0, total)
        for index, path in enumerate(paths, start=1):
            try:
                game = await self.processor.process_new_game(path, library, relocatable, scan_settings)
                if game.id in removed_games:
                    relocated.add(game.id)
                    counters.moved += 1
                else:
                    counters.new += 1
            except GameNotMatchedError as e:
                counters.unmatched.append((path, e.consulted))
            except Exception as e:
                logger.warning(f"Processing of new game at '{path}' failed: {e}")
                counters.failed += 1
            await self._set_step(scan_id, STEP_PROCESSING_NEW, index, total)
        return relocated

    async def _update_library(
        self,
        library_id: int,
        diff: FilesystemScanResult,
        removed_game_ids: set[int],
        counters: ScanCounters,
    ) -> None:
        released_images: set[int] = set()
        deleted: list[int] = []

        async with self._session_maker() as db:
            # Record unmatched paths
            for path, consulted in counters.unmatched:
                existing = (
                    await db.execute(select(IgnoredPath).where(IgnoredPath.path == path))
                ).scalar_one_or_none()
                if existing is None:
                    db.add(
                        IgnoredPath(
                            library_id=library_id,
                            path=path,
                            source_type=IgnoredPathSource.PLUGIN.value,
                            plugin_ids=consulted,
                        )
                    )
                elif existing.is_plugin_sourced and existing.plugin_ids != consulted:
                    existing.plugin_ids = consulted

            # Forget ignored paths that are gone from disk
            if diff.removed_unmatched_paths:
                await db.execute(
                    delete(IgnoredPath).where(
                        IgnoredPath.library_id == library_id,
                        IgnoredPath.path.in_(diff.removed_unmatched_paths),
                    )
                )

            # Remove games whose path is gone and that were not relocated
            for game_id in sorted(removed_game_ids):
                game = await db.get(Game, game_id)
                if game is None:
                    continue
                released_images |= game.referenced_image_ids()
                logger.info(f"Removing game {game.id} '{game.title}': '{game.path}' no longer exists")
                await db.delete(game)
                deleted.append(game_id)

            library = await db.get(Library, library_id)
            if library is not None:
                library.updated_at = utcnow()
            await db.commit()

        counters.removed = len(deleted)
        for image_id in sorted(released_images):
            try:
                await self.processor.image_service.delete_image_if_unused(image_id)
            except Exception as e:
                logger.warning(f"Could not delete unused image {image_id}: {e}")

        for game_id in deleted:
            self.events.publish(GameDeleted(game_id=game_id, library_id=library_id))
        self.events.publish(LibraryUpdated(library_id=library_id))
