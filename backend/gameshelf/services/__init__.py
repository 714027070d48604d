"""Service layer and its wiring."""

from dataclasses import dataclass

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gameshelf.config import Settings
from gameshelf.events import EventPublisher
from gameshelf.plugins import ProviderRegistry
from gameshelf.services.config_service import ConfigService
from gameshelf.services.game_processor import GameProcessor
from gameshelf.services.game_service import GameService
from gameshelf.services.images import ImageService, ImageStore
from gameshelf.services.libraries import LibraryService
from gameshelf.services.matching import MatchingEngine
from gameshelf.services.scan_service import LibraryScanService
from gameshelf.services.scheduler import JobScheduler
from gameshelf.services.watcher import LibraryWatcher


@dataclass
class Services:
    """Every long-lived component, constructed once per application."""
    settings: Settings
    session_maker: async_sessionmaker[AsyncSession]
    events: EventPublisher
    registry: ProviderRegistry
    config: ConfigService
    images: ImageService
    matcher: MatchingEngine
    processor: GameProcessor
    games: GameService
    libraries: LibraryService
    scans: LibraryScanService
    scheduler: JobScheduler
    watcher: LibraryWatcher

    async def start(self) -> None:
        await self.scans.recover_interrupted_scans()
        await self.scheduler.start()
        await self.watcher.start()

    async def stop(self) -> None:
        await self.watcher.stop()
        self.scheduler.shutdown()
        await self.scans.shutdown()
        await self.images.close()


def build_services(
    settings: Settings,
    session_maker: async_sessionmaker[AsyncSession],
    registry: ProviderRegistry | None = None,
    http_client: httpx.AsyncClient | None = None,
    scheduler: AsyncIOScheduler | None = None,
) -> Services:
    events = EventPublisher()
    registry = registry if registry is not None else ProviderRegistry()
    config = ConfigService(session_maker, settings)
    images = ImageService(
        session_maker,
        ImageStore(settings.images_dir),
        http_client=http_client,
        timeout=settings.image_download_timeout,
        max_bytes=settings.image_max_bytes,
    )
    matcher = MatchingEngine(registry, provider_timeout=settings.provider_timeout)
    processor = GameProcessor(session_maker, matcher, images, events)
    games = GameService(session_maker, processor, events)
    libraries = LibraryService(session_maker, events, images)
    scans = LibraryScanService(session_maker, processor, config, events)
    job_scheduler = JobScheduler(config, scans, session_maker, scheduler=scheduler)
    watcher = LibraryWatcher(session_maker, scans, config, events)
    return Services(
        settings=settings,
        session_maker=session_maker,
        events=events,
        registry=registry,
        config=config,
        images=images,
        matcher=matcher,
        processor=processor,
        games=games,
        libraries=libraries,
        scans=scans,
        scheduler=job_scheduler,
        watcher=watcher,
    )
