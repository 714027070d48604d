"""Game processor - turns one path into one persisted game.

Every call is its own unit of work: it opens a session, commits it, and
publishes events only after the commit. A failure leaves no game behind
and releases the images acquired for it.
"""

import asyncio
import logging
import os

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from gameshelf.events import EventPublisher, GameCreated, GameUpdated
from gameshelf.exceptions import GameNotFoundError, GameNotMatchedError, GameshelfError, ImageDownloadError
from gameshelf.models import (
    FieldSourceType,
    Game,
    IgnoredPath,
    IgnoredPathSource,
    Image,
    ImageType,
    Library,
)
from gameshelf.services.config_service import ScanSettings
from gameshelf.services.filesystem import calculate_file_size
from gameshelf.services.games import apply_images, apply_metadata
from gameshelf.services.images import ImageService
from gameshelf.services.matching import GameCandidate, MatchingEngine, title_from_path

logger = logging.getLogger(__name__)

# (provider id, provider-side id) -> id of a game whose path disappeared
Relocatable = dict[tuple[str, str], int]


class AcquiredImages:
    """Images downloaded for one candidate, by role."""

    def __init__(self) -> None:
        self.cover: Image | None = None
        self.header: Image | None = None
        self.screenshots: list[Image] = []
        self.ids: list[int] = []

    def track(self, image: Image) -> Image:
        if image.id not in self.ids:
            self.ids.append(image.id)
        return image


class GameProcessor:
    """Matches, enriches and persists games, one per call."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        matcher: MatchingEngine,
        image_service: ImageService,
        events: EventPublisher,
    ):
        self._session_maker = session_maker
        self.matcher = matcher
        self.image_service = image_service
        self.events = events

    async def process_new_game(
        self,
        path: str,
        library: Library,
        relocatable: Relocatable | None = None,
        scan_settings: ScanSettings | None = None,
    ) -> Game:
        """Create the game for a newly found path.

        When the match has the same provider identity as a game listed in
        ``relocatable``, that game is moved to ``path`` instead of creating a
        new one, and its entries are removed from ``relocatable``.

        Raises:
            GameNotMatchedError: If no provider identifies the path
        """
        acquired = AcquiredImages()
        try:
            candidate = await self.matcher.match(path, library, scan_settings)
            if candidate is None:
                raise GameNotMatchedError(path, self.matcher.consulted_provider_ids())

            await self._download_images(candidate, acquired)
            file_size = await asyncio.to_thread(calculate_file_size, path)

            game, previous_image_ids, moved_from = await self._persist_new(
                path, library, candidate, acquired, file_size, relocatable
            )
        except Exception as e:
            if not isinstance(e, GameNotMatchedError):
                logger.error(f"Failed to process new game at '{path}': {e}")
                logger.debug("Game processing failure", exc_info=True)
            await self._safe_cleanup(acquired.ids)
            raise

        if moved_from is not None:
            logger.info(f"Game {game.id} '{game.title}' moved from '{moved_from}' to '{path}'")
            if relocatable is not None:
                for key in [k for k, v in relocatable.items() if v == game.id]:
                    del relocatable[key]
            await self._release_images(previous_image_ids - game.referenced_image_ids())
            self.events.publish(GameUpdated(game_id=game.id, library_id=game.library_id))
        else:
            logger.info(f"Added game {game.id} '{game.title}' at '{path}'")
            self.events.publish(GameCreated(game_id=game.id, library_id=game.library_id))
        return game

    async def _persist_new(
        self,
        path: str,
        library: Library,
        candidate: GameCandidate,
        acquired: AcquiredImages,
        file_size: int,
        relocatable: Relocatable | None,
    ) -> tuple[Game, set[int], str | None]:
        async with self._session_maker() as db:
            game = None
            moved_from = None
            previous_image_ids: set[int] = set()

            images = await self._load_acquired(db, acquired)

            existing_id = (relocatable or {}).get(candidate.identity)
            if existing_id is not None:
                game = await db.get(Game, existing_id, options=[selectinload(Game.gallery)])

            if game is not None:
                moved_from = game.path
                previous_image_ids = game.referenced_image_ids()
                game.path = path
                game.library_id = library.id
            else:
                game = Game(
                    path=path,
                    library_id=library.id,
                    title=candidate.metadata.title or title_from_path(path),
                    field_metadata={},
                    original_ids={},
                    cover_image=None,
                    header_image=None,
                    gallery=[],
                )
                db.add(game)

            apply_metadata(game, candidate.metadata, candidate.provider_id)
            apply_images(game, candidate.provider_id, *images)
            game.file_size = file_size

            # A matched path is no longer "unmatched"
            await db.execute(
                delete(IgnoredPath).where(
                    IgnoredPath.path == path,
                    IgnoredPath.source_type == IgnoredPathSource.PLUGIN.value,
                )
            )
            await db.commit()
            return game, previous_image_ids, moved_from

    async def process_existing_game(
        self,
        game_id: int,
        scan_settings: ScanSettings | None = None,
    ) -> Game | None:
        """Refresh an existing game from its providers.

        Returns:
            The game if anything changed, None otherwise (including when the
            game is gone or no provider knows it anymore)
        """
        acquired = AcquiredImages()
        try:
            async with self._session_maker() as db:
                game = await db.get(Game, game_id, options=[selectinload(Game.gallery)])
                if game is None:
                    return None

                candidate = await self.matcher.rematch(game, scan_settings)
                if candidate is None:
                    logger.debug(f"No provider returned metadata for game {game_id} '{game.title}'")
                    return None

                previous_image_ids = game.referenced_image_ids()
                await self._download_images(candidate, acquired)
                images = await self._load_acquired(db, acquired)

                changed = apply_metadata(game, candidate.metadata, candidate.provider_id)
                changed = apply_images(game, candidate.provider_id, *images) or changed

                # A missing path keeps its last known size
                if await asyncio.to_thread(os.path.exists, game.path):
                    file_size = await asyncio.to_thread(calculate_file_size, game.path)
                    if game.file_size != file_size:
                        game.file_size = file_size
                        changed = True

                if not changed:
                    await db.rollback()
                    # Images downloaded for an unchanged game are the ones it already uses
                    await self._safe_cleanup([i for i in acquired.ids if i not in previous_image_ids])
                    return None

                await db.commit()
        except Exception as e:
            logger.error(f"Failed to update game {game_id}: {e}")
            logger.debug("Game update failure", exc_info=True)
            await self._safe_cleanup(acquired.ids)
            raise

        await self._release_images(previous_image_ids - game.referenced_image_ids())
        logger.debug(f"Updated game {game.id} '{game.title}'")
        self.events.publish(GameUpdated(game_id=game.id, library_id=game.library_id))
        return game

    async def process_manual_match(
        self,
        path: str,
        library: Library,
        candidates: list[GameCandidate],
        replace_game_id: int | None = None,
    ) -> Game:
        """Persist a match the user chose, marking it confirmed.

        ``candidates`` are ordered by provider priority; the first one wins
        every field it has a value for and provides the images. The game at
        ``path`` (or ``replace_game_id``) is re-matched in place, keeping its
        id and download count. Any ignored-path entry for ``path`` is removed.

        Raises:
            GameNotFoundError: If ``replace_game_id`` does not exist
            GameshelfError: If another game already occupies ``path``
        """
        acquired = AcquiredImages()
        try:
            await self._download_images(candidates[0], acquired)
            file_size = await asyncio.to_thread(calculate_file_size, path)
            game, previous_image_ids, created = await self._persist_manual(
                path, library, candidates, acquired, file_size, replace_game_id
            )
        except Exception as e:
            logger.error(f"Failed to match game at '{path}' manually: {e}")
            logger.debug("Manual match failure", exc_info=True)
            await self._safe_cleanup(acquired.ids)
            raise

        await self._release_images(previous_image_ids - game.referenced_image_ids())
        if created:
            logger.info(f"Added manually matched game {game.id} '{game.title}' at '{path}'")
            self.events.publish(GameCreated(game_id=game.id, library_id=game.library_id))
        else:
            logger.info(f"Re-matched game {game.id} '{game.title}' at '{path}'")
            self.events.publish(GameUpdated(game_id=game.id, library_id=game.library_id))
        return game

    async def _persist_manual(
        self,
        path: str,
        library: Library,
        candidates: list[GameCandidate],
        acquired: AcquiredImages,
        file_size: int,
        replace_game_id: int | None,
    ) -> tuple[Game, set[int], bool]:
        async with self._session_maker() as db:
            images = await self._load_acquired(db, acquired)

            at_path = (
                await db.execute(
                    select(Game).where(Game.path == path).options(selectinload(Game.gallery))
                )
            ).scalar_one_or_none()
            game = at_path
            if replace_game_id is not None:
                game = await db.get(Game, replace_game_id, options=[selectinload(Game.gallery)])
                if game is None:
                    raise GameNotFoundError(replace_game_id)
                if at_path is not None and at_path.id != game.id:
                    raise GameshelfError(f"Path '{path}' already belongs to game {at_path.id}")

            created = game is None
            previous_image_ids: set[int] = set()
            if created:
                game = Game(
                    path=path,
                    title=candidates[0].metadata.title or title_from_path(path),
                    field_metadata={},
                    original_ids={},
                    cover_image=None,
                    header_image=None,
                    gallery=[],
                )
                db.add(game)
            else:
                previous_image_ids = game.referenced_image_ids()
                # Forget the previous match; user edits stay
                game.original_ids = {}
                game.field_metadata = {
                    name: source
                    for name, source in (game.field_metadata or {}).items()
                    if source.get("source") == FieldSourceType.USER.value
                }

            game.path = path
            game.library_id = library.id
            # Lowest priority first so higher priority values win
            for candidate in reversed(candidates):
                apply_metadata(game, candidate.metadata, candidate.provider_id)
            apply_images(game, candidates[0].provider_id, *images)
            game.file_size = file_size
            game.match_confirmed = True

            await db.execute(delete(IgnoredPath).where(IgnoredPath.path == path))
            await db.commit()
            return game, previous_image_ids, created

    async def _download_images(self, candidate: GameCandidate, acquired: AcquiredImages) -> None:
        metadata = candidate.metadata
        if metadata.cover_urls:
            acquired.cover = acquired.track(
                await self.image_service.download_if_new(metadata.cover_urls[0], ImageType.COVER)
            )
        if metadata.header_urls:
            acquired.header = acquired.track(
                await self.image_service.download_if_new(metadata.header_urls[0], ImageType.HEADER)
            )
        for url in dict.fromkeys(metadata.screenshot_urls):
            acquired.screenshots.append(
                acquired.track(await self.image_service.download_if_new(url, ImageType.SCREENSHOT))
            )

    async def _load_acquired(
        self,
        db: AsyncSession,
        acquired: AcquiredImages,
    ) -> tuple[Image | None, Image | None, list[Image]]:
        """Acquired images as rows of ``db``, in (cover, header, screenshots) order.

        Must run before the session writes anything, since a vanished image
        is downloaded again through its own session.
        """
        cover = await self._reload(db, acquired.cover, acquired) if acquired.cover else None
        header = await self._reload(db, acquired.header, acquired) if acquired.header else None
        screenshots = [await self._reload(db, image, acquired) for image in acquired.screenshots]
        return cover, header, screenshots

    async def _reload(self, db: AsyncSession, image: Image, acquired: AcquiredImages) -> Image:
        # Images were committed by the image service in their own sessions
        stored = await db.get(Image, image.id)
        if stored is not None:
            return stored

        # Released by a concurrent cleanup between download and use
        logger.warning(f"Image {image.id} ({image.original_url}) was deleted meanwhile, downloading again")
        replacement = acquired.track(
            await self.image_service.download_if_new(image.original_url, ImageType(image.image_type))
        )
        stored = await db.get(Image, replacement.id)
        if stored is None:
            raise ImageDownloadError(image.original_url, "deleted while processing")
        return stored

    async def _release_images(self, image_ids: set[int]) -> None:
        """Delete images a committed game stopped using."""
        for image_id in sorted(image_ids):
            try:
                await self.image_service.delete_image_if_unused(image_id)
            except Exception as e:
                logger.warning(f"Could not delete unused image {image_id}: {e}")

    async def _safe_cleanup(self, image_ids: list[int]) -> None:
        for image_id in image_ids:
            try:
                await self.image_service.delete_image_if_unused(image_id)
            except Exception as e:
                logger.debug(f"Ignoring cleanup failure for image {image_id}: {e}")
