"""Library administration - libraries, directory mappings and ignored paths."""

import logging
from dataclasses import dataclass

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from gameshelf.events import EventPublisher, GameDeleted, LibraryCreated, LibraryDeleted, LibraryUpdated
from gameshelf.exceptions import DirectoryMappingConflictError, GameshelfError, LibraryNotFoundError
from gameshelf.models import DirectoryMapping, Game, IgnoredPath, IgnoredPathSource, Library
from gameshelf.services.filesystem import normalize_path
from gameshelf.services.images import ImageService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DirectorySpec:
    """A directory to map into a library."""
    internal_path: str
    external_path: str | None = None


class LibraryService:
    """Creates, changes and deletes libraries, publishing events after commit."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        events: EventPublisher,
        image_service: ImageService,
    ):
        self._session_maker = session_maker
        self.events = events
        self.image_service = image_service

    async def list_libraries(self) -> list[Library]:
        async with self._session_maker() as db:
            result = await db.execute(
                select(Library).options(selectinload(Library.directories)).order_by(Library.name, Library.id)
            )
            return list(result.scalars().all())

    async def get_library(self, library_id: int) -> Library:
        async with self._session_maker() as db:
            return await self._get(db, library_id)

    async def create_library(
        self,
        name: str,
        directories: list[DirectorySpec],
        platforms: list[str] | None = None,
        display_on_homepage: bool = True,
    ) -> Library:
        """Create a library.

        Raises:
            DirectoryMappingConflictError: If a directory is already mapped
        """
        if not name.strip():
            raise GameshelfError("Library name must not be empty")

        async with self._session_maker() as db:
            mappings = await self._build_mappings(db, directories, library_id=None)
            library = Library(
                name=name.strip(),
                platforms=list(platforms or []),
                display_on_homepage=display_on_homepage,
                directories=mappings,
            )
            db.add(library)
            await db.commit()
            library = await self._get(db, library.id)

        logger.info(f"Created library {library.id} '{library.name}' with {len(mappings)} directories")
        self.events.publish(LibraryCreated(library_id=library.id))
        return library

    async def update_library(
        self,
        library_id: int,
        name: str | None = None,
        directories: list[DirectorySpec] | None = None,
        platforms: list[str] | None = None,
        display_on_homepage: bool | None = None,
    ) -> Library:
        async with self._session_maker() as db:
            library = await self._get(db, library_id)
            if name is not None:
                if not name.strip():
                    raise GameshelfError("Library name must not be empty")
                library.name = name.strip()
            if platforms is not None:
                library.platforms = list(platforms)
            if display_on_homepage is not None:
                library.display_on_homepage = display_on_homepage
            if directories is not None:
                library.directories = await self._build_mappings(db, directories, library_id=library_id)
            await db.commit()
            library = await self._get(db, library_id)

        self.events.publish(LibraryUpdated(library_id=library_id))
        return library

    async def delete_library(self, library_id: int) -> None:
        """Delete a library. Its games are kept and become library-less."""
        async with self._session_maker() as db:
            await db.execute(
                update(Game).where(Game.library_id == library_id).values(library_id=None)
            )
            library = await self._get(db, library_id, with_games=True)
            await db.delete(library)
            await db.commit()

        logger.info(f"Deleted library {library_id}")
        self.events.publish(LibraryDeleted(library_id=library_id))

    async def list_ignored_paths(self, library_id: int) -> list[IgnoredPath]:
        async with self._session_maker() as db:
            await self._get(db, library_id)
            result = await db.execute(
                select(IgnoredPath).where(IgnoredPath.library_id == library_id).order_by(IgnoredPath.path)
            )
            return list(result.scalars().all())

    async def ignore_path(self, library_id: int, path: str, user_id: int | None = None) -> IgnoredPath:
        """Exclude a path from scanning, removing the game found there if any."""
        path = normalize_path(path)
        released_images: set[int] = set()
        removed_game_id = None

        async with self._session_maker() as db:
            await self._get(db, library_id)

            game = (await db.execute(select(Game).where(Game.path == path))).scalar_one_or_none()
            if game is not None:
                removed_game_id = game.id
                released_images = game.referenced_image_ids()
                await db.delete(game)

            ignored = (
                await db.execute(select(IgnoredPath).where(IgnoredPath.path == path))
            ).scalar_one_or_none()
            if ignored is None:
                ignored = IgnoredPath(library_id=library_id, path=path)
                db.add(ignored)
            ignored.library_id = library_id
            ignored.source_type = IgnoredPathSource.USER.value
            ignored.plugin_ids = []
            ignored.user_id = user_id
            await db.commit()

        for image_id in sorted(released_images):
            await self.image_service.delete_image_if_unused(image_id)
        if removed_game_id is not None:
            logger.info(f"Removed game {removed_game_id} at ignored path '{path}'")
            self.events.publish(GameDeleted(game_id=removed_game_id, library_id=library_id))
        self.events.publish(LibraryUpdated(library_id=library_id))
        return ignored

    async def unignore_path(self, library_id: int, path: str) -> bool:
        """Let the scanner consider a path again. Returns False if it was not ignored."""
        path = normalize_path(path)
        async with self._session_maker() as db:
            await self._get(db, library_id)
            ignored = (
                await db.execute(
                    select(IgnoredPath).where(
                        IgnoredPath.library_id == library_id, IgnoredPath.path == path
                    )
                )
            ).scalar_one_or_none()
            if ignored is None:
                return False
            await db.delete(ignored)
            await db.commit()

        self.events.publish(LibraryUpdated(library_id=library_id))
        return True

    async def _get(self, db: AsyncSession, library_id: int, with_games: bool = False) -> Library:
        options = [selectinload(Library.directories), selectinload(Library.ignored_paths)]
        if with_games:
            options.append(selectinload(Library.games))
        result = await db.execute(
            select(Library)
            .where(Library.id == library_id)
            .options(*options)
            .execution_options(populate_existing=True)
        )
        library = result.scalar_one_or_none()
        if library is None:
            raise LibraryNotFoundError(library_id)
        return library

    async def _build_mappings(
        self,
        db: AsyncSession,
        directories: list[DirectorySpec],
        library_id: int | None,
    ) -> list[DirectoryMapping]:
        """Directory mappings for a library; internal paths are unique system-wide."""
        seen: set[str] = set()
        mappings = []
        for position, directory in enumerate(directories):
            internal_path = normalize_path(directory.internal_path)
            if internal_path in seen:
                raise DirectoryMappingConflictError(internal_path)
            seen.add(internal_path)

            query = select(DirectoryMapping).where(DirectoryMapping.internal_path == internal_path)
            existing = (await db.execute(query)).scalar_one_or_none()
            if existing is not None and existing.library_id != library_id:
                raise DirectoryMappingConflictError(internal_path)

            if existing is not None:
                existing.external_path = directory.external_path
                existing.position = position
                mappings.append(existing)
            else:
                mappings.append(
                    DirectoryMapping(
                        internal_path=internal_path,
                        external_path=directory.external_path,
                        position=position,
                    )
                )
        return mappings
