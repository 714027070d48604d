"""User-facing game operations: lookups, edits and manual matches."""

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from gameshelf.events import EventPublisher, GameUpdated
from gameshelf.exceptions import GameNotFoundError, GameNotMatchedError, GameshelfError, LibraryNotFoundError
from gameshelf.models import Game, GameFieldMetadata, Library
from gameshelf.services.filesystem import normalize_path
from gameshelf.services.game_processor import GameProcessor
from gameshelf.services.games import METADATA_FIELDS, utcnow

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = frozenset(METADATA_FIELDS)


class GameService:
    """Reads games and applies changes made by users."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        processor: GameProcessor,
        events: EventPublisher,
    ):
        self._session_maker = session_maker
        self.processor = processor
        self.events = events

    async def get_game(self, game_id: int) -> Game:
        async with self._session_maker() as db:
            return await self._get(db, game_id)

    async def list_games(self, library_id: int | None = None) -> list[Game]:
        query = select(Game).options(selectinload(Game.gallery)).order_by(Game.title, Game.id)
        if library_id is not None:
            query = query.where(Game.library_id == library_id)
        async with self._session_maker() as db:
            return list((await db.execute(query)).scalars().all())

    async def edit_game(
        self,
        game_id: int,
        changes: dict[str, Any],
        user_id: int | None = None,
        match_confirmed: bool | None = None,
    ) -> Game:
        """Apply user edits. Every edited field becomes user-sourced.

        User-sourced fields are never overwritten by providers afterwards.

        Raises:
            GameNotFoundError: If the game does not exist
            GameshelfError: If a field cannot be edited
        """
        unknown = sorted(set(changes) - EDITABLE_FIELDS)
        if unknown:
            raise GameshelfError(f"Fields cannot be edited: {', '.join(unknown)}")
        if "title" in changes and not (changes["title"] or "").strip():
            raise GameshelfError("Game title must not be empty")

        now = utcnow()
        async with self._session_maker() as db:
            game = await self._get(db, game_id)
            for field_name, value in changes.items():
                if field_name == "title":
                    value = value.strip()
                setattr(game, field_name, value)
                game.set_field_source(field_name, GameFieldMetadata.from_user(user_id, now))
            if match_confirmed is not None:
                game.match_confirmed = match_confirmed
            await db.commit()
            # Reload columns the database set on update
            game = await self._get(db, game_id)

        logger.info(f"Game {game_id} edited by user {user_id}: {', '.join(sorted(changes)) or 'no fields'}")
        self.events.publish(GameUpdated(game_id=game.id, library_id=game.library_id))
        return game

    async def match_manually(
        self,
        path: str,
        library_id: int,
        original_ids: dict[str, str],
        replace_game_id: int | None = None,
    ) -> Game:
        """Match a path to the provider entries the user picked.

        The result is confirmed, so later scans never re-identify it, and
        the path stops being ignored.

        Raises:
            LibraryNotFoundError: If the library does not exist
            GameNotMatchedError: If no named provider knows its id
        """
        if not original_ids:
            raise GameshelfError("At least one provider id is required")
        path = normalize_path(path)

        async with self._session_maker() as db:
            library = await db.get(Library, library_id)
        if library is None:
            raise LibraryNotFoundError(library_id)

        candidates = await self.processor.matcher.fetch_by_ids(path, original_ids)
        if not candidates:
            raise GameNotMatchedError(path, sorted(original_ids))
        game = await self.processor.process_manual_match(path, library, candidates, replace_game_id)
        return await self.get_game(game.id)

    @staticmethod
    async def _get(db: AsyncSession, game_id: int) -> Game:
        result = await db.execute(
            select(Game)
            .where(Game.id == game_id)
            .options(selectinload(Game.gallery))
            .execution_options(populate_existing=True)
        )
        game = result.scalar_one_or_none()
        if game is None:
            raise GameNotFoundError(game_id)
        return game
