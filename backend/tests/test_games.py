"""
Tests for user edits and manual matches
"""
import asyncio

import pytest
from sqlalchemy import select

from gameshelf.events import GameCreated, GameUpdated
from gameshelf.exceptions import GameNotFoundError, GameNotMatchedError, GameshelfError, LibraryNotFoundError
from gameshelf.models import FieldSourceType, FullScanResult, Game, IgnoredPath, ScanType
from gameshelf.services.filesystem import normalize_path

from conftest import FakeProvider, candidate, count_rows, create_library, make_game_file

COVER = "https://images.test/mystery/cover.png"


async def only_game(session_maker) -> Game:
    async with session_maker() as db:
        return (await db.execute(select(Game))).scalar_one()


class TestEditGame:
    """Tests for user edits and their provenance"""

    def test_edited_fields_are_user_sourced(self, services, provider, games_dir):
        make_game_file(games_dir, "Celeste.zip")
        provider.games["Celeste"] = candidate("1", "Celeste")
        events = []
        services.events.subscribe(events.append, GameUpdated)

        async def run():
            library = await create_library(services, games_dir)
            await services.scans.run_scan(library.id, ScanType.QUICK)
            [game] = await services.games.list_games(library.id)
            return await services.games.edit_game(
                game.id, {"title": "  My Celeste ", "genres": ["Platformer"]}, user_id=3
            )

        game = asyncio.run(run())

        assert game.title == "My Celeste"
        assert game.genres == ["Platformer"]
        source = game.field_source("title")
        assert (source.source, source.user_id) == (FieldSourceType.USER, 3)
        assert game.field_source("genres").source == FieldSourceType.USER
        assert game.updated_at is not None
        assert events == [GameUpdated(game_id=game.id, library_id=game.library_id)]

    def test_edits_survive_provider_refresh(self, services, provider, games_dir):
        make_game_file(games_dir, "Celeste.zip")
        provider.games["Celeste"] = candidate("1", "Celeste")

        async def run():
            library = await create_library(services, games_dir)
            await services.scans.run_scan(library.id, ScanType.QUICK)
            [game] = await services.games.list_games(library.id)
            await services.games.edit_game(game.id, {"description": "Mine"})
            provider.games["Celeste"] = candidate("1", "Celeste", description="Climb the mountain")
            await services.scans.run_scan(library.id, ScanType.FULL)
            return await services.games.get_game(game.id)

        assert asyncio.run(run()).description == "Mine"

    def test_confirm_match_only(self, services, provider, games_dir):
        make_game_file(games_dir, "Celeste.zip")
        provider.games["Celeste"] = candidate("1", "Celeste")

        async def run():
            library = await create_library(services, games_dir)
            await services.scans.run_scan(library.id, ScanType.QUICK)
            [game] = await services.games.list_games(library.id)
            return await services.games.edit_game(game.id, {}, match_confirmed=True)

        game = asyncio.run(run())

        assert game.match_confirmed is True
        assert game.field_source("title").source == FieldSourceType.PLUGIN

    def test_field_that_cannot_be_edited(self, services):
        with pytest.raises(GameshelfError, match="cannot be edited"):
            asyncio.run(services.games.edit_game(1, {"path": "/elsewhere.zip"}))

    def test_empty_title(self, services):
        with pytest.raises(GameshelfError, match="title"):
            asyncio.run(services.games.edit_game(1, {"title": "  "}))

    def test_unknown_game(self, services):
        with pytest.raises(GameNotFoundError):
            asyncio.run(services.games.edit_game(404, {"title": "Nope"}))


class TestMatchManually:
    """Tests for matching paths to user-picked provider entries"""

    def test_unmatched_path_becomes_confirmed_game(self, services, provider, session_maker, games_dir):
        path = normalize_path(make_game_file(games_dir, "Mystery.zip", size=32))
        events = []
        services.events.subscribe(events.append, GameCreated)

        async def run():
            library = await create_library(services, games_dir)
            await services.scans.run_scan(library.id, ScanType.QUICK)
            ignored_before = await count_rows(session_maker, IgnoredPath)
            provider.games["Some listing"] = candidate("7", "Mystery Game", cover=COVER)
            game = await services.games.match_manually(path, library.id, {"fake": "7"})
            return library, ignored_before, game, await count_rows(session_maker, IgnoredPath)

        library, ignored_before, game, ignored_after = asyncio.run(run())

        assert (ignored_before, ignored_after) == (1, 0)
        assert game.path == path
        assert game.library_id == library.id
        assert game.title == "Mystery Game"
        assert game.match_confirmed is True
        assert game.original_ids == {"fake": "7"}
        assert game.file_size == 32
        assert game.cover_image.original_url == COVER
        assert game.created_at is not None
        assert events == [GameCreated(game_id=game.id, library_id=library.id)]

    def test_user_ignored_path_is_released(self, services, provider, session_maker, games_dir):
        path = normalize_path(make_game_file(games_dir, "Mystery.zip"))
        provider.games["Some listing"] = candidate("7", "Mystery Game")

        async def run():
            library = await create_library(services, games_dir)
            await services.libraries.ignore_path(library.id, path, user_id=1)
            await services.games.match_manually(path, library.id, {"fake": "7"})
            return await count_rows(session_maker, IgnoredPath), await count_rows(session_maker, Game)

        assert asyncio.run(run()) == (0, 1)

    def test_confirmed_match_survives_full_scan(self, services, provider, session_maker, games_dir):
        """A rescan neither re-identifies nor duplicates a manual match"""
        path = normalize_path(make_game_file(games_dir, "Celeste.zip"))
        provider.games["Celeste"] = candidate("1", "Celeste (wrong)")
        provider.games["Celeste listing"] = candidate("2", "Celeste")

        async def run():
            library = await create_library(services, games_dir)
            await services.scans.run_scan(library.id, ScanType.QUICK)
            await services.games.match_manually(path, library.id, {"fake": "2"})
            progress = await services.scans.run_scan(library.id, ScanType.FULL)
            return progress, await only_game(session_maker)

        progress, game = asyncio.run(run())

        assert progress.scan_result == FullScanResult(new=0, removed=0, unmatched=0, updated=0)
        assert game.title == "Celeste"
        assert game.original_ids == {"fake": "2"}
        assert game.match_confirmed is True

    def test_replace_keeps_id_and_user_edits(self, services, provider, session_maker, games_dir):
        path = normalize_path(make_game_file(games_dir, "Celeste.zip"))
        provider.games["Celeste"] = candidate("1", "Celeste (wrong)", genres=["Puzzle"])
        provider.games["Celeste listing"] = candidate("2", "Celeste", developers=["Maddy Makes Games"])
        updated = []
        services.events.subscribe(updated.append, GameUpdated)

        async def run():
            library = await create_library(services, games_dir)
            await services.scans.run_scan(library.id, ScanType.QUICK)
            wrong = await only_game(session_maker)
            await services.games.edit_game(wrong.id, {"description": "My notes"}, user_id=5)
            async with session_maker() as db:
                stored = await db.get(Game, wrong.id)
                stored.download_count = 4
                await db.commit()
            replaced = await services.games.match_manually(
                path, library.id, {"fake": "2"}, replace_game_id=wrong.id
            )
            return wrong, replaced, await count_rows(session_maker, Game)

        wrong, replaced, games = asyncio.run(run())

        assert replaced.id == wrong.id
        assert games == 1
        assert replaced.title == "Celeste"
        assert replaced.developers == ["Maddy Makes Games"]
        assert replaced.original_ids == {"fake": "2"}
        assert replaced.download_count == 4
        assert replaced.description == "My notes"
        assert replaced.field_source("description").user_id == 5
        assert GameUpdated(game_id=wrong.id, library_id=wrong.library_id) in updated

    def test_ids_of_several_providers_are_merged(self, services, provider, games_dir):
        """The higher priority provider wins the fields both have"""
        path = normalize_path(make_game_file(games_dir, "Celeste.zip"))
        provider.games["Celeste"] = candidate("1", "Celeste", genres=["Platformer"])
        other = FakeProvider("other", priority=-1, games={"x": candidate("o-9", "Celeste!", publishers=["EXOK"])})
        services.registry.register(other)

        async def run():
            library = await create_library(services, games_dir)
            return await services.games.match_manually(path, library.id, {"fake": "1", "other": "o-9"})

        game = asyncio.run(run())

        assert game.title == "Celeste"
        assert game.genres == ["Platformer"]
        assert game.publishers == ["EXOK"]
        assert game.original_ids == {"fake": "1", "other": "o-9"}
        assert game.field_source("publishers").plugin_id == "other"

    def test_unknown_ids(self, services, games_dir):
        path = str(make_game_file(games_dir, "Mystery.zip"))

        async def run():
            library = await create_library(services, games_dir)
            await services.games.match_manually(path, library.id, {"fake": "nope", "missing": "1"})

        with pytest.raises(GameNotMatchedError) as exc_info:
            asyncio.run(run())
        assert exc_info.value.consulted == ["fake", "missing"]

    def test_unknown_library(self, services, games_dir):
        with pytest.raises(LibraryNotFoundError):
            asyncio.run(services.games.match_manually(str(games_dir / "x.zip"), 404, {"fake": "1"}))

    def test_unknown_replacement(self, services, provider, session_maker, games_dir):
        path = str(make_game_file(games_dir, "Celeste.zip"))
        provider.games["Celeste"] = candidate("1", "Celeste")

        async def run():
            library = await create_library(services, games_dir)
            await services.games.match_manually(path, library.id, {"fake": "1"}, replace_game_id=404)

        with pytest.raises(GameNotFoundError):
            asyncio.run(run())
        assert asyncio.run(count_rows(session_maker, Game)) == 0
