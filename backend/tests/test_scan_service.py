"""
Tests for library scan orchestration
"""
import asyncio
import shutil

import pytest
from sqlalchemy import select

from gameshelf.events import ScanProgressUpdated
from gameshelf.exceptions import LibraryNotFoundError, NoMetadataProvidersError, ScanAlreadyRunningError
from gameshelf.models import (
    FullScanResult,
    Game,
    IgnoredPath,
    Image,
    LibraryScanProgress,
    QuickScanResult,
    ScanStatus,
    ScanType,
)
from gameshelf.services.filesystem import normalize_path

from conftest import candidate, count_rows, create_library, make_game_file


async def game_paths(session_maker) -> list[str]:
    async with session_maker() as db:
        return sorted((await db.execute(select(Game.path))).scalars().all())


class TestQuickScan:
    """Tests for quick scans"""

    def test_new_and_unmatched_paths(self, services, provider, session_maker, games_dir):
        """Matched paths become games, the rest become plugin-ignored paths"""
        make_game_file(games_dir, "Celeste.zip")
        make_game_file(games_dir, "Hades.zip")
        make_game_file(games_dir, "Mystery.zip")
        provider.games["Celeste"] = candidate("1", "Celeste")
        provider.games["Hades"] = candidate("2", "Hades")

        async def run():
            library = await create_library(services, games_dir)
            progress = await services.scans.run_scan(library.id, ScanType.QUICK)
            async with session_maker() as db:
                ignored = (await db.execute(select(IgnoredPath))).scalars().all()
            return progress, ignored

        progress, ignored = asyncio.run(run())

        assert progress.status == ScanStatus.COMPLETED.value
        assert progress.current_step == "Finished"
        assert progress.finished_at is not None
        assert progress.scan_result == QuickScanResult(new=2, removed=0, unmatched=1)
        assert [(p.path, p.source_type, p.plugin_ids) for p in ignored] == [
            (normalize_path(games_dir / "Mystery.zip"), "plugin", ["fake"])
        ]

    def test_progress_is_published(self, services, provider, games_dir):
        make_game_file(games_dir, "Celeste.zip")
        provider.games["Celeste"] = candidate("1", "Celeste")
        snapshots = []
        services.events.subscribe(lambda e: snapshots.append(e.snapshot), ScanProgressUpdated)

        async def run():
            library = await create_library(services, games_dir)
            await services.scans.run_scan(library.id, ScanType.QUICK)

        asyncio.run(run())

        steps = [s["current_step"]["description"] for s in snapshots]
        assert steps[0] == "Scanning filesystem"
        assert "Processing new games" in steps
        assert "Updating library" in steps
        assert steps[-1] == "Finished"
        assert "Updating existing games" not in steps
        assert snapshots[-1]["status"] == "completed"

    def test_diff_correctness(self, services, provider, session_maker, games_dir):
        """Known {A, B, C} and disk {B, C, D} gives one new and one removed game"""
        for name in ("A", "B", "C"):
            make_game_file(games_dir, f"{name}.zip")
            provider.games[name] = candidate(name, name)
        provider.games["D"] = candidate("D", "D")

        async def run():
            library = await create_library(services, games_dir)
            await services.scans.run_scan(library.id, ScanType.QUICK)
            (games_dir / "A.zip").unlink()
            make_game_file(games_dir, "D.zip")
            progress = await services.scans.run_scan(library.id, ScanType.QUICK)
            return progress, await game_paths(session_maker)

        progress, paths = asyncio.run(run())

        assert progress.scan_result == QuickScanResult(new=1, removed=1, unmatched=0)
        assert paths == [normalize_path(games_dir / f"{n}.zip") for n in ("B", "C", "D")]

    def test_removed_game_releases_images(self, services, provider, session_maker, games_dir):
        make_game_file(games_dir, "Celeste.zip")
        provider.games["Celeste"] = candidate("1", "Celeste", cover="https://images.test/c.png")

        async def run():
            library = await create_library(services, games_dir)
            await services.scans.run_scan(library.id, ScanType.QUICK)
            (games_dir / "Celeste.zip").unlink()
            await services.scans.run_scan(library.id, ScanType.QUICK)
            return await count_rows(session_maker, Game), await count_rows(session_maker, Image)

        assert asyncio.run(run()) == (0, 0)

    def test_unavailable_directory_keeps_games(self, services, provider, session_maker, games_dir):
        """An unmounted library directory does not wipe its games"""
        make_game_file(games_dir, "Celeste.zip")
        provider.games["Celeste"] = candidate("1", "Celeste")

        async def run():
            library = await create_library(services, games_dir)
            await services.scans.run_scan(library.id, ScanType.QUICK)
            shutil.rmtree(games_dir)
            progress = await services.scans.run_scan(library.id, ScanType.QUICK)
            return progress, await count_rows(session_maker, Game)

        progress, games = asyncio.run(run())

        assert progress.status == ScanStatus.COMPLETED.value
        assert progress.scan_result.removed == 0
        assert games == 1

    def test_unmatched_paths_are_retried(self, services, provider, session_maker, games_dir):
        """A provider that learns a game later matches it on the next scan"""
        make_game_file(games_dir, "Celeste.zip")

        async def run():
            library = await create_library(services, games_dir)
            first = await services.scans.run_scan(library.id, ScanType.QUICK)
            provider.games["Celeste"] = candidate("1", "Celeste")
            second = await services.scans.run_scan(library.id, ScanType.QUICK)
            return first, second, await count_rows(session_maker, IgnoredPath)

        first, second, ignored = asyncio.run(run())

        assert first.scan_result == QuickScanResult(new=0, removed=0, unmatched=1)
        assert second.scan_result == QuickScanResult(new=1, removed=0, unmatched=0)
        assert ignored == 0

    def test_user_ignored_paths_are_skipped(self, services, provider, games_dir):
        path = make_game_file(games_dir, "Celeste.zip")
        provider.games["Celeste"] = candidate("1", "Celeste")

        async def run():
            library = await create_library(services, games_dir)
            await services.libraries.ignore_path(library.id, str(path), user_id=3)
            return await services.scans.run_scan(library.id, ScanType.QUICK)

        progress = asyncio.run(run())

        assert progress.scan_result == QuickScanResult(new=0, removed=0, unmatched=0)
        assert provider.queries == []

    def test_processing_failures_are_counted(self, services, provider, image_server, games_dir):
        """One broken game does not fail the scan"""
        make_game_file(games_dir, "Broken.zip")
        make_game_file(games_dir, "Celeste.zip")
        provider.games["Broken"] = candidate("1", "Broken", cover="https://images.test/missing.png")
        provider.games["Celeste"] = candidate("2", "Celeste")
        image_server.missing.add("https://images.test/missing.png")

        async def run():
            library = await create_library(services, games_dir)
            return await services.scans.run_scan(library.id, ScanType.QUICK)

        progress = asyncio.run(run())

        assert progress.status == ScanStatus.COMPLETED.value
        assert progress.scan_result == QuickScanResult(new=1, removed=0, unmatched=0, failed=1)

    def test_other_library_roots_are_not_games(self, services, provider, session_maker, games_dir):
        """A library nested inside another one is not a game of the outer library"""
        nested = games_dir / "Handhelds"
        make_game_file(nested, "Tetris.zip")
        provider.games["Handhelds"] = candidate("h", "Handhelds")

        async def run():
            outer = await create_library(services, games_dir, name="PC")
            await create_library(services, nested, name="Handhelds")
            return await services.scans.run_scan(outer.id, ScanType.QUICK)

        progress = asyncio.run(run())

        assert progress.scan_result == QuickScanResult(new=0, removed=0, unmatched=0)


class TestFullScan:
    """Tests for full and scheduled scans"""

    def test_rescan_is_idempotent(self, services, provider, session_maker, games_dir):
        """A second scan without changes reports nothing new, removed or updated"""
        make_game_file(games_dir, "Celeste.zip")
        make_game_file(games_dir / "Hollow Knight", "hk.exe")
        provider.games["Celeste"] = candidate("1", "Celeste", cover="https://images.test/c.png")
        provider.games["Hollow Knight"] = candidate("2", "Hollow Knight", screenshots=("https://images.test/hk.png",))

        async def run():
            library = await create_library(services, games_dir)
            first = await services.scans.run_scan(library.id, ScanType.FULL)
            second = await services.scans.run_scan(library.id, ScanType.FULL)
            return first, second, await count_rows(session_maker, Game)

        first, second, games = asyncio.run(run())

        assert first.scan_result == FullScanResult(new=2, removed=0, unmatched=0, updated=0)
        assert second.scan_result == FullScanResult(new=0, removed=0, unmatched=0, updated=0)
        assert games == 2

    def test_existing_games_are_refreshed(self, services, provider, session_maker, games_dir):
        make_game_file(games_dir, "Celeste.zip")
        provider.games["Celeste"] = candidate("1", "Celeste")

        async def run():
            library = await create_library(services, games_dir)
            await services.scans.run_scan(library.id, ScanType.FULL)
            provider.games["Celeste"] = candidate("1", "Celeste", description="Climb the mountain")
            progress = await services.scans.run_scan(library.id, ScanType.SCHEDULED)
            async with session_maker() as db:
                return progress, (await db.execute(select(Game))).scalar_one()

        progress, game = asyncio.run(run())

        assert progress.scan_type == "scheduled"
        assert progress.scan_result.updated == 1
        assert game.description == "Climb the mountain"

    def test_unavailable_directory_is_not_refreshed(self, services, provider, session_maker, games_dir):
        """Games below an unmounted directory keep their size and are not updated"""
        make_game_file(games_dir, "Celeste.zip", size=1000)
        provider.games["Celeste"] = candidate("1", "Celeste")

        async def run():
            library = await create_library(services, games_dir)
            await services.scans.run_scan(library.id, ScanType.QUICK)
            shutil.rmtree(games_dir)
            progress = await services.scans.run_scan(library.id, ScanType.FULL)
            async with session_maker() as db:
                return progress, (await db.execute(select(Game))).scalar_one()

        progress, game = asyncio.run(run())

        assert progress.status == ScanStatus.COMPLETED.value
        assert progress.scan_result == FullScanResult(new=0, removed=0, unmatched=0, updated=0)
        assert game.file_size == 1000
        assert provider.id_lookups == []

    def test_missing_path_keeps_last_known_size(self, services, provider, session_maker, games_dir):
        make_game_file(games_dir, "Celeste.zip", size=1000)
        provider.games["Celeste"] = candidate("1", "Celeste")

        async def run():
            library = await create_library(services, games_dir)
            await services.scans.run_scan(library.id, ScanType.QUICK)
            (games_dir / "Celeste.zip").unlink()
            async with session_maker() as db:
                game = (await db.execute(select(Game))).scalar_one()
            provider.games["Celeste"] = candidate("1", "Celeste", description="Climb the mountain")
            return await services.processor.process_existing_game(game.id)

        game = asyncio.run(run())

        assert game.description == "Climb the mountain"
        assert game.file_size == 1000

    def test_moved_game_is_updated_in_place(self, services, provider, session_maker, games_dir):
        """A path that moves with the same provider identity keeps its game"""
        make_game_file(games_dir, "Celeste.zip")
        provider.games["Celeste"] = candidate("1", "Celeste")
        provider.games["Celeste (2018)"] = candidate("1", "Celeste")

        async def run():
            library = await create_library(services, games_dir)
            await services.scans.run_scan(library.id, ScanType.FULL)
            async with session_maker() as db:
                before = (await db.execute(select(Game.id))).scalar_one()
            (games_dir / "Celeste.zip").rename(games_dir / "Celeste (2018).zip")
            progress = await services.scans.run_scan(library.id, ScanType.FULL)
            async with session_maker() as db:
                after = (await db.execute(select(Game.id, Game.path))).one()
            return before, after, progress

        before, after, progress = asyncio.run(run())

        assert after.id == before
        assert after.path == normalize_path(games_dir / "Celeste (2018).zip")
        assert progress.scan_result == FullScanResult(new=0, removed=0, unmatched=0, updated=1)

    def test_move_without_identity_is_delete_and_create(self, services, provider, session_maker, games_dir):
        """Different provider ids fall back to removing and adding"""
        make_game_file(games_dir, "Celeste.zip")
        provider.games["Celeste"] = candidate("1", "Celeste")
        provider.games["Celeste Remix"] = candidate("99", "Celeste Remix")

        async def run():
            library = await create_library(services, games_dir)
            await services.scans.run_scan(library.id, ScanType.QUICK)
            (games_dir / "Celeste.zip").rename(games_dir / "Celeste Remix.zip")
            progress = await services.scans.run_scan(library.id, ScanType.QUICK)
            return progress, await game_paths(session_maker)

        progress, paths = asyncio.run(run())

        assert progress.scan_result == QuickScanResult(new=1, removed=1, unmatched=0)
        assert paths == [normalize_path(games_dir / "Celeste Remix.zip")]


class TestScanCoordination:
    """Tests for single-flight scans and scan records"""

    def test_second_scan_of_same_library_is_rejected(self, services, provider, session_maker, games_dir):
        """Only one scan per library is in progress at any time"""
        make_game_file(games_dir, "Celeste.zip")
        provider.games["Celeste"] = candidate("1", "Celeste")
        gate = provider.block()

        async def run():
            library = await create_library(services, games_dir)
            scan_id = await services.scans.start_scan(library.id, ScanType.QUICK)
            with pytest.raises(ScanAlreadyRunningError):
                await services.scans.start_scan(library.id, ScanType.FULL)
            skipped = await services.scans.trigger_scan(ScanType.QUICK)
            async with session_maker() as db:
                running = (await db.execute(
                    select(LibraryScanProgress).where(
                        LibraryScanProgress.status == ScanStatus.IN_PROGRESS.value
                    )
                )).scalars().all()
            gate.set()
            await services.scans.wait_idle()
            return scan_id, skipped, running, await services.scans.list_scans()

        scan_id, skipped, running, scans = asyncio.run(run())

        assert skipped == []
        assert [p.id for p in running] == [scan_id]
        assert [p.id for p in scans] == [scan_id]
        assert scans[0].status == ScanStatus.COMPLETED.value

    def test_libraries_scan_independently(self, services, provider, tmp_path):
        first_dir = tmp_path / "pc"
        second_dir = tmp_path / "retro"
        make_game_file(first_dir, "Celeste.zip")
        make_game_file(second_dir, "Tetris.zip")
        provider.games["Celeste"] = candidate("1", "Celeste")
        provider.games["Tetris"] = candidate("2", "Tetris")

        async def run():
            await create_library(services, first_dir, name="PC")
            await create_library(services, second_dir, name="Retro")
            return await services.scans.scan_all(ScanType.SCHEDULED)

        results = asyncio.run(run())

        assert sorted(p.scan_result.new for p in results) == [1, 1]
        assert all(p.status == ScanStatus.COMPLETED.value for p in results)

    def test_no_providers(self, services, games_dir):
        services.registry.unregister("fake")

        async def run():
            library = await create_library(services, games_dir)
            await services.scans.start_scan(library.id)

        with pytest.raises(NoMetadataProvidersError):
            asyncio.run(run())

    def test_unknown_library(self, services):
        with pytest.raises(LibraryNotFoundError):
            asyncio.run(services.scans.start_scan(404))

    def test_interrupted_scans_are_failed_on_startup(self, services, session_maker):
        async def run():
            async with session_maker() as db:
                db.add(LibraryScanProgress(
                    id="a" * 32,
                    library_id=1,
                    scan_type=ScanType.FULL.value,
                    status=ScanStatus.IN_PROGRESS.value,
                    current_step="Processing new games",
                ))
                await db.commit()
            recovered = await services.scans.recover_interrupted_scans()
            return recovered, await services.scans.get_scan("a" * 32)

        recovered, progress = asyncio.run(run())

        assert recovered == 1
        assert progress.status == ScanStatus.FAILED.value
        assert progress.finished_at is not None

    def test_finished_scans_are_immutable(self, services, provider, games_dir):
        async def run():
            library = await create_library(services, games_dir)
            progress = await services.scans.run_scan(library.id, ScanType.QUICK)
            await services.scans._set_step(progress.id, "Scanning filesystem", 1, 2)
            return await services.scans.get_scan(progress.id)

        progress = asyncio.run(run())

        assert progress.status == ScanStatus.COMPLETED.value
        assert progress.current_step == "Finished"

    def test_unrecordable_failure_still_finishes(self, services, provider, games_dir, monkeypatch):
        """A scan whose progress cannot be stored ends as failed and frees the library"""
        make_game_file(games_dir, "Celeste.zip")
        provider.games["Celeste"] = candidate("1", "Celeste")

        async def broken_update(scan_id, **values):
            raise RuntimeError("database is locked")

        monkeypatch.setattr(services.scans, "_update_progress", broken_update)

        async def run():
            library = await create_library(services, games_dir)
            progress = await services.scans.run_scan(library.id, ScanType.QUICK)
            return library, progress, services.scans.is_scanning(library.id)

        library, progress, scanning = asyncio.run(run())

        assert progress.library_id == library.id
        assert progress.status == ScanStatus.FAILED.value
        assert progress.error_message == "database is locked"
        assert progress.finished_at is not None
        assert scanning is False
