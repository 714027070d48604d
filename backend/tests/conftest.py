"""
Pytest fixtures and helpers for Gameshelf tests
"""
import asyncio
import io
import threading
import time
from pathlib import Path

import httpx
import pytest
from PIL import Image as PILImage
from sqlalchemy import func, select
from sqlalchemy.pool import NullPool

from gameshelf.config import Settings
from gameshelf.database import create_engine, create_session_maker, init_db
from gameshelf.plugins import MetadataCandidate, MetadataProvider, ProviderRegistry
from gameshelf.services import build_services
from gameshelf.services.libraries import DirectorySpec


def png_bytes(color=(200, 30, 30), size=(8, 6)) -> bytes:
    """A small valid PNG"""
    buffer = io.BytesIO()
    PILImage.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def candidate(
    original_id: str,
    title: str,
    cover: str | None = None,
    header: str | None = None,
    screenshots: tuple[str, ...] = (),
    **fields,
) -> MetadataCandidate:
    return MetadataCandidate(
        original_id=original_id,
        title=title,
        cover_urls=[cover] if cover else [],
        header_urls=[header] if header else [],
        screenshot_urls=list(screenshots),
        **fields,
    )


class FakeProvider(MetadataProvider):
    """Answers queries from a dict; can fail, block or be slow on demand"""

    def __init__(self, provider_id="fake", priority=0, games=None, error=None, delay=0.0):
        self.id = provider_id
        self.priority = priority
        self.games: dict[str, MetadataCandidate] = dict(games or {})
        self.error = error
        self.delay = delay
        self.queries: list[str] = []
        self.id_lookups: list[str] = []
        self.gate: threading.Event | None = None

    def block(self) -> threading.Event:
        """Make lookups wait until the returned event is set"""
        self.gate = threading.Event()
        return self.gate

    def fetch_metadata(self, query):
        self.queries.append(query)
        if self.gate is not None:
            self.gate.wait(timeout=10)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.games.get(query)

    def fetch_by_id(self, original_id):
        self.id_lookups.append(original_id)
        for metadata in self.games.values():
            if metadata.original_id == original_id:
                return metadata
        return None


class ImageServer:
    """httpx mock transport serving PNGs, counting requests per URL"""

    def __init__(self):
        self.requests: dict[str, int] = {}
        self.missing: set[str] = set()
        self.invalid: set[str] = set()
        self.transport = httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests[url] = self.requests.get(url, 0) + 1
        if url in self.missing:
            return httpx.Response(404)
        if url in self.invalid:
            return httpx.Response(200, content=b"definitely not an image")
        return httpx.Response(200, content=png_bytes(), headers={"Content-Type": "image/png"})

    @property
    def total_requests(self) -> int:
        return sum(self.requests.values())


def make_game_file(directory: Path, name: str, size: int = 16) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_bytes(b"x" * size)
    return path


async def count_rows(session_maker, model) -> int:
    async with session_maker() as db:
        return (await db.execute(select(func.count()).select_from(model))).scalar()


async def create_library(services, *roots: Path, name: str = "Games"):
    return await services.libraries.create_library(
        name=name,
        directories=[DirectorySpec(str(root)) for root in roots],
    )


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'gameshelf.db'}",
        data_dir=tmp_path / "data",
        images_dir=tmp_path / "images",
        provider_timeout=5.0,
    )


@pytest.fixture
def engine(settings):
    test_engine = create_engine(settings.database_url, poolclass=NullPool)
    asyncio.run(init_db(test_engine))
    yield test_engine
    asyncio.run(test_engine.dispose())


@pytest.fixture
def session_maker(engine):
    return create_session_maker(engine)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def image_server():
    return ImageServer()


@pytest.fixture
def services(settings, session_maker, provider, image_server):
    return build_services(
        settings,
        session_maker,
        registry=ProviderRegistry([provider]),
        http_client=httpx.AsyncClient(transport=image_server.transport),
    )


@pytest.fixture
def games_dir(tmp_path):
    path = tmp_path / "games"
    path.mkdir()
    return path
