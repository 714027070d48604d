"""
Tests for deduplicated image acquisition
"""
import asyncio

import pytest

from gameshelf.exceptions import ImageDownloadError
from gameshelf.models import Game, Image, ImageType

from conftest import count_rows

COVER = "https://images.test/covers/celeste.png"


class TestDownloadIfNew:
    """Tests for idempotent downloads"""

    def test_downloads_and_records_metadata(self, services, image_server):
        """Content is stored and described by the row"""
        image = asyncio.run(services.images.download_if_new(COVER, ImageType.COVER))

        assert image.id is not None
        assert image.original_url == COVER
        assert image.image_type == "cover"
        assert image.mime_type == "image/png"
        assert (image.width, image.height) == (8, 6)
        assert services.images.store.exists(image.content_id)
        assert image_server.requests[COVER] == 1

    def test_repeated_requests_download_once(self, services, session_maker, image_server):
        """The same URL twice gives the same row and one download"""
        async def run():
            first = await services.images.download_if_new(COVER)
            second = await services.images.download_if_new(COVER)
            return first, second, await count_rows(session_maker, Image)

        first, second, rows = asyncio.run(run())

        assert first.id == second.id
        assert rows == 1
        assert image_server.requests[COVER] == 1

    def test_concurrent_requests_download_once(self, services, session_maker, image_server):
        """Concurrent requests for one URL share a single download"""
        async def run():
            images = await asyncio.gather(*(services.images.download_if_new(COVER) for _ in range(5)))
            return images, await count_rows(session_maker, Image)

        images, rows = asyncio.run(run())

        assert len({image.id for image in images}) == 1
        assert rows == 1
        assert image_server.requests[COVER] == 1

    def test_http_error_raises_and_leaves_no_row(self, services, session_maker, image_server):
        image_server.missing.add(COVER)

        with pytest.raises(ImageDownloadError):
            asyncio.run(services.images.download_if_new(COVER))

        assert asyncio.run(count_rows(session_maker, Image)) == 0

    def test_invalid_content_is_rejected(self, services, image_server):
        image_server.invalid.add(COVER)

        with pytest.raises(ImageDownloadError, match="not a valid image"):
            asyncio.run(services.images.download_if_new(COVER))


class TestDeleteImageIfUnused:
    """Tests for reference-aware deletion"""

    def test_unused_image_is_deleted_with_content(self, services, session_maker):
        async def run():
            image = await services.images.download_if_new(COVER)
            deleted = await services.images.delete_image_if_unused(image.id)
            return image, deleted, await count_rows(session_maker, Image)

        image, deleted, rows = asyncio.run(run())

        assert deleted is True
        assert rows == 0
        assert not services.images.store.exists(image.content_id)

    def test_referenced_image_is_kept(self, services, session_maker):
        async def run():
            image = await services.images.download_if_new(COVER)
            async with session_maker() as db:
                db.add(Game(path="/games/Celeste.zip", title="Celeste", cover_image_id=image.id))
                await db.commit()
            return image, await services.images.delete_image_if_unused(image.id)

        image, deleted = asyncio.run(run())

        assert deleted is False
        assert services.images.store.exists(image.content_id)

    def test_unknown_image(self, services):
        assert asyncio.run(services.images.delete_image_if_unused(12345)) is False
        assert asyncio.run(services.images.delete_image_if_unused(None)) is False
