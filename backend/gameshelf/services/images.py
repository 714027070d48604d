"""Image acquisition - downloads provider artwork once per source URL."""

import asyncio
import io
import logging
import uuid
import weakref
from pathlib import Path

import httpx
from PIL import Image as PILImage
from PIL import UnidentifiedImageError
from sqlalchemy import exists, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gameshelf.exceptions import ImageDownloadError
from gameshelf.models import Game, Image, ImageType, game_images

logger = logging.getLogger(__name__)


class ImageStore:
    """Image bytes on disk, one file per content id."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def path_for(self, content_id: str) -> Path:
        return self.root / content_id[:2] / content_id

    def put(self, content: bytes) -> str:
        content_id = uuid.uuid4().hex
        path = self.path_for(content_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return content_id

    def exists(self, content_id: str) -> bool:
        return self.path_for(content_id).is_file()

    def read(self, content_id: str) -> bytes | None:
        path = self.path_for(content_id)
        return path.read_bytes() if path.is_file() else None

    def delete(self, content_id: str) -> None:
        self.path_for(content_id).unlink(missing_ok=True)


def inspect_image(content: bytes) -> tuple[str, int, int]:
    """Return (mime type, width, height), raising if the bytes are not an image."""
    with PILImage.open(io.BytesIO(content)) as img:
        img.verify()
        mime_type = PILImage.MIME.get(img.format or "", "application/octet-stream")
        width, height = img.size
    return mime_type, width, height


class ImageService:
    """Deduplicated, idempotent image downloads.

    One row per ``original_url`` (unique constraint plus insert-or-fetch),
    and a per-URL lock so concurrent requests in this process download the
    content only once.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        store: ImageStore,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 20.0,
        max_bytes: int = 25 * 1024 * 1024,
    ):
        self._session_maker = session_maker
        self.store = store
        self._client = http_client
        self._owns_client = http_client is None
        self.timeout = timeout
        self.max_bytes = max_bytes
        self._url_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)
        return self._client

    def _lock_for(self, url: str) -> asyncio.Lock:
        lock = self._url_locks.get(url)
        if lock is None:
            lock = asyncio.Lock()
            self._url_locks[url] = lock
        return lock

    async def download_if_new(self, url: str, image_type: ImageType = ImageType.COVER) -> Image:
        """Get the image for ``url``, downloading its content only if missing.

        Raises:
            ImageDownloadError: If the content cannot be fetched or is not an image
        """
        if not url:
            raise ValueError("Image must have an original URL")

        lock = self._lock_for(url)
        async with lock:
            async with self._session_maker() as db:
                image = await self._get_or_create(db, url, image_type)

                if image.has_content and self.store.exists(image.content_id):
                    return image

                try:
                    content = await self._fetch(url)
                    mime_type, width, height = await self._inspect(url, content)
                except ImageDownloadError:
                    # Do not keep a content-less row nobody points at
                    if not await self.is_in_use(db, image.id):
                        await db.delete(image)
                        await db.commit()
                    raise

                content_id = await asyncio.to_thread(self.store.put, content)
                image.content_id = content_id
                image.content_length = len(content)
                image.mime_type = mime_type
                image.width = width
                image.height = height
                await db.commit()

                logger.debug(f"Downloaded image {image.id} from {url} ({len(content)} bytes)")
                return image

    async def _get_or_create(self, db: AsyncSession, url: str, image_type: ImageType) -> Image:
        result = await db.execute(select(Image).where(Image.original_url == url))
        image = result.scalar_one_or_none()
        if image is not None:
            return image

        image = Image(original_url=url, image_type=image_type.value)
        db.add(image)
        try:
            await db.commit()
        except IntegrityError:
            # Inserted concurrently (another process or session); use that row
            await db.rollback()
            result = await db.execute(select(Image).where(Image.original_url == url))
            image = result.scalar_one()
        return image

    @staticmethod
    async def _inspect(url: str, content: bytes) -> tuple[str, int, int]:
        try:
            return await asyncio.to_thread(inspect_image, content)
        except (UnidentifiedImageError, OSError, ValueError) as e:
            raise ImageDownloadError(url, f"not a valid image ({e})") from e

    async def _fetch(self, url: str) -> bytes:
        try:
            response = await self._get_client().get(url, timeout=self.timeout)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ImageDownloadError(url, str(e)) from e

        content = response.content
        if not content:
            raise ImageDownloadError(url, "empty response")
        if len(content) > self.max_bytes:
            raise ImageDownloadError(url, f"larger than {self.max_bytes} bytes")
        return content

    async def is_in_use(self, db: AsyncSession, image_id: int) -> bool:
        referenced_by_game = select(Game.id).where(
            or_(Game.cover_image_id == image_id, Game.header_image_id == image_id)
        )
        in_gallery = select(game_images.c.game_id).where(game_images.c.image_id == image_id)
        result = await db.execute(select(exists(referenced_by_game) | exists(in_gallery)))
        return bool(result.scalar())

    async def delete_image_if_unused(self, image_id: int | None) -> bool:
        """Delete an image and its content if no game references it.

        Returns:
            True if the image was deleted
        """
        if image_id is None:
            return False

        async with self._session_maker() as db:
            image = await db.get(Image, image_id)
            if image is None:
                return False
            if await self.is_in_use(db, image_id):
                return False

            content_id = image.content_id
            await db.delete(image)
            await db.commit()

        if content_id:
            await asyncio.to_thread(self.store.delete, content_id)
        logger.debug(f"Deleted unused image {image_id}")
        return True

    async def get_image(self, image_id: int) -> Image | None:
        async with self._session_maker() as db:
            return await db.get(Image, image_id)
