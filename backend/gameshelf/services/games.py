"""Game field updates with provenance tracking."""

import logging
from datetime import datetime, UTC

from gameshelf.models import FieldSourceType, Game, GameFieldMetadata, GameImage, Image
from gameshelf.plugins import MetadataCandidate

logger = logging.getLogger(__name__)

# Game attribute -> MetadataCandidate attribute
METADATA_FIELDS = {
    "title": "title",
    "description": "description",
    "release_date": "release_date",
    "developers": "developers",
    "publishers": "publishers",
    "genres": "genres",
    "user_rating": "user_rating",
    "critic_rating": "critic_rating",
}

IMAGE_FIELDS = ("cover_image", "header_image", "images")


def utcnow() -> datetime:
    """Naive UTC timestamp, as stored in the database."""
    return datetime.now(UTC).replace(tzinfo=None)


def is_user_sourced(game: Game, field_name: str) -> bool:
    source = game.field_source(field_name)
    return source is not None and source.source == FieldSourceType.USER


def apply_metadata(game: Game, metadata: MetadataCandidate, provider_id: str) -> bool:
    """Copy provider values onto a game.

    A field is written only if the provider has a value for it, the value
    differs (or has no source yet), and the user has not overridden the field.

    Returns:
        True if any field changed
    """
    now = utcnow()
    changed = False

    for game_attr, metadata_attr in METADATA_FIELDS.items():
        value = getattr(metadata, metadata_attr)
        if value is None:
            continue
        if isinstance(value, (list, set, tuple)):
            value = list(value)
        if is_user_sourced(game, game_attr):
            continue
        # Equal values still get a source record the first time
        if getattr(game, game_attr) == value and game.field_source(game_attr) is not None:
            continue
        setattr(game, game_attr, value)
        game.set_field_source(game_attr, GameFieldMetadata.from_plugin(provider_id, now))
        changed = True

    if metadata.original_id and (game.original_ids or {}).get(provider_id) != metadata.original_id:
        game.original_ids = {**(game.original_ids or {}), provider_id: metadata.original_id}
        changed = True

    return changed


def apply_images(
    game: Game,
    provider_id: str,
    cover: Image | None,
    header: Image | None,
    screenshots: list[Image],
) -> bool:
    """Point a game at downloaded images, respecting user overrides.

    Returns:
        True if any image reference changed
    """
    now = utcnow()
    changed = False

    if cover is not None and not is_user_sourced(game, "cover_image") and game.cover_image_id != cover.id:
        game.cover_image = cover
        game.cover_image_id = cover.id
        game.set_field_source("cover_image", GameFieldMetadata.from_plugin(provider_id, now))
        changed = True

    if header is not None and not is_user_sourced(game, "header_image") and game.header_image_id != header.id:
        game.header_image = header
        game.header_image_id = header.id
        game.set_field_source("header_image", GameFieldMetadata.from_plugin(provider_id, now))
        changed = True

    current_ids = [entry.image_id for entry in game.gallery]
    wanted_ids = [image.id for image in screenshots]
    if screenshots and not is_user_sourced(game, "images") and current_ids != wanted_ids:
        existing = {entry.image_id: entry for entry in game.gallery}
        game.gallery = [existing.get(image.id) or GameImage(image=image) for image in screenshots]
        game.gallery.reorder()
        game.set_field_source("images", GameFieldMetadata.from_plugin(provider_id, now))
        changed = True

    return changed
