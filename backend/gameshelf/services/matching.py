"""Matching engine - resolves paths to metadata through the provider plugins."""

import asyncio
import logging
import os
import re
from dataclasses import dataclass
from typing import Callable

from gameshelf.models import Game, Library
from gameshelf.plugins import MetadataCandidate, MetadataProvider, ProviderRegistry
from gameshelf.services.config_service import ScanSettings

logger = logging.getLogger(__name__)


@dataclass
class GameCandidate:
    """A matched but not yet persisted game."""
    path: str
    provider_id: str
    metadata: MetadataCandidate

    @property
    def identity(self) -> tuple[str, str]:
        """(provider id, provider-side id), stable across moves and renames."""
        return self.provider_id, self.metadata.original_id


def title_from_path(path: str) -> str:
    """File name without extension, or the directory name."""
    name = os.path.basename(path.rstrip(os.sep))
    if os.path.isdir(path):
        return name
    stem, _ = os.path.splitext(name)
    return stem or name


def extract_title(name: str, pattern: str | None) -> str:
    """Reduce a file name to a title with a regex, falling back to the name."""
    if not pattern:
        logger.warning(f"No regex configured for title extraction, using full filename '{name}'")
        return name
    try:
        match = re.search(pattern, name)
    except re.error as e:
        logger.error(f"Title extraction regex ({pattern}) is invalid, using full filename: {e}")
        return name
    if not match or not match.group(0).strip():
        logger.warning(f"No match found for regex '{pattern}' in filename '{name}'. Using full filename.")
        return name
    title = match.group(0).strip()
    logger.debug(f"Extracted title '{title}' from filename '{name}'")
    return title


class MatchingEngine:
    """Asks providers in priority order; the first match wins."""

    def __init__(self, registry: ProviderRegistry, provider_timeout: float | None = 30.0):
        self.registry = registry
        self.provider_timeout = provider_timeout

    def consulted_provider_ids(self) -> list[str]:
        """Ids of the providers a match attempt goes through, in order."""
        return [p.id for p in self.registry.ordered()]

    def build_query(self, path: str, scan_settings: ScanSettings | None = None) -> str:
        query = title_from_path(path)
        if scan_settings and scan_settings.extract_title_using_regex:
            query = extract_title(query, scan_settings.title_extraction_regex)
        return query

    async def match(
        self,
        path: str,
        library: Library | None = None,
        scan_settings: ScanSettings | None = None,
    ) -> GameCandidate | None:
        """Resolve a path to a candidate, or None if no provider knows it."""
        query = self.build_query(path, scan_settings)
        for provider in self.registry.ordered():
            metadata = await self._call(provider, provider.fetch_metadata, query)
            if metadata is not None:
                logger.debug(f"Provider '{provider.id}' matched '{path}' as '{metadata.title}'")
                return GameCandidate(path=path, provider_id=provider.id, metadata=metadata)

        library_name = f" in library '{library.name}'" if library is not None else ""
        logger.info(f"Could not identify game at path '{path}'{library_name} (query '{query}')")
        return None

    async def rematch(
        self,
        game: Game,
        scan_settings: ScanSettings | None = None,
    ) -> GameCandidate | None:
        """Refresh an existing game by the ids providers gave it before.

        Only a game no provider has identified yet, and whose match the user
        has not confirmed, is identified again from its path.
        """
        original_ids = game.original_ids or {}
        for provider in self.registry.ordered():
            original_id = original_ids.get(provider.id)
            if original_id is None:
                continue
            metadata = await self._call(provider, provider.fetch_by_id, original_id)
            if metadata is not None:
                return GameCandidate(path=game.path, provider_id=provider.id, metadata=metadata)

        if original_ids or game.match_confirmed:
            return None
        return await self.match(game.path, scan_settings=scan_settings)

    async def fetch_by_ids(self, path: str, original_ids: dict[str, str]) -> list[GameCandidate]:
        """Look a game up by provider-side ids, one lookup per named provider.

        Returns:
            The candidates found, highest priority provider first. Ids of
            unregistered providers are skipped.
        """
        candidates = []
        for provider in self.registry.ordered():
            original_id = original_ids.get(provider.id)
            if original_id is None:
                continue
            metadata = await self._call(provider, provider.fetch_by_id, original_id)
            if metadata is not None:
                candidates.append(GameCandidate(path=path, provider_id=provider.id, metadata=metadata))
        unknown = sorted(set(original_ids) - {p.id for p in self.registry.ordered()})
        if unknown:
            logger.warning(f"Ignoring ids of unknown providers: {', '.join(unknown)}")
        return candidates

    async def _call(
        self,
        provider: MetadataProvider,
        fetch: Callable[[str], MetadataCandidate | None],
        argument: str,
    ) -> MetadataCandidate | None:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(fetch, argument),
                timeout=self.provider_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Provider '{provider.id}' timed out after {self.provider_timeout}s for '{argument}'"
            )
        except Exception as e:
            logger.warning(f"Error fetching metadata for '{argument}' with provider '{provider.id}': {e}")
            logger.debug("Provider failure", exc_info=True)
        return None
