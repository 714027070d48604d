"""Registry of metadata providers."""

import logging
import threading

from gameshelf.plugins.base import MetadataProvider

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Holds provider instances and hands them out in priority order."""

    def __init__(self, providers: list[MetadataProvider] | None = None):
        self._providers: list[MetadataProvider] = []
        self._lock = threading.Lock()
        for provider in providers or []:
            self.register(provider)

    def register(self, provider: MetadataProvider) -> None:
        if not provider.id:
            raise ValueError(f"Provider {provider!r} has no id")
        with self._lock:
            if any(p.id == provider.id for p in self._providers):
                raise ValueError(f"Provider '{provider.id}' is already registered")
            self._providers.append(provider)
        logger.info(f"Registered metadata provider '{provider.id}' (priority {provider.priority})")

    def unregister(self, provider_id: str) -> bool:
        with self._lock:
            before = len(self._providers)
            self._providers = [p for p in self._providers if p.id != provider_id]
            return len(self._providers) < before

    def ordered(self) -> list[MetadataProvider]:
        """Providers by descending priority; registration order breaks ties."""
        with self._lock:
            # sorted() is stable
            return sorted(self._providers, key=lambda p: -p.priority)

    def get(self, provider_id: str) -> MetadataProvider | None:
        with self._lock:
            return next((p for p in self._providers if p.id == provider_id), None)

    def __len__(self) -> int:
        return len(self._providers)
