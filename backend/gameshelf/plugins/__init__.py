"""Metadata provider plugin API."""

from gameshelf.plugins.base import MetadataCandidate, MetadataProvider
from gameshelf.plugins.registry import ProviderRegistry

__all__ = [
    "MetadataCandidate",
    "MetadataProvider",
    "ProviderRegistry",
]
