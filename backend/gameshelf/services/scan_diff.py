"""Scan differencer - compares a filesystem walk with the catalog."""

from dataclasses import dataclass, field
from typing import Iterable

from gameshelf.services.filesystem import is_below


@dataclass(frozen=True)
class FilesystemScanResult:
    new_paths: list[str] = field(default_factory=list)
    removed_game_paths: list[str] = field(default_factory=list)
    removed_unmatched_paths: list[str] = field(default_factory=list)


def diff_paths(
    walked: Iterable[str],
    known_game_paths: Iterable[str],
    known_ignored_paths: Iterable[str],
    unavailable_roots: Iterable[str] = (),
) -> FilesystemScanResult:
    """Set difference of walked paths against known game and ignored paths.

    Paths are compared as exact strings, so callers pass normalized paths.
    Known paths below an unavailable root are kept: a directory that could
    not be read says nothing about what it contains.
    """
    walked_set = set(walked)
    games = set(known_game_paths)
    ignored = set(known_ignored_paths)
    unavailable = list(unavailable_roots)

    def reachable(path: str) -> bool:
        return not any(is_below(path, root) for root in unavailable)

    return FilesystemScanResult(
        new_paths=sorted(walked_set - (games | ignored)),
        removed_game_paths=sorted(p for p in games - walked_set if reachable(p)),
        removed_unmatched_paths=sorted(p for p in ignored - walked_set if reachable(p)),
    )
