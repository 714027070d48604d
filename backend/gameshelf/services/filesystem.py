"""Filesystem walker - finds game candidates below library directories.

Read-only. Each direct child of a library directory is one candidate:
directories are treated as one game each, files only when their extension
is a known game file extension.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Iterable

logger = logging.getLogger(__name__)


def normalize_path(path: str | os.PathLike) -> str:
    """Absolute, normalized string form used for all path comparisons."""
    return os.path.normpath(os.path.abspath(os.fspath(path)))


def is_hidden(name: str) -> bool:
    return name.startswith(".")


def is_below(path: str, root: str) -> bool:
    """True if ``path`` is ``root`` or lies inside it (both normalized)."""
    return path == root or path.startswith(root.rstrip(os.sep) + os.sep)


@dataclass
class WalkResult:
    """Candidates found by one walk."""
    paths: set[str] = field(default_factory=set)
    # Roots that could not be read; known paths below them are not "removed"
    unavailable_roots: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class FilesystemWalker:
    """Enumerates game candidates for a library's directories."""

    def __init__(self, game_file_extensions: Iterable[str], scan_empty_directories: bool = False):
        self.game_file_extensions = {e.lower().lstrip(".") for e in game_file_extensions}
        self.scan_empty_directories = scan_empty_directories

    def walk(self, roots: Iterable[str], other_roots: Iterable[str] = ()) -> WalkResult:
        """Walk library roots.

        Args:
            roots: Internal paths of the library's directory mappings
            other_roots: Mapping roots of other libraries, never reported as candidates

        Returns:
            WalkResult with normalized candidate paths
        """
        result = WalkResult()
        normalized_roots = list(dict.fromkeys(normalize_path(r) for r in roots))
        all_roots = set(normalized_roots) | {normalize_path(r) for r in other_roots}
        seen_targets: set[str] = set()

        for root in normalized_roots:
            if not os.path.isdir(root):
                message = f"Library directory '{root}' does not exist or is not a directory"
                logger.warning(message)
                result.unavailable_roots.append(root)
                result.errors.append(message)
                continue

            try:
                with os.scandir(root) as it:
                    entries = list(it)
            except OSError as e:
                message = f"Cannot read library directory '{root}': {e}"
                logger.warning(message)
                result.unavailable_roots.append(root)
                result.errors.append(message)
                continue

            root_real = os.path.realpath(root)
            for entry in sorted(entries, key=lambda e: e.name):
                if is_hidden(entry.name):
                    continue
                path = normalize_path(entry.path)

                if self._is_mapping_root_or_parent(path, root, all_roots):
                    logger.debug(f"Skipping '{path}': belongs to another directory mapping")
                    continue

                try:
                    if entry.is_dir():  # follows symlinks
                        if not self._accept_directory(entry, path, root_real, seen_targets):
                            continue
                    elif entry.is_file():
                        if not self._has_game_extension(entry.name):
                            continue
                    else:
                        continue
                except OSError as e:
                    logger.warning(f"Cannot inspect '{path}': {e}")
                    result.errors.append(f"Cannot inspect '{path}': {e}")
                    continue

                result.paths.add(path)

        return result

    def _has_game_extension(self, name: str) -> bool:
        _, ext = os.path.splitext(name)
        return ext.lower().lstrip(".") in self.game_file_extensions

    @staticmethod
    def _is_mapping_root_or_parent(path: str, own_root: str, all_roots: set[str]) -> bool:
        for other in all_roots:
            if other == own_root:
                continue
            if is_below(other, path):
                return True
        return False

    def _accept_directory(
        self,
        entry: os.DirEntry,
        path: str,
        root_real: str,
        seen_targets: set[str],
    ) -> bool:
        target = os.path.realpath(entry.path)
        if entry.is_symlink() and is_below(root_real, target):
            logger.warning(f"Skipping '{path}': symlink points back to '{target}'")
            return False
        if target in seen_targets:
            logger.debug(f"Skipping '{path}': '{target}' was already found")
            return False
        seen_targets.add(target)

        if not self.scan_empty_directories and not self._has_visible_content(entry.path):
            logger.debug(f"Directory '{path}' is empty and will be ignored")
            return False
        return True

    @staticmethod
    def _has_visible_content(path: str) -> bool:
        try:
            with os.scandir(path) as it:
                return any(not is_hidden(child.name) for child in it)
        except OSError as e:
            logger.warning(f"Error reading directory contents of '{path}': {e}")
            return False


def calculate_file_size(path: str) -> int:
    """Size of a file, or of everything below a directory. 0 when missing."""
    try:
        if os.path.isfile(path):
            return os.path.getsize(path)
        if os.path.isdir(path):
            total = 0
            for dirpath, _dirnames, filenames in os.walk(path, followlinks=False):
                for filename in filenames:
                    file_path = os.path.join(dirpath, filename)
                    if os.path.islink(file_path):
                        continue
                    try:
                        total += os.path.getsize(file_path)
                    except OSError:
                        continue
            return total
        return 0
    except OSError as e:
        logger.warning(f"Error calculating file size for {path}: {e}")
        return 0
