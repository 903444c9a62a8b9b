"""Discovery of candidate test modules on the filesystem."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Iterator
from fnmatch import fnmatch
from pathlib import Path

from vigil.domain.errors import ConfigurationError

logger = logging.getLogger(__name__)


def matches_any(name: str, patterns: Iterable[str]) -> bool:
    """Return True if `name` matches one of the glob `patterns`."""
    return any(fnmatch(name, pattern) for pattern in patterns)


def walk(
    roots: Iterable[Path],
    include_patterns: Iterable[str],
    exclude_dirs: Iterable[str] = (),
) -> Iterator[Path]:
    """Yield candidate test modules below `roots`, depth first.

    Roots are validated before anything is yielded. Within a directory,
    entries are visited in name order and files come before subdirectories.
    Directories matching `exclude_dirs` are pruned without being listed. A
    root that is a file is yielded as is. Each path is yielded at most once.

    Args:
        roots: Files or directories to search.
        include_patterns: Glob patterns a module file name must match.
        exclude_dirs: Glob patterns of directory names never descended into.

    Returns:
        A lazy iterator of resolved module paths.

    Raises:
        ConfigurationError: If a root does not exist.
    """
    resolved = [Path(root).resolve() for root in roots]
    for root in resolved:
        if not root.exists():
            raise ConfigurationError(f"root path does not exist: {root}")

    return _walk(resolved, tuple(include_patterns), tuple(exclude_dirs))


def _walk(
    roots: list[Path], include_patterns: tuple[str, ...], exclude_dirs: tuple[str, ...]
) -> Iterator[Path]:
    seen: set[Path] = set()
    for root in roots:
        if root.is_file():
            if root not in seen:
                seen.add(root)
                yield root
            continue
        for path in _walk_dir(root, include_patterns, exclude_dirs):
            if path not in seen:
                seen.add(path)
                yield path


def _walk_dir(
    directory: Path, include_patterns: tuple[str, ...], exclude_dirs: tuple[str, ...]
) -> Iterator[Path]:
    logger.debug("Scanning directory %s", directory)
    with os.scandir(directory) as it:
        entries = sorted(it, key=lambda entry: entry.name)

    subdirs: list[Path] = []
    for entry in entries:
        if entry.is_dir():
            if matches_any(entry.name, exclude_dirs):
                logger.debug("Pruned excluded directory %s", entry.path)
                continue
            subdirs.append(Path(entry.path))
        elif entry.is_file() and entry.name.endswith(".py"):
            if matches_any(entry.name, include_patterns):
                yield Path(entry.path)

    for subdir in subdirs:
        yield from _walk_dir(subdir, include_patterns, exclude_dirs)
