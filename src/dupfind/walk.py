"""Directory traversal feeding candidate image paths to a scan."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, FrozenSet, Iterable, Iterator, Optional, Set, Tuple

from .config import ConfigError
from .logging import get_logger

logger = get_logger(__name__)

SUPPORTED_EXTENSIONS: FrozenSet[str] = frozenset({
    "jpg",
    "jpeg",
    "avif",
    "bmp",
    "dds",
    "exr",
    "gif",
    "hdr",
    "ico",
    "png",
    "pnm",
    "qoi",
    "tga",
    "tif",
    "tiff",
    "webp",
})

ErrorCallback = Callable[[Path, OSError], None]


@dataclass(frozen=True)
class Candidate:
    """A file handed to the engine, with metadata gathered during the walk."""
    path: Path
    size: Optional[int] = None
    mtime: Optional[float] = None


def parse_extensions(text: str) -> FrozenSet[str]:
    """
    Parse a comma separated extension list such as "jpg, png,.webp".

    Raises:
        ConfigError: If the list is empty or names an unsupported extension
    """
    exts = {part.strip().lstrip(".").lower() for part in text.split(",")}
    exts.discard("")
    if not exts:
        raise ConfigError("no extensions given")
    unsupported = sorted(exts - SUPPORTED_EXTENSIONS)
    if unsupported:
        raise ConfigError(f"unsupported extension(s): {', '.join(unsupported)}")
    return frozenset(exts)


def iter_candidates(
    root: Path,
    follow_symlinks: bool = False,
    max_depth: Optional[int] = None,
    extensions: Optional[Iterable[str]] = None,
    on_error: Optional[ErrorCallback] = None,
) -> Iterator[Candidate]:
    """
    Lazily yield image files under root.

    Args:
        root: Directory to walk
        follow_symlinks: Descend into symlinked directories and accept symlinked files
        max_depth: 1 yields only root's direct children; None is unlimited
        extensions: Accepted extensions without the dot, case-insensitive
        on_error: Called with (path, error) for entries that cannot be read

    Raises:
        ValueError: If max_depth is less than 1
    """
    if max_depth is not None and max_depth < 1:
        raise ValueError("a depth limit below 1 doesn't search at all")

    exts = frozenset(e.lower() for e in extensions) if extensions is not None else SUPPORTED_EXTENSIONS
    visited: Set[Tuple[int, int]] = set()

    def report(path: Path, exc: OSError) -> None:
        logger.warning(f"Error walking {path}: {exc}")
        if on_error is not None:
            on_error(path, exc)

    root = Path(root)
    try:
        st = root.stat()
    except OSError as exc:
        report(root, exc)
        return
    visited.add((st.st_dev, st.st_ino))

    stack = [(root, 1)]
    while stack:
        directory, depth = stack.pop()
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as exc:
            report(directory, exc)
            continue

        subdirs = []
        for entry in entries:
            path = Path(entry.path)
            try:
                if entry.is_dir(follow_symlinks=follow_symlinks):
                    if max_depth is not None and depth >= max_depth:
                        continue
                    st = entry.stat(follow_symlinks=follow_symlinks)
                    key = (st.st_dev, st.st_ino)
                    if key in visited:
                        logger.debug(f"Skipping already visited directory {path}")
                        continue
                    visited.add(key)
                    subdirs.append((path, depth + 1))
                    continue

                if not entry.is_file(follow_symlinks=follow_symlinks):
                    continue
                if path.suffix.lstrip(".").lower() not in exts:
                    continue
                st = entry.stat(follow_symlinks=follow_symlinks)
            except OSError as exc:
                report(path, exc)
                continue

            yield Candidate(path=path, size=st.st_size, mtime=st.st_mtime)

        # Reversed so directories pop in name order
        stack.extend(reversed(subdirs))
