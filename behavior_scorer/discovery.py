"""Session transcript discovery on the local filesystem."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from behavior_scorer.validation import MAX_TRANSCRIPT_BYTES

logger = logging.getLogger(__name__)

DEFAULT_EXTENSIONS = (".md", ".json")


@dataclass(frozen=True, slots=True)
class ScanOptions:
    """Directory walk limits and file filters.

    ``max_depth`` counts path components below the scan root, so 1 means
    files directly inside the root and 2 also includes one level of
    subdirectories.
    """

    max_depth: int = 2
    extensions: tuple[str, ...] = DEFAULT_EXTENSIONS
    max_file_bytes: int = MAX_TRANSCRIPT_BYTES

    def __post_init__(self) -> None:
        if self.max_depth < 1:
            raise ValueError(f"max_depth must be >= 1, got {self.max_depth}")
        if self.max_file_bytes <= 0:
            raise ValueError(f"max_file_bytes must be > 0, got {self.max_file_bytes}")

    def accepts_suffix(self, path: Path) -> bool:
        suffix = path.suffix.lower()
        return any(suffix == ext.lower() for ext in self.extensions)


def iter_session_files(root: Path, options: ScanOptions | None = None) -> Iterator[Path]:
    """Yield transcript files below root in a deterministic order."""
    effective = options or ScanOptions()
    yield from _walk(root, depth=1, options=effective)


def _walk(directory: Path, *, depth: int, options: ScanOptions) -> Iterator[Path]:
    try:
        entries = sorted(directory.iterdir(), key=lambda item: item.name)
    except OSError as exc:
        logger.warning("Skipping unreadable directory %s: %s", directory, exc)
        return

    for entry in entries:
        if entry.is_dir():
            if depth < options.max_depth:
                yield from _walk(entry, depth=depth + 1, options=options)
            continue
        if not entry.is_file() or not options.accepts_suffix(entry):
            continue
        try:
            size = entry.stat().st_size
        except OSError as exc:
            logger.warning("Skipping unreadable file %s: %s", entry, exc)
            continue
        if size > options.max_file_bytes:
            logger.warning("Skipping large file: %s (%d bytes)", entry, size)
            continue
        yield entry
