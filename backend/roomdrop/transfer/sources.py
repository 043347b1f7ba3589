"""Files queued for sending.

A source file exposes its name, size, MIME type, an optional folder-relative
path and an async ``read(start, end)``. Selecting a folder produces one
source per file with ``relative_path`` set to ``<folder>/<path inside>``,
the same convention browsers use for directory uploads.
"""
import asyncio
import logging
import mimetypes
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from roomdrop.config import DEFAULT_EXCLUDE_PATTERNS

logger = logging.getLogger(__name__)


def guess_mime_type(name: str) -> str:
    mime_type, _ = mimetypes.guess_type(name)
    return mime_type or ""


class SourceFile:
    """Base class for anything the sender can split into chunks."""

    name: str
    size: int
    mime_type: str
    relative_path: Optional[str]

    async def read(self, start: int, end: int) -> bytes:
        raise NotImplementedError


class LocalFile(SourceFile):
    """A file on disk, read one byte range at a time in the default executor."""

    def __init__(
        self,
        path: Union[str, Path],
        relative_path: Optional[str] = None,
        mime_type: Optional[str] = None,
    ) -> None:
        self.path = Path(path)
        self.name = self.path.name
        # Size is fixed when the file is queued
        self.size = self.path.stat().st_size
        self.mime_type = guess_mime_type(self.name) if mime_type is None else mime_type
        self.relative_path = relative_path or None

    def _read_range(self, start: int, end: int) -> bytes:
        with self.path.open("rb") as fh:
            fh.seek(start)
            return fh.read(max(0, end - start))

    async def read(self, start: int, end: int) -> bytes:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._read_range, start, end)

    def __repr__(self) -> str:
        return f"LocalFile({str(self.path)!r}, relative_path={self.relative_path!r})"


@dataclass
class MemoryFile(SourceFile):
    """An in-memory payload."""
    name: str
    data: bytes = field(repr=False)
    mime_type: str = ""
    relative_path: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.data)

    async def read(self, start: int, end: int) -> bytes:
        return self.data[start:end]


def matches_exclude_pattern(relative_path: str, pattern: str) -> bool:
    """Check a ``/``-separated path against one exclude pattern.

    Patterns ending in ``/`` match directories anywhere in the path,
    ``*.ext`` patterns match the suffix, anything else is a substring match.

    Examples:
        >>> matches_exclude_pattern("app/node_modules/x.js", "node_modules/")
        True
        >>> matches_exclude_pattern("app/debug.log", "*.log")
        True
    """
    if pattern.endswith("/"):
        return pattern in relative_path
    if pattern.startswith("*."):
        return relative_path.endswith(pattern[1:])
    return pattern in relative_path


def is_excluded(relative_path: str, patterns: Sequence[str]) -> bool:
    return any(matches_exclude_pattern(relative_path, p) for p in patterns)


def collect_files(
    paths: Iterable[Union[str, Path]],
    exclude_patterns: Optional[Sequence[str]] = None,
) -> Tuple[List[LocalFile], int]:
    """Turn selected files and folders into source files.

    Args:
        paths: Files and/or directories picked by the user.
        exclude_patterns: Patterns to filter out (defaults to build output,
            VCS metadata, dependency folders and log files).

    Returns:
        Tuple of (files, excluded_count).

    Raises:
        FileNotFoundError: If a path does not exist.
    """
    patterns = DEFAULT_EXCLUDE_PATTERNS if exclude_patterns is None else list(exclude_patterns)
    files: List[LocalFile] = []
    excluded = 0

    for raw_path in paths:
        path = Path(raw_path)
        if path.is_file():
            if is_excluded(path.name, patterns):
                excluded += 1
                continue
            files.append(LocalFile(path))
            continue

        if not path.is_dir():
            raise FileNotFoundError(f"No such file or directory: {path}")

        root_name = path.resolve().name
        for dirpath, dirnames, filenames in os.walk(path):
            dirnames.sort()
            for filename in sorted(filenames):
                file_path = Path(dirpath) / filename
                relative_path = f"{root_name}/{file_path.relative_to(path).as_posix()}"
                if is_excluded(relative_path, patterns):
                    excluded += 1
                    continue
                files.append(LocalFile(file_path, relative_path=relative_path))

    if excluded:
        logger.info(f"[Sources] Excluded {excluded} file(s) matching exclude patterns")
    return files, excluded
