"""Folder grouping and saving for received transfers.

Transfers whose ``relativePath`` shares a first segment form one folder
group (``docs/a.txt`` and ``docs/sub/b.txt`` both belong to ``docs``).
Transfers without a relative path never belong to a group.

A group can be saved once every member is complete:
    - With a directory picker: the tree is recreated under the chosen
      directory, e.g. ``<target>/docs/sub/b.txt``.
    - Without one: a single ``<folder>.zip`` is written to the download
      directory, with every member stored at its relative path.
"""
import asyncio
import inspect
import logging
import zipfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Union

from pydantic import BaseModel

from roomdrop.transfer.assembler import ReceptionAssembler
from roomdrop.transfer.exceptions import (
    FolderNotFoundError,
    FolderNotReadyError,
    FolderSaveCancelled,
    FolderSaveError,
)
from roomdrop.transfer.schemas import IncomingStatus, IncomingTransfer

logger = logging.getLogger(__name__)

DirectoryPicker = Callable[[str], Union[Path, Awaitable[Path]]]


class SaveMode(str, Enum):
    DIRECTORY = "directory"
    ARCHIVE = "archive"


class FolderSaveResult(BaseModel):
    folderName: str
    mode: SaveMode
    path: str
    fileCount: int


@dataclass
class FolderGroup:
    """Received transfers sharing a top-level folder."""
    folder_name: str
    files: List[IncomingTransfer] = field(default_factory=list)

    @property
    def is_ready(self) -> bool:
        return is_ready(self)


def root_folder(relative_path: Optional[str]) -> Optional[str]:
    """First segment of a relative path, or None."""
    if not relative_path:
        return None
    first = relative_path.split("/")[0]
    return first or None


def group_transfers(transfers: List[IncomingTransfer]) -> List[FolderGroup]:
    """Group transfers by the first segment of their relative path."""
    groups: Dict[str, FolderGroup] = {}
    for transfer in transfers:
        folder = root_folder(transfer.meta.relativePath)
        if folder is None:
            continue
        groups.setdefault(folder, FolderGroup(folder_name=folder)).files.append(transfer)
    return list(groups.values())


def is_ready(group: FolderGroup) -> bool:
    """True iff every member is complete and holds its payload."""
    return bool(group.files) and all(
        t.status == IncomingStatus.COMPLETE and t.payload is not None
        for t in group.files
    )


def safe_segments(relative_path: str, folder_name: str) -> List[str]:
    """Split a relative path into segments that are safe to join onto a directory.

    Raises:
        FolderSaveError: If the path is absolute or walks out of the target.
    """
    if relative_path.startswith("/") or "\\" in relative_path:
        raise FolderSaveError(f"Refusing unsafe path {relative_path!r}", folder_name)
    segments = [s for s in relative_path.split("/") if s]
    if not segments or any(s in (".", "..") or ":" in s for s in segments):
        raise FolderSaveError(f"Refusing unsafe path {relative_path!r}", folder_name)
    return segments


class FolderAggregator:
    """Derives folder groups from a ReceptionAssembler and saves them.

    Groups are never stored; they are recomputed from the assembler's
    current transfers on every access.

    Args:
        assembler: The assembler whose transfers are grouped.
        download_dir: Where ZIP archives are written.
    """

    def __init__(self, assembler: ReceptionAssembler, download_dir: Union[str, Path] = "./downloads") -> None:
        self.assembler = assembler
        self.download_dir = Path(download_dir)

    @property
    def groups(self) -> List[FolderGroup]:
        return group_transfers(self.assembler.transfers)

    def get(self, folder_name: str) -> Optional[FolderGroup]:
        for group in self.groups:
            if group.folder_name == folder_name:
                return group
        return None

    def is_ready(self, folder_name: str) -> bool:
        group = self.get(folder_name)
        return group is not None and is_ready(group)

    async def save(
        self,
        folder_name: str,
        pick_directory: Optional[DirectoryPicker] = None,
    ) -> FolderSaveResult:
        """Save every file of a folder group.

        Args:
            folder_name: Top-level folder to save.
            pick_directory: Callable returning the target directory (may be
                a coroutine function). Raises FolderSaveCancelled when the
                user aborts. Without it, a ZIP archive is written instead.

        Returns:
            FolderSaveResult describing what was written.

        Raises:
            FolderNotFoundError: No received file belongs to the folder.
            FolderNotReadyError: Some member is not complete yet.
            FolderSaveCancelled: The directory selection was aborted.
            FolderSaveError: Writing failed.
        """
        group = self.get(folder_name)
        if group is None:
            raise FolderNotFoundError(folder_name)
        if not is_ready(group):
            pending = sum(1 for t in group.files if t.status != IncomingStatus.COMPLETE or t.payload is None)
            raise FolderNotReadyError(folder_name, pending)

        # Snapshot the payloads so later resets cannot change what is written.
        # Files arrive in meta order, so a re-sent path keeps its latest payload.
        latest: Dict[str, bytes] = {}
        for t in group.files:
            latest[t.meta.relativePath or t.meta.name] = t.payload
        entries = list(latest.items())
        for relative_path, _ in entries:
            safe_segments(relative_path, folder_name)

        loop = asyncio.get_running_loop()
        if pick_directory is None:
            archive_path = self.download_dir / f"{folder_name}.zip"
            await self._run_io(loop, folder_name, _write_archive, archive_path, entries)
            logger.info(f"[Folders] Folder {folder_name} packed into {archive_path}")
            return FolderSaveResult(
                folderName=folder_name,
                mode=SaveMode.ARCHIVE,
                path=str(archive_path),
                fileCount=len(entries),
            )

        target = pick_directory(folder_name)
        if inspect.isawaitable(target):
            target = await target
        target = Path(target)

        await self._run_io(loop, folder_name, _write_tree, target, entries, folder_name)
        logger.info(f"[Folders] Folder {folder_name} saved under {target}")
        return FolderSaveResult(
            folderName=folder_name,
            mode=SaveMode.DIRECTORY,
            path=str(target),
            fileCount=len(entries),
        )

    @staticmethod
    async def _run_io(loop, folder_name: str, func, *args) -> None:
        try:
            await loop.run_in_executor(None, func, *args)
        except OSError as e:
            raise FolderSaveError(str(e), folder_name) from e


def _write_tree(target: Path, entries, folder_name: str) -> None:
    for relative_path, payload in entries:
        segments = safe_segments(relative_path, folder_name)
        file_path = target.joinpath(*segments)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_bytes(payload)


def _write_archive(archive_path: Path, entries) -> None:
    archive_path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(archive_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for relative_path, payload in entries:
            zf.writestr(relative_path, payload)
