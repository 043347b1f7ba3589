"""Tests for folder grouping and saving."""
import zipfile

import pytest

from roomdrop.transfer.assembler import ReceptionAssembler
from roomdrop.transfer.exceptions import (
    FolderNotFoundError,
    FolderNotReadyError,
    FolderSaveCancelled,
    FolderSaveError,
)
from roomdrop.transfer.folders import (
    FolderAggregator,
    SaveMode,
    group_transfers,
    root_folder,
    safe_segments,
)
from roomdrop.transfer.schemas import TransferMeta


def receive(assembler, transfer_id, payload, relative_path=None, name=None, complete=True):
    name = name or (relative_path.rsplit("/", 1)[-1] if relative_path else transfer_id)
    assembler.on_meta(TransferMeta(
        transferId=transfer_id,
        name=name,
        size=len(payload),
        relativePath=relative_path,
        totalChunks=1,
    ))
    assembler.on_chunk(transfer_id, 0, payload)
    if complete:
        assembler.on_complete(transfer_id)


@pytest.fixture
def assembler():
    return ReceptionAssembler()


@pytest.fixture
def folders(assembler, tmp_path):
    return FolderAggregator(assembler, download_dir=tmp_path / "downloads")


@pytest.mark.parametrize("path,expected", [
    ("docs/a.txt", "docs"),
    ("docs/sub/b.txt", "docs"),
    ("a.txt", "a.txt"),
    ("", None),
    (None, None),
    ("/abs", None),
])
def test_root_folder(path, expected):
    assert root_folder(path) == expected


class TestGrouping:
    def test_groups_by_first_segment(self, assembler, folders):
        receive(assembler, "t1", b"a", "docs/a.txt")
        receive(assembler, "t2", b"b", "docs/sub/b.txt")
        receive(assembler, "t3", b"c", "photos/c.jpg")
        receive(assembler, "t4", b"loose", name="loose.txt")

        groups = {g.folder_name: g for g in folders.groups}

        assert set(groups) == {"docs", "photos"}
        assert [t.transfer_id for t in groups["docs"].files] == ["t1", "t2"]
        assert all(t.transfer_id != "t4" for g in groups.values() for t in g.files)

    def test_groups_follow_assembler_state(self, assembler, folders):
        receive(assembler, "t1", b"a", "docs/a.txt")
        assert folders.get("docs") is not None

        assembler.discard("t1")
        assert folders.get("docs") is None
        assert folders.groups == []

    def test_group_transfers_keeps_arrival_order(self, assembler):
        receive(assembler, "t2", b"b", "z/b")
        receive(assembler, "t1", b"a", "a/a")
        assert [g.folder_name for g in group_transfers(assembler.transfers)] == ["z", "a"]


class TestReadiness:
    def test_ready_only_when_all_complete(self, assembler, folders):
        receive(assembler, "t1", b"a", "docs/a.txt")
        receive(assembler, "t2", b"b", "docs/sub/b.txt", complete=False)

        assert folders.is_ready("docs") is False
        assert folders.get("docs").is_ready is False

        assembler.on_complete("t2")
        assert folders.is_ready("docs") is True

    def test_failed_member_blocks_folder(self, assembler, folders):
        receive(assembler, "t1", b"a", "docs/a.txt")
        receive(assembler, "t2", b"b", "docs/b.txt", complete=False)
        assembler.on_error("t2", "sender gave up")
        assert folders.is_ready("docs") is False

    def test_unknown_folder_is_not_ready(self, folders):
        assert folders.is_ready("nothing") is False


class TestSave:
    @pytest.mark.asyncio
    async def test_save_archive(self, assembler, folders, tmp_path):
        receive(assembler, "t1", b"alpha", "docs/a.txt")
        receive(assembler, "t2", b"beta", "docs/sub/b.txt")

        result = await folders.save("docs")

        assert result.mode == SaveMode.ARCHIVE
        assert result.fileCount == 2
        archive = tmp_path / "downloads" / "docs.zip"
        assert result.path == str(archive)
        with zipfile.ZipFile(archive) as zf:
            assert sorted(zf.namelist()) == ["docs/a.txt", "docs/sub/b.txt"]
            assert zf.read("docs/sub/b.txt") == b"beta"

    @pytest.mark.asyncio
    async def test_resent_folder_keeps_latest_copy(self, assembler, folders, tmp_path):
        receive(assembler, "t1", b"old", "docs/a.txt")
        receive(assembler, "t2", b"other", "docs/b.txt")
        receive(assembler, "t3", b"new", "docs/a.txt")

        result = await folders.save("docs")
        assert result.fileCount == 2
        with zipfile.ZipFile(result.path) as zf:
            assert sorted(zf.namelist()) == ["docs/a.txt", "docs/b.txt"]
            assert zf.read("docs/a.txt") == b"new"

        target = tmp_path / "tree"
        result = await folders.save("docs", pick_directory=lambda name: target)
        assert result.fileCount == 2
        assert (target / "docs" / "a.txt").read_bytes() == b"new"

    @pytest.mark.asyncio
    async def test_save_directory(self, assembler, folders, tmp_path):
        receive(assembler, "t1", b"alpha", "docs/a.txt")
        receive(assembler, "t2", b"beta", "docs/sub/b.txt")
        target = tmp_path / "chosen"

        result = await folders.save("docs", pick_directory=lambda name: target)

        assert result.mode == SaveMode.DIRECTORY
        assert (target / "docs" / "a.txt").read_bytes() == b"alpha"
        assert (target / "docs" / "sub" / "b.txt").read_bytes() == b"beta"

    @pytest.mark.asyncio
    async def test_async_picker(self, assembler, folders, tmp_path):
        receive(assembler, "t1", b"alpha", "docs/a.txt")

        async def pick(name):
            return tmp_path / "async-target"

        await folders.save("docs", pick_directory=pick)
        assert (tmp_path / "async-target" / "docs" / "a.txt").exists()

    @pytest.mark.asyncio
    async def test_cancelled_picker_writes_nothing(self, assembler, folders, tmp_path):
        receive(assembler, "t1", b"alpha", "docs/a.txt")

        def cancel(name):
            raise FolderSaveCancelled(name)

        with pytest.raises(FolderSaveCancelled) as exc_info:
            await folders.save("docs", pick_directory=cancel)

        assert exc_info.value.folder_name == "docs"
        assert not (tmp_path / "downloads").exists()

    @pytest.mark.asyncio
    async def test_not_ready(self, assembler, folders):
        receive(assembler, "t1", b"alpha", "docs/a.txt")
        receive(assembler, "t2", b"beta", "docs/b.txt", complete=False)

        with pytest.raises(FolderNotReadyError) as exc_info:
            await folders.save("docs")
        assert exc_info.value.pending == 1

    @pytest.mark.asyncio
    async def test_not_found(self, folders):
        with pytest.raises(FolderNotFoundError):
            await folders.save("missing")

    @pytest.mark.asyncio
    async def test_unsafe_path_is_refused(self, assembler, folders, tmp_path):
        receive(assembler, "t1", b"evil", "docs/../../escape.txt")

        with pytest.raises(FolderSaveError):
            await folders.save("docs", pick_directory=lambda name: tmp_path / "t")
        assert not (tmp_path / "escape.txt").exists()

    @pytest.mark.asyncio
    async def test_write_failure_is_wrapped(self, assembler, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        folders = FolderAggregator(assembler, download_dir=blocker)
        receive(assembler, "t1", b"alpha", "docs/a.txt")

        with pytest.raises(FolderSaveError) as exc_info:
            await folders.save("docs")
        assert exc_info.value.folder_name == "docs"


class TestSafeSegments:
    def test_splits_path(self):
        assert safe_segments("docs/sub/b.txt", "docs") == ["docs", "sub", "b.txt"]

    @pytest.mark.parametrize("path", [
        "/etc/passwd",
        "docs/../x",
        "docs/./x",
        "docs\\x",
        "C:/x",
        "",
    ])
    def test_rejects(self, path):
        with pytest.raises(FolderSaveError):
            safe_segments(path, "docs")
