"""Tests for source files and folder selection."""
import pytest

from roomdrop.config import DEFAULT_EXCLUDE_PATTERNS
from roomdrop.transfer.sources import (
    LocalFile,
    MemoryFile,
    collect_files,
    guess_mime_type,
    is_excluded,
    matches_exclude_pattern,
)


@pytest.fixture
def project_tree(tmp_path):
    root = tmp_path / "project"
    (root / "src").mkdir(parents=True)
    (root / "src" / "main.py").write_text("print('hi')\n")
    (root / "README.md").write_text("# readme\n")
    (root / "node_modules" / "lib").mkdir(parents=True)
    (root / "node_modules" / "lib" / "index.js").write_text("x")
    (root / "debug.log").write_text("noise")
    (root / ".git").mkdir()
    (root / ".git" / "HEAD").write_text("ref")
    return root


class TestExcludePatterns:
    @pytest.mark.parametrize("path,pattern,expected", [
        ("app/node_modules/x.js", "node_modules/", True),
        ("app/node_modules_backup/x.js", "node_modules/", False),
        ("app/debug.log", "*.log", True),
        ("app/catalog.txt", "*.log", False),
        ("photos/.DS_Store", ".DS_Store", True),
        ("docs/a.txt", "dist/", False),
    ])
    def test_matches(self, path, pattern, expected):
        assert matches_exclude_pattern(path, pattern) is expected

    def test_is_excluded_with_defaults(self):
        assert is_excluded("site/dist/bundle.js", DEFAULT_EXCLUDE_PATTERNS)
        assert not is_excluded("site/src/bundle.js", DEFAULT_EXCLUDE_PATTERNS)


class TestCollectFiles:
    def test_folder_gets_relative_paths(self, project_tree):
        files, excluded = collect_files([project_tree])

        paths = sorted(f.relative_path for f in files)
        assert paths == ["project/README.md", "project/src/main.py"]
        assert excluded == 3

    def test_custom_patterns(self, project_tree):
        files, excluded = collect_files([project_tree], exclude_patterns=["*.md"])
        paths = {f.relative_path for f in files}
        assert "project/README.md" not in paths
        assert "project/node_modules/lib/index.js" in paths
        assert excluded == 1

    def test_single_file_has_no_relative_path(self, project_tree):
        files, excluded = collect_files([project_tree / "README.md"])
        assert excluded == 0
        assert files[0].relative_path is None
        assert files[0].name == "README.md"
        assert files[0].size == len("# readme\n")

    def test_missing_path(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            collect_files([tmp_path / "nope"])


class TestSources:
    @pytest.mark.asyncio
    async def test_local_file_reads_ranges(self, tmp_path):
        path = tmp_path / "data.bin"
        path.write_bytes(b"0123456789")
        source = LocalFile(path)

        assert await source.read(0, 4) == b"0123"
        assert await source.read(8, 12) == b"89"
        assert await source.read(5, 5) == b""

    @pytest.mark.asyncio
    async def test_memory_file(self):
        source = MemoryFile(name="m.txt", data=b"hello", relative_path="notes/m.txt")
        assert source.size == 5
        assert await source.read(1, 3) == b"el"

    def test_mime_type_guess(self, tmp_path):
        assert guess_mime_type("photo.png") == "image/png"
        assert guess_mime_type("no_extension_here") == ""

        path = tmp_path / "x.txt"
        path.write_text("x")
        assert LocalFile(path).mime_type == "text/plain"
        assert LocalFile(path, mime_type="").mime_type == ""
