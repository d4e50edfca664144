"""Tests for diffing a local directory against a drive."""

import os

import pytest

from hyperpublisher.diff import (
    ADD,
    DEL,
    MOD,
    DiffEntry,
    DriveTarget,
    apply_right,
    diff,
    is_ignored,
    walk_source,
)
from hyperpublisher.drive import Drive
from hyperpublisher.log import ReplicatedLog


async def open_drive(keys, store):
    metadata = ReplicatedLog(keys.metadata, store)
    content = ReplicatedLog(keys.content, store)
    await metadata.ready()
    await content.ready()
    drive = Drive(metadata, content)
    await drive.initialize()
    return drive


class TestIgnore:
    """Tests for ignore pattern matching."""

    @pytest.mark.parametrize(
        "path, patterns, expected",
        [
            ("a.txt", ["*.txt"], True),
            ("dir/a.txt", ["*.txt"], True),
            ("node_modules/x/y.js", ["node_modules"], True),
            (".git/config", [".git"], True),
            ("src/main.py", ["*.txt"], False),
            ("src/main.py", ["src/*.py"], True),
            ("src/main.py", [], False),
        ],
    )
    def test_is_ignored(self, path, patterns, expected):
        assert is_ignored(path, patterns) is expected

    def test_walk_source_skips_ignored(self, tmp_path):
        (tmp_path / "keep.txt").write_text("k")
        (tmp_path / ".git").mkdir()
        (tmp_path / ".git" / "HEAD").write_text("ref")
        (tmp_path / "sub").mkdir()
        (tmp_path / "sub" / "nested.md").write_text("n")

        files = walk_source(tmp_path, ignore=[".git"])

        assert sorted(files) == ["/keep.txt", "/sub/nested.md"]

    def test_walk_source_requires_directory(self, tmp_path):
        with pytest.raises(NotADirectoryError):
            walk_source(tmp_path / "missing")


class TestDiff:
    """Tests for diff() and apply_right()."""

    @pytest.mark.asyncio
    async def test_new_files_are_adds(self, keys, store, source_dir):
        """Test two new files against an empty drive give two adds."""
        drive = await open_drive(keys, store)

        changes = await diff(source_dir, DriveTarget(drive))

        assert changes == [DiffEntry(ADD, "/data.bin"), DiffEntry(ADD, "/hello.txt")]

    @pytest.mark.asyncio
    async def test_no_changes_after_apply(self, keys, store, source_dir):
        drive = await open_drive(keys, store)
        target = DriveTarget(drive)
        written = await apply_right(source_dir, target, await diff(source_dir, target))

        assert [st.path for st in written] == ["/data.bin", "/hello.txt"]
        assert await diff(source_dir, target) == []

    @pytest.mark.asyncio
    async def test_modified_content(self, keys, store, source_dir):
        drive = await open_drive(keys, store)
        target = DriveTarget(drive)
        await apply_right(source_dir, target, await diff(source_dir, target))

        # Same size, different bytes
        (source_dir / "hello.txt").write_text("HELLO WORLD\n")

        assert await diff(source_dir, target) == [DiffEntry(MOD, "/hello.txt")]

    @pytest.mark.asyncio
    async def test_mtime_comparison(self, keys, store, source_dir):
        """Test compare_content=False trusts modification times."""
        drive = await open_drive(keys, store)
        target = DriveTarget(drive)
        await apply_right(source_dir, target, await diff(source_dir, target))

        hello = source_dir / "hello.txt"
        hello.write_text("HELLO WORLD\n")
        st = hello.stat()
        os.utime(hello, (st.st_atime, st.st_mtime + 10))

        changes = await diff(source_dir, target, compare_content=False)

        assert changes == [DiffEntry(MOD, "/hello.txt")]

    @pytest.mark.asyncio
    async def test_deletions_only_when_requested(self, keys, store, source_dir):
        drive = await open_drive(keys, store)
        await drive.write_file("/index.json", '{"title": "x"}')
        target = DriveTarget(drive)

        without = await diff(source_dir, target)
        with_delete = await diff(source_dir, target, delete=True)

        assert DiffEntry(DEL, "/index.json") not in without
        assert DiffEntry(DEL, "/index.json") in with_delete

        await apply_right(source_dir, target, with_delete)
        assert not await drive.exists("/index.json")

    @pytest.mark.asyncio
    async def test_subfolder_target(self, keys, store, source_dir):
        """Test syncing into a folder of the drive."""
        drive = await open_drive(keys, store)
        await drive.write_file("/index.json", "{}")
        target = DriveTarget(drive, "/site")

        changes = await diff(source_dir, target, delete=True)
        await apply_right(source_dir, target, changes)

        assert [c.path for c in changes] == ["/data.bin", "/hello.txt"]
        assert await drive.list_files() == ["/index.json", "/site/data.bin", "/site/hello.txt"]
        assert await drive.read_file("/site/hello.txt") == b"hello world\n"

    @pytest.mark.asyncio
    async def test_ignored_files_are_left_out(self, keys, store, source_dir):
        drive = await open_drive(keys, store)

        changes = await diff(source_dir, DriveTarget(drive), ignore=["*.bin"])

        assert changes == [DiffEntry(ADD, "/hello.txt")]

    def test_entry_to_dict(self):
        assert DiffEntry(ADD, "/a").to_dict() == {"change": "add", "path": "/a", "type": "file"}
