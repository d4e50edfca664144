"""Tests for the drive file-system view."""

import json

import pytest

from hyperpublisher.drive import (
    BLOCK_SIZE,
    Drive,
    decode_header,
    encode_header,
    normalize_path,
)
from hyperpublisher.errors import DriveError
from hyperpublisher.log import BlockStore, KeyPair, MemoryNetwork, ReplicatedLog


async def open_drive(keys, store, network=None):
    metadata = ReplicatedLog(keys.metadata, store, network, name="metadata")
    content = ReplicatedLog(keys.content, store, network, name="content")
    await metadata.ready()
    await content.ready()
    return Drive(metadata, content)


class TestHelpers:
    """Tests for path and header helpers."""

    @pytest.mark.parametrize(
        "path, expected",
        [
            ("a/b", "/a/b"),
            ("/a/./b/", "/a/b"),
            ("a/b/../c", "/a/c"),
            ("//a", "/a"),
            ("", "/"),
        ],
    )
    def test_normalize_path(self, path, expected):
        assert normalize_path(path) == expected

    def test_header(self, keys):
        header = decode_header(encode_header(keys.content.public_key))

        assert header["type"] == "hyperdrive"
        assert header["content"] == keys.content.public_key.hex()

    @pytest.mark.parametrize(
        "data",
        [b"not json", b'{"type": "other", "content": "00"}', b'{"type": "hyperdrive"}'],
    )
    def test_decode_header_rejects(self, data):
        with pytest.raises(DriveError):
            decode_header(data)


class TestDrive:
    """Tests for Drive."""

    @pytest.mark.asyncio
    async def test_initialize_once(self, keys, store):
        """Test the header is written by the first initialize() only."""
        drive = await open_drive(keys, store)

        assert await drive.initialize() is True
        assert await drive.initialize() is False

        assert drive.metadata.length == 1
        assert drive.initialized

    @pytest.mark.asyncio
    async def test_initialize_checks_foreign_header(self, keys, store):
        """Test a header naming another content log is refused."""
        drive = await open_drive(keys, store)
        await drive.metadata.append(encode_header(b"\x01" * 32))

        with pytest.raises(DriveError):
            await drive.initialize()

    @pytest.mark.asyncio
    async def test_write_and_read(self, keys, store):
        drive = await open_drive(keys, store)
        await drive.initialize()

        st = await drive.write_file("docs/readme.txt", "hello")

        assert st.path == "/docs/readme.txt"
        assert st.size == 5
        assert st.block_count == 1
        assert await drive.read_file("/docs/readme.txt") == b"hello"
        assert await drive.read_file("/docs/readme.txt", encoding="utf-8") == "hello"

    @pytest.mark.asyncio
    async def test_large_file_spans_blocks(self, keys, store):
        drive = await open_drive(keys, store)
        await drive.initialize()
        data = b"x" * (BLOCK_SIZE * 2 + 10)

        st = await drive.write_file("/big.bin", data)

        assert st.block_count == 3
        assert drive.file_range(st).length == 3
        assert drive.content_length == 3
        assert await drive.read_file("/big.bin") == data

    @pytest.mark.asyncio
    async def test_empty_file(self, keys, store):
        drive = await open_drive(keys, store)
        await drive.initialize()

        st = await drive.write_file("/empty", b"")

        assert st.block_count == 0
        assert await drive.read_file("/empty") == b""

    @pytest.mark.asyncio
    async def test_overwrite_appends_new_blocks(self, keys, store):
        drive = await open_drive(keys, store)
        await drive.initialize()
        first = await drive.write_file("/a.txt", "one")

        second = await drive.write_file("/a.txt", "two")

        assert second.block_offset == first.block_end
        assert await drive.read_file("/a.txt") == b"two"

    @pytest.mark.asyncio
    async def test_stat_missing(self, keys, store):
        drive = await open_drive(keys, store)
        await drive.initialize()

        with pytest.raises(FileNotFoundError):
            await drive.stat("/nope")

    @pytest.mark.asyncio
    async def test_delete(self, keys, store):
        drive = await open_drive(keys, store)
        await drive.initialize()
        await drive.write_file("/a.txt", "a")

        await drive.delete("/a.txt")

        assert not await drive.exists("/a.txt")
        with pytest.raises(FileNotFoundError):
            await drive.delete("/a.txt")

    @pytest.mark.asyncio
    async def test_list_and_readdir(self, keys, store):
        drive = await open_drive(keys, store)
        await drive.initialize()
        for path in ("/index.json", "/site/a.html", "/site/css/main.css"):
            await drive.write_file(path, "x")

        assert await drive.list_files("/site") == ["/site/a.html", "/site/css/main.css"]
        assert await drive.readdir("/") == ["index.json", "site"]
        assert await drive.readdir("/site") == ["a.html", "css"]

    @pytest.mark.asyncio
    async def test_tags(self, keys, store):
        drive = await open_drive(keys, store)
        await drive.initialize()
        await drive.write_file("/a.txt", "a")

        version = await drive.create_tag("v1")

        assert version == 2
        assert await drive.get_all_tags() == {"v1": 2}

    @pytest.mark.asyncio
    async def test_records_are_json(self, keys, store):
        drive = await open_drive(keys, store)
        await drive.initialize()
        await drive.write_file("/a.txt", "a", mtime=12.5)

        record = json.loads(await drive.metadata.get(1))

        assert record == {
            "type": "put",
            "path": "/a.txt",
            "offset": 0,
            "blocks": 1,
            "size": 1,
            "mtime": 12.5,
        }

    @pytest.mark.asyncio
    async def test_replica_reads_published_drive(self, keys, store):
        """Test a read-only replica loads the drive from its writer."""
        network = MemoryNetwork()
        writer = await open_drive(keys, store, network)
        await writer.initialize()
        await writer.write_file("/a.txt", "replicated")

        replica_store = BlockStore()
        metadata = ReplicatedLog(
            KeyPair.read_only(keys.metadata.public_key), replica_store, network
        )
        content = ReplicatedLog(
            KeyPair.read_only(keys.content.public_key), replica_store, network
        )
        await metadata.ready()
        await content.ready()
        await metadata.update(timeout=1.0)
        await content.update(timeout=1.0)
        replica = Drive(metadata, content)

        await replica.refresh()

        assert await replica.list_files() == ["/a.txt"]
        assert await replica.read_file("/a.txt") == b"replicated"
        replica_store.close()
