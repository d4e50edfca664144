"""File-system view over a metadata log and a content log.

Metadata log layout:

- block 0 is the header: {"type": "hyperdrive", "content": <content key hex>}
- every later block is one JSON record: a "put" (path, offset, blocks,
  size), a "del" (path) or a "tag" (name, version).

File bytes live in the content log, split into BLOCK_SIZE chunks; a put
record points at the contiguous block span holding them.
"""

import json
import logging
import posixpath
import time
from dataclasses import dataclass

from .acks.tracker import FileRange
from .errors import DriveError
from .log.core import ReplicatedLog
from .log.identity import url_for

logger = logging.getLogger(__name__)

BLOCK_SIZE = 64 * 1024
HEADER_TYPE = "hyperdrive"


def normalize_path(path: str) -> str:
    """Absolute, normalized drive path ('a/b/../c' -> '/a/c')."""
    normalized = posixpath.normpath("/" + path.strip())
    # normpath keeps a leading '//' as-is
    return "/" + normalized.lstrip("/")


def encode_header(content_key: bytes) -> bytes:
    return json.dumps({"type": HEADER_TYPE, "content": content_key.hex()}).encode("utf-8")


def decode_header(data: bytes) -> dict:
    """Parse and validate a drive header block."""
    try:
        header = json.loads(data)
    except ValueError as e:
        raise DriveError(f"Drive header is not JSON: {e}") from e
    if not isinstance(header, dict) or header.get("type") != HEADER_TYPE:
        raise DriveError(f"Not a drive header: {data[:64]!r}")
    if "content" not in header:
        raise DriveError("Drive header has no content key")
    return header


@dataclass(frozen=True)
class Stat:
    """Location of one file in the content log."""

    path: str
    block_offset: int
    block_count: int
    size: int
    mtime: float = 0.0
    version: int = 0  # metadata index of the record

    @property
    def block_end(self) -> int:
        return self.block_offset + self.block_count


class Drive:
    """Read/write access to a drive through its two logs."""

    def __init__(self, metadata: ReplicatedLog, content: ReplicatedLog):
        self.metadata = metadata
        self.content = content
        self._files: dict[str, Stat] = {}
        self._tags: dict[str, int] = {}
        self._loaded = 0

    @property
    def key(self) -> bytes:
        return self.metadata.key

    @property
    def url(self) -> str:
        return url_for(self.key)

    @property
    def version(self) -> int:
        return self.metadata.length

    @property
    def content_length(self) -> int:
        """Content blocks referenced by the records loaded so far."""
        return max((st.block_end for st in self._files.values()), default=0)

    @property
    def initialized(self) -> bool:
        return self.metadata.length > 0

    async def initialize(self) -> bool:
        """Append the header block unless the drive already has one.

        Returns:
            True if the header was written by this call.
        """
        if self.initialized:
            await self.check_header()
            return False
        await self.metadata.append(encode_header(self.content.key))
        self._loaded = 1
        logger.debug(f"Initialized drive {self.url}")
        return True

    async def check_header(self) -> dict:
        """Verify block 0 is a header naming our content log."""
        header = decode_header(await self.metadata.get(0))
        if header["content"] != self.content.key.hex():
            raise DriveError(
                f"Drive header names content log {header['content'][:8]}, "
                f"expected {self.content.key.hex()[:8]}"
            )
        return header

    async def refresh(self) -> None:
        """Fold metadata records appended since the last refresh."""
        if self._loaded == 0 and self.metadata.length > 0:
            await self.check_header()
            self._loaded = 1

        while self._loaded < self.metadata.length:
            index = self._loaded
            self._apply(index, json.loads(await self.metadata.get(index)))
            self._loaded += 1

    def _apply(self, index: int, record: dict) -> None:
        kind = record.get("type")
        if kind == "put":
            path = record["path"]
            self._files[path] = Stat(
                path=path,
                block_offset=record["offset"],
                block_count=record["blocks"],
                size=record["size"],
                mtime=record.get("mtime", 0.0),
                version=index,
            )
        elif kind == "del":
            self._files.pop(record["path"], None)
        elif kind == "tag":
            self._tags[record["name"]] = record["version"]
        else:
            logger.warning(f"Skipping unknown drive record {index}: {kind!r}")

    async def _append_record(self, record: dict) -> int:
        index = await self.metadata.append(json.dumps(record).encode("utf-8"))
        self._apply(index, record)
        self._loaded = index + 1
        return index

    async def stat(self, path: str) -> Stat:
        """Block location of a file.

        Raises:
            FileNotFoundError: If the path is not a file in the drive.
        """
        await self.refresh()
        path = normalize_path(path)
        try:
            return self._files[path]
        except KeyError:
            raise FileNotFoundError(path) from None

    async def exists(self, path: str) -> bool:
        await self.refresh()
        return normalize_path(path) in self._files

    async def read_file(self, path: str, encoding: str | None = None) -> bytes | str:
        """Read a file's bytes, downloading content blocks as needed."""
        st = await self.stat(path)
        chunks = [await self.content.get(i) for i in range(st.block_offset, st.block_end)]
        data = b"".join(chunks)
        return data.decode(encoding) if encoding else data

    async def write_file(
        self, path: str, data: bytes | str, mtime: float | None = None
    ) -> Stat:
        """Append a file's bytes to the content log and record its location."""
        await self.refresh()
        if isinstance(data, str):
            data = data.encode("utf-8")

        path = normalize_path(path)
        offset = self.content.length
        for start in range(0, len(data), BLOCK_SIZE):
            await self.content.append(data[start:start + BLOCK_SIZE])

        await self._append_record({
            "type": "put",
            "path": path,
            "offset": offset,
            "blocks": self.content.length - offset,
            "size": len(data),
            "mtime": mtime if mtime is not None else time.time(),
        })
        logger.debug(f"Wrote {path} ({len(data)} bytes) to {self.url}")
        return self._files[path]

    async def delete(self, path: str) -> None:
        path = normalize_path(path)
        if not await self.exists(path):
            raise FileNotFoundError(path)
        await self._append_record({"type": "del", "path": path})

    async def list_files(self, path: str = "/") -> list[str]:
        """Every file path at or below `path`, sorted."""
        await self.refresh()
        prefix = normalize_path(path).rstrip("/") + "/"
        return sorted(p for p in self._files if p.startswith(prefix))

    async def readdir(self, path: str = "/") -> list[str]:
        """Names of the immediate children of a directory."""
        prefix = normalize_path(path).rstrip("/") + "/"
        names = {p[len(prefix):].split("/", 1)[0] for p in await self.list_files(path)}
        return sorted(names)

    async def create_tag(self, name: str, version: int | None = None) -> int:
        """Name a metadata version (the current one by default)."""
        await self.refresh()
        version = self.version if version is None else version
        await self._append_record({"type": "tag", "name": name, "version": version})
        return version

    async def get_all_tags(self) -> dict[str, int]:
        await self.refresh()
        return dict(self._tags)

    def file_range(self, st: Stat) -> FileRange:
        """Content-log range holding a file's bytes."""
        return FileRange(st.path, st.block_offset, st.block_end)
