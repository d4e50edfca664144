"""Compare a local directory with a drive and apply the differences."""

import fnmatch
import logging
import os
import posixpath
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from .drive import Drive, Stat, normalize_path

logger = logging.getLogger(__name__)

ADD = "add"
MOD = "mod"
DEL = "del"


@dataclass(frozen=True)
class DiffEntry:
    """One change needed to make the drive match the local tree."""

    change: str  # "add", "mod" or "del"
    path: str  # relative to the compared roots, with a leading "/"
    type: str = "file"

    def to_dict(self) -> dict:
        return {"change": self.change, "path": self.path, "type": self.type}


@dataclass
class DriveTarget:
    """A directory inside a drive."""

    drive: Drive
    path: str = "/"

    def drive_path(self, rel_path: str) -> str:
        return normalize_path(posixpath.join(self.path, rel_path.lstrip("/")))


def is_ignored(rel_path: str, patterns: Iterable[str]) -> bool:
    """Match a relative path against glob patterns.

    A pattern matches the full relative path, the file name, or any
    leading directory of the path.
    """
    rel_path = rel_path.strip("/")
    if not rel_path:
        return False
    parts = rel_path.split("/")
    prefixes = ["/".join(parts[:i]) for i in range(1, len(parts))]
    for pattern in patterns:
        pattern = pattern.strip("/")
        if fnmatch.fnmatch(rel_path, pattern) or fnmatch.fnmatch(parts[-1], pattern):
            return True
        if any(fnmatch.fnmatch(prefix, pattern) for prefix in prefixes):
            return True
    return False


def walk_source(source: str | Path, ignore: Iterable[str] = ()) -> dict[str, Path]:
    """Every regular file under `source`, keyed by '/relative/posix/path'."""
    root = Path(source).expanduser()
    if not root.is_dir():
        raise NotADirectoryError(str(root))

    ignore = list(ignore)
    files = {}
    for dirpath, dirnames, filenames in os.walk(root):
        rel_dir = Path(dirpath).relative_to(root).as_posix()
        rel_dir = "" if rel_dir == "." else rel_dir
        dirnames[:] = sorted(
            d for d in dirnames if not is_ignored(posixpath.join(rel_dir, d), ignore)
        )
        for name in sorted(filenames):
            rel = posixpath.join(rel_dir, name)
            full = Path(dirpath) / name
            if not full.is_file() or is_ignored(rel, ignore):
                continue
            files["/" + rel] = full
    return files


async def diff(
    source: str | Path,
    dest: DriveTarget,
    compare_content: bool = True,
    ignore: Iterable[str] = (),
    delete: bool = False,
) -> list[DiffEntry]:
    """List the changes that would make `dest` match `source`.

    Args:
        source: Local directory.
        dest: Drive directory to compare against.
        compare_content: Compare bytes of same-sized files instead of
            trusting modification times (a fresh checkout has new mtimes).
        ignore: Glob patterns excluded on both sides.
        delete: Report files present only in the drive as deletions.

    Returns:
        Changes sorted by path.
    """
    ignore = list(ignore)
    local = walk_source(source, ignore)

    prefix = normalize_path(dest.path).rstrip("/")
    remote: dict[str, Stat] = {}
    for drive_path in await dest.drive.list_files(dest.path):
        rel = drive_path[len(prefix):]
        if not is_ignored(rel, ignore):
            remote[rel] = await dest.drive.stat(drive_path)

    changes = []
    for rel in sorted(set(local) | set(remote)):
        if rel not in remote:
            changes.append(DiffEntry(ADD, rel))
        elif rel not in local:
            if delete:
                changes.append(DiffEntry(DEL, rel))
        elif await _is_modified(local[rel], remote[rel], dest.drive, compare_content):
            changes.append(DiffEntry(MOD, rel))

    logger.debug(f"Diff of {source} against {dest.drive.url}{dest.path}: {len(changes)} change(s)")
    return changes


async def _is_modified(
    local: Path, remote: Stat, drive: Drive, compare_content: bool
) -> bool:
    st = local.stat()
    if st.st_size != remote.size:
        return True
    if compare_content:
        return local.read_bytes() != await drive.read_file(remote.path)
    return int(st.st_mtime) > int(remote.mtime)


async def apply_right(
    source: str | Path, dest: DriveTarget, changes: Iterable[DiffEntry]
) -> list[Stat]:
    """Apply changes from `source` to the drive.

    Returns:
        Stats of the files written, in the order they were written.
    """
    root = Path(source).expanduser()
    written = []
    for entry in changes:
        drive_path = dest.drive_path(entry.path)
        if entry.change in (ADD, MOD):
            local = root / entry.path.lstrip("/")
            written.append(
                await dest.drive.write_file(
                    drive_path, local.read_bytes(), mtime=local.stat().st_mtime
                )
            )
        elif entry.change == DEL:
            await dest.drive.delete(drive_path)
        else:
            raise ValueError(f"Unknown change type: {entry.change}")
        logger.debug(f"Applied {entry.change} {drive_path}")
    return written
