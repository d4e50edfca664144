"""Publish sessions: create a drive, or sync a local directory into one.

A session owns every resource it opens (block store, both logs, their
network membership, ack trackers, an optional in-process mirror) through a
single AsyncExitStack, so each exit path releases them exactly once.
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable

from .acks import AckTracker, FileRange, RangeWaiter, WaitOutcome, WaitResult
from .config import Config
from .diff import DiffEntry, DriveTarget, apply_right, diff
from .drive import Drive
from .errors import (
    AckTimeout,
    InvalidArgument,
    LogError,
    MetadataUnreachable,
    NoPeerFound,
    SessionCancelled,
)
from .events import PeerConnect
from .log.core import ReplicatedLog
from .log.identity import DriveKeys, parse_seed, random_seed
from .log.mirror import MirrorPeer
from .log.network import MemoryNetwork
from .log.store import BlockStore
from .pinning import PinningClient, PinResult

logger = logging.getLogger(__name__)

METADATA_LABEL = "/.metadata"


class SessionState(Enum):
    """
    Phases of a publish session.

    Both entry points walk the same line and skip what they do not need::

        OPENING -> AWAITING_PEER -> SYNCING_METADATA -+-> INITIALIZING ------+
                                                       |                     |
                                                       +-> DIFFING -> APPLYING -> AWAITING_ACK -> DONE

    create() initializes the drive header; sync() diffs and applies, skipping
    APPLYING when the diff is empty. Any phase may end in FAILED. get_url()
    goes straight from OPENING to DONE.
    """

    OPENING = "opening"
    AWAITING_PEER = "awaiting_peer"
    SYNCING_METADATA = "syncing_metadata"
    INITIALIZING = "initializing"
    DIFFING = "diffing"
    APPLYING = "applying"
    AWAITING_ACK = "awaiting_ack"
    DONE = "done"
    FAILED = "failed"

    def can_transition_to(self, target: SessionState) -> bool:
        """Check if transition to target state is valid."""
        return target in _VALID_TRANSITIONS.get(self, set())

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.DONE, SessionState.FAILED)


_VALID_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.OPENING: {
        SessionState.AWAITING_PEER,
        SessionState.DONE,
        SessionState.FAILED,
    },
    SessionState.AWAITING_PEER: {SessionState.SYNCING_METADATA, SessionState.FAILED},
    SessionState.SYNCING_METADATA: {
        SessionState.INITIALIZING,
        SessionState.DIFFING,
        SessionState.FAILED,
    },
    SessionState.INITIALIZING: {SessionState.AWAITING_ACK, SessionState.FAILED},
    SessionState.DIFFING: {
        SessionState.APPLYING,
        SessionState.AWAITING_ACK,
        SessionState.FAILED,
    },
    SessionState.APPLYING: {SessionState.AWAITING_ACK, SessionState.FAILED},
    SessionState.AWAITING_ACK: {SessionState.DONE, SessionState.FAILED},
    SessionState.DONE: set(),
    SessionState.FAILED: set(),
}


@dataclass
class CreateResult:
    """Outcome of create()."""

    url: str
    seed: str
    title: str | None = None
    initialized: bool = True
    ack: WaitResult | None = None
    pin: PinResult | None = None


@dataclass
class SyncResult:
    """Outcome of sync()."""

    url: str
    diff: list[DiffEntry] = field(default_factory=list)
    awaited: list[FileRange] = field(default_factory=list)
    metadata_range: FileRange | None = None
    tag: str | None = None
    ack: WaitResult | None = None


def default_title(url_key: bytes) -> str:
    return f"Hyperdrive-Publisher {url_key[:4].hex()}"


class SyncSession:
    """One create or sync run against the drive derived from a seed."""

    def __init__(
        self,
        seed: bytes | str,
        network: MemoryNetwork | None = None,
        config: Config | None = None,
        store: BlockStore | None = None,
        log: logging.Logger | None = None,
        offline: bool = False,
    ):
        """Initialize the session.

        Args:
            seed: 32-byte secret seed, raw or hex.
            network: Swarm to publish on; a private one is created if None.
            config: Timeouts, storage, mirror and publish settings.
            store: Block store to use; the session opens and closes its own
                (from config.storage) when None.
            log: Logger receiving progress messages.
            offline: Never join a network (used for read-only lookups).
        """
        self.seed = parse_seed(seed)
        self.keys = DriveKeys.from_seed(self.seed)
        self.config = config or Config()
        self.network = None if offline else (network or MemoryNetwork())
        self.log = log or logger

        self._owns_store = store is None
        self.store = store or BlockStore(self.config.storage.db_path)

        self.state = SessionState.OPENING
        self.history: list[SessionState] = [SessionState.OPENING]
        self.error: BaseException | None = None

        self.metadata: ReplicatedLog | None = None
        self.content: ReplicatedLog | None = None
        self.drive: Drive | None = None
        self.metadata_tracker: AckTracker | None = None
        self.content_tracker: AckTracker | None = None
        self.mirror: MirrorPeer | None = None
        self.waiters: list[RangeWaiter] = []
        self.result: CreateResult | SyncResult | None = None

        self._stack: AsyncExitStack | None = None
        self.release_count = 0

    @property
    def url(self) -> str:
        return self.keys.url

    def _transition(self, target: SessionState) -> None:
        if not self.state.can_transition_to(target):
            raise RuntimeError(
                f"Invalid session transition {self.state.value} -> {target.value}"
            )
        self.log.debug(f"Session {self.url[:16]}: {self.state.value} -> {target.value}")
        self.state = target
        self.history.append(target)

    def _fail(self, error: BaseException) -> None:
        if self.state.is_terminal:
            return
        self.error = error
        self.state = SessionState.FAILED
        self.history.append(SessionState.FAILED)
        self.log.error(f"Session {self.url[:16]} failed: {error}")

    def _log_mirror_stats(self) -> None:
        self.log.info(f"Mirror stats: {self.mirror.get_stats()}")

    async def __aenter__(self) -> SyncSession:
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc is not None:
            self._fail(exc)
        await self.close()

    async def open(self) -> None:
        """Open both logs, attach ack trackers and join the network."""
        if self._stack is not None:
            return

        stack = AsyncExitStack()
        self._stack = stack
        try:
            if self._owns_store:
                self.store.connect()
                stack.callback(self.store.close)

            if self.network is not None and self.config.mirror.enabled:
                self.mirror = MirrorPeer(
                    self.keys.metadata.public_key,
                    self.network,
                    BlockStore(self.config.mirror.db_path),
                )
                stack.callback(self.mirror.store.close)
                await self.mirror.start()
                stack.push_async_callback(self.mirror.stop)
                stack.callback(self._log_mirror_stats)

            self.metadata = ReplicatedLog(
                self.keys.metadata, self.store, self.network, name="metadata"
            )
            self.content = ReplicatedLog(
                self.keys.content, self.store, self.network, name="content"
            )
            stack.push_async_callback(self.metadata.close)
            stack.push_async_callback(self.content.close)

            # Trackers attach before the logs join so no early ack is lost
            self.metadata_tracker = AckTracker.attach(self.metadata)
            self.content_tracker = AckTracker.attach(self.content)
            stack.callback(self.metadata_tracker.detach)
            stack.callback(self.content_tracker.detach)

            token = self.metadata.events.subscribe(self._on_peer_connect, PeerConnect)
            stack.callback(self.metadata.events.unsubscribe, token)

            await self.metadata.ready()
            await self.content.ready()
            self.drive = Drive(self.metadata, self.content)
        except BaseException as e:
            self._fail(e)
            await self.close()
            raise

    async def close(self) -> None:
        """Release everything the session opened. Idempotent."""
        stack, self._stack = self._stack, None
        if stack is None:
            return
        await stack.aclose()
        self.release_count += 1
        self.log.debug(f"Session {self.url[:16]} released ({self.state.value})")

    def cancel(self) -> None:
        """Cancel any in-progress acknowledgment wait."""
        for waiter in self.waiters:
            waiter.cancel()

    def _on_peer_connect(self, event: PeerConnect) -> None:
        peer = event.peer
        self.log.info(
            f"Connected to peer {peer.peer_id} "
            f"({peer.remote_type} {peer.remote_address})"
        )

    # Phases

    async def _await_peer(self) -> None:
        self._transition(SessionState.AWAITING_PEER)
        timeout = self.config.timeouts.peer_seconds
        if not self.metadata.peers:
            self.log.info("Listening for peers")
        try:
            await self.metadata.wait_for_peer(timeout)
        except asyncio.TimeoutError as e:
            raise NoPeerFound(timeout) from e

    async def _sync_metadata(self, required: bool) -> None:
        """Fast-forward both logs from connected peers.

        On the sync path any failure is fatal: writing to a log whose
        latest state is unknown would fork it.
        """
        self._transition(SessionState.SYNCING_METADATA)
        timeouts = self.config.timeouts
        min_length = self.config.publish.min_metadata_length if required else 0

        self.log.info(f"Waiting for update (metadata length {self.metadata.length})")
        try:
            await self.metadata.update(
                if_available=True, min_length=min_length, timeout=timeouts.update_seconds
            )
            await self.content.update(if_available=True, timeout=timeouts.update_seconds)
        except LogError as e:
            if required:
                raise MetadataUnreachable(
                    f"Unable to update drive metadata for {self.url}: {e}", cause=e
                ) from e
            self.log.info(f"No existing drive state found ({e})")

        if not required and self.metadata.length == 0:
            return

        # Once a remote state exists it must load completely
        try:
            await self.metadata.head()
            await self.drive.refresh()
            needed = self.drive.content_length
            if self.content.length < needed:
                raise LogError(
                    f"Content log has length {self.content.length}, "
                    f"drive references {needed} blocks"
                )
        except LogError as e:
            raise MetadataUnreachable(
                f"Unable to load latest drive state for {self.url}: {e}", cause=e
            ) from e

    async def _await_acks(
        self, groups: Iterable[tuple[AckTracker, list[FileRange]]]
    ) -> WaitResult:
        """Wait until peers acknowledge every range, one waiter per log."""
        self._transition(SessionState.AWAITING_ACK)
        timeout = self.config.timeouts.ack_seconds
        self.waiters = [RangeWaiter(tracker, ranges) for tracker, ranges in groups if ranges]

        count = sum(len(w.ranges) for w in self.waiters)
        self.log.info(f"Waiting for peers to acknowledge {count} range(s)")

        results = await asyncio.gather(*(w.wait(timeout) for w in self.waiters))

        if any(r.outcome is WaitOutcome.CANCELLED for r in results):
            raise SessionCancelled(self.state.value)
        pending = [r for result in results for r in result.pending]
        if any(r.outcome is WaitOutcome.FAILED for r in results):
            raise AckTimeout(timeout, pending)

        return WaitResult(
            outcome=WaitOutcome.SATISFIED,
            elapsed=max((r.elapsed for r in results), default=0.0),
        )

    def _metadata_range(self, start: int) -> FileRange:
        return FileRange(METADATA_LABEL, start, self.metadata.length)

    # Entry points

    async def create(self, title: str | None = None) -> CreateResult:
        """Initialize the drive and publish its index.json."""
        await self.open()
        result = CreateResult(url=self.url, seed=self.seed.hex(), title=title)
        self.result = result

        pinning = PinningClient(self.config.pinning)
        if pinning.enabled:
            result.pin = await pinning.pin(self.url)

        await self._await_peer()
        await self._sync_metadata(required=False)

        self._transition(SessionState.INITIALIZING)
        metadata_start = self.metadata.length
        result.initialized = await self.drive.initialize()

        content_ranges = []
        if result.initialized or title is not None:
            title = title or default_title(self.keys.metadata.public_key)
            result.title = title
            index = json.dumps({"title": title}, indent=2) + "\n"
            st = await self.drive.write_file("/index.json", index)
            content_ranges.append(self.drive.file_range(st))
            self.log.info("Initialized drive")

        result.ack = await self._await_acks([
            (self.metadata_tracker, [self._metadata_range(metadata_start)]),
            (self.content_tracker, content_ranges),
        ])

        self._transition(SessionState.DONE)
        self.log.info(f"Synced {self.url}")
        return result

    async def sync(
        self,
        fs_path: str | Path = ".",
        drive_path: str = "/",
        tag: str | None = None,
        ignore: Iterable[str] | None = None,
        delete: bool | None = None,
    ) -> SyncResult:
        """Publish the changes between a local directory and the drive."""
        await self.open()
        publish = self.config.publish
        ignore = list(publish.ignore if ignore is None else ignore)
        delete = publish.delete if delete is None else delete

        result = SyncResult(url=self.url, tag=tag)
        self.result = result

        await self._await_peer()
        await self._sync_metadata(required=True)

        self._transition(SessionState.DIFFING)
        self.log.info("Finding changed files")
        target = DriveTarget(self.drive, drive_path)
        try:
            result.diff = await diff(
                fs_path,
                target,
                compare_content=publish.compare_content,
                ignore=ignore,
                delete=delete,
            )
        except NotADirectoryError as e:
            raise InvalidArgument(f"Not a directory: {fs_path}", field="fs_path") from e
        self.log.info(f"Diff: {[e.to_dict() for e in result.diff]}")

        metadata_start = self.metadata.length
        if result.diff:
            self._transition(SessionState.APPLYING)
            self.log.info("Loading into drive")
            written = await apply_right(fs_path, target, result.diff)
            result.awaited = [self.drive.file_range(st) for st in written]

        if tag:
            await self.drive.create_tag(tag)
            self.log.info(f"Tagged version {self.drive.version - 1} as {tag}")

        result.metadata_range = self._metadata_range(metadata_start)
        result.ack = await self._await_acks([
            (self.metadata_tracker, [result.metadata_range]),
            (self.content_tracker, result.awaited),
        ])

        self._transition(SessionState.DONE)
        self.log.info("Done")
        return result

    async def get_url(self) -> str:
        """Open the drive's logs, derive the public URL and finish."""
        await self.open()
        self._transition(SessionState.DONE)
        return self.url


async def create(
    seed: bytes | str | None = None,
    title: str | None = None,
    network: MemoryNetwork | None = None,
    config: Config | None = None,
    log: logging.Logger | None = None,
) -> CreateResult:
    """Create (or re-initialize) the drive for a seed; a new seed if None."""
    seed = random_seed() if seed is None else parse_seed(seed)
    async with SyncSession(seed, network, config, log=log) as session:
        return await session.create(title)


async def sync(
    seed: bytes | str | None,
    fs_path: str | Path = ".",
    drive_path: str = "/",
    tag: str | None = None,
    ignore: Iterable[str] | None = None,
    delete: bool | None = None,
    network: MemoryNetwork | None = None,
    config: Config | None = None,
    log: logging.Logger | None = None,
) -> SyncResult:
    """Sync a local directory into the drive derived from a seed."""
    async with SyncSession(parse_seed(seed), network, config, log=log) as session:
        return await session.sync(fs_path, drive_path, tag=tag, ignore=ignore, delete=delete)


async def get_url(seed: bytes | str | None, config: Config | None = None) -> str:
    """Public hyper:// URL of the drive derived from a seed."""
    async with SyncSession(parse_seed(seed), config=config, offline=True) as session:
        return await session.get_url()
