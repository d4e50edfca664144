"""Mirror peer: a replica that eagerly stores a drive and acknowledges it.

This is the role a pinning service plays for a published drive. The mirror
only knows the drive's public key; it learns the content log's key from the
drive header once block 0 of the metadata log arrives.
"""

import asyncio
import json
import logging

from ..events import BlockStored
from .core import ReplicatedLog
from .identity import KeyPair, parse_url, url_for
from .network import MemoryNetwork
from .store import BlockStore

logger = logging.getLogger(__name__)


class MirrorPeer:
    """Keeps a full, acknowledged copy of one drive."""

    def __init__(
        self,
        url: str | bytes,
        network: MemoryNetwork,
        store: BlockStore | None = None,
    ):
        """Initialize the mirror.

        Args:
            url: hyper:// URL or raw public key of the drive.
            network: Swarm to join.
            store: Storage for the replica; in-memory by default.
        """
        self.key = url if isinstance(url, bytes) else parse_url(url)
        self.network = network
        self.store = store or BlockStore()
        self.metadata: ReplicatedLog | None = None
        self.content: ReplicatedLog | None = None
        self._token: int | None = None
        self._tasks: set[asyncio.Task] = set()
        self._running = False

    @property
    def url(self) -> str:
        return url_for(self.key)

    async def start(self) -> None:
        """Open the metadata replica and join the network."""
        if self._running:
            return
        self._running = True

        self.metadata = ReplicatedLog(
            KeyPair.read_only(self.key),
            self.store,
            self.network,
            name="mirror-metadata",
            eager=True,
        )
        self._token = self.metadata.events.subscribe(self._on_stored, BlockStored)
        await self.metadata.ready()

        # A persistent store may already hold the header
        if self.metadata.has(0):
            await self._open_content()

        logger.info(f"Mirroring {self.url}")

    async def stop(self) -> None:
        """Leave the network. The store stays open for its owner."""
        self._running = False
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        if self.metadata is not None:
            if self._token is not None:
                self.metadata.events.unsubscribe(self._token)
                self._token = None
            await self.metadata.close()
        if self.content is not None:
            await self.content.close()
        logger.info(f"Stopped mirroring {self.url}")

    def _on_stored(self, event: BlockStored) -> None:
        if event.index != 0 or self.content is not None or not self._running:
            return
        task = asyncio.get_running_loop().create_task(self._open_content())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _open_content(self) -> None:
        if self.content is not None:
            return

        header = json.loads(await self.metadata.get(0))
        content_key = bytes.fromhex(header["content"])

        self.content = ReplicatedLog(
            KeyPair.read_only(content_key),
            self.store,
            self.network,
            name="mirror-content",
            eager=True,
        )
        await self.content.ready()
        logger.debug(f"Mirror opened content log {content_key.hex()[:8]}")

    def get_stats(self) -> dict:
        """Replication progress of both logs."""
        stats = {"url": self.url}
        for name, log in (("metadata", self.metadata), ("content", self.content)):
            if log is None:
                stats[name] = None
                continue
            stats[name] = {
                "length": log.length,
                "stored": self.store.count_data(log.log_key),
                "peers": len(log.peers),
            }
        return stats
