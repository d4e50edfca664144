"""Signed, hash-chained append-only log replicated between peers.

Each block is addressed by its BLAKE2b hash. Hashes are chained into a
root, and every length the writer reaches is signed with the log's Ed25519
key, so a replica can verify a tree head and all block hashes before it
downloads any data. Replicas may be sparse: they know every hash up to the
signed length but only hold the blocks they fetched.

Notifications go out on `events`:

- PeerConnect when a connection opens,
- PeerAck(is_ack=False) when a peer announces its length,
- PeerAck(is_ack=True) when a peer reports it stored a run of our blocks,
- BlockStored whenever a block's data lands in local storage.
"""

import asyncio
import hashlib
import logging
import secrets
from typing import TYPE_CHECKING

from ..acks.bitfield import AckBitfield
from ..errors import (
    BlockNotAvailable,
    LogEmptyError,
    LogError,
    LogNotWritable,
    UpdateError,
    VerificationError,
)
from ..events import BlockStored, EventSource, PeerAck, PeerConnect, PeerInfo
from .identity import KeyPair, verify
from .store import BlockStore, TreeHead

if TYPE_CHECKING:
    from .network import Connection, MemoryNetwork

logger = logging.getLogger(__name__)

ZERO_ROOT = bytes(32)
TREE_DOMAIN = b"hyperpublisher/tree"


def hash_block(data: bytes) -> bytes:
    return hashlib.blake2b(data, digest_size=32).digest()


def chain_root(root: bytes, block_hash: bytes) -> bytes:
    """Extend a hash-chain root with the next block's hash."""
    return hashlib.blake2b(root + block_hash, digest_size=32).digest()


def signable(length: int, root: bytes) -> bytes:
    """Bytes signed by the writer for a tree head."""
    return TREE_DOMAIN + length.to_bytes(8, "big") + root


class ReplicatedLog:
    """One append-only log, writable when opened with its secret key."""

    def __init__(
        self,
        key_pair: KeyPair,
        store: BlockStore,
        network: "MemoryNetwork | None" = None,
        name: str | None = None,
        eager: bool = False,
    ):
        """Initialize the log.

        Args:
            key_pair: Keys of the log; without a private key it is read-only.
            store: Block storage, possibly shared with other logs.
            network: Swarm to join on ready(). None keeps the log offline.
            name: Label used in log messages.
            eager: Download every announced block and acknowledge it.
        """
        self.key_pair = key_pair
        self.store = store
        self.network = network
        self.name = name or key_pair.public_key.hex()[:8]
        self.eager = eager
        self.peer_id = secrets.token_hex(8)
        self.events = EventSource(self.name)

        self._head: TreeHead | None = None
        self._connections: dict[str, "Connection"] = {}
        self._remote_heads: dict[str, TreeHead] = {}
        self._acks_sent: dict[str, AckBitfield] = {}
        self._lock = asyncio.Lock()
        self._ready = False
        self.closed = False

    @property
    def key(self) -> bytes:
        return self.key_pair.public_key

    @property
    def log_key(self) -> str:
        return self.key.hex()

    @property
    def discovery_key(self) -> bytes:
        return self.key_pair.discovery_key

    @property
    def writable(self) -> bool:
        return self.key_pair.writable

    @property
    def length(self) -> int:
        return self._head.length if self._head else 0

    @property
    def tree_head(self) -> TreeHead | None:
        return self._head

    @property
    def peers(self) -> list[PeerInfo]:
        return [conn.peer_info(self) for conn in self._connections.values()]

    async def ready(self) -> None:
        """Load the stored tree head and join the network."""
        if self._ready:
            return
        if self.closed:
            raise LogError(f"Log {self.name} is closed")

        self.store.connect()
        self._head = self.store.get_head(self.log_key)
        self._ready = True

        if self.network is not None:
            await self.network.join(self)

        logger.debug(
            f"Log {self.name} ready (length={self.length}, writable={self.writable})"
        )

    def _check_open(self) -> None:
        if self.closed:
            raise LogError(f"Log {self.name} is closed")
        if not self._ready:
            raise LogError(f"Log {self.name} is not ready")

    async def append(self, data: bytes) -> int:
        """Append one block and announce the new length to peers.

        Returns:
            Index of the appended block.
        """
        self._check_open()
        if not self.writable:
            raise LogNotWritable(f"Log {self.name} was opened without its secret key")

        index = self.length
        block_hash = hash_block(data)
        root = chain_root(self._head.root if self._head else ZERO_ROOT, block_hash)
        head = TreeHead(
            length=index + 1,
            root=root,
            signature=self.key_pair.sign(signable(index + 1, root)),
        )

        self.store.put_block(self.log_key, index, block_hash, data)
        self.store.put_head(self.log_key, head)
        self._head = head

        self.events.emit(BlockStored(index, downloaded=False))
        self._announce()
        return index

    def has(self, index: int) -> bool:
        """Whether the block's data is held locally."""
        if index < 0 or index >= self.length:
            return False
        return self.store.has_data(self.log_key, index)

    async def get(self, index: int) -> bytes:
        """Read a block, downloading it from a peer if needed.

        Raises:
            BlockNotAvailable: If no local copy exists and no peer has it.
            VerificationError: If a peer returns data with the wrong hash.
        """
        self._check_open()
        data = self.store.get_data(self.log_key, index)
        if data is not None:
            return data
        if index < 0 or index >= self.length:
            raise BlockNotAvailable(index)

        expected = self.store.get_hash(self.log_key, index)
        for peer_id, conn in list(self._connections.items()):
            remote_head = self._remote_heads.get(peer_id)
            if remote_head is not None and remote_head.length <= index:
                continue

            data = await conn.request(self, index)
            if data is None:
                continue
            if hash_block(data) != expected:
                raise VerificationError(
                    f"Block {index} of {self.name} from {peer_id} has the wrong hash"
                )

            self.store.put_block(self.log_key, index, expected, data)
            self.events.emit(BlockStored(index, downloaded=True))
            return data

        raise BlockNotAvailable(index)

    async def head(self) -> bytes:
        """Read the latest block.

        Raises:
            LogEmptyError: If the log has no entries.
        """
        if self.length == 0:
            raise LogEmptyError(f"Log {self.name} has no entries")
        return await self.get(self.length - 1)

    async def update(
        self,
        if_available: bool = True,
        min_length: int = 0,
        timeout: float | None = None,
    ) -> bool:
        """Fast-forward to the longest tree head offered by connected peers.

        Args:
            if_available: Only use peers already connected. When False,
                wait for a peer to announce a longer log.
            min_length: Fail unless the log reaches at least this length.
            timeout: Bound on the whole operation, in seconds.

        Returns:
            True if the local length grew.

        Raises:
            UpdateError: On timeout, or if min_length was not reached.
        """
        self._check_open()
        start_length = self.length

        try:
            await asyncio.wait_for(self._update(if_available), timeout)
        except asyncio.TimeoutError as e:
            raise UpdateError(f"Update of {self.name} timed out after {timeout}s") from e
        except VerificationError as e:
            raise UpdateError(f"Update of {self.name} failed verification: {e}") from e

        if self.length < min_length:
            raise UpdateError(
                f"Log {self.name} has length {self.length}, "
                f"expected at least {min_length}"
            )
        return self.length > start_length

    async def _update(self, if_available: bool) -> None:
        while True:
            best: tuple["Connection", TreeHead] | None = None
            for peer_id, conn in list(self._connections.items()):
                remote_head = await conn.request_head(self)
                if remote_head is None:
                    continue
                self._remote_heads[peer_id] = remote_head
                if best is None or remote_head.length > best[1].length:
                    best = (conn, remote_head)

            if best is not None and best[1].length > self.length:
                async with self._lock:
                    await self._adopt(*best)
                return

            if if_available:
                return

            # Wait for any peer to announce something new
            announced = asyncio.get_running_loop().create_future()

            def on_notice(event: PeerAck | PeerConnect) -> None:
                if not announced.done():
                    announced.set_result(None)

            token = self.events.subscribe(on_notice)
            try:
                await announced
            finally:
                self.events.unsubscribe(token)

    async def _adopt(self, conn: "Connection", head: TreeHead) -> bool:
        """Verify a remote tree head and record the block hashes it covers."""
        start = self.length
        if head.length <= start:
            return False

        if not verify(self.key, signable(head.length, head.root), head.signature):
            raise VerificationError(f"Bad tree head signature for {self.name}")

        hashes = await conn.request_hashes(self, start, head.length)
        if self.length != start:
            return await self._adopt(conn, head)
        if len(hashes) != head.length - start:
            raise VerificationError(
                f"Peer sent {len(hashes)} hashes for {self.name}, "
                f"expected {head.length - start}"
            )

        root = self._head.root if self._head else ZERO_ROOT
        for block_hash in hashes:
            root = chain_root(root, block_hash)
        if root != head.root:
            raise VerificationError(f"Hash chain mismatch for {self.name}")

        self.store.put_hashes(self.log_key, start, hashes)
        self.store.put_head(self.log_key, head)
        self._head = head
        logger.debug(f"Log {self.name} fast-forwarded {start} -> {head.length}")
        return True

    async def wait_for_peer(self, timeout: float | None = None) -> PeerInfo:
        """Return a connected peer, waiting for one if none is connected yet.

        Raises:
            asyncio.TimeoutError: If no peer connects within timeout.
        """
        self._check_open()
        if self._connections:
            return self.peers[0]

        connected = asyncio.get_running_loop().create_future()

        def on_connect(event: PeerConnect) -> None:
            if not connected.done():
                connected.set_result(event.peer)

        token = self.events.subscribe(on_connect, PeerConnect)
        try:
            return await asyncio.wait_for(connected, timeout)
        finally:
            self.events.unsubscribe(token)

    async def close(self) -> None:
        """Leave the network. The shared store is closed by its owner."""
        if self.closed:
            return
        self.closed = True
        if self.network is not None and self._ready:
            await self.network.leave(self)
        self._connections.clear()
        self._remote_heads.clear()
        logger.debug(f"Log {self.name} closed")

    # Connection management, called by the network

    def add_connection(self, conn: "Connection") -> None:
        peer = conn.peer_info(self)
        self._connections[peer.peer_id] = conn
        self.events.emit(PeerConnect(peer))
        if self._head is not None:
            conn.send(conn.remote(self).on_have(conn, self._head))

    def remove_connection(self, conn: "Connection") -> None:
        peer_id = conn.peer_info(self).peer_id
        self._connections.pop(peer_id, None)
        self._remote_heads.pop(peer_id, None)
        self._acks_sent.pop(peer_id, None)

    def _announce(self, exclude: "Connection | None" = None) -> None:
        for conn in list(self._connections.values()):
            if conn is not exclude:
                conn.send(conn.remote(self).on_have(conn, self._head))

    # Requests served to peers

    def serve_head(self) -> TreeHead | None:
        if self.closed or not self._ready:
            return None
        return self._head

    def serve_block(self, index: int) -> bytes | None:
        if self.closed or not self._ready:
            return None
        return self.store.get_data(self.log_key, index)

    def serve_hashes(self, start: int, end: int) -> list[bytes]:
        if self.closed or not self._ready:
            return []
        return self.store.get_hashes(self.log_key, start, end)

    # Messages received from peers

    async def on_have(self, conn: "Connection", head: TreeHead) -> None:
        """A peer announced the length it holds."""
        peer_id = conn.peer_info(self).peer_id
        self._remote_heads[peer_id] = head
        self.events.emit(PeerAck(peer_id, 0, head.length, is_ack=False))

        if self.eager:
            await self._replicate(conn)

    async def on_ack(self, conn: "Connection", start: int, length: int) -> None:
        """A peer reported it durably stored blocks [start, start + length)."""
        peer_id = conn.peer_info(self).peer_id
        self.events.emit(PeerAck(peer_id, start, length, is_ack=True))

    async def _replicate(self, conn: "Connection") -> None:
        """Fetch everything the peer announced and acknowledge what we hold."""
        peer_id = conn.peer_info(self).peer_id
        async with self._lock:
            remote_head = self._remote_heads.get(peer_id)
            if remote_head is None or conn.closed:
                return
            try:
                if await self._adopt(conn, remote_head):
                    self._announce(exclude=conn)
            except VerificationError as e:
                logger.warning(f"Rejected update of {self.name} from {peer_id}: {e}")
                return

            target = min(remote_head.length, self.length)
            sent = self._acks_sent.setdefault(peer_id, AckBitfield())
            remote = conn.remote(self)
            run_start: int | None = None

            for index in range(target):
                if sent.has(index):
                    continue
                if not self.has(index):
                    if run_start is not None:
                        conn.send(remote.on_ack(conn, run_start, index - run_start))
                        sent.fill(run_start, index)
                        run_start = None
                    try:
                        await self.get(index)
                    except (BlockNotAvailable, VerificationError) as e:
                        logger.debug(f"{self.name}: cannot fetch block {index}: {e}")
                        continue
                    if conn.closed:
                        return
                    conn.send(remote.on_ack(conn, index, 1))
                    sent.set(index)
                elif run_start is None:
                    run_start = index

            if run_start is not None:
                conn.send(remote.on_ack(conn, run_start, target - run_start))
                sent.fill(run_start, target)
