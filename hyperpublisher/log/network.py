"""In-process swarm connecting logs that share a discovery key.

Stands in for a real peer-to-peer transport: logs join a topic (their
discovery key) and get a Connection to every other log on the same topic.
Messages between the two ends run as tasks owned by the connection, so
leaving the network cancels anything still in flight.
"""

import asyncio
import logging
import secrets
from typing import TYPE_CHECKING, Awaitable

from ..events import PeerInfo

if TYPE_CHECKING:
    from .core import ReplicatedLog
    from .store import TreeHead

logger = logging.getLogger(__name__)


class Connection:
    """Replication link between two logs with the same key."""

    def __init__(self, network: "MemoryNetwork", a: "ReplicatedLog", b: "ReplicatedLog"):
        self.network = network
        self.id = secrets.token_hex(4)
        self._ends = (a, b)
        self._tasks: set[asyncio.Task] = set()
        self.closed = False

    def remote(self, log: "ReplicatedLog") -> "ReplicatedLog":
        """The log at the other end of the connection."""
        a, b = self._ends
        return b if log is a else a

    def peer_info(self, log: "ReplicatedLog") -> PeerInfo:
        """Describe the remote end as seen from `log`."""
        remote = self.remote(log)
        return PeerInfo(
            peer_id=remote.peer_id,
            remote_address=f"memory:{self.id}",
            remote_type="memory",
            remote_public_key=remote.peer_id.encode("utf-8"),
        )

    def send(self, message: Awaitable) -> None:
        """Deliver a message to the remote end asynchronously."""
        if self.closed:
            if asyncio.iscoroutine(message):
                message.close()
            return
        task = asyncio.get_running_loop().create_task(self._deliver(message))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(self, message: Awaitable) -> None:
        if self.network.latency:
            await asyncio.sleep(self.network.latency)
        try:
            await message
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Connection {self.id}: message failed: {e}")

    async def request(self, log: "ReplicatedLog", index: int) -> bytes | None:
        """Ask the remote end for the data of one block."""
        if self.closed:
            return None
        if self.network.latency:
            await asyncio.sleep(self.network.latency)
        return self.remote(log).serve_block(index)

    async def request_head(self, log: "ReplicatedLog") -> "TreeHead | None":
        """Ask the remote end for its latest signed tree head."""
        if self.closed:
            return None
        if self.network.latency:
            await asyncio.sleep(self.network.latency)
        return self.remote(log).serve_head()

    async def request_hashes(self, log: "ReplicatedLog", start: int, end: int) -> list[bytes]:
        """Ask the remote end for the block hashes of [start, end)."""
        if self.closed:
            return []
        if self.network.latency:
            await asyncio.sleep(self.network.latency)
        return self.remote(log).serve_hashes(start, end)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        for end in self._ends:
            end.remove_connection(self)


class MemoryNetwork:
    """Topic registry connecting every pair of logs on the same key."""

    def __init__(self, latency: float = 0.0):
        """Initialize the network.

        Args:
            latency: Seconds to delay every message, for simulating slow peers.
        """
        self.latency = latency
        self._topics: dict[bytes, list["ReplicatedLog"]] = {}
        self._connections: list[Connection] = []

    async def join(self, log: "ReplicatedLog") -> list[Connection]:
        """Announce a log and connect it to every log already on its topic."""
        members = self._topics.setdefault(log.discovery_key, [])
        if log in members:
            return []

        new_connections = []
        for other in list(members):
            conn = Connection(self, other, log)
            self._connections.append(conn)
            new_connections.append(conn)
            other.add_connection(conn)
            log.add_connection(conn)

        members.append(log)
        logger.debug(
            f"{log.name} joined topic {log.discovery_key.hex()[:8]} "
            f"({len(new_connections)} peer(s))"
        )
        return new_connections

    async def leave(self, log: "ReplicatedLog") -> None:
        """Remove a log from its topic and close its connections."""
        members = self._topics.get(log.discovery_key, [])
        if log in members:
            members.remove(log)
        if not members:
            self._topics.pop(log.discovery_key, None)

        for conn in [c for c in self._connections if log in c._ends]:
            conn.close()
            self._connections.remove(conn)

    @property
    def connection_count(self) -> int:
        return len(self._connections)
