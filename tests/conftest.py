"""Shared fixtures for hyperpublisher tests."""

import asyncio

import pytest

from hyperpublisher.config import Config, TimeoutsConfig
from hyperpublisher.events import EventSource, PeerAck
from hyperpublisher.log import BlockStore, DriveKeys, MemoryNetwork, MirrorPeer


class StubLog:
    """Just enough of a ReplicatedLog to drive an AckTracker."""

    def __init__(self, name: str = "stub"):
        self.name = name
        self.events = EventSource(name)

    def ack(self, start: int, length: int, peer_id: str = "peer-a") -> None:
        self.events.emit(PeerAck(peer_id, start, length, is_ack=True))

    def have(self, length: int, peer_id: str = "peer-a") -> None:
        self.events.emit(PeerAck(peer_id, 0, length, is_ack=False))


SEED = bytes(range(32))


@pytest.fixture
def stub_log():
    return StubLog()


@pytest.fixture
def seed():
    return SEED


@pytest.fixture
def keys(seed):
    return DriveKeys.from_seed(seed)


@pytest.fixture
def network():
    return MemoryNetwork()


@pytest.fixture
def store():
    """In-memory block store."""
    store = BlockStore(":memory:")
    store.connect()
    yield store
    store.close()


@pytest.fixture
def fast_config():
    """Config with short timeouts so failing waits end quickly."""
    return Config(
        timeouts=TimeoutsConfig(peer_seconds=1.0, update_seconds=1.0, ack_seconds=2.0)
    )


@pytest.fixture
def source_dir(tmp_path):
    """A local directory with two files to publish."""
    src = tmp_path / "site"
    src.mkdir()
    (src / "hello.txt").write_text("hello world\n")
    (src / "data.bin").write_bytes(b"\x00\x01" * 1000)
    return src


async def _start_mirror(keys: DriveKeys, network: MemoryNetwork) -> MirrorPeer:
    mirror = MirrorPeer(keys.url, network)
    await mirror.start()
    return mirror


async def _stop_mirror(mirror: MirrorPeer) -> None:
    await mirror.stop()
    mirror.store.close()


async def _eventually(predicate, timeout: float = 2.0, interval: float = 0.01) -> None:
    """Poll until predicate() is true; fail the test after timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)


@pytest.fixture
def start_mirror():
    """Start an in-memory MirrorPeer for a drive on a network."""
    return _start_mirror


@pytest.fixture
def stop_mirror():
    """Stop a mirror from start_mirror and close its store."""
    return _stop_mirror


@pytest.fixture
def eventually():
    return _eventually
