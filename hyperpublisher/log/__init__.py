"""Replicated append-only logs and the in-process swarm they replicate over."""

from .core import ReplicatedLog
from .identity import DriveKeys, KeyPair, parse_seed, parse_url, random_seed
from .mirror import MirrorPeer
from .network import Connection, MemoryNetwork
from .store import BlockStore, TreeHead

__all__ = [
    "ReplicatedLog",
    "DriveKeys",
    "KeyPair",
    "parse_seed",
    "parse_url",
    "random_seed",
    "MirrorPeer",
    "Connection",
    "MemoryNetwork",
    "BlockStore",
    "TreeHead",
]
