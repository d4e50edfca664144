"""Peer acknowledgment tracking.

Turns low-level per-block ack notifications into a completion signal for
the block ranges a publish operation wrote.
"""

from .bitfield import AckBitfield
from .tracker import AckTracker, FileRange, TrackerHandle
from .waiter import RangeWaiter, WaitOutcome, WaitResult, evaluate

__all__ = [
    "AckBitfield",
    "AckTracker",
    "FileRange",
    "TrackerHandle",
    "RangeWaiter",
    "WaitOutcome",
    "WaitResult",
    "evaluate",
]
