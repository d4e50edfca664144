"""Fold a log's peer acknowledgments into a queryable bitfield."""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

from ..errors import InvalidArgument
from ..events import PeerAck
from .bitfield import AckBitfield

if TYPE_CHECKING:
    from ..log.core import ReplicatedLog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileRange:
    """The block span [start_block, end_block) holding one file's bytes."""

    path: str
    start_block: int
    end_block: int

    def __post_init__(self) -> None:
        if self.start_block < 0 or self.start_block > self.end_block:
            raise InvalidArgument(
                f"Invalid range for {self.path}: "
                f"[{self.start_block}, {self.end_block})",
                field="start_block",
            )

    @property
    def length(self) -> int:
        return self.end_block - self.start_block

    def __str__(self) -> str:
        return f"{self.path}[{self.start_block}:{self.end_block}]"


class TrackerHandle:
    """Subscription held by an AckTracker on one log."""

    def __init__(self, tracker: "AckTracker", token: int):
        self.tracker = tracker
        self.token = token
        self.detached = False

    def detach(self) -> None:
        self.tracker.detach(self)


class AckTracker:
    """Accumulates acknowledged blocks reported by the peers of one log.

    Attach as early as possible: acks that arrive before anyone knows which
    ranges to wait for are kept in the bitfield.
    """

    def __init__(self, log: "ReplicatedLog"):
        self.log = log
        self.bitfield = AckBitfield()
        self._handle: TrackerHandle | None = None
        self.attach_count = 0
        self.detach_count = 0

    @classmethod
    def attach(cls, log: "ReplicatedLog") -> "AckTracker":
        """Create a tracker and subscribe it to the log's ack channel."""
        tracker = cls(log)
        tracker.start()
        return tracker

    def start(self) -> TrackerHandle:
        """Subscribe to the log. Calling again while attached is a no-op."""
        if self._handle is not None and not self._handle.detached:
            return self._handle

        token = self.log.events.subscribe(self._on_ack, PeerAck)
        self._handle = TrackerHandle(self, token)
        self.attach_count += 1
        logger.debug(f"Tracking acks on {self.log.name}")
        return self._handle

    @property
    def handle(self) -> TrackerHandle | None:
        return self._handle

    def detach(self, handle: TrackerHandle | None = None) -> None:
        """Remove the subscription. Safe to call any number of times."""
        handle = handle or self._handle
        if handle is None or handle.detached:
            return
        handle.detached = True
        self.log.events.unsubscribe(handle.token)
        self.detach_count += 1
        logger.debug(
            f"Stopped tracking acks on {self.log.name} "
            f"({len(self.bitfield)} blocks acked)"
        )

    def _on_ack(self, event: PeerAck) -> None:
        if not event.is_ack or event.length <= 0:
            return
        self.bitfield.fill(event.start_block, event.end_block)

    def is_range_covered(self, file_range: FileRange) -> bool:
        """Check whether every block of the range has been acknowledged.

        Stops at the first gap instead of walking the whole span.
        """
        return self.first_missing(file_range) is None

    def first_missing(self, file_range: FileRange) -> int | None:
        """First unacknowledged block of the range, or None if covered."""
        return self.bitfield.covers(file_range.start_block, file_range.end_block)

    def subscribe(self, handler: Callable[[PeerAck], None]) -> int:
        """Subscribe to the same ack channel this tracker folds.

        Handlers registered here run after the tracker's own handler for
        every event, so they always observe an up-to-date bitfield.
        """
        return self.log.events.subscribe(handler, PeerAck)

    def unsubscribe(self, token: int) -> bool:
        return self.log.events.unsubscribe(token)
