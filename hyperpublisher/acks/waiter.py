"""Wait until peers have acknowledged a set of block ranges."""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable

from ..errors import AckTimeout
from ..events import PeerAck
from .tracker import AckTracker, FileRange

logger = logging.getLogger(__name__)


class WaitOutcome(Enum):
    """State of a RangeWaiter."""

    PENDING = "pending"
    SATISFIED = "satisfied"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class WaitResult:
    """Terminal result of a RangeWaiter."""

    outcome: WaitOutcome
    reason: str | None = None
    pending: list[FileRange] = field(default_factory=list)
    elapsed: float = 0.0

    @property
    def satisfied(self) -> bool:
        return self.outcome is WaitOutcome.SATISFIED


def evaluate(tracker: AckTracker, ranges: Iterable[FileRange]) -> list[FileRange]:
    """Return the ranges that are not yet fully acknowledged.

    Pure with respect to the tracker: reads the bitfield, never mutates it.
    """
    return [r for r in ranges if not tracker.is_range_covered(r)]


class RangeWaiter:
    """One-shot latch over a set of ranges, driven by the tracker's ack channel.

    Every acknowledgment received while pending triggers one re-evaluation
    of the ranges still uncovered. The waiter subscribes only if the ranges
    are not already covered on entry, and always unsubscribes when it
    reaches a terminal outcome.
    """

    def __init__(self, tracker: AckTracker, ranges: Iterable[FileRange]):
        self.tracker = tracker
        self.ranges = list(dict.fromkeys(ranges))
        self.outcome = WaitOutcome.PENDING
        self.reason: str | None = None
        self._pending: list[FileRange] = list(self.ranges)
        self._token: int | None = None
        self._future: asyncio.Future | None = None
        self._started_at: float | None = None
        self._elapsed = 0.0
        self.subscribe_count = 0
        self.unsubscribe_count = 0
        self.rechecks = 0

    @property
    def pending(self) -> list[FileRange]:
        return list(self._pending)

    @property
    def result(self) -> WaitResult:
        return WaitResult(
            outcome=self.outcome,
            reason=self.reason,
            pending=self.pending,
            elapsed=self._elapsed,
        )

    async def wait(self, timeout: float | None = None) -> WaitResult:
        """Wait until every range is acknowledged.

        Args:
            timeout: Seconds to wait, measured from entry. None waits
                forever.

        Returns:
            The terminal WaitResult. SATISFIED when all ranges were acked,
            FAILED with reason "timeout", or CANCELLED after cancel().

        Raises:
            asyncio.CancelledError: If the awaiting task is cancelled. The
                waiter still resolves CANCELLED and unsubscribes first.
        """
        if self._future is not None:
            raise RuntimeError("RangeWaiter.wait() can only be called once")

        loop = asyncio.get_running_loop()
        self._started_at = loop.time()
        self._future = loop.create_future()

        if self.outcome is not WaitOutcome.PENDING:
            # cancel() arrived before wait()
            self._future.set_result(None)
            return self.result

        self._pending = evaluate(self.tracker, self._pending)
        if not self._pending:
            self._resolve(WaitOutcome.SATISFIED)
            return self.result

        self._token = self.tracker.subscribe(self._on_ack)
        self.subscribe_count += 1
        logger.debug(
            f"Waiting on {len(self._pending)} range(s) of {self.tracker.log.name}"
        )

        remaining = None
        if timeout is not None:
            remaining = max(0.0, self._started_at + timeout - loop.time())

        try:
            await asyncio.wait_for(asyncio.shield(self._future), remaining)
        except asyncio.TimeoutError:
            self._resolve(WaitOutcome.FAILED, "timeout")
        except asyncio.CancelledError:
            self._resolve(WaitOutcome.CANCELLED, "cancelled")
            raise

        return self.result

    async def wait_or_raise(self, timeout: float | None = None) -> WaitResult:
        """Like wait(), but raise AckTimeout when the deadline passes."""
        result = await self.wait(timeout)
        if result.outcome is WaitOutcome.FAILED:
            raise AckTimeout(timeout, result.pending)
        return result

    def cancel(self) -> bool:
        """Resolve CANCELLED. Returns False if already terminal."""
        return self._resolve(WaitOutcome.CANCELLED, "cancelled")

    def _on_ack(self, event: PeerAck) -> None:
        if self.outcome is not WaitOutcome.PENDING or not event.is_ack:
            return
        self.rechecks += 1
        self._pending = evaluate(self.tracker, self._pending)
        if not self._pending:
            self._resolve(WaitOutcome.SATISFIED)

    def _resolve(self, outcome: WaitOutcome, reason: str | None = None) -> bool:
        if self.outcome is not WaitOutcome.PENDING:
            return False

        self.outcome = outcome
        self.reason = reason

        if self._token is not None:
            self.tracker.unsubscribe(self._token)
            self._token = None
            self.unsubscribe_count += 1

        if self._future is not None:
            self._elapsed = asyncio.get_running_loop().time() - self._started_at
            if not self._future.done():
                self._future.set_result(None)

        logger.debug(
            f"Range wait on {self.tracker.log.name} resolved {outcome.value}"
            + (f" ({reason})" if reason else "")
        )
        return True
