"""Sparse set of acknowledged block indices."""

from bisect import bisect_right

from ..errors import InvalidArgument


class AckBitfield:
    """Grow-only set of block indices stored as disjoint half-open intervals.

    Peers may acknowledge blocks far from index 0, so storage is
    proportional to the number of distinct acknowledged runs rather than the
    largest index. Intervals are kept sorted and merged when they touch.
    """

    def __init__(self):
        self._starts: list[int] = []
        self._ends: list[int] = []

    def set(self, index: int) -> None:
        """Mark a single block as acknowledged."""
        self.fill(index, index + 1)

    def has(self, index: int) -> bool:
        """Check whether a block has been acknowledged."""
        if index < 0:
            return False
        pos = bisect_right(self._starts, index) - 1
        return pos >= 0 and index < self._ends[pos]

    def fill(self, start: int, end: int) -> None:
        """Mark every block in [start, end) as acknowledged.

        Args:
            start: First block index (inclusive).
            end: Last block index (exclusive).

        Raises:
            InvalidArgument: If start is negative or end < start.
        """
        if start < 0 or end < start:
            raise InvalidArgument(f"Invalid block range [{start}, {end})")
        if start == end:
            return

        # First interval that could touch [start, end): its end >= start
        lo = bisect_right(self._starts, start) - 1
        if lo < 0 or self._ends[lo] < start:
            lo += 1
        # Last interval whose start <= end (touching counts as overlap)
        hi = bisect_right(self._starts, end)

        if lo < hi:
            start = min(start, self._starts[lo])
            end = max(end, self._ends[hi - 1])

        self._starts[lo:hi] = [start]
        self._ends[lo:hi] = [end]

    def covers(self, start: int, end: int) -> int | None:
        """Find the first unacknowledged index in [start, end).

        Returns:
            The first missing index, or None if the whole range is covered.
        """
        if start >= end:
            return None
        pos = bisect_right(self._starts, start) - 1
        if pos < 0 or self._ends[pos] <= start:
            return start
        if self._ends[pos] >= end:
            return None
        return self._ends[pos]

    def intervals(self) -> list[tuple[int, int]]:
        """Snapshot of the acknowledged runs as (start, end) pairs."""
        return list(zip(self._starts, self._ends))

    def __len__(self) -> int:
        return sum(end - start for start, end in zip(self._starts, self._ends))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AckBitfield):
            return NotImplemented
        return self.intervals() == other.intervals()

    def __repr__(self) -> str:
        runs = ", ".join(f"[{s}, {e})" for s, e in self.intervals())
        return f"AckBitfield({runs})"
