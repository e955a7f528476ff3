"""Floor search from a timestamp to a bar position.

floor() is a binary search over bar starts. floor_from() first checks the
bar at a remembered position and its successor, which makes a forward walk
through time O(1) per step.
"""

from __future__ import annotations

from bisect import bisect_right
from operator import attrgetter
from typing import TYPE_CHECKING, Sequence

from core.errors import NotFoundError
from core.models.bar import Bar
from core.models.resolution import Resolution

if TYPE_CHECKING:
    from core.store import MultiResolutionStore

_start = attrgetter("start")


def floor(bars: Sequence[Bar], timestamp_ms: int) -> int:
    """Index of the latest bar with start <= timestamp_ms.

    Raises:
        NotFoundError: If bars is empty or timestamp_ms precedes the first bar.
    """
    if not bars or timestamp_ms < bars[0].start:
        raise NotFoundError(f"No bar starts at or before {timestamp_ms}")
    return bisect_right(bars, timestamp_ms, key=_start) - 1


def floor_from(bars: Sequence[Bar], timestamp_ms: int, last_known: int) -> int:
    """floor() with a fast path around a previously found index."""
    for index in (last_known, last_known + 1):
        if 0 <= index < len(bars) and bars[index].contains(timestamp_ms):
            return index
    return floor(bars, timestamp_ms)


class TimeCursor:
    """One remembered bar position per resolution."""

    __slots__ = ("_positions",)

    def __init__(self, positions: Sequence[int] | None = None):
        self._positions = list(positions) if positions is not None else [0] * len(Resolution)

    def __getitem__(self, resolution: Resolution) -> int:
        return self._positions[resolution]

    def __setitem__(self, resolution: Resolution, position: int) -> None:
        self._positions[resolution] = position

    def __repr__(self) -> str:
        return f"TimeCursor({self._positions})"

    def copy(self) -> TimeCursor:
        return TimeCursor(self._positions)

    def advance(
        self,
        store: MultiResolutionStore,
        timestamp_ms: int,
        finest: Resolution,
        offset: int = -1,
    ) -> None:
        """Move every resolution up to `finest` onto the bar holding timestamp_ms.

        With the default offset the cursor lands one bar before the current
        one, so that only completed bars are visible. Positions are clamped
        to the slot; a timestamp before a slot's first bar clamps to 0.
        """
        for resolution in range(finest, -1, -1):
            bars = store[Resolution(resolution)]
            if not bars:
                self._positions[resolution] = 0
                continue
            try:
                index = floor_from(bars, timestamp_ms, self._positions[resolution]) + offset
            except NotFoundError:
                index = 0
            self._positions[resolution] = max(0, min(len(bars) - 1, index))

    @classmethod
    def at(
        cls,
        store: MultiResolutionStore,
        timestamp_ms: int,
        finest: Resolution,
        offset: int = -1,
    ) -> TimeCursor:
        cursor = cls()
        cursor.advance(store, timestamp_ms, finest, offset)
        return cursor
