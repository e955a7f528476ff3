"""Bar (candlestick) value type.

Timestamps are Unix milliseconds. A bar covers the closed interval
[start, end]; bars built from feed rows end one millisecond before the
next window starts.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from core.errors import InvalidArgumentError


def median(values: Sequence[float]) -> float:
    """Median, averaging the two middle values for even-length input."""
    if not values:
        raise InvalidArgumentError("median of an empty sequence")
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return (ordered[mid - 1] + ordered[mid]) / 2
    return ordered[mid]


@dataclass(slots=True, frozen=True)
class Bar:
    """Immutable OHLC bar."""

    start: int
    end: int
    open: float
    close: float
    high: float
    low: float
    median: float

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise InvalidArgumentError(
                f"Bar start {self.start} is after end {self.end}"
            )
        if min(self.open, self.close, self.high, self.low, self.median) < 0:
            raise InvalidArgumentError(f"Negative price in bar starting at {self.start}")

    @classmethod
    def from_prices(
        cls, start: int, end: int, open: float, close: float, high: float, low: float
    ) -> Bar:
        """Build a bar whose median is taken over its four prices."""
        return cls(
            start=start,
            end=end,
            open=open,
            close=close,
            high=high,
            low=low,
            median=median((open, close, low, high)),
        )

    @classmethod
    def from_bars(cls, bars: Sequence[Bar]) -> Bar:
        """Fold an ordered, non-empty run of bars into one coarser bar."""
        if not bars:
            raise InvalidArgumentError("Cannot build a bar from an empty list")
        first, last = bars[0], bars[-1]
        return cls(
            start=first.start,
            end=last.end,
            open=first.open,
            close=last.close,
            high=max(b.high for b in bars),
            low=min(b.low for b in bars),
            median=median([b.close for b in bars]),
        )

    def contains(self, timestamp_ms: int) -> bool:
        return self.start <= timestamp_ms <= self.end
