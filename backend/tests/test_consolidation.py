"""Tests for consolidate()."""

import pytest

from core.consolidation import consolidate
from core.errors import InvalidArgumentError
from core.models.bar import Bar

MINUTE = 60_000
HOUR = 3_600_000


def minute_bars(count: int, first_minute: int = 0, base: float = 100.0) -> list[Bar]:
    """Consecutive 1m bars with a gentle zig-zag."""
    bars = []
    for i in range(count):
        start = (first_minute + i) * MINUTE
        open_ = base + (i % 7) * 0.1
        close = base + ((i + 3) % 5) * 0.1
        bars.append(
            Bar.from_prices(
                start=start,
                end=start + MINUTE - 1,
                open=open_,
                close=close,
                high=max(open_, close) + 0.05,
                low=min(open_, close) - 0.05,
            )
        )
    return bars


class TestConsolidate:
    def test_two_minute_window(self):
        bars = [
            Bar(start=0, end=59_999, open=100, close=101, high=102, low=99, median=100.5),
            Bar(start=60_000, end=119_999, open=101, close=99, high=102, low=98, median=100),
        ]

        result = consolidate(bars, 720)

        assert result == [
            Bar(start=0, end=119_999, open=100, close=99, high=102, low=98, median=100)
        ]

    def test_hourly_from_minutes(self):
        result = consolidate(minute_bars(180), 24)

        assert len(result) == 3
        assert [b.start for b in result] == [0, HOUR, 2 * HOUR]
        assert [b.end for b in result] == [HOUR - 1, 2 * HOUR - 1, 3 * HOUR - 1]

    def test_open_trailing_window_is_withheld(self):
        result = consolidate(minute_bars(90), 24)

        assert len(result) == 1
        assert result[0].end == HOUR - 1

    def test_empty_windows_are_skipped(self):
        bars = minute_bars(60) + minute_bars(60, first_minute=180)

        result = consolidate(bars, 24)

        assert [b.start for b in result] == [0, 3 * HOUR]

    def test_windows_anchor_at_midnight(self):
        # First bar at 00:30; the first hourly window still ends at 01:00
        bars = minute_bars(90, first_minute=30)

        result = consolidate(bars, 24)

        assert result[0].start == 30 * MINUTE
        assert result[0].end == HOUR - 1
        assert result[1].start == HOUR

    def test_consolidation_is_associative_on_ohlc(self):
        bars = minute_bars(24 * 60)

        direct = consolidate(bars, 24)
        staged = consolidate(consolidate(bars, 96), 24)

        # Median of closes is not associative; everything else is
        def ohlc(b: Bar):
            return (b.start, b.end, b.open, b.close, b.high, b.low)

        assert [ohlc(b) for b in direct] == [ohlc(b) for b in staged]

    def test_empty_input_raises(self):
        with pytest.raises(InvalidArgumentError):
            consolidate([], 24)

    @pytest.mark.parametrize("ppd", [0, -24])
    def test_non_positive_periods_raise(self, ppd):
        with pytest.raises(InvalidArgumentError):
            consolidate(minute_bars(10), ppd)
