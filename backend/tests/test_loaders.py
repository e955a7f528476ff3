"""Tests for the historical and realtime slot loaders."""

import numpy as np

from app.storage.loaders import REALTIME_SERIES, HistoricalSlotLoader, RealtimeSlotLoader
from core.models.bar import Bar
from core.models.resolution import Resolution
from core.store import MultiResolutionStore, StoreKind

MINUTE = 60_000


def minute_bars(count: int, start: int = 0) -> list[Bar]:
    bars = []
    for i in range(count):
        price = 1.0 + (i % 8) * 0.125
        s = start + i * MINUTE
        bars.append(Bar.from_prices(start=s, end=s + MINUTE - 1, open=price, close=price + 0.25, high=price + 0.5, low=price))
    return bars


def bars_of(resolution: Resolution, count: int, start: int = 0) -> list[Bar]:
    d = resolution.duration_ms
    return [
        Bar.from_prices(start=start + i * d, end=start + (i + 1) * d - 1, open=1.5, close=1.5 + i / 64, high=4.0, low=1.0)
        for i in range(count)
    ]


class TestHistoricalSlotLoader:
    def test_raw_then_consolidated_then_cached(self, tmp_path):
        calls = []

        def raw_loader():
            calls.append(1)
            return minute_bars(120)

        store = MultiResolutionStore(StoreKind.HISTORICAL, HistoricalSlotLoader(tmp_path, raw_loader))

        assert len(store[Resolution.M1]) == 120
        assert len(store[Resolution.M5]) == 24
        assert len(store[Resolution.H1]) == 2
        assert calls == [1]
        for label in ("1m", "5m", "15m", "30m", "1H"):
            assert (tmp_path / f"{label}.dat").exists()

        def failing_loader():
            raise AssertionError("raw feed should not be read")

        cached = MultiResolutionStore(StoreKind.HISTORICAL, HistoricalSlotLoader(tmp_path, failing_loader))
        assert cached[Resolution.H1] == store[Resolution.H1]
        assert not cached.is_populated(Resolution.M1)

    def test_every_slot_has_full_width_bars(self, tmp_path):
        store = MultiResolutionStore(StoreKind.HISTORICAL, HistoricalSlotLoader(tmp_path, lambda: minute_bars(2 * 1440)))

        for resolution in Resolution:
            bars = store[resolution]
            assert len(bars) == 2 * resolution.periods_per_day
            assert {b.end - b.start + 1 for b in bars} == {resolution.duration_ms}

    def test_fresh_build_matches_cached_read(self, tmp_path):
        def decimal_bars():
            bars = []
            for i in range(1440):
                price = 1.1 + (i % 7) * 0.01
                s = i * MINUTE
                bars.append(Bar.from_prices(start=s, end=s + MINUTE - 1, open=price, close=price + 0.003, high=price + 0.007, low=price - 0.001))
            return bars

        fresh = MultiResolutionStore(StoreKind.HISTORICAL, HistoricalSlotLoader(tmp_path, decimal_bars))
        cached = MultiResolutionStore(StoreKind.HISTORICAL, HistoricalSlotLoader(tmp_path, decimal_bars))

        for resolution in (Resolution.M1, Resolution.M15, Resolution.H1, Resolution.H3, Resolution.D1):
            built = fresh[resolution]
            assert cached[resolution] == built
        assert fresh[Resolution.M1][0].open == float(np.float32(1.1))

    def test_empty_raw_feed(self, tmp_path):
        store = MultiResolutionStore(StoreKind.HISTORICAL, HistoricalSlotLoader(tmp_path, lambda: []))
        assert store[Resolution.H1] == []
        assert (tmp_path / "1H.dat").exists()


class FakeFeed:
    def __init__(self, bars):
        self.bars = bars
        self.requested = []

    def fetch_bars(self, resolution):
        self.requested.append(resolution)
        return list(self.bars.get(resolution, []))


class MemoryBarRepository:
    def __init__(self):
        self.series = {}

    def write(self, series, bars):
        self.series[series] = list(bars)

    def read(self, series):
        return list(self.series.get(series, []))


class TestRealtimeSlotLoader:
    def test_slots(self):
        half_hours = bars_of(Resolution.M30, 96)
        daily = bars_of(Resolution.D1, 2)
        feed = FakeFeed({Resolution.M30: half_hours, Resolution.D1: daily})
        repo = MemoryBarRepository()
        store = MultiResolutionStore(StoreKind.REALTIME, RealtimeSlotLoader(feed, repo))

        assert store[Resolution.D1] == daily
        assert store[Resolution.M30] == half_hours
        assert repo.series[REALTIME_SERIES] == half_hours

        hourly = store[Resolution.H1]
        assert len(hourly) == 48
        assert hourly[0].open == half_hours[0].open
        assert hourly[0].close == half_hours[1].close
        assert len(store[Resolution.H12]) == 4
        assert feed.requested == [Resolution.D1, Resolution.M30]

    def test_no_half_hours(self):
        store = MultiResolutionStore(StoreKind.REALTIME, RealtimeSlotLoader(FakeFeed({}), MemoryBarRepository()))
        assert store[Resolution.H1] == []
