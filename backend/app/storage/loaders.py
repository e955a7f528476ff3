"""Slot loaders for historical and realtime stores."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Protocol

from app.storage.bar_file import load_bars, save_bars, to_file_precision
from app.storage.database import BarTableRepository
from core.consolidation import consolidate
from core.models.bar import Bar
from core.models.resolution import Resolution
from core.store import MultiResolutionStore

logger = logging.getLogger(__name__)

RawLoader = Callable[[], list[Bar]]

# Feed series round-tripped through the database to normalize rounding
REALTIME_SERIES = "realtime_30m"
REALTIME_FETCHED = (Resolution.D1, Resolution.M15, Resolution.M5, Resolution.M1)


class BarFeed(Protocol):
    def fetch_bars(self, resolution: Resolution) -> list[Bar]:
        ...


class HistoricalSlotLoader:
    """Cache file first, then raw data (finest) or the next finer slot."""

    def __init__(self, bars_dir: Path, raw_loader: RawLoader):
        self.bars_dir = Path(bars_dir)
        self._raw_loader = raw_loader

    def cache_path(self, resolution: Resolution) -> Path:
        return self.bars_dir / f"{resolution.label}.dat"

    def load(self, store: MultiResolutionStore, resolution: Resolution) -> list[Bar]:
        path = self.cache_path(resolution)
        if path.exists():
            bars = load_bars(path)
            logger.info(f"Read {len(bars):,} {resolution.label} bars from {path}")
            return bars

        if resolution is Resolution.finest():
            bars = self._raw_loader()
            logger.info(f"Parsed {len(bars):,} {resolution.label} bars from the raw feed")
        else:
            finer = store[resolution.consolidation_source()]
            bars = consolidate(finer, resolution.periods_per_day) if finer else []
            logger.info(f"Consolidated {len(bars):,} {resolution.label} bars from {len(finer):,} finer bars")

        bars = to_file_precision(bars)
        save_bars(path, bars)
        return bars


class RealtimeSlotLoader:
    """Feed for the directly served resolutions, 30m for everything coarser."""

    def __init__(self, feed: BarFeed, bar_repo: BarTableRepository):
        self._feed = feed
        self._bar_repo = bar_repo

    def load(self, store: MultiResolutionStore, resolution: Resolution) -> list[Bar]:
        if resolution in REALTIME_FETCHED:
            return self._feed.fetch_bars(resolution)

        if resolution is Resolution.M30:
            self._bar_repo.write(REALTIME_SERIES, self._feed.fetch_bars(resolution))
            return self._bar_repo.read(REALTIME_SERIES)

        half_hours = store[Resolution.M30]
        if not half_hours:
            return []
        return consolidate(half_hours, resolution.periods_per_day)
