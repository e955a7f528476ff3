"""Realtime store and price loading."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

import httpx
import numpy as np

from app.storage.database import BarTableRepository
from app.storage.loaders import BarFeed, RealtimeSlotLoader
from core.consolidation import consolidate
from core.errors import FeedError, NotFoundError
from core.models.resolution import Resolution
from core.store import MultiResolutionStore, StoreKind
from core.time_index import floor

logger = logging.getLogger(__name__)

CONSISTENCY_START = datetime(2012, 1, 1, 23, 59, 59, tzinfo=timezone.utc)
CONSISTENCY_DAYS = 5 * 365
CONSISTENCY_THRESHOLD = 0.000403


class PriceFeed(BarFeed, Protocol):
    def fetch_current_price(self) -> float:
        ...


def consistency_difference(
    realtime: MultiResolutionStore,
    historical: MultiResolutionStore,
    start: datetime = CONSISTENCY_START,
    days: int = CONSISTENCY_DAYS,
) -> float | None:
    """Mean absolute difference between realtime daily and historical hourly closes.

    Both are sampled once a day at `start` + n days. Returns None when
    either side has no bar that early.
    """
    daily = realtime[Resolution.D1]
    hourly = historical[Resolution.H1]
    diffs = []
    for day in range(days):
        ts = int((start + timedelta(days=day)).timestamp() * 1000)
        try:
            diffs.append(abs(hourly[floor(hourly, ts)].close - daily[floor(daily, ts)].close))
        except NotFoundError:
            return None
    return float(np.mean(diffs)) if diffs else None


def check_timezone(realtime: MultiResolutionStore) -> bool:
    """Daily bars rebuilt from hourly ones must line up with the fed daily bars."""
    hourly = realtime[Resolution.H1]
    daily = realtime[Resolution.D1]
    if not hourly or not daily:
        return True
    rebuilt = consolidate(hourly, Resolution.D1.periods_per_day)
    if not rebuilt:
        return True
    last, fed = rebuilt[-1], daily[-1]
    if last.end != fed.end:
        return False
    return last.open == fed.open or last.close == fed.close


def load_realtime_store(
    feed: BarFeed,
    bar_repo: BarTableRepository,
    historical: MultiResolutionStore | None = None,
) -> MultiResolutionStore:
    """Realtime store with its 30m slot loaded and checked against history.

    Raises:
        FeedError: If the feed returned no 30m bars.
    """
    store = MultiResolutionStore(StoreKind.REALTIME, RealtimeSlotLoader(feed, bar_repo))
    if not store[Resolution.M30]:
        raise FeedError("Could not retrieve realtime 30m bars")

    if historical is not None:
        difference = consistency_difference(store, historical)
        if difference is None:
            logger.info("Realtime data does not reach back far enough for a consistency check")
        elif difference > CONSISTENCY_THRESHOLD:
            logger.warning(
                f"Realtime bars inconsistent with historical bars: mean close difference {difference:.6f}"
            )
        else:
            logger.info(f"Realtime bars consistent with history (mean close difference {difference:.6f})")
    if not check_timezone(store):
        logger.warning("Realtime bars do not share the historical time zone")
    return store


def load_realtime_price(feed: PriceFeed, fallback: Callable[[], float]) -> float:
    """Current price from the feed, or from `fallback` when the feed fails."""
    try:
        return feed.fetch_current_price()
    except (httpx.HTTPError, FeedError) as e:
        logger.warning(f"Could not retrieve realtime price: {e}")
        return fallback()
