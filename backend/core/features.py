"""Feature vectors for model nodes.

A node's feature descriptors are evaluated against one store at one bar
position per resolution (a TimeCursor, or the latest bars when no cursor
is given). Delegate descriptors recurse into other nodes through the
predict callback; the node forest is acyclic so the recursion terminates.
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Callable, Sequence

import numpy as np

from core.errors import InvalidStateError
from core.indicators import (
    Macd,
    augmented_price_window,
    ema,
    last_critical_rsi,
    macd,
    mean_to_std,
    price_window,
    rsi,
    rsi_bucket,
    slope,
    within_margin,
)
from core.models.bar import Bar
from core.models.node import FeatureDescriptor, FeatureKind, ModelNode
from core.models.resolution import TRAINING_RESOLUTION, Resolution
from core.time_index import TimeCursor

if TYPE_CHECKING:
    from core.registry import ModelRegistry
    from core.store import MultiResolutionStore

logger = logging.getLogger(__name__)

# Extra bars required beyond a descriptor's period
HISTORY_MARGIN = 10
# How far back LastCriticalRSI scans
CRITICAL_RSI_LOOKBACK = 270

# Returns None when the delegated node lacks history
PredictFn = Callable[[ModelNode, float, "TimeCursor | None"], "float | None"]


def required_bars(descriptor: FeatureDescriptor) -> int:
    """Bars that must be visible before a descriptor can be evaluated."""
    if descriptor.kind is FeatureKind.SLOPES_EMA:
        return max([descriptor.periods, *(int(a) for a in descriptor.attributes)]) + HISTORY_MARGIN
    if descriptor.kind is FeatureKind.MACD_HIST_SLOPE:
        return descriptor.periods + int(descriptor.attributes[0]) + HISTORY_MARGIN
    return descriptor.periods + HISTORY_MARGIN


def _lookback(descriptor: FeatureDescriptor) -> int:
    if descriptor.kind in (
        FeatureKind.LAST_CRITICAL_RSI,
        FeatureKind.LAST_CRITICAL_RSI_WITH_CURRENT_PRICE,
    ):
        return CRITICAL_RSI_LOOKBACK + descriptor.periods
    return required_bars(descriptor)


class _Evaluation:
    """State for one compute() call: the close window and memoized MACDs."""

    def __init__(self, closes: np.ndarray, index: int, price: float):
        self.closes = closes
        self.index = index
        self.price = price
        self._macd: dict[int, Macd] = {}
        self._macd_current: dict[int, Macd] = {}

    def window(self, periods: int, index: int | None = None) -> np.ndarray:
        return price_window(self.closes, periods, self.index if index is None else index)

    def augmented(self, periods: int, index: int | None = None) -> np.ndarray:
        return augmented_price_window(
            self.closes, periods, self.index if index is None else index, self.price
        )

    def macd(self, periods: int) -> Macd:
        if periods not in self._macd:
            self._macd[periods] = macd(self.window(periods))
        return self._macd[periods]

    def macd_current(self, periods: int) -> Macd:
        if periods not in self._macd_current:
            self._macd_current[periods] = macd(self.augmented(periods))
        return self._macd_current[periods]

    def previous_macd(self, periods: int, back: int = 1) -> Macd:
        return macd(self.window(periods, self.index - back))


class FeatureEngine:
    """Evaluates feature descriptors against a store."""

    def __init__(
        self,
        store: MultiResolutionStore,
        registry: ModelRegistry,
        predict: PredictFn,
    ):
        self.store = store
        self.registry = registry
        self._predict = predict

    def compute(
        self,
        descriptors: Sequence[FeatureDescriptor],
        resolution: Resolution,
        price: float,
        cursor: TimeCursor | None = None,
    ) -> np.ndarray | None:
        """One value per descriptor, or None when there is not enough history.

        Raises:
            InvalidStateError: If the cursor points past the end of the slot.
        """
        bars = self.store[resolution]
        index = len(bars) - 1 if cursor is None else cursor[resolution]
        if index >= len(bars):
            raise InvalidStateError(
                f"Cursor {index} is beyond {len(bars)} bars at {resolution.label}"
            )

        visible = index + 1
        if any(visible < required_bars(d) for d in descriptors):
            return None

        lookback = max((_lookback(d) for d in descriptors), default=0)
        first = max(0, index - lookback + 1)
        closes = np.fromiter((b.close for b in bars[first : index + 1]), dtype=np.float64)
        evaluation = _Evaluation(closes, index - first, price)

        values = np.empty(len(descriptors), dtype=np.float64)
        for i, descriptor in enumerate(descriptors):
            value = self._evaluate(descriptor, evaluation, cursor)
            if value is None:
                return None
            values[i] = value
        return values

    def _evaluate(
        self, d: FeatureDescriptor, ev: _Evaluation, cursor: TimeCursor | None
    ) -> float | None:
        kind, periods = d.kind, d.periods

        if kind is FeatureKind.RSI:
            return rsi(ev.window(periods))
        if kind is FeatureKind.RSI_WITH_CURRENT_PRICE:
            return rsi(ev.augmented(periods))
        if kind is FeatureKind.RSI_BUCKET:
            return rsi_bucket(rsi(ev.window(periods)))
        if kind is FeatureKind.RSI_BUCKET_WITH_CURRENT_PRICE:
            return rsi_bucket(rsi(ev.augmented(periods)))
        if kind in (FeatureKind.LAST_CRITICAL_RSI, FeatureKind.LAST_CRITICAL_RSI_WITH_CURRENT_PRICE):
            window = ev.augmented if kind is FeatureKind.LAST_CRITICAL_RSI_WITH_CURRENT_PRICE else ev.window
            critical = 0
            for k in range(max(ev.index - CRITICAL_RSI_LOOKBACK + periods, periods), ev.index + 1):
                critical = last_critical_rsi(rsi_bucket(rsi(window(periods, k))), critical)
            return critical
        if kind is FeatureKind.MEAN_TO_STD:
            return mean_to_std(ev.window(periods), ev.price)
        if kind is FeatureKind.MEAN_TO_STD_BUCKET:
            return math.floor(mean_to_std(ev.window(periods), ev.price))
        if kind is FeatureKind.SLOPE:
            return slope(ev.window(periods))
        if kind is FeatureKind.SLOPE_SIGN:
            return 1.0 if slope(ev.window(periods)) >= 0 else -1.0
        if kind is FeatureKind.MARGIN_SLOPE:
            window = ev.window(periods)
            return 0.0 if within_margin(window, ev.price, d.attributes[0]) else slope(window)
        if kind is FeatureKind.MARGIN_SLOPE_SIGN:
            window = ev.window(periods)
            if within_margin(window, ev.price, d.attributes[0]):
                return 0.0
            return 1.0 if slope(window) > 0 else -1.0
        if kind is FeatureKind.MACD:
            return ev.macd(periods).macd
        if kind is FeatureKind.MACD_SIGNAL:
            return ev.macd(periods).signal
        if kind is FeatureKind.MACD_SIGNAL_WITH_CURRENT_PRICE:
            return ev.macd_current(periods).signal
        if kind is FeatureKind.MACD_HIST:
            return ev.macd(periods).hist
        if kind is FeatureKind.MACD_HIST_WITH_CURRENT_PRICE:
            return ev.macd_current(periods).hist
        if kind in (FeatureKind.MACD_HIST_CHANGE, FeatureKind.MACD_HIST_CHANGE_WITH_CURRENT_PRICE):
            current = (
                ev.macd_current(periods)
                if kind is FeatureKind.MACD_HIST_CHANGE_WITH_CURRENT_PRICE
                else ev.macd(periods)
            )
            previous = ev.previous_macd(periods)
            return 0.0 if previous.hist == 0 else current.hist / previous.hist - 1.0
        if kind is FeatureKind.MACD_HIST_SLOPE:
            length = int(d.attributes[0])
            return slope([ev.previous_macd(periods, back).hist for back in range(length - 1, -1, -1)])
        if kind is FeatureKind.MACD_HIST_SIGN:
            return 1.0 if ev.macd(periods).hist >= 0 else -1.0
        if kind is FeatureKind.MACD_HIST_CROSSED:
            current, previous = ev.macd(periods).hist, ev.previous_macd(periods).hist
            if current >= 0:
                return 0.0 if previous >= 0 else 1.0
            return 0.0 if previous < 0 else -1.0
        if kind is FeatureKind.MACD_HIST_DIFFERENCE:
            return ev.macd(periods).hist - ev.previous_macd(periods).hist
        if kind is FeatureKind.SLOPES_EMA:
            slopes = [slope(ev.window(int(length))) for length in d.attributes]
            return float(ema(slopes, len(slopes))[-1])
        if kind is FeatureKind.ABOVE_AVERAGE:
            return 1.0 if ev.price >= float(ev.window(periods).mean()) else 0.0
        if kind is FeatureKind.PERCENT_MARGIN:
            return 1.0 if within_margin(ev.window(periods), ev.price, d.attributes[0]) else 0.0
        if kind is FeatureKind.DELEGATE_PREDICTION:
            return self._predict(self.registry.get(d.target_id), ev.price, cursor)
        if kind is FeatureKind.DELEGATE_OLDEST_TARGET_CHANGE:
            return self._oldest_target_change(d.target_id, ev.price, cursor)
        raise InvalidStateError(f"Unhandled feature kind {kind.value}")

    def _oldest_target_change(
        self, node_id: int, price: float, cursor: TimeCursor | None
    ) -> float | None:
        """Price change implied by the delegate's forecast made `horizon` bars ago."""
        node = self.registry.get(node_id)
        hourly: list[Bar] = self.store[TRAINING_RESOLUTION]
        position = len(hourly) - 1 if cursor is None else cursor[TRAINING_RESOLUTION]
        target_index = position - node.horizon
        if target_index < 0:
            return None

        past = TimeCursor.at(self.store, hourly[target_index].start, TRAINING_RESOLUTION, offset=0)
        price_before = hourly[past[TRAINING_RESOLUTION]].median
        dfp = self._predict(node, price_before, past)
        if dfp is None:
            return None
        return price_before * math.exp(dfp) / price - 1.0
