"""Technical indicators evaluated at one bar position.

All functions take float arrays ordered oldest first. Windows are built
from bar closes ending at a cursor index; the "augmented" variants append
the current (not yet closed) price as an extra element.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from core.errors import InvalidArgumentError

RSI_STRONG_HIGH = 80.0
RSI_HIGH = 70.0
RSI_LOW = 30.0
RSI_STRONG_LOW = 20.0


def price_window(closes: np.ndarray, periods: int, index: int) -> np.ndarray:
    """The `periods` closes ending at `index` (inclusive)."""
    first = index - periods + 1
    if periods < 1 or first < 0 or index >= len(closes):
        raise InvalidArgumentError(
            f"Window of {periods} bars ending at {index} is outside 0..{len(closes) - 1}"
        )
    return closes[first : index + 1]


def augmented_price_window(
    closes: np.ndarray, periods: int, index: int, current_price: float
) -> np.ndarray:
    """price_window() followed by the current price."""
    return np.append(price_window(closes, periods, index), current_price)


def ema(values: Sequence[float], period: int) -> np.ndarray:
    """Exponential moving average seeded with the first value, k = 2 / (period + 1)."""
    arr = np.asarray(values, dtype=np.float64)
    if arr.size == 0:
        raise InvalidArgumentError("EMA needs at least one value")
    if period <= 0:
        raise InvalidArgumentError(f"EMA period must be positive, got {period}")
    k = 2.0 / (period + 1.0)
    result = np.empty_like(arr)
    result[0] = arr[0]
    for i in range(1, arr.size):
        result[i] = arr[i] * k + result[i - 1] * (1 - k)
    return result


def rsi(prices: Sequence[float], periods: int = 14) -> float:
    """Relative strength index over the trailing price changes.

    Flat input (no gains, no losses) is neutral at 50.
    """
    arr = np.asarray(prices, dtype=np.float64)
    if arr.size == 0:
        raise InvalidArgumentError("RSI needs at least one price")
    if periods < 1:
        raise InvalidArgumentError(f"RSI periods must be positive, got {periods}")

    n = min(arr.size - 1, periods)
    diffs = np.diff(arr)[arr.size - n :] if n > 1 else np.empty(0)
    gain = float(diffs[diffs >= 0].sum())
    loss = float(-diffs[diffs < 0].sum())
    if loss == 0:
        return 100.0 if gain > 0 else 50.0
    return 100.0 - 100.0 / (1.0 + gain / loss)


def rsi_bucket(value: float) -> int:
    """Map RSI to {-2, -1, 0, 1, 2}."""
    if value >= RSI_STRONG_HIGH:
        return 2
    if value >= RSI_HIGH:
        return 1
    if value <= RSI_STRONG_LOW:
        return -2
    if value <= RSI_LOW:
        return -1
    return 0


def last_critical_rsi(current_bucket: int, previous: int) -> int:
    """Carry forward the most extreme non-neutral RSI bucket."""
    if current_bucket == 0:
        return previous
    if current_bucket >= 1:
        return max(previous, current_bucket)
    return min(previous, current_bucket)


def mean_to_std(window: np.ndarray, current_price: float) -> float:
    """Distance of the current price from the window mean in sample stddevs."""
    if current_price <= 0:
        raise InvalidArgumentError(f"Current price must be positive, got {current_price}")
    std = float(np.std(window, ddof=1)) if window.size > 1 else 0.0
    if std == 0:
        return 0.0
    return (current_price - float(window.mean())) / std


def slope(values: Sequence[float]) -> float:
    """Least-squares slope of values against their index."""
    y = np.asarray(values, dtype=np.float64)
    if y.size < 2:
        return 0.0
    x = np.arange(y.size, dtype=np.float64)
    dx = x - x.mean()
    return float(np.sum(dx * (y - y.mean())) / np.sum(dx * dx))


def within_margin(window: np.ndarray, current_price: float, margin: float) -> bool:
    """True when the window mean is within `margin` (fraction) of the current price."""
    return abs(float(window.mean()) / current_price - 1.0) <= margin


@dataclass(slots=True, frozen=True)
class Macd:
    macd: float
    signal: float
    hist: float


def macd(
    values: Sequence[float], slow: int = 26, fast: int = 12, signal: int = 9
) -> Macd:
    """MACD line, signal line and histogram at the last value."""
    if fast > slow:
        raise InvalidArgumentError("Fast EMA period must not exceed the slow one")
    slow_ema = ema(values, slow)
    fast_ema = ema(values, fast)
    line = fast_ema - slow_ema
    signal_ema = ema(line, signal)
    value = float(line[-1])
    signal_value = float(signal_ema[-1])
    return Macd(macd=value, signal=signal_value, hist=value - signal_value)
