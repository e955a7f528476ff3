"""Small statistics helpers over float arrays (pure numpy)."""

from __future__ import annotations

from typing import Sequence

import numpy as np

from core.errors import InvalidArgumentError, InvalidStateError


def _as_array(values: Sequence[float] | np.ndarray, name: str = "values") -> np.ndarray:
    arr = np.asarray(values, dtype=np.float64)
    if arr.size == 0:
        raise InvalidArgumentError(f"{name} must contain at least one value")
    return arr


def stddev(values: Sequence[float] | np.ndarray) -> float:
    """Sample standard deviation (n - 1). A single value has zero spread."""
    arr = _as_array(values)
    if arr.size < 2:
        return 0.0
    return float(np.std(arr, ddof=1))


def residual_stddev(values: Sequence[float], reference: Sequence[float]) -> float:
    """Standard deviation of values around a paired reference series."""
    a = _as_array(values)
    b = _as_array(reference, "reference")
    if a.size != b.size:
        raise InvalidArgumentError(f"Length mismatch: {a.size} != {b.size}")
    if a.size < 2:
        return 0.0
    return float(np.sqrt(np.sum((a - b) ** 2) / (a.size - 1)))


def correlation(a: Sequence[float], b: Sequence[float]) -> float:
    """Pearson correlation; NaN when either series is constant."""
    x = _as_array(a, "a")
    y = _as_array(b, "b")
    if x.size != y.size:
        raise InvalidArgumentError(f"Length mismatch: {x.size} != {y.size}")
    if x.size < 2:
        return float("nan")
    dx = x - x.mean()
    dy = y - y.mean()
    denominator = np.sqrt(np.sum(dx * dx) * np.sum(dy * dy))
    if denominator == 0:
        return float("nan")
    return float(np.sum(dx * dy) / denominator)


def normalize(weights: Sequence[float]) -> np.ndarray:
    """Scale weights to sum to 1.

    Raises:
        InvalidStateError: If all weights are zero.
    """
    arr = _as_array(weights, "weights")
    total = arr.sum()
    if total <= 0:
        raise InvalidStateError("Cannot normalize weights that sum to zero")
    return arr / total


def differences(values: Sequence[float]) -> np.ndarray:
    """First differences, one shorter than the input."""
    return np.diff(_as_array(values))


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def future_profits(prices: Sequence[float], horizon: int) -> np.ndarray:
    """log(p[i + horizon] / p[i]); the last `horizon` entries have no future and are 0."""
    if horizon <= 0:
        raise InvalidArgumentError(f"horizon must be positive, got {horizon}")
    arr = _as_array(prices, "prices")
    profits = np.zeros_like(arr)
    if arr.size > horizon:
        profits[:-horizon] = np.log(arr[horizon:] / arr[:-horizon])
    return profits
