"""Technical indicators (pure math, no I/O)."""

from core.indicators.indicators import (
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

__all__ = [
    "Macd",
    "augmented_price_window",
    "ema",
    "last_critical_rsi",
    "macd",
    "mean_to_std",
    "price_window",
    "rsi",
    "rsi_bucket",
    "slope",
    "within_margin",
]
