"""Accuracy metrics of a full-history simulation."""

from __future__ import annotations

import math
from dataclasses import dataclass

import pandas as pd

from core.statistics import correlation, stddev


@dataclass(frozen=True, slots=True)
class SimulationMetrics:
    """correlation is r^2 of real vs simulated log changes; stddev is of the fractional error."""

    correlation: float
    stddev: float
    rows: int

    @classmethod
    def from_frame(cls, frame: pd.DataFrame) -> SimulationMetrics:
        if frame.empty:
            return cls(correlation=math.nan, stddev=math.nan, rows=0)
        r = correlation(frame["real_change"].to_numpy(), frame["simulated_change"].to_numpy())
        return cls(
            correlation=r * r,
            stddev=stddev(frame["p_difference"].to_numpy()),
            rows=len(frame),
        )

    @property
    def is_valid(self) -> bool:
        return self.rows > 1 and not (math.isnan(self.correlation) or math.isnan(self.stddev))
