"""Forward simulation: extend a store with synthetic hourly bars.

The walk replays the last `max_horizon` hours of history to seed each
horizon group's WFP series, then appends one synthetic bar per step. Each
synthetic bar becomes history for the next step.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence

from core.ensemble import Ensemble, estimate_price, group_by_horizon, horizon_weights
from core.errors import InvalidArgumentError
from core.models.bar import Bar, median
from core.models.node import ModelNode
from core.models.resolution import TRAINING_RESOLUTION, Resolution
from core.registry import ModelRegistry
from core.statistics import clamp, differences, stddev
from core.store import MultiResolutionStore, StoreKind, split
from core.time_index import TimeCursor, floor

logger = logging.getLogger(__name__)

# Synthetic prices stay within this many volatilities of the last close
VOLATILITY_GUARD = 3.0
SUMMARY_HOURS = 24


def price_volatility(store: MultiResolutionStore) -> float:
    """Stddev of first differences of hourly medians."""
    medians = [bar.median for bar in store[TRAINING_RESOLUTION]]
    if len(medians) < 2:
        return 0.0
    return stddev(differences(medians))


class ForwardSimulator:
    """Autoregressive walk of an ensemble over a custom store."""

    def __init__(self, registry: ModelRegistry, nodes: Sequence[ModelNode], volatility: float):
        if not nodes:
            raise InvalidArgumentError("Simulation needs at least one model node")
        self.registry = registry
        self.groups = group_by_horizon(nodes)
        self.weights = horizon_weights(self.groups)
        self.volatility = volatility

    def run(self, store: MultiResolutionStore, hours: int) -> None:
        """Append hours + 1 synthetic hourly bars to `store` (cascading to coarser slots)."""
        ensemble = Ensemble(self.registry, store)
        hourly = store[TRAINING_RESOLUTION]
        history_length = len(hourly)
        first = max(history_length - max(self.groups) - 1, 1)
        last = history_length + hours - 1

        wfp: dict[int, list[float]] = {h: [] for h in self.groups}
        cursor = TimeCursor()
        for i in range(first, last + 1):
            cursor.advance(store, hourly[i].start, TRAINING_RESOLUTION)
            price = hourly[i].median

            for horizon, group in self.groups.items():
                if i >= history_length - horizon - 1:
                    wfp[horizon].append(ensemble.predict_group(group, price, cursor))

            if i + 1 >= history_length:
                store.insert(self._next_bar(hourly, wfp), TRAINING_RESOLUTION)

    def _next_bar(self, hourly: list[Bar], wfp: dict[int, list[float]]) -> Bar:
        previous = hourly[-1]
        target = sum(
            self.weights[h] * estimate_price(h, series, hourly) for h, series in wfp.items()
        )
        band = VOLATILITY_GUARD * self.volatility
        target = clamp(target, previous.close * max(0.0, 1.0 - band), previous.close * (1.0 + band))

        start = previous.end + 1
        return Bar(
            start=start,
            end=start + TRAINING_RESOLUTION.duration_ms - 1,
            open=previous.close,
            close=target,
            high=max(previous.close, target),
            low=min(previous.close, target),
            median=target,
        )


@dataclass(slots=True)
class SimulationRow:
    end_time: int
    real_price: float | None
    simulated_price: float


@dataclass
class SimulationResult:
    start_time: int
    rows: list[SimulationRow] = field(default_factory=list)
    store: MultiResolutionStore | None = None

    def forecast_summary(self) -> tuple[float, float, float] | None:
        """Median of the next 24 simulated hours, and the high/low of the whole path."""
        if self.store is None:
            return None
        hourly = self.store[TRAINING_RESOLUTION]
        index = floor(hourly, self.start_time)
        path = [bar.median for bar in hourly[index:]]
        if not path:
            return None
        return median(path[:SUMMARY_HOURS]), max(path), min(path)


def perform_simulation(
    history: MultiResolutionStore,
    registry: ModelRegistry,
    nodes: Sequence[ModelNode],
    start_time: int,
    hours: int,
    output_resolution: Resolution = TRAINING_RESOLUTION,
    volatility: float | None = None,
) -> SimulationResult:
    """Simulate `hours` from start_time and compare against the real bars.

    History is cut at start_time so the walk only sees the past. Rows are
    emitted for synthetic bars of `output_resolution`; realtime runs have
    no real counterpart and leave real_price empty.
    """
    if volatility is None:
        volatility = price_volatility(history)

    past, _ = split(history, start_time, TRAINING_RESOLUTION)
    first_output = len(past[output_resolution])
    ForwardSimulator(registry, nodes, volatility).run(past, hours)

    simulated = past[output_resolution]
    realtime = history.kind is StoreKind.REALTIME
    real = history[output_resolution]
    end = len(simulated) if realtime else min(len(simulated), len(real))

    result = SimulationResult(start_time=start_time, store=past)
    for i in range(first_output, end):
        result.rows.append(
            SimulationRow(
                end_time=simulated[i].end,
                real_price=None if realtime else real[i].median,
                simulated_price=simulated[i].median,
            )
        )
    logger.debug(f"Simulation from {start_time}: {len(result.rows)} {output_resolution.label} rows")
    return result
