"""HistoricalBacktester: weekly windows simulated in parallel.

Each window gets its own split of the historical store, so windows share
nothing mutable except lazily populated store slots and the registry.
A failing window is logged and left out; the batch carries on.
"""

from __future__ import annotations

import hashlib
import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, time as dt_time, timedelta, timezone
from pathlib import Path
from typing import Sequence

import pandas as pd

from core.errors import InvalidArgumentError
from core.models.node import ModelNode
from core.models.resolution import Resolution
from core.registry import ModelRegistry
from core.store import MultiResolutionStore, StoreKind

from backtest.simulation import SimulationRow, perform_simulation, price_volatility
from backtest.stats import SimulationMetrics

logger = logging.getLogger(__name__)

RESULT_COLUMNS = [
    "end_time",
    "real_price",
    "simulated_price",
    "p_difference",
    "real_change",
    "simulated_change",
]


def to_ms(day: date | datetime) -> int:
    """Unix milliseconds of a date (midnight UTC) or an aware datetime."""
    if not isinstance(day, datetime):
        day = datetime.combine(day, dt_time.min, tzinfo=timezone.utc)
    elif day.tzinfo is None:
        day = day.replace(tzinfo=timezone.utc)
    return int(day.timestamp() * 1000)


class HistoricalBacktester:
    """Simulate a node set over a date range, one week per task."""

    def __init__(
        self,
        store: MultiResolutionStore,
        registry: ModelRegistry,
        output_dir: Path,
        workers: int = 4,
        window_days: int = 7,
        output_resolution: Resolution = Resolution.D1,
    ):
        if store.kind is StoreKind.REALTIME:
            raise InvalidArgumentError("Historical back-tests cannot run on a realtime store")
        self.store = store
        self.registry = registry
        self.output_dir = Path(output_dir)
        self.workers = workers
        self.window_days = window_days
        self.output_resolution = output_resolution
        self._volatility: float | None = None

    @property
    def volatility(self) -> float:
        if self._volatility is None:
            self._volatility = price_volatility(self.store)
        return self._volatility

    def cache_key(
        self, nodes: Sequence[ModelNode], start: date | datetime, end: date | datetime
    ) -> str:
        """Digest of everything a cached run depends on besides its name."""
        parts = [
            ",".join(f"{n.id}:{n.precision}" for n in sorted(nodes, key=lambda n: n.id)),
            str(to_ms(start)),
            str(to_ms(end)),
            str(self.window_days),
            self.output_resolution.label,
        ]
        return hashlib.sha1("|".join(parts).encode()).hexdigest()[:10]

    def cache_path(
        self,
        name: str,
        nodes: Sequence[ModelNode],
        start: date | datetime,
        end: date | datetime,
    ) -> Path:
        key = self.cache_key(nodes, start, end)
        return self.output_dir / f"{self.store.kind.value}Simulation_{name}_{key}.csv"

    def clear_cache(self) -> None:
        """Forget every cached run (e.g. after the enabled set changed)."""
        if not self.output_dir.exists():
            return
        for path in self.output_dir.glob("*Simulation_*.csv"):
            path.unlink()
        logger.debug(f"Cleared simulation cache in {self.output_dir}")

    def window_starts(self, start: date | datetime, end: date | datetime) -> list[int]:
        """Window start times every `window_days` from start while not after end."""
        first, last = to_ms(start), to_ms(end)
        step = timedelta(days=self.window_days) // timedelta(milliseconds=1)
        return list(range(first, last + 1, step))

    def simulate_full_history(
        self,
        nodes: Sequence[ModelNode],
        start: date | datetime,
        end: date | datetime,
        name: str = "",
    ) -> pd.DataFrame:
        """Per-step real vs simulated prices over [start, end].

        Runs are cached per name, node set and date range.
        """
        path = self.cache_path(name, nodes, start, end)
        if path.exists():
            logger.debug(f"Using cached simulation '{name}' from {path}")
            return pd.read_csv(path, parse_dates=["end_time"])

        windows = self.window_starts(start, end)
        hours = self.window_days * 24
        logger.info(
            f"Simulating '{name}': {len(windows)} windows of {self.window_days}d "
            f"with {len(nodes)} nodes ({self.workers} workers)"
        )
        started = time.time()
        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            futures = [pool.submit(self._run_window, nodes, w, hours) for w in windows]
            results = [f.result() for f in futures]

        frame = self._aggregate(results)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        frame.to_csv(path, index=False)
        failed = sum(1 for r in results if r is None)
        logger.info(
            f"Simulation '{name}' done in {time.time() - started:.1f}s: "
            f"{len(frame)} rows, {failed} failed windows"
        )
        return frame

    def evaluate(
        self,
        nodes: Sequence[ModelNode],
        start: date | datetime,
        end: date | datetime,
        name: str = "",
    ) -> SimulationMetrics:
        return SimulationMetrics.from_frame(self.simulate_full_history(nodes, start, end, name))

    def _run_window(
        self, nodes: Sequence[ModelNode], start_ms: int, hours: int
    ) -> list[SimulationRow] | None:
        try:
            return perform_simulation(
                self.store,
                self.registry,
                nodes,
                start_ms,
                hours,
                self.output_resolution,
                self.volatility,
            ).rows
        except Exception:
            logger.error(
                f"Simulation window failed: {datetime.fromtimestamp(start_ms / 1000, tz=timezone.utc):%Y-%m-%d}",
                exc_info=True,
            )
            return None

    @staticmethod
    def _aggregate(results: list[list[SimulationRow] | None]) -> pd.DataFrame:
        """Flatten windows in start order, skipping each window's first row."""
        records = []
        for rows in results:
            if rows is None or len(rows) < 2:
                continue
            for previous, row in zip(rows, rows[1:]):
                records.append(
                    {
                        "end_time": pd.Timestamp(row.end_time, unit="ms", tz="UTC"),
                        "real_price": row.real_price,
                        "simulated_price": row.simulated_price,
                        "p_difference": row.simulated_price / row.real_price - 1.0,
                        "real_change": math.log(row.real_price / previous.real_price),
                        "simulated_change": math.log(row.simulated_price / previous.simulated_price),
                    }
                )
        return pd.DataFrame(records, columns=RESULT_COLUMNS)
