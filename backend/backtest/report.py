"""Console formatting for simulations and search results."""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Sequence

from core.models.node import ModelNode

from backtest.simulation import SimulationResult
from backtest.stats import SimulationMetrics


def _ms_to_str(timestamp_ms: int) -> str:
    return f"{datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc):%Y-%m-%d %H:%M}"


class ReportFormatter:
    """Format back-test results for display."""

    @staticmethod
    def print_metrics(name: str, metrics: SimulationMetrics) -> None:
        print("\n" + "=" * 70)
        print(f"  FULL-HISTORY SIMULATION — {name or 'enabled set'}")
        print("=" * 70)
        print(f"  Rows:             {metrics.rows}")
        print(f"  Correlation (r²): {metrics.correlation:.4f}")
        print(f"  Error stddev:     {metrics.stddev:.5f}")
        print("=" * 70)

    @staticmethod
    def print_forecast(result: SimulationResult) -> None:
        print("\n" + "-" * 70)
        print("  FORECAST")
        print("-" * 70)
        print(f"  {'End time':<18} {'Real':>12} {'Simulated':>12}")
        for row in result.rows:
            real = f"{row.real_price:.5f}" if row.real_price is not None else "-"
            print(f"  {_ms_to_str(row.end_time):<18} {real:>12} {row.simulated_price:>12.5f}")

        summary = result.forecast_summary()
        if summary is not None:
            next_median, high, low = summary
            print(f"\n  Next 24 hours estimated median price: {next_median:.5f}")
            print(f"  High / low of simulated path:        {high:.5f} / {low:.5f}")

    @staticmethod
    def print_nodes(nodes: Sequence[ModelNode], enabled: set[int]) -> None:
        print(f"\n  {'ID':>5} {'Kind':<16} {'Horizon':>7} {'Precision':>10} {'Stddev':>9} {'Parent':>7} {'On':>3}")
        for node in sorted(nodes, key=lambda n: n.id):
            precision = f"{node.precision:.1%}" if node.precision is not None else "-"
            stddev = f"{node.profit_stddev:.5f}" if node.profit_stddev is not None else "-"
            parent = str(node.parent_id) if node.parent_id is not None else "-"
            flag = "*" if node.id in enabled else ""
            print(
                f"  {node.id:>5} {node.kind.value:<16} {node.horizon:>7} "
                f"{precision:>10} {stddev:>9} {parent:>7} {flag:>3}"
            )

    @staticmethod
    def print_horizon_forecasts(price: float, forecasts: dict[int, float]) -> None:
        """Current price projected by each horizon group's predicted log change."""
        print(f"\n  Current price: {price:.5f}")
        print(f"  {'Horizon':>7} {'WFP':>10} {'Price':>12}")
        for horizon, wfp in sorted(forecasts.items()):
            print(f"  {horizon:>6}h {wfp:>+10.5f} {price * math.exp(wfp):>12.5f}")
