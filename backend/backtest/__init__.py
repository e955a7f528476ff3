"""Forward simulation, full-history back-testing and combination search.

Depends on core/ for the ensemble and stores; the CLI in __main__ wires in
the app/ storage and feed collaborators.

Usage:
    python -m backtest --backtest --start 2012-01-01 --end 2017-12-31
    python -m backtest --search
"""

from backtest.runner import HistoricalBacktester
from backtest.search import CombinationSearch
from backtest.simulation import SimulationResult, perform_simulation
from backtest.stats import SimulationMetrics

__all__ = [
    "CombinationSearch",
    "HistoricalBacktester",
    "SimulationMetrics",
    "SimulationResult",
    "perform_simulation",
]
