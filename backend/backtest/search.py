"""Greedy search over the enabled model set.

Each round scores the enabled set by a full-history simulation, then
tries, in order, removing a node, swapping a node for a more precise
disabled node of the same horizon, and adding a disabled node. The first
change that improves the score is persisted and the round restarts; the
search ends when a round finds nothing better.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Protocol, Sequence

from core.ensemble import weighted_precision
from core.models.node import ModelNode
from core.registry import ModelRegistry

from backtest.runner import HistoricalBacktester

logger = logging.getLogger(__name__)


class EnabledNodes(Protocol):
    """Persisted set of enabled node ids."""

    def load(self) -> list[int]:
        ...

    def enable(self, node_id: int) -> None:
        ...

    def disable(self, node_id: int) -> None:
        ...


@dataclass(frozen=True, slots=True)
class CombinationScore:
    correlation: float
    stddev: float
    precision: float

    def __str__(self) -> str:
        return f"corr={self.correlation:.4f} stddev={self.stddev:.5f} precision={self.precision:.3f}"


def is_better_combination(best: CombinationScore, current: CombinationScore) -> bool:
    """Both less noisy per unit precision and more correlated per unit precision.

    Comparisons involving NaN are never better.
    """
    if not (current.precision > 0 and best.precision > 0):
        return False
    less_noisy = current.stddev / current.precision < best.stddev / best.precision
    more_predictive = current.correlation * current.precision > best.correlation * best.precision
    return less_noisy and more_predictive


def _by_precision(nodes: Sequence[ModelNode], descending: bool = False) -> list[ModelNode]:
    return sorted(nodes, key=lambda n: n.precision, reverse=descending)


class CombinationSearch:
    """Greedy remove / upgrade / add optimizer."""

    def __init__(
        self,
        backtester: HistoricalBacktester,
        registry: ModelRegistry,
        enabled: EnabledNodes,
        start: date | datetime,
        end: date | datetime,
        pool: Sequence[ModelNode] | None = None,
    ):
        self.backtester = backtester
        self.registry = registry
        self.enabled = enabled
        self.start = start
        self.end = end
        pool = registry.roots() if pool is None else pool
        self.pool = [node for node in pool if node.precision is not None]

    def score(self, nodes: Sequence[ModelNode], name: str) -> CombinationScore:
        metrics = self.backtester.evaluate(nodes, self.start, self.end, name)
        return CombinationScore(
            correlation=metrics.correlation,
            stddev=metrics.stddev,
            precision=weighted_precision(nodes),
        )

    def run(self, max_rounds: int | None = None) -> list[int]:
        """Search until no change improves the score.

        Returns:
            Ids of the final enabled set.
        """
        rounds = 0
        while True:
            enabled = self._enabled_nodes()
            if not enabled:
                logger.warning("No enabled nodes; nothing to search from")
                return []
            best = self.score(enabled, "current")
            logger.info(f"Round {rounds + 1}: {len(enabled)} enabled nodes, {best}")

            if not (
                self._try_removal(enabled, best)
                or self._try_upgrade(enabled, best)
                or self._try_addition(enabled, best)
            ):
                logger.info("No improving change found; search finished")
                return [node.id for node in enabled]

            self.backtester.clear_cache()
            rounds += 1
            if max_rounds is not None and rounds >= max_rounds:
                return self.enabled.load()

    def _enabled_nodes(self) -> list[ModelNode]:
        ids = set(self.enabled.load())
        return [node for node in self.pool if node.id in ids]

    def _disabled_nodes(self, enabled: Sequence[ModelNode]) -> list[ModelNode]:
        ids = {node.id for node in enabled}
        return [node for node in self.pool if node.id not in ids]

    def _accepts(self, candidate: list[ModelNode], name: str, best: CombinationScore) -> bool:
        score = self.score(candidate, name)
        better = is_better_combination(best, score)
        logger.info(f"  {name}: {score}{' -> accepted' if better else ''}")
        return better

    def _try_removal(self, enabled: list[ModelNode], best: CombinationScore) -> bool:
        for node in _by_precision(enabled):
            candidate = [n for n in enabled if n.id != node.id]
            if not candidate:
                continue
            if self._accepts(candidate, f"without_{node.id}", best):
                self.enabled.disable(node.id)
                return True
        return False

    def _try_upgrade(self, enabled: list[ModelNode], best: CombinationScore) -> bool:
        disabled = self._disabled_nodes(enabled)
        for node in _by_precision(enabled):
            better_peers = [
                d for d in disabled if d.horizon == node.horizon and d.precision > node.precision
            ]
            for peer in _by_precision(better_peers, descending=True):
                candidate = [peer if n.id == node.id else n for n in enabled]
                if self._accepts(candidate, f"upgrade_{node.id}_to_{peer.id}", best):
                    self.enabled.disable(node.id)
                    self.enabled.enable(peer.id)
                    return True
                self.registry.unload(peer.id)
        return False

    def _try_addition(self, enabled: list[ModelNode], best: CombinationScore) -> bool:
        for node in _by_precision(self._disabled_nodes(enabled), descending=True):
            if self._accepts([*enabled, node], f"with_{node.id}", best):
                self.enabled.enable(node.id)
                return True
            self.registry.unload(node.id)
        return False
