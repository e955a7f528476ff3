"""Prediction, per-horizon combination and price estimation.

A node predicts a discounted future log-price change (DFP). Nodes that
share a horizon are combined into a weighted future profit (WFP) using
precision-based weights; horizon groups are combined with weights that
grow with precision^6 and shrink with profit_stddev^6.
"""

from __future__ import annotations

import math
from typing import Iterable, Sequence

import numpy as np

from core.errors import InvalidArgumentError, InvalidStateError
from core.features import FeatureEngine
from core.indicators import ema
from core.models.bar import Bar
from core.models.node import DecisionBucket, ModelKind, ModelNode
from core.registry import ModelRegistry
from core.statistics import normalize
from core.store import MultiResolutionStore
from core.time_index import TimeCursor

# A node (or child) contributes only above this precision
MIN_PRECISION = 0.5
PRECISION_EXPONENT = 6
# Horizons at or above this are projected from a single WFP sample
LONG_HORIZON = 48
MAX_SMOOTHED_SAMPLES = 24


class Ensemble:
    """Predicts nodes of one registry against one store."""

    def __init__(self, registry: ModelRegistry, store: MultiResolutionStore):
        self.registry = registry
        self.store = store
        self.features = FeatureEngine(store, registry, self.try_predict)

    def predict(self, node: ModelNode, price: float, cursor: TimeCursor | None = None) -> float:
        """DFP of one node at the cursor (latest bars when cursor is None).

        Raises:
            InvalidStateError: If the store lacks history for the node's features.
        """
        value = self.try_predict(node, price, cursor)
        if value is None:
            raise InvalidStateError(f"Not enough history to predict node {node.id}")
        return value

    def try_predict(
        self, node: ModelNode, price: float, cursor: TimeCursor | None = None
    ) -> float | None:
        """Like predict(), but None when the store lacks history."""
        vector = self.features.compute(node.features, node.resolution, price, cursor)
        if vector is None:
            return None
        return self.predict_vector(node, vector)

    def predict_vector(self, node: ModelNode, vector: np.ndarray) -> float:
        predictor = self.registry.predictor(node.id)
        model = self.registry.model(node.id)
        if node.kind is ModelKind.LINEAR:
            return predictor.predict(model, vector)

        bucket = DecisionBucket(predictor.predict(model, vector))
        child_id = node.children[bucket]
        if child_id is not None and child_id in self.registry:
            child = self.registry.get(child_id)
            if child.precision is not None and child.precision > MIN_PRECISION:
                return self.predict_vector(child, vector)
        return node.stats.profit_for(bucket)

    def predict_group(
        self, nodes: Sequence[ModelNode], price: float, cursor: TimeCursor | None = None
    ) -> float:
        """WFP of nodes sharing one horizon."""
        if price <= 0:
            raise InvalidArgumentError(f"Price must be positive, got {price}")
        return combine(nodes, [self.predict(node, price, cursor) for node in nodes])


def _precision(node: ModelNode) -> float:
    if node.precision is None:
        raise InvalidStateError(f"Node {node.id} has no precision; build it first")
    return node.precision


def combination_weights(nodes: Sequence[ModelNode]) -> np.ndarray:
    """max(0, (precision - 0.5) * 2) per node, normalized.

    Raises:
        InvalidStateError: If no node is above 50% precision.
    """
    if not nodes:
        raise InvalidArgumentError("Cannot weight an empty node list")
    raw = [max(0.0, (_precision(n) - MIN_PRECISION) * 2.0) for n in nodes]
    try:
        return normalize(raw)
    except InvalidStateError:
        raise InvalidStateError(
            f"All nodes {[n.id for n in nodes]} are at or below {MIN_PRECISION:.0%} precision"
        ) from None


def combine(nodes: Sequence[ModelNode], predictions: Sequence[float]) -> float:
    """Weighted future profit of same-horizon nodes."""
    if len(nodes) != len(predictions):
        raise InvalidArgumentError(
            f"{len(nodes)} nodes but {len(predictions)} predictions"
        )
    horizons = {n.horizon for n in nodes}
    if len(horizons) > 1:
        raise InvalidArgumentError(f"Nodes span several horizons: {sorted(horizons)}")
    weights = combination_weights(nodes)
    return float(np.dot(weights, np.asarray(predictions, dtype=np.float64)))


def group_by_horizon(nodes: Iterable[ModelNode]) -> dict[int, list[ModelNode]]:
    """Nodes grouped by horizon, horizons ascending."""
    groups: dict[int, list[ModelNode]] = {}
    for node in nodes:
        groups.setdefault(node.horizon, []).append(node)
    return dict(sorted(groups.items()))


def average_precision(nodes: Sequence[ModelNode]) -> float:
    return float(np.mean([_precision(n) for n in nodes]))


def horizon_weights(groups: dict[int, list[ModelNode]]) -> dict[int, float]:
    """precision^6 / profit_stddev^6 per horizon group, normalized.

    A group's profit stddev is that of its first node.
    """
    if not groups:
        raise InvalidArgumentError("No horizon groups to weight")
    raw = []
    for horizon, group in groups.items():
        stddev = group[0].profit_stddev
        if not stddev:
            raise InvalidStateError(f"Horizon {horizon} group has no profit stddev")
        raw.append(average_precision(group) ** PRECISION_EXPONENT / stddev ** PRECISION_EXPONENT)
    return dict(zip(groups, normalize(raw).tolist()))


def weighted_precision(nodes: Sequence[ModelNode]) -> float:
    """Average precision of each horizon group, weighted by horizon_weights()."""
    groups = group_by_horizon(nodes)
    weights = horizon_weights(groups)
    return sum(weights[h] * average_precision(group) for h, group in groups.items())


def estimate_price(horizon: int, wfp: Sequence[float], bars: Sequence[Bar]) -> float:
    """Price implied by a horizon group's WFP series.

    Sample k of the series was predicted at bar len(bars) - 1 - len(wfp) + k;
    its projection is that bar's median times exp(wfp[k]). Long horizons use
    the oldest relevant sample alone, short ones EMA-smooth up to 24 samples.
    """
    if not wfp:
        raise InvalidArgumentError(f"No WFP samples for horizon {horizon}")
    start = max(0, len(wfp) - horizon)
    base = len(bars) - 1 - len(wfp)
    if base + start < 0:
        raise InvalidArgumentError("WFP series is longer than the bar history")

    if horizon >= LONG_HORIZON:
        return bars[base + start].median * math.exp(wfp[start])

    end = min(start + min(MAX_SMOOTHED_SAMPLES, horizon), len(wfp))
    projections = [bars[base + k].median * math.exp(wfp[k]) for k in range(start, end)]
    return float(ema(projections, len(projections))[-1])
