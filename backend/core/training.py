"""Building model nodes: training sets, fitting and node statistics."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Callable

import numpy as np

from core.ensemble import MIN_PRECISION, Ensemble
from core.errors import InvalidStateError
from core.models.node import (
    BUCKET_COUNT,
    DecisionBucket,
    DecisionBucketStats,
    LinearStats,
    ModelNode,
    bucket_to_profit,
    profit_to_bucket,
)
from core.models.resolution import TRAINING_RESOLUTION
from core.registry import ModelRegistry
from core.statistics import correlation, future_profits, residual_stddev, stddev
from core.store import MultiResolutionStore
from core.time_index import TimeCursor

logger = logging.getLogger(__name__)

# Training starts after this many days of hourly history
WARMUP_DAYS = 300
# Buckets with fewer predicted samples fall back to bucket_to_profit()
MIN_BUCKET_SAMPLES = 10
MIN_CHILD_POINTS = 1000

ModelSaver = Callable[[int, Any], None]


@dataclass(slots=True)
class TrainingSet:
    """Feature rows and future profits of the points that had enough history."""

    points: np.ndarray
    features: np.ndarray
    profits: np.ndarray

    def __len__(self) -> int:
        return len(self.points)


class ModelBuilder:
    """Fits nodes against a historical store and fills in their statistics."""

    def __init__(
        self,
        registry: ModelRegistry,
        store: MultiResolutionStore,
        save_model: ModelSaver | None = None,
        min_child_points: int = MIN_CHILD_POINTS,
    ):
        self.registry = registry
        self.store = store
        self.ensemble = Ensemble(registry, store)
        self._save_model = save_model
        self.min_child_points = min_child_points

    def default_training_points(self, horizon: int) -> list[int]:
        hourly = self.store[TRAINING_RESOLUTION]
        first = WARMUP_DAYS * TRAINING_RESOLUTION.periods_per_day
        return list(range(first, len(hourly) - horizon))

    def training_set(self, node: ModelNode, points: list[int] | None = None) -> TrainingSet:
        """Features at each point (cursor one bar behind) and the realized profit."""
        if points is None:
            points = node.training_points or self.default_training_points(node.horizon)
        hourly = self.store[TRAINING_RESOLUTION]
        profits = future_profits([b.median for b in hourly], node.horizon)

        cursor = TimeCursor()
        kept_points: list[int] = []
        rows: list[np.ndarray] = []
        for i in points:
            cursor.advance(self.store, hourly[i].start, TRAINING_RESOLUTION)
            vector = self.ensemble.features.compute(
                node.features, node.resolution, hourly[i].median, cursor
            )
            if vector is None:
                continue
            kept_points.append(i)
            rows.append(vector)

        if not rows:
            raise InvalidStateError(f"Node {node.id} has no training rows with enough history")
        kept = np.asarray(kept_points, dtype=np.int64)
        return TrainingSet(points=kept, features=np.vstack(rows), profits=profits[kept])

    def build(self, node: ModelNode) -> list[ModelNode]:
        """Fit one node and compute its statistics.

        Returns:
            Child nodes created under the node (decision-bucket nodes only).
        """
        data = self.training_set(node)
        logger.info(f"Building node {node.id} ({node.kind.value}, horizon {node.horizon}) on {len(data)} rows")
        if isinstance(node.stats, DecisionBucketStats):
            return self._build_decision_bucket(node, node.stats, data)
        self._build_linear(node, node.stats, data)
        return []

    def build_tree(self, node: ModelNode) -> list[ModelNode]:
        """Build a node and, breadth first, every child it spawns."""
        built: list[ModelNode] = []
        queue = [node]
        while queue:
            current = queue.pop(0)
            queue.extend(self.build(current))
            built.append(current)
        return built

    def _fit(self, node: ModelNode, features: np.ndarray, targets: np.ndarray) -> Any:
        model = self.registry.predictor(node.id).fit(features, targets)
        self.registry.set_model(node.id, model)
        if self._save_model is not None:
            self._save_model(node.id, model)
        return model

    def _build_decision_bucket(
        self, node: ModelNode, stats: DecisionBucketStats, data: TrainingSet
    ) -> list[ModelNode]:
        stats.profit_stddev = stddev(data.profits)
        stats.profit_average = 0.0 if node.is_root else float(np.mean(data.profits))
        labels = np.array(
            [profit_to_bucket(p, stats.profit_stddev, stats.profit_average) for p in data.profits],
            dtype=np.int64,
        )

        predictor = self.registry.predictor(node.id)
        model = self._fit(node, data.features, labels)
        stats.precision = predictor.cross_validate(data.features, labels)

        predicted = predictor.predict_many(model, data.features)
        stats.is_singular = len(np.unique(predicted)) <= 1

        stats.bucket_profits = [None] * BUCKET_COUNT
        for bucket in DecisionBucket:
            in_bucket = data.profits[predicted == bucket]
            if len(in_bucket) < MIN_BUCKET_SAMPLES:
                stats.bucket_profits[bucket] = bucket_to_profit(
                    bucket, stats.profit_stddev, stats.profit_average
                )
            else:
                stats.bucket_profits[bucket] = float(np.mean(in_bucket))

        logger.info(
            f"Node {node.id}: precision {stats.precision:.1%}, "
            f"profit stddev {stats.profit_stddev:.5f}, singular={stats.is_singular}"
        )
        if stats.precision <= MIN_PRECISION or stats.is_singular:
            return []

        children: list[ModelNode] = []
        for bucket in DecisionBucket:
            points = data.points[predicted == bucket]
            if len(points) < self.min_child_points or node.children[bucket] is not None:
                continue
            child = ModelNode(
                id=self.registry.next_id(),
                resolution=node.resolution,
                horizon=node.horizon,
                features=list(node.features),
                stats=DecisionBucketStats(),
                training_points=points.tolist(),
            )
            self.registry.attach_child(node.id, bucket, child)
            logger.info(f"Node {node.id}: created child {child.id} for {bucket.name} ({len(points)} points)")
            children.append(child)
        return children

    def _build_linear(self, node: ModelNode, stats: LinearStats, data: TrainingSet) -> None:
        predictor = self.registry.predictor(node.id)
        model = self._fit(node, data.features, data.profits)
        implied = np.array(
            [math.exp(dfp) - 1.0 for dfp in predictor.predict_many(model, data.features)]
        )
        r = correlation(data.profits, implied)
        stats.precision = 0.0 if math.isnan(r) else r * r
        stats.profit_stddev = residual_stddev(data.profits, implied)
        logger.info(
            f"Node {node.id}: R^2 {stats.precision:.3f}, residual stddev {stats.profit_stddev:.5f}"
        )
