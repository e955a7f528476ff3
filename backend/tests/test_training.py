"""Tests for ModelBuilder on a small synthetic history."""

import math

import numpy as np
import pytest

from core.consolidation import consolidate
from core.errors import InvalidStateError
from core.models.bar import Bar
from core.models.node import (
    DecisionBucketStats,
    FeatureDescriptor,
    LinearStats,
    ModelNode,
)
from core.models.resolution import Resolution
from core.predictors import LinearPredictor
from core.registry import ModelRegistry
from core.store import MultiResolutionStore
from core.training import ModelBuilder

HOUR = 3_600_000
FEATURES = ["RSI;14;", "LinearRegressionSlope;12;", "MACDHist;40;"]


def synthetic_store(hours: int = 700) -> MultiResolutionStore:
    rng = np.random.default_rng(42)
    noise = rng.normal(scale=0.0008, size=hours)
    store = MultiResolutionStore()
    bars = []
    for i in range(hours):
        price = 1.1 + 0.01 * math.sin(i / 9.0) + noise[i]
        bars.append(
            Bar.from_prices(
                start=i * HOUR,
                end=(i + 1) * HOUR - 1,
                open=price,
                close=price + noise[i - 1] / 2,
                high=price + 0.001,
                low=price - 0.001,
            )
        )
    store[Resolution.H1] = bars
    for resolution in Resolution.H1.coarser():
        finer = store[resolution.consolidation_source()]
        store[resolution] = consolidate(finer, resolution.periods_per_day) if finer else []
    return store


def make_node(node_id: int = 1, linear: bool = False, points=None) -> ModelNode:
    return ModelNode(
        id=node_id,
        horizon=6,
        features=[FeatureDescriptor.parse(f) for f in FEATURES],
        stats=LinearStats() if linear else DecisionBucketStats(),
        training_points=points if points is not None else list(range(60, 680)),
    )


class TestTrainingSet:
    def test_rows_skip_short_history(self):
        registry = ModelRegistry()
        node = registry.register(make_node(points=list(range(0, 100))))
        builder = ModelBuilder(registry, synthetic_store())

        data = builder.training_set(node)

        # MACDHist;40 needs 50 visible bars; at point i the cursor sits on bar i - 1
        assert data.points[0] == 50
        assert data.features.shape == (len(data), 3)
        assert len(data.profits) == len(data)

    def test_delegate_rows_wait_for_delegate_history(self):
        registry = ModelRegistry()
        target = ModelNode(
            id=1, horizon=6, features=[FeatureDescriptor.parse("RSI;100;")], stats=LinearStats(precision=0.3)
        )
        model = LinearPredictor().fit(np.array([[30.0], [50.0], [70.0]]), np.array([-0.01, 0.0, 0.01]))
        registry.register(target, model=model)
        top = ModelNode(
            id=2,
            horizon=6,
            features=[FeatureDescriptor.parse("RSI;14;"), FeatureDescriptor.parse("Classifier;0;1")],
            stats=DecisionBucketStats(),
            training_points=list(range(0, 200)),
        )
        registry.register(top)

        data = ModelBuilder(registry, synthetic_store()).training_set(top)

        # RSI;100 on the delegate needs 110 visible bars
        assert data.points[0] == 110
        assert data.features.shape == (90, 2)

    def test_no_rows_raises(self):
        registry = ModelRegistry()
        node = registry.register(make_node(points=[1, 2, 3]))
        with pytest.raises(InvalidStateError):
            ModelBuilder(registry, synthetic_store()).training_set(node)

    def test_default_points_start_after_warmup(self):
        builder = ModelBuilder(ModelRegistry(), synthetic_store(200))
        assert builder.default_training_points(6) == []


class TestDecisionBucketBuild:
    def test_build_fills_statistics(self):
        saved = []
        registry = ModelRegistry()
        node = registry.register(make_node())
        builder = ModelBuilder(registry, synthetic_store(), save_model=lambda i, m: saved.append(i))

        builder.build(node)

        stats = node.stats
        assert 0.0 <= stats.precision <= 1.0
        assert stats.profit_stddev > 0
        assert stats.profit_average == 0.0
        assert all(p is not None for p in stats.bucket_profits)
        assert saved == [1]
        assert registry.is_loaded(1)

    def test_children_cover_their_bucket_points(self):
        registry = ModelRegistry()
        node = registry.register(make_node())
        builder = ModelBuilder(registry, synthetic_store(), min_child_points=20)

        children = builder.build(node)

        for child in children:
            assert child.parent_id == node.id
            assert child.id in node.child_ids()
            assert set(child.training_points) <= set(node.training_points)
            assert len(child.training_points) >= 20
        if node.stats.is_singular or node.precision <= 0.5:
            assert children == []

    def test_build_tree_builds_every_node(self):
        registry = ModelRegistry()
        root = registry.register(make_node())
        builder = ModelBuilder(registry, synthetic_store(), min_child_points=200)

        built = builder.build_tree(root)

        assert built[0] is root
        assert all(n.precision is not None for n in built)
        assert len(built) == len(registry)


class TestLinearBuild:
    def test_build_linear(self):
        registry = ModelRegistry()
        node = registry.register(make_node(linear=True))
        builder = ModelBuilder(registry, synthetic_store())

        assert builder.build(node) == []
        assert 0.0 <= node.precision <= 1.0
        assert node.profit_stddev >= 0.0
