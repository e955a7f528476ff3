"""Tests for the feature engine."""

import math

import numpy as np
import pytest

from core.consolidation import consolidate
from core.ensemble import Ensemble
from core.errors import InvalidStateError
from core.features import FeatureEngine, required_bars
from core.indicators import rsi
from core.models.bar import Bar
from core.models.node import DecisionBucketStats, FeatureDescriptor, ModelNode
from core.models.resolution import Resolution
from core.registry import ModelRegistry
from core.store import MultiResolutionStore
from core.time_index import TimeCursor

HOUR = 3_600_000


def wave_store(hours: int) -> MultiResolutionStore:
    """Custom store of a noisy sine wave, 1H and everything coarser."""
    store = MultiResolutionStore()
    bars = []
    for i in range(hours):
        price = 1.1 + 0.01 * math.sin(i / 5.0) + 0.001 * math.cos(i * 1.7)
        bars.append(
            Bar.from_prices(
                start=i * HOUR,
                end=(i + 1) * HOUR - 1,
                open=price,
                close=price + 0.0002 * math.sin(i),
                high=price + 0.0005,
                low=price - 0.0005,
            )
        )
    store[Resolution.H1] = bars
    for resolution in Resolution.H1.coarser():
        finer = store[resolution.consolidation_source()]
        store[resolution] = consolidate(finer, resolution.periods_per_day) if finer else []
    return store


def descriptors(*definitions: str) -> list[FeatureDescriptor]:
    return [FeatureDescriptor.parse(d) for d in definitions]


class RecordingPredict:
    def __init__(self, value: float = 0.0):
        self.value = value
        self.calls: list[tuple[int, float, TimeCursor | None]] = []

    def __call__(self, node, price, cursor):
        self.calls.append((node.id, price, cursor))
        return self.value


def make_engine(store, predict=None, nodes=()):
    registry = ModelRegistry()
    registry.register_all(nodes)
    return FeatureEngine(store, registry, predict or RecordingPredict())


class TestRequiredBars:
    def test_plain(self):
        assert required_bars(FeatureDescriptor.parse("RSI;14;")) == 24

    def test_slopes_ema_uses_longest_length(self):
        assert required_bars(FeatureDescriptor.parse("SlopesEMA;24;12;48")) == 58

    def test_macd_hist_slope_adds_length(self):
        assert required_bars(FeatureDescriptor.parse("MACDHistSlope;30;5")) == 45


class TestCompute:
    def test_not_enough_history_returns_none(self):
        engine = make_engine(wave_store(20))
        assert engine.compute(descriptors("RSI;14;"), Resolution.H1, 1.1) is None

    def test_vector_has_one_entry_per_descriptor(self):
        store = wave_store(400)
        engine = make_engine(store)
        kinds = (
            "RSI;14;", "RSIWithCurrentPrice;14;", "RSIInt;14;", "RSIIntWithCurrentPrice;14;",
            "LastCriticalRSI;14;", "LastCriticalRSIWithCurrentPrice;14;",
            "MeanToStd;24;", "MeanToStdInt;24;",
            "LinearRegressionSlope;24;", "LinearRegressionSlopePN;24;",
            "MarginSlope;24;0.001", "MarginSlopePN;24;0.001",
            "MACD;60;", "MACDSign;60;", "MACDSignWithCurrentPrice;60;", "MACDHist;60;",
            "MACDHistWithCurrentPrice;60;", "MACDHistChange;60;", "MACDHistChangeWithCurrentPrice;60;",
            "MACDHistSlope;60;5", "MACDHistPN;60;", "MACDHistCrossed;60;", "MACDHistDifference;60;",
            "SlopesEMA;24;12;48", "ABAverage;72;", "PercentMargin;24;0.01",
        )

        vector = engine.compute(descriptors(*kinds), Resolution.H1, 1.1)

        assert vector.shape == (len(kinds),)
        assert np.all(np.isfinite(vector))
        assert vector[2] in (-2, -1, 0, 1, 2)
        assert vector[9] in (-1.0, 1.0)
        assert vector[20] in (-1.0, 1.0)
        assert vector[21] in (-1.0, 0.0, 1.0)

    def test_rsi_at_cursor_uses_bars_up_to_cursor(self):
        store = wave_store(200)
        engine = make_engine(store)
        cursor = TimeCursor.at(store, 100 * HOUR, Resolution.H1)

        value = engine.compute(descriptors("RSI;14;"), Resolution.H1, 1.1, cursor)[0]

        closes = [b.close for b in store[Resolution.H1][86:100]]
        assert cursor[Resolution.H1] == 99
        assert value == pytest.approx(rsi(closes))

    def test_visible_history_is_counted_at_cursor(self):
        store = wave_store(200)
        engine = make_engine(store)
        cursor = TimeCursor.at(store, 20 * HOUR, Resolution.H1)

        assert engine.compute(descriptors("RSI;14;"), Resolution.H1, 1.1, cursor) is None

    def test_cursor_past_end_raises(self):
        store = wave_store(50)
        engine = make_engine(store)
        cursor = TimeCursor()
        cursor[Resolution.H1] = 80
        with pytest.raises(InvalidStateError):
            engine.compute(descriptors("RSI;14;"), Resolution.H1, 1.1, cursor)

    def test_above_average(self):
        engine = make_engine(wave_store(100))
        above = engine.compute(descriptors("ABAverage;24;"), Resolution.H1, 5.0)
        below = engine.compute(descriptors("ABAverage;24;"), Resolution.H1, 0.5)
        assert (above[0], below[0]) == (1.0, 0.0)


class TestDelegates:
    def delegate_node(self, node_id: int = 9, horizon: int = 5) -> ModelNode:
        return ModelNode(
            id=node_id,
            horizon=horizon,
            features=descriptors("RSI;14;"),
            stats=DecisionBucketStats(),
        )

    def test_delegate_prediction(self):
        predict = RecordingPredict(0.0123)
        engine = make_engine(wave_store(100), predict, nodes=[self.delegate_node()])

        vector = engine.compute(descriptors("Classifier;0;9"), Resolution.H1, 1.1)

        assert vector.tolist() == [0.0123]
        assert predict.calls[0][:2] == (9, 1.1)

    def test_oldest_target_change(self):
        store = wave_store(100)
        predict = RecordingPredict(math.log(1.5))
        engine = make_engine(store, predict, nodes=[self.delegate_node(horizon=5)])
        price_before = store[Resolution.H1][94].median

        value = engine.compute(descriptors("ClassifierTargetChangeOldest;0;9"), Resolution.H1, price_before)[0]

        # Delegate predicted +log(1.5) five bars ago from price_before
        assert value == pytest.approx(0.5)
        past_cursor = predict.calls[0][2]
        assert past_cursor[Resolution.H1] == 94

    def test_oldest_target_change_without_history(self):
        store = wave_store(12)
        engine = make_engine(store, RecordingPredict(), nodes=[self.delegate_node(horizon=20)])

        assert engine.compute(descriptors("ClassifierTargetChangeOldest;0;9"), Resolution.H1, 1.1) is None

    def test_delegate_without_history_is_soft(self):
        store = wave_store(40)
        registry = ModelRegistry()
        target = ModelNode(id=1, horizon=5, features=descriptors("RSI;100;"), stats=DecisionBucketStats())
        top = ModelNode(id=2, horizon=5, features=descriptors("Classifier;0;1"), stats=DecisionBucketStats())
        registry.register_all([target, top])
        ensemble = Ensemble(registry, store)

        assert ensemble.features.compute(top.features, Resolution.H1, 1.1) is None
        assert ensemble.try_predict(top, 1.1) is None
        with pytest.raises(InvalidStateError):
            ensemble.predict(top, 1.1)

    def test_oldest_target_change_delegate_without_history(self):
        engine = make_engine(wave_store(100), RecordingPredict(None), nodes=[self.delegate_node(horizon=5)])

        assert engine.compute(descriptors("ClassifierTargetChangeOldest;0;9"), Resolution.H1, 1.1) is None
