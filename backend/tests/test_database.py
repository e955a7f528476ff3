"""Tests for the database repositories and the model artifact store."""

import numpy as np
import pytest

from app.storage.database import BarTableRepository, Database, EnabledNodeRepository, NodeRepository
from app.storage.model_store import ModelArtifactStore
from core.errors import NotFoundError
from core.models.bar import Bar
from core.models.node import DecisionBucketStats, FeatureDescriptor, LinearStats, ModelNode


@pytest.fixture
def db(tmp_path):
    database = Database(f"sqlite:///{tmp_path / 'forecast.db'}")
    database.create_tables()
    yield database
    database.close()


def make_node(node_id, parent_id=None, linear=False):
    return ModelNode(
        id=node_id,
        horizon=24,
        features=[FeatureDescriptor.parse("MACDHist;90;"), FeatureDescriptor.parse("SlopesEMA;6;12")],
        stats=LinearStats(precision=0.3, profit_stddev=0.01)
        if linear
        else DecisionBucketStats(precision=0.61, profit_stddev=0.004, bucket_profits=[-0.01, None, 0, 0, None, 0.01]),
        parent_id=parent_id,
        training_points=[1, 2, 3],
    )


class TestNodeRepository:
    def test_round_trip(self, db):
        repo = NodeRepository(db)
        repo.save_all([make_node(1), make_node(2, parent_id=1, linear=True)])

        loaded = repo.load_all()

        assert [n.id for n in loaded] == [1, 2]
        first, second = loaded
        assert first.features == make_node(1).features
        assert first.stats.bucket_profits == [-0.01, None, 0, 0, None, 0.01]
        assert first.training_points is None
        assert isinstance(second.stats, LinearStats)
        assert second.parent_id == 1

    def test_save_overwrites(self, db):
        repo = NodeRepository(db)
        node = make_node(1)
        repo.save(node)
        node.stats.precision = 0.7
        repo.save(node)

        loaded = repo.load_all()
        assert len(loaded) == 1
        assert loaded[0].precision == 0.7

    def test_next_id(self, db):
        repo = NodeRepository(db)
        assert repo.next_id() == 1
        repo.save(make_node(5))
        assert repo.next_id() == 6

    def test_delete_also_disables(self, db):
        repo = NodeRepository(db)
        enabled = EnabledNodeRepository(db)
        repo.save_all([make_node(1), make_node(2)])
        enabled.enable(1)
        enabled.enable(2)

        repo.delete([1])

        assert [n.id for n in repo.load_all()] == [2]
        assert enabled.load() == [2]


class TestEnabledNodeRepository:
    def test_enable_disable(self, db):
        enabled = EnabledNodeRepository(db)
        enabled.enable(3)
        enabled.enable(1)
        enabled.enable(3)
        assert enabled.load() == [1, 3]

        enabled.disable(3)
        enabled.disable(42)
        assert enabled.load() == [1]


class TestBarTableRepository:
    def test_prices_come_back_single_precision(self, db):
        repo = BarTableRepository(db)
        bar = Bar.from_prices(start=0, end=1_799_999, open=1.1, close=1.3, high=1.35, low=1.05)

        repo.write("series", [bar])
        (loaded,) = repo.read("series")

        assert (loaded.start, loaded.end) == (bar.start, bar.end)
        assert loaded.open == float(np.float32(1.1))
        assert loaded.open != 1.1

    def test_write_replaces_series(self, db):
        repo = BarTableRepository(db)
        bars = [Bar.from_prices(start=i * 10, end=i * 10 + 9, open=1, close=1, high=1, low=1) for i in range(3)]
        repo.write("a", bars)
        repo.write("b", bars[:1])
        repo.write("a", bars[1:])

        assert [b.start for b in repo.read("a")] == [10, 20]
        assert len(repo.read("b")) == 1
        assert repo.read("missing") == []


class TestModelArtifactStore:
    def test_save_load_delete(self, tmp_path):
        store = ModelArtifactStore(tmp_path / "models")
        store.save(7, {"coef": [1.0, 2.0]})

        assert store.path(7).exists()
        assert store.load(7) == {"coef": [1.0, 2.0]}

        store.delete(7)
        store.delete(7)
        assert not store.path(7).exists()

    def test_missing(self, tmp_path):
        with pytest.raises(NotFoundError):
            ModelArtifactStore(tmp_path).load(1)
