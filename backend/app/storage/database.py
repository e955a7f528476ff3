"""Database connection and table definitions."""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import numpy as np
from sqlalchemy import BigInteger, Column, Float, Index, Integer, String, Text, create_engine, delete, func, select
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from app.config import get_settings
from core.models.bar import Bar
from core.models.node import ModelNode

Base = declarative_base()


class ModelNodeTable(Base):
    """Model node definitions and statistics, one JSON document per node."""

    __tablename__ = "model_nodes"

    id = Column(Integer, primary_key=True, autoincrement=False)
    kind = Column(String(32), nullable=False)
    parent_id = Column(Integer, nullable=True)
    payload = Column(Text, nullable=False)


class EnabledNodeTable(Base):
    """Ids of root nodes currently used for forecasting."""

    __tablename__ = "enabled_nodes"

    id = Column(Integer, primary_key=True, autoincrement=False)


class BarRowTable(Base):
    """Bars of a named series (the realtime 30m feed is round-tripped here)."""

    __tablename__ = "bar_rows"

    series = Column(String(32), primary_key=True)
    start_time = Column(BigInteger, primary_key=True)
    end_time = Column(BigInteger, nullable=False)
    open = Column(Float, nullable=False)
    close = Column(Float, nullable=False)
    high = Column(Float, nullable=False)
    low = Column(Float, nullable=False)
    median = Column(Float, nullable=False)

    __table_args__ = (
        Index("idx_bar_rows_series_start", "series", "start_time"),
    )


class Database:
    """Database connection manager."""

    def __init__(self, database_url: str | None = None):
        url = database_url or get_settings().resolved_database_url
        if url.startswith("sqlite:///") and url != "sqlite:///:memory:":
            Path(url.removeprefix("sqlite:///")).parent.mkdir(parents=True, exist_ok=True)
        self.engine = create_engine(url)
        self.session_factory = sessionmaker(self.engine, expire_on_commit=False)

    def create_tables(self) -> None:
        Base.metadata.create_all(self.engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Get a database session."""
        with self.session_factory() as session:
            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                raise

    def close(self) -> None:
        self.engine.dispose()


class NodeRepository:
    """Persistence of model nodes."""

    def __init__(self, db: Database):
        self._db = db

    def load_all(self) -> list[ModelNode]:
        with self._db.session() as session:
            rows = session.execute(select(ModelNodeTable).order_by(ModelNodeTable.id)).scalars().all()
            return [ModelNode.model_validate_json(row.payload) for row in rows]

    def save(self, node: ModelNode) -> None:
        with self._db.session() as session:
            session.merge(
                ModelNodeTable(
                    id=node.id,
                    kind=node.kind.value,
                    parent_id=node.parent_id,
                    payload=node.model_dump_json(exclude={"training_points"}),
                )
            )

    def next_id(self) -> int:
        with self._db.session() as session:
            current = session.execute(select(func.max(ModelNodeTable.id))).scalar()
            return (current or 0) + 1

    def save_all(self, nodes: list[ModelNode]) -> None:
        for node in nodes:
            self.save(node)

    def delete(self, node_ids: list[int]) -> None:
        if not node_ids:
            return
        with self._db.session() as session:
            session.execute(delete(ModelNodeTable).where(ModelNodeTable.id.in_(node_ids)))
            session.execute(delete(EnabledNodeTable).where(EnabledNodeTable.id.in_(node_ids)))


class EnabledNodeRepository:
    """The enabled node set used by the forecaster and the combination search."""

    def __init__(self, db: Database):
        self._db = db

    def load(self) -> list[int]:
        with self._db.session() as session:
            return list(session.execute(select(EnabledNodeTable.id).order_by(EnabledNodeTable.id)).scalars())

    def enable(self, node_id: int) -> None:
        with self._db.session() as session:
            session.merge(EnabledNodeTable(id=node_id))

    def disable(self, node_id: int) -> None:
        with self._db.session() as session:
            session.execute(delete(EnabledNodeTable).where(EnabledNodeTable.id == node_id))


class BarTableRepository:
    """Named bar series stored row by row."""

    def __init__(self, db: Database):
        self._db = db

    def write(self, series: str, bars: list[Bar]) -> None:
        """Replace the whole series."""
        with self._db.session() as session:
            session.execute(delete(BarRowTable).where(BarRowTable.series == series))
            session.add_all(
                BarRowTable(
                    series=series,
                    start_time=bar.start,
                    end_time=bar.end,
                    open=bar.open,
                    close=bar.close,
                    high=bar.high,
                    low=bar.low,
                    median=bar.median,
                )
                for bar in bars
            )

    def read(self, series: str) -> list[Bar]:
        """Bars of a series in start order, prices rounded to single precision."""
        with self._db.session() as session:
            rows = session.execute(
                select(BarRowTable).where(BarRowTable.series == series).order_by(BarRowTable.start_time)
            ).scalars().all()
            return [
                Bar(
                    start=row.start_time,
                    end=row.end_time,
                    open=float(np.float32(row.open)),
                    close=float(np.float32(row.close)),
                    high=float(np.float32(row.high)),
                    low=float(np.float32(row.low)),
                    median=float(np.float32(row.median)),
                )
                for row in rows
            ]


_db: Database | None = None


def get_database() -> Database:
    """Get the global database instance."""
    global _db
    if _db is None:
        _db = Database()
    return _db


def init_database() -> Database:
    db = get_database()
    db.create_tables()
    return db
