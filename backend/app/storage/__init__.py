"""Data storage layer."""

from app.storage.bar_file import load_bars, save_bars
from app.storage.database import (
    BarTableRepository,
    Database,
    EnabledNodeRepository,
    NodeRepository,
    get_database,
    init_database,
)
from app.storage.loaders import HistoricalSlotLoader, RealtimeSlotLoader
from app.storage.model_store import ModelArtifactStore

__all__ = [
    "BarTableRepository",
    "Database",
    "EnabledNodeRepository",
    "HistoricalSlotLoader",
    "ModelArtifactStore",
    "NodeRepository",
    "RealtimeSlotLoader",
    "get_database",
    "init_database",
    "load_bars",
    "save_bars",
]
