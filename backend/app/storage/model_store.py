"""Fitted models persisted as joblib artifacts, one file per node."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import joblib

from core.errors import NotFoundError

logger = logging.getLogger(__name__)


class ModelArtifactStore:
    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def path(self, node_id: int) -> Path:
        return self.directory / f"node_{node_id}.joblib"

    def save(self, node_id: int, model: Any) -> Path:
        path = self.path(node_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(model, path)
        logger.debug(f"Saved model for node {node_id} to {path}")
        return path

    def load(self, node_id: int) -> Any:
        path = self.path(node_id)
        if not path.exists():
            raise NotFoundError(f"No fitted model for node {node_id} at {path}")
        return joblib.load(path)

    def delete(self, node_id: int) -> None:
        self.path(node_id).unlink(missing_ok=True)
