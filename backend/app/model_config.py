"""Root model definitions loaded from models.yaml.

Example::

    models:
      - kind: decision_bucket
        resolution: 1H
        horizon: 24
        features:
          - "RSI;14;"
          - {kind: MACDHist, periods: 90}
      - kind: linear
        horizon: 48
        features: ["LinearRegressionSlope;24;", "Classifier;0;1"]

No file means the built-in default definitions.
"""

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator

from core.models.node import FeatureDescriptor, ModelKind, ModelNode, empty_stats
from core.models.resolution import TRAINING_RESOLUTION, Resolution, check_model_resolution

logger = logging.getLogger(__name__)


class ModelDefinition(BaseModel):
    """One root node to create."""

    kind: ModelKind = ModelKind.DECISION_BUCKET
    resolution: Resolution = TRAINING_RESOLUTION
    horizon: int = Field(gt=0)
    features: list[FeatureDescriptor] = Field(min_length=1)

    @field_validator("resolution", mode="before")
    @classmethod
    def _parse_resolution(cls, value):
        if isinstance(value, str):
            return Resolution.from_label(value)
        return value

    @field_validator("resolution")
    @classmethod
    def _check_resolution(cls, value: Resolution) -> Resolution:
        return check_model_resolution(value)

    @field_validator("features", mode="before")
    @classmethod
    def _parse_features(cls, value):
        if not isinstance(value, list):
            return value
        return [FeatureDescriptor.parse(v) if isinstance(v, str) else v for v in value]

    def signature(self) -> tuple:
        return (
            self.kind,
            self.resolution,
            self.horizon,
            tuple(f.to_definition() for f in self.features),
        )

    def to_node(self, node_id: int) -> ModelNode:
        return ModelNode(
            id=node_id,
            resolution=self.resolution,
            horizon=self.horizon,
            features=list(self.features),
            stats=empty_stats(self.kind),
        )


def _signature(node: ModelNode) -> tuple:
    return (
        node.kind,
        node.resolution,
        node.horizon,
        tuple(f.to_definition() for f in node.features),
    )


def _default_models() -> list[ModelDefinition]:
    oscillators = ["RSI;14;", "RSIInt;14;", "MACDHist;90;", "MACDHistChange;90;", "MeanToStd;24;"]
    trend = ["LinearRegressionSlope;24;", "MarginSlope;48;0.001", "SlopesEMA;24;12;48", "ABAverage;72;"]
    return [
        ModelDefinition(horizon=6, features=oscillators),
        ModelDefinition(horizon=24, features=oscillators + trend),
        ModelDefinition(horizon=48, features=oscillators + trend),
        ModelDefinition(kind=ModelKind.LINEAR, horizon=24, features=trend),
    ]


class ModelsConfig(BaseModel):
    """Top-level models.yaml configuration."""

    models: list[ModelDefinition] = Field(default_factory=_default_models)

    def new_definitions(self, existing: list[ModelNode]) -> list[ModelDefinition]:
        """Definitions without a matching root node."""
        known = {_signature(node) for node in existing if node.is_root}
        return [d for d in self.models if d.signature() not in known]


def load_model_definitions(path: Path) -> ModelsConfig:
    """Load model definitions from YAML.

    Falls back to the defaults if the file doesn't exist.
    """
    if not path.exists():
        logger.info(f"No models file at {path}, using {len(_default_models())} default definitions")
        return ModelsConfig()

    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    config = ModelsConfig(**raw)
    logger.info(f"Loaded {len(config.models)} model definitions from {path}")
    return config
