"""Model node data: feature descriptors, decision buckets, per-kind statistics.

Nodes live in a ModelRegistry arena and refer to each other by integer id
only (parent_id, children), so the forest has no object cycles and
serializes as plain JSON.
"""

from __future__ import annotations

from enum import Enum, IntEnum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from core.errors import InvalidArgumentError
from core.models.resolution import Resolution, check_model_resolution


class FeatureKind(str, Enum):
    """Feature descriptor kinds. Values are the names used in definition strings."""

    RSI = "RSI"
    RSI_WITH_CURRENT_PRICE = "RSIWithCurrentPrice"
    RSI_BUCKET = "RSIInt"
    RSI_BUCKET_WITH_CURRENT_PRICE = "RSIIntWithCurrentPrice"
    LAST_CRITICAL_RSI = "LastCriticalRSI"
    LAST_CRITICAL_RSI_WITH_CURRENT_PRICE = "LastCriticalRSIWithCurrentPrice"
    MEAN_TO_STD = "MeanToStd"
    MEAN_TO_STD_BUCKET = "MeanToStdInt"
    SLOPE = "LinearRegressionSlope"
    SLOPE_SIGN = "LinearRegressionSlopePN"
    MARGIN_SLOPE = "MarginSlope"
    MARGIN_SLOPE_SIGN = "MarginSlopePN"
    MACD = "MACD"
    MACD_SIGNAL = "MACDSign"
    MACD_SIGNAL_WITH_CURRENT_PRICE = "MACDSignWithCurrentPrice"
    MACD_HIST = "MACDHist"
    MACD_HIST_WITH_CURRENT_PRICE = "MACDHistWithCurrentPrice"
    MACD_HIST_CHANGE = "MACDHistChange"
    MACD_HIST_CHANGE_WITH_CURRENT_PRICE = "MACDHistChangeWithCurrentPrice"
    MACD_HIST_SLOPE = "MACDHistSlope"
    MACD_HIST_SIGN = "MACDHistPN"
    MACD_HIST_CROSSED = "MACDHistCrossed"
    MACD_HIST_DIFFERENCE = "MACDHistDifference"
    SLOPES_EMA = "SlopesEMA"
    ABOVE_AVERAGE = "ABAverage"
    PERCENT_MARGIN = "PercentMargin"
    DELEGATE_PREDICTION = "Classifier"
    DELEGATE_OLDEST_TARGET_CHANGE = "ClassifierTargetChangeOldest"

    @property
    def is_delegate(self) -> bool:
        return self in (FeatureKind.DELEGATE_PREDICTION, FeatureKind.DELEGATE_OLDEST_TARGET_CHANGE)


# Kinds that need at least one attribute
_REQUIRES_ATTRIBUTE = {
    FeatureKind.MARGIN_SLOPE,
    FeatureKind.MARGIN_SLOPE_SIGN,
    FeatureKind.MACD_HIST_SLOPE,
    FeatureKind.SLOPES_EMA,
    FeatureKind.PERCENT_MARGIN,
    FeatureKind.DELEGATE_PREDICTION,
    FeatureKind.DELEGATE_OLDEST_TARGET_CHANGE,
}


class FeatureDescriptor(BaseModel):
    """One entry of a model's feature vector.

    Definition string form: ``KIND;periods;attr1;attr2...`` e.g.
    ``MACDHist;90;`` or ``Classifier;0;17`` (delegate to node 17).
    """

    model_config = ConfigDict(frozen=True)

    kind: FeatureKind
    periods: int = Field(ge=0)
    attributes: tuple[float, ...] = ()

    @model_validator(mode="after")
    def _check_attributes(self) -> FeatureDescriptor:
        if self.kind in _REQUIRES_ATTRIBUTE and not self.attributes:
            raise ValueError(f"{self.kind.value} needs at least one attribute")
        return self

    @classmethod
    def parse(cls, definition: str) -> FeatureDescriptor:
        parts = definition.strip().split(";")
        if len(parts) < 2:
            raise InvalidArgumentError(f"Malformed feature definition: '{definition}'")
        try:
            kind = FeatureKind(parts[0])
        except ValueError:
            raise InvalidArgumentError(f"Unknown feature kind '{parts[0]}'") from None
        try:
            periods = int(parts[1])
            attributes = tuple(float(p) for p in parts[2:] if p)
        except ValueError:
            raise InvalidArgumentError(f"Malformed feature definition: '{definition}'") from None
        return cls(kind=kind, periods=periods, attributes=attributes)

    def to_definition(self) -> str:
        attrs = ";".join(f"{a:g}" for a in self.attributes)
        return f"{self.kind.value};{self.periods};{attrs}"

    @property
    def target_id(self) -> int:
        """Node id a delegate descriptor points at."""
        if not self.kind.is_delegate:
            raise InvalidArgumentError(f"{self.kind.value} does not delegate to a node")
        return int(self.attributes[0])


class DecisionBucket(IntEnum):
    STRONG_SELL = 0
    SELL = 1
    WEAK_SELL = 2
    WEAK_BUY = 3
    BUY = 4
    STRONG_BUY = 5


BUCKET_COUNT = len(DecisionBucket)


def profit_to_bucket(profit: float, profit_stddev: float, profit_average: float) -> DecisionBucket:
    """Classify a future profit by its distance from the average in stddevs."""
    if profit <= profit_average - 2 * profit_stddev:
        return DecisionBucket.STRONG_SELL
    if profit >= profit_average + 2 * profit_stddev:
        return DecisionBucket.STRONG_BUY
    if profit <= profit_average - profit_stddev:
        return DecisionBucket.SELL
    if profit >= profit_average + profit_stddev:
        return DecisionBucket.BUY
    if profit >= profit_average:
        return DecisionBucket.WEAK_BUY
    return DecisionBucket.WEAK_SELL


_BUCKET_OFFSETS = {
    DecisionBucket.STRONG_SELL: -2.5,
    DecisionBucket.SELL: -1.5,
    DecisionBucket.WEAK_SELL: -0.5,
    DecisionBucket.WEAK_BUY: 0.5,
    DecisionBucket.BUY: 1.5,
    DecisionBucket.STRONG_BUY: 2.5,
}


def bucket_to_profit(bucket: DecisionBucket, profit_stddev: float, profit_average: float) -> float:
    """Representative profit of a bucket when no sample mean is available."""
    return profit_average + _BUCKET_OFFSETS[DecisionBucket(bucket)] * profit_stddev


class ModelKind(str, Enum):
    DECISION_BUCKET = "decision_bucket"
    LINEAR = "linear"


class DecisionBucketStats(BaseModel):
    kind: Literal["decision_bucket"] = "decision_bucket"
    precision: float | None = None
    profit_stddev: float | None = None
    profit_average: float = 0.0
    is_singular: bool = False
    bucket_profits: list[float | None] = Field(default_factory=lambda: [None] * BUCKET_COUNT)

    def profit_for(self, bucket: DecisionBucket) -> float:
        """Sample mean profit of the bucket, or its statistical fallback."""
        value = self.bucket_profits[bucket]
        if value is not None:
            return value
        return bucket_to_profit(bucket, self.profit_stddev or 0.0, self.profit_average)


class LinearStats(BaseModel):
    kind: Literal["linear"] = "linear"
    precision: float | None = None  # coefficient of determination
    profit_stddev: float | None = None


NodeStats = Annotated[Union[DecisionBucketStats, LinearStats], Field(discriminator="kind")]


def empty_stats(kind: ModelKind) -> DecisionBucketStats | LinearStats:
    if kind is ModelKind.DECISION_BUCKET:
        return DecisionBucketStats()
    return LinearStats()


class ModelNode(BaseModel):
    """A predictive model in the forest.

    Precision is a fraction in [0, 1]; None until the node has been built.
    """

    id: int
    resolution: Resolution = Resolution.H1
    horizon: int = Field(gt=0)
    features: list[FeatureDescriptor]
    stats: NodeStats
    parent_id: int | None = None
    children: list[int | None] = Field(default_factory=lambda: [None] * BUCKET_COUNT)
    training_points: list[int] | None = Field(default=None, repr=False)

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

    @field_validator("children")
    @classmethod
    def _check_children(cls, value: list[int | None]) -> list[int | None]:
        if len(value) != BUCKET_COUNT:
            raise ValueError(f"children must have {BUCKET_COUNT} slots, got {len(value)}")
        return value

    @property
    def kind(self) -> ModelKind:
        return ModelKind(self.stats.kind)

    @property
    def precision(self) -> float | None:
        return self.stats.precision

    @property
    def profit_stddev(self) -> float | None:
        return self.stats.profit_stddev

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    def delegate_ids(self) -> list[int]:
        """Ids of nodes this node's features recurse into."""
        return [f.target_id for f in self.features if f.kind.is_delegate]

    def child_ids(self) -> list[int]:
        return [c for c in self.children if c is not None]
