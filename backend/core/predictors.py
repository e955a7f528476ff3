"""Fitting and prediction for the two model kinds.

A Predictor is stateless: fit() returns a fitted model object and
predict() evaluates one feature vector against it. Fitted models are
held (and lazily loaded) by the ModelRegistry.
"""

from __future__ import annotations

from typing import Any, Protocol

import numpy as np
from sklearn.linear_model import LinearRegression
from sklearn.model_selection import KFold, cross_val_score
from sklearn.tree import DecisionTreeClassifier

from core.errors import InvalidArgumentError
from core.models.node import ModelKind

CV_FOLDS = 10


class Predictor(Protocol):
    def fit(self, features: np.ndarray, targets: np.ndarray) -> Any:
        ...

    def predict(self, model: Any, features: np.ndarray) -> float:
        ...

    def predict_many(self, model: Any, features: np.ndarray) -> np.ndarray:
        ...


class DecisionBucketPredictor:
    """Decision tree over the six decision buckets.

    predict() returns the bucket index; mapping a bucket to a profit is
    done by the ensemble using the node's statistics.
    """

    def __init__(self, min_samples_leaf: int = 2, random_state: int = 0):
        self.min_samples_leaf = min_samples_leaf
        self.random_state = random_state

    def _new_model(self) -> DecisionTreeClassifier:
        return DecisionTreeClassifier(
            min_samples_leaf=self.min_samples_leaf, random_state=self.random_state
        )

    def fit(self, features: np.ndarray, targets: np.ndarray) -> DecisionTreeClassifier:
        _check_training_set(features, targets)
        model = self._new_model()
        model.fit(features, targets.astype(int))
        return model

    def predict(self, model: DecisionTreeClassifier, features: np.ndarray) -> float:
        return int(model.predict(features.reshape(1, -1))[0])

    def predict_many(self, model: DecisionTreeClassifier, features: np.ndarray) -> np.ndarray:
        return model.predict(features).astype(int)

    def cross_validate(self, features: np.ndarray, targets: np.ndarray, folds: int = CV_FOLDS) -> float:
        """Mean accuracy of shuffled k-fold cross-validation, as a fraction."""
        _check_training_set(features, targets)
        folds = min(folds, len(targets))
        if folds < 2:
            raise InvalidArgumentError("Cross-validation needs at least two samples")
        splitter = KFold(n_splits=folds, shuffle=True, random_state=self.random_state)
        scores = cross_val_score(self._new_model(), features, targets.astype(int), cv=splitter)
        return float(np.mean(scores))


class LinearPredictor:
    """Ordinary least squares on future log profits."""

    def fit(self, features: np.ndarray, targets: np.ndarray) -> LinearRegression:
        _check_training_set(features, targets)
        model = LinearRegression()
        model.fit(features, targets)
        return model

    def predict(self, model: LinearRegression, features: np.ndarray) -> float:
        return float(model.predict(features.reshape(1, -1))[0])

    def predict_many(self, model: LinearRegression, features: np.ndarray) -> np.ndarray:
        return model.predict(features)


def _check_training_set(features: np.ndarray, targets: np.ndarray) -> None:
    if features.ndim != 2 or len(features) == 0:
        raise InvalidArgumentError("Training set must be a non-empty 2-D array")
    if len(features) != len(targets):
        raise InvalidArgumentError(
            f"{len(features)} feature rows but {len(targets)} targets"
        )


def create_predictor(kind: ModelKind) -> DecisionBucketPredictor | LinearPredictor:
    if kind is ModelKind.DECISION_BUCKET:
        return DecisionBucketPredictor()
    if kind is ModelKind.LINEAR:
        return LinearPredictor()
    raise KeyError(f"No predictor for model kind '{kind}'. Available: {', '.join(k.value for k in ModelKind)}")
