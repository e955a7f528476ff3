"""Tests for the statistics helpers."""

import math

import numpy as np
import pytest

from core.errors import InvalidArgumentError, InvalidStateError
from core.statistics import (
    clamp,
    correlation,
    differences,
    future_profits,
    normalize,
    residual_stddev,
    stddev,
)


class TestStddev:
    def test_sample_stddev(self):
        assert stddev([2.0, 4.0, 4.0, 4.0, 5.0, 5.0, 7.0, 9.0]) == pytest.approx(2.138089935)

    def test_single_value(self):
        assert stddev([3.0]) == 0.0

    def test_empty_raises(self):
        with pytest.raises(InvalidArgumentError):
            stddev([])

    def test_residual(self):
        assert residual_stddev([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == 0.0
        assert residual_stddev([1.0, 3.0], [0.0, 2.0]) == pytest.approx(math.sqrt(2.0))


class TestCorrelation:
    def test_perfect(self):
        assert correlation([1.0, 2.0, 3.0], [2.0, 4.0, 6.0]) == pytest.approx(1.0)
        assert correlation([1.0, 2.0, 3.0], [3.0, 2.0, 1.0]) == pytest.approx(-1.0)

    def test_constant_series_is_nan(self):
        assert math.isnan(correlation([1.0, 1.0, 1.0], [1.0, 2.0, 3.0]))

    def test_length_mismatch_raises(self):
        with pytest.raises(InvalidArgumentError):
            correlation([1.0, 2.0], [1.0])


class TestNormalize:
    def test_sums_to_one(self):
        result = normalize([1.0, 3.0])
        assert result.tolist() == [0.25, 0.75]

    def test_all_zero_raises(self):
        with pytest.raises(InvalidStateError):
            normalize([0.0, 0.0])


class TestMisc:
    def test_differences(self):
        assert differences([1.0, 4.0, 2.0]).tolist() == [3.0, -2.0]

    def test_clamp(self):
        assert clamp(5.0, 0.0, 1.0) == 1.0
        assert clamp(-5.0, 0.0, 1.0) == 0.0
        assert clamp(0.5, 0.0, 1.0) == 0.5

    def test_future_profits(self):
        prices = [1.0, math.e, math.e ** 2, 1.0]
        profits = future_profits(prices, 1)
        assert profits[:2] == pytest.approx([1.0, 1.0])
        assert profits[-1] == 0.0

    def test_future_profits_short_series(self):
        assert np.all(future_profits([1.0, 2.0], 5) == 0.0)

    def test_future_profits_bad_horizon(self):
        with pytest.raises(InvalidArgumentError):
            future_profits([1.0, 2.0], 0)
