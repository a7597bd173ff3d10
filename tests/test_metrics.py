"""
test_metrics.py — forecast accuracy metric functions.

Run with:
    pytest tests/test_metrics.py -v
"""

from __future__ import annotations

import math

import pytest

from backend.pumpwatch.accuracy import metrics as m


class TestErrorMetrics:

    def test_perfect_forecast(self):
        series = [0.0, 1.5, 4.0, 12.0]
        assert m.mae(series, series) == 0.0
        assert m.rmse(series, series) == 0.0
        assert m.bias(series, series) == 0.0

    def test_known_values(self):
        predicted = [2.0, 4.0, 6.0]
        actual = [1.0, 4.0, 9.0]
        assert m.mae(predicted, actual) == pytest.approx(4.0 / 3.0)
        assert m.rmse(predicted, actual) == pytest.approx(math.sqrt(10.0 / 3.0))
        assert m.bias(predicted, actual) == pytest.approx(-2.0 / 3.0)

    def test_length_mismatch(self):
        with pytest.raises(ValueError):
            m.mae([1.0], [1.0, 2.0])

    def test_empty(self):
        with pytest.raises(ValueError):
            m.rmse([], [])


class TestPearson:

    def test_perfect_positive(self):
        assert m.pearson([1, 2, 3], [2, 4, 6]) == pytest.approx(1.0)

    def test_perfect_negative(self):
        assert m.pearson([1, 2, 3], [3, 2, 1]) == pytest.approx(-1.0)

    def test_zero_variance_is_none(self):
        assert m.pearson([1.0, 1.0, 1.0], [0.5, 2.0, 3.0]) is None
        assert m.pearson([1.0, 2.0], [0.0, 0.0]) is None


class TestBrier:

    def test_perfect_probabilities(self):
        assert m.brier_score([100, 0], [5.0, 0.0], threshold=2.0) == 0.0

    def test_worst_probabilities(self):
        assert m.brier_score([0, 100], [5.0, 0.0], threshold=2.0) == 1.0

    def test_skips_missing_probability(self):
        assert m.brier_score([None, 50], [5.0, 5.0], threshold=2.0) == pytest.approx(0.25)

    def test_all_missing(self):
        assert m.brier_score([None], [1.0], threshold=2.0) is None


class TestContingency:

    def test_table(self):
        #           TP    FP    TN    FN
        predicted = [5.0, 3.0, 0.0, 1.0]
        actual = [4.0, 0.5, 1.0, 6.0]
        table = m.contingency(predicted, actual, threshold=2.0)
        assert (table.tp, table.fp, table.tn, table.fn) == (1, 1, 1, 1)
        assert table.accuracy == 0.5
        assert table.precision == 0.5
        assert table.recall == 0.5
        assert table.f1 == 0.5
        assert table.rainy_total == 2
        assert table.dry_total == 2

    def test_threshold_is_exclusive(self):
        table = m.contingency([2.0], [2.0], threshold=2.0)
        assert table.tn == 1

    def test_no_rain_predicted(self):
        table = m.contingency([0.0, 0.0], [0.0, 5.0], threshold=2.0)
        assert table.precision == 0.0
        assert table.recall == 0.0
        assert table.f1 == 0.0


class TestReliability:

    @pytest.mark.parametrize("mae,corr,rating", [
        (0.5, 0.9, "Excellent"),
        (0.5, 0.7, "Good"),
        (1.5, 0.9, "Good"),
        (2.5, 0.5, "Fair"),
        (3.5, 0.9, "Poor"),
        (0.1, None, "Poor"),
    ])
    def test_rating(self, mae, corr, rating):
        assert m.reliability_rating(mae, corr) == rating
