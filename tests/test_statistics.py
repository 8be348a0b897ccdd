"""Tests for statistical helpers."""

import math

import numpy as np
import pytest

from src.monitoring.config import AnomalySeverity, TrendDirection
from src.monitoring.statistics import (
    median,
    population_mean_std,
    rank_percentile,
    safe_mean,
    trend_direction,
    z_scores,
    z_severity,
)


class TestTrendDirection:

    def test_ten_percent_rise_is_up(self):
        assert trend_direction(100.0, 110.0) == TrendDirection.UP

    def test_fifteen_percent_drop_is_down(self):
        assert trend_direction(100.0, 85.0) == TrendDirection.DOWN

    def test_small_change_is_stable(self):
        assert trend_direction(100.0, 105.0) == TrendDirection.STABLE

    def test_zero_baseline(self):
        assert trend_direction(0.0, 5.0) == TrendDirection.UP
        assert trend_direction(0.0, 0.0) == TrendDirection.STABLE


class TestZScores:

    def test_flat_series_has_zero_scores(self):
        assert np.all(z_scores([3.0, 3.0, 3.0]) == 0)

    def test_single_outlier(self):
        values = [10.0] * 20 + [50.0]
        scores = z_scores(values)
        assert scores[-1] == pytest.approx(math.sqrt(20))
        assert abs(scores[0]) < 1

    def test_population_std(self):
        mean, std = population_mean_std([2.0, 4.0, 4.0, 4.0, 5.0, 5.0, 7.0, 9.0])
        assert mean == 5.0
        assert std == 2.0

    @pytest.mark.parametrize("z,severity", [
        (2.2, AnomalySeverity.LOW),
        (-2.7, AnomalySeverity.MEDIUM),
        (3.5, AnomalySeverity.HIGH),
    ])
    def test_severity_bands(self, z, severity):
        assert z_severity(z) == severity


class TestPercentiles:

    def test_rank_percentile_uses_floor_index(self):
        values = [float(v) for v in range(1, 21)]
        assert rank_percentile(values, 0.95) == 20.0
        assert rank_percentile(values, 0.5) == 11.0

    def test_empty_inputs(self):
        assert rank_percentile([], 0.99) == 0.0
        assert median([]) == 0.0
        assert safe_mean([]) == 0.0
