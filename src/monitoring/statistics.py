"""Statistical helpers for metrics, trends and anomaly detection."""

import math
from typing import Sequence

import numpy as np

from src.monitoring.config import AnomalySeverity, TrendDirection


def population_mean_std(values: Sequence[float]) -> tuple[float, float]:
    """Mean and population standard deviation (ddof=0)."""
    if len(values) == 0:
        return 0.0, 0.0
    arr = np.asarray(values, dtype=float)
    return float(arr.mean()), float(arr.std(ddof=0))


def z_scores(values: Sequence[float]) -> np.ndarray:
    """Population z-score per value; all zeros when the series is flat."""
    arr = np.asarray(values, dtype=float)
    if arr.size == 0:
        return arr
    std = arr.std(ddof=0)
    if std == 0:
        return np.zeros_like(arr)
    return (arr - arr.mean()) / std


def z_severity(z: float, medium: float = 2.5, high: float = 3.0) -> AnomalySeverity:
    """Severity of an anomalous |z|: high above 3, medium above 2.5, else low."""
    z = abs(z)
    if z > high:
        return AnomalySeverity.HIGH
    if z > medium:
        return AnomalySeverity.MEDIUM
    return AnomalySeverity.LOW


def trend_direction(first: float, second: float, threshold: float = 0.10) -> TrendDirection:
    """Compare two averages with a relative-change threshold.

    A zero baseline has no relative change: any positive follow-up is
    ``up``, anything else ``stable``.
    """
    if first == 0:
        return TrendDirection.UP if second > 0 else TrendDirection.STABLE
    change = (second - first) / abs(first)
    if change >= threshold:
        return TrendDirection.UP
    if change <= -threshold:
        return TrendDirection.DOWN
    return TrendDirection.STABLE


def rank_percentile(values: Sequence[float], q: float) -> float:
    """Value at index floor(n*q) of the sorted series (0 for empty)."""
    if len(values) == 0:
        return 0.0
    ordered = sorted(values)
    index = min(len(ordered) - 1, int(math.floor(len(ordered) * q)))
    return float(ordered[index])


def median(values: Sequence[float]) -> float:
    if len(values) == 0:
        return 0.0
    return float(np.median(np.asarray(values, dtype=float)))


def safe_mean(values: Sequence[float]) -> float:
    if len(values) == 0:
        return 0.0
    return float(np.mean(np.asarray(values, dtype=float)))
