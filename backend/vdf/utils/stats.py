"""
VDF Statistics Helpers

Mean, sample standard deviation and least-squares regression used by the
window scorer and proximity evaluator. Degenerate input (empty, constant x)
resolves to 0 instead of NaN.
"""

from __future__ import annotations

from typing import NamedTuple, Sequence

import numpy as np


class LinearFit(NamedTuple):
    slope: float
    intercept: float
    r2: float


def mean(values: Sequence[float]) -> float:
    """Arithmetic mean, 0.0 for an empty sequence."""
    if len(values) == 0:
        return 0.0
    return float(np.mean(np.asarray(values, dtype=np.float64)))


def std(values: Sequence[float]) -> float:
    """Sample standard deviation (divisor n - 1), 0.0 below two values."""
    if len(values) < 2:
        return 0.0
    return float(np.std(np.asarray(values, dtype=np.float64), ddof=1))


def lin_reg(xs: Sequence[float], ys: Sequence[float]) -> LinearFit:
    """Ordinary least squares fit of ``ys`` against ``xs``.

    >>> lin_reg([0, 1, 2], [1, 3, 5]).slope
    2.0
    """
    n = min(len(xs), len(ys))
    if n == 0:
        return LinearFit(0.0, 0.0, 0.0)

    x = np.asarray(xs[:n], dtype=np.float64)
    y = np.asarray(ys[:n], dtype=np.float64)
    x_mean = x.mean()
    y_mean = y.mean()
    sxx = float(((x - x_mean) ** 2).sum())
    if sxx == 0:
        return LinearFit(0.0, float(y_mean), 0.0)

    slope = float(((x - x_mean) * (y - y_mean)).sum()) / sxx
    intercept = float(y_mean - slope * x_mean)

    ss_tot = float(((y - y_mean) ** 2).sum())
    ss_res = float(((y - (slope * x + intercept)) ** 2).sum())
    r2 = 1.0 - ss_res / ss_tot if ss_tot > 0 else 0.0
    return LinearFit(slope, intercept, r2)


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    """Clamp ``value`` into ``[low, high]``."""
    return max(low, min(high, value))


def ramp(value: float, offset: float, span: float) -> float:
    """Linear ramp ``(value + offset) / span`` clamped into [0, 1]."""
    return clamp((value + offset) / span)
