"""Slice statistics over buffered dBFS levels.

Averages are taken in the power domain (10 * log10 of mean 10^(L/10)),
quantiles in the amplitude domain (20 * log10 of the interpolated order
statistic of 10^(L/20)). The two are not interchangeable: a single loud
frame moves the average far more than the median.
"""

from __future__ import annotations

from typing import List, Sequence

import numpy as np

from focus_noise.audio.config import DBFS_MIN, EPSILON
from focus_noise.audio.levels import clamp_level


def energy_average_level(levels: Sequence[float]) -> float:
    """Energy (power-domain) average of dBFS levels; -100 for no data."""
    if len(levels) == 0:
        return DBFS_MIN
    power = np.power(10.0, np.asarray(levels, dtype=np.float64) / 10.0)
    mean_power = max(float(np.mean(power)), EPSILON)
    return clamp_level(10.0 * float(np.log10(mean_power)))


def quantile_level(levels: Sequence[float], p: float) -> float:
    """Quantile p in [0, 1] of dBFS levels, interpolated in amplitude domain.

    Uses the linearly interpolated order statistic at (n - 1) * p.
    """
    if len(levels) == 0:
        return DBFS_MIN
    p = max(0.0, min(1.0, float(p)))
    amplitudes = np.sort(np.power(10.0, np.asarray(levels, dtype=np.float64) / 20.0))
    idx = (len(amplitudes) - 1) * p
    lo = int(np.floor(idx))
    hi = int(np.ceil(idx))
    weight = idx - lo
    if lo == hi:
        amplitude = float(amplitudes[lo])
    else:
        amplitude = float(amplitudes[lo] * (1.0 - weight) + amplitudes[hi] * weight)
    return clamp_level(20.0 * float(np.log10(max(amplitude, EPSILON))))


class LevelStatistics:
    """Buffered levels of one accumulation window."""

    def __init__(self) -> None:
        self._levels: List[float] = []

    def add(self, level: float) -> None:
        self._levels.append(float(level))

    @property
    def count(self) -> int:
        return len(self._levels)

    def average(self) -> float:
        return energy_average_level(self._levels)

    def maximum(self) -> float:
        return max(self._levels) if self._levels else DBFS_MIN

    def quantile(self, p: float) -> float:
        return quantile_level(self._levels, p)

    def clear(self) -> None:
        self._levels = []
