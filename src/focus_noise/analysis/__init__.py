"""Slice statistics and noise segment detection."""

from focus_noise.analysis.segments import SegmentDetector
from focus_noise.analysis.statistics import (
    LevelStatistics,
    energy_average_level,
    quantile_level,
)

__all__ = [
    "LevelStatistics",
    "SegmentDetector",
    "energy_average_level",
    "quantile_level",
]
