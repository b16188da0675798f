"""Penalty-based noise scoring."""

from focus_noise.scoring.engine import compute_slice_score, pin_thresholds
from focus_noise.scoring.types import (
    ScoreBreakdown,
    ScoreThresholds,
    SliceDisplayStats,
    SliceRawStats,
    SliceSummary,
)

__all__ = [
    "ScoreBreakdown",
    "ScoreThresholds",
    "SliceDisplayStats",
    "SliceRawStats",
    "SliceSummary",
    "compute_slice_score",
    "pin_thresholds",
]
