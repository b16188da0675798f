"""Focus noise monitor - frame levels, slice statistics, segments, scoring, calibration, history."""

from focus_noise.pipeline import NoiseMonitor
from focus_noise.scoring import compute_slice_score

__all__ = ["NoiseMonitor", "compute_slice_score"]
