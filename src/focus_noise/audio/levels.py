"""Level conversions: RMS/peak, dBFS, calibrated display level."""

from typing import Tuple

import numpy as np

from focus_noise.audio.config import (
    DBFS_MAX,
    DBFS_MIN,
    DISPLAY_DB_MAX,
    DISPLAY_DB_MIN,
    EPSILON,
)


def clamp01(value: float) -> float:
    """Clamp to [0, 1]."""
    return max(0.0, min(1.0, value))


def clamp_level(level: float) -> float:
    """Clamp a dBFS value to the physical range."""
    return max(DBFS_MIN, min(DBFS_MAX, level))


def rms_and_peak(block: np.ndarray) -> Tuple[float, float]:
    """Root-mean-square and peak absolute amplitude of a sample block.

    Args:
        block: Time-domain samples in [-1, 1].

    Returns:
        (rms, peak); (0.0, 0.0) for an empty block.
    """
    data = np.asarray(block, dtype=np.float64)
    if data.size == 0:
        return 0.0, 0.0
    rms = float(np.sqrt(np.mean(data * data)))
    peak = float(np.max(np.abs(data)))
    return rms, peak


def level_from_rms(rms: float) -> float:
    """Convert linear RMS to dBFS, clamped to [-100, 0]."""
    safe = max(EPSILON, float(rms))
    return clamp_level(20.0 * float(np.log10(safe)))


def rms_from_level(level: float) -> float:
    """Inverse of level_from_rms (without clamping)."""
    return float(10.0 ** (level / 20.0))


def display_level_from_rms(rms: float, baseline_rms: float, baseline_db: float) -> float:
    """Map RMS onto the calibrated display scale.

    displayDb = baseline_db + 20 * log10(rms / baseline_rms), so a reading
    equal to baseline_rms shows exactly baseline_db. Clamped to [20, 100].
    """
    safe_rms = max(EPSILON, float(rms))
    safe_base = max(EPSILON, float(baseline_rms))
    display = baseline_db + 20.0 * float(np.log10(safe_rms / safe_base))
    return max(DISPLAY_DB_MIN, min(DISPLAY_DB_MAX, display))
