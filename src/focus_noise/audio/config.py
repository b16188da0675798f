"""Centralized analysis constants and monitor configuration.

Scoring standards (fixed, never taken from user settings):
- Slice: 30 s accumulation window
- Frame: 50 ms cadence (~20 fps)
- Score threshold: -50 dBFS
- Segment merge gap: 500 ms
- Segment frequency saturates at 6 per minute

Levels are dBFS in [-100, 0]; calibrated display levels are dB in [20, 100].
All timestamps are wall-clock milliseconds.
"""

from dataclasses import dataclass

# Analysis
SLICE_SEC = 30
FRAME_MS = 50

# Scoring
SCORE_THRESHOLD_DBFS = -50.0
SEGMENT_MERGE_GAP_MS = 500
MAX_SEGMENTS_PER_MIN = 6

# Physical limits
DBFS_MIN = -100.0
DBFS_MAX = 0.0
# Frames quieter than this are device noise floor, not signal
INVALID_DBFS_THRESHOLD = -90.0
EPSILON = 1e-12

# Display
DISPLAY_DB_MIN = 20.0
DISPLAY_DB_MAX = 100.0
DEFAULT_DISPLAY_BASELINE_DB = 40.0
DEFAULT_BASELINE_RMS = 10 ** (-60.0 / 20)
DEFAULT_MAX_LEVEL_DB = 55.0

# Storage
HISTORY_STORAGE_KEY = "noise-slices-v2"
SETTINGS_STORAGE_KEY = "noise-control-settings"
HISTORY_RETENTION_DAYS = 14
HISTORY_MAX_SLICES = 1000

# Interim score needs this many valid frames before it leaves the seeded 100
INTERIM_MIN_FRAMES = 10


@dataclass(frozen=True)
class MonitorConfig:
    """Runtime tunables that do not affect scoring semantics."""

    # Capture
    sample_rate: int = 48_000
    block_size: int = 2048  # samples handed to the frame processor per frame

    # Discard this many frames after (re)start
    warmup_frames: int = 10

    # Realtime display history
    ring_horizon_sec: float = 10.0

    # Throttle for the interim score recomputation
    interim_interval_ms: float = 250.0

    # Calibration collection length
    calibration_ms: float = 3000.0

    @property
    def frame_ms(self) -> int:
        """Nominal frame interval in milliseconds."""
        return FRAME_MS

    @property
    def slice_ms(self) -> int:
        """Nominal slice length in milliseconds."""
        return SLICE_SEC * 1000

    @property
    def ring_capacity(self) -> int:
        """Realtime points kept for the display horizon."""
        return max(1, int(self.ring_horizon_sec * 1000 / FRAME_MS))

    @property
    def calibration_frames(self) -> int:
        """Frames collected before a calibration commits."""
        return max(1, int(self.calibration_ms / FRAME_MS))

    @property
    def gap_threshold_ms(self) -> float:
        """Elapsed time between frames above which a capture gap is recorded."""
        return float(max(1000, FRAME_MS * 5))
