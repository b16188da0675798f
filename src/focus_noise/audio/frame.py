"""Per-frame level extraction with warm-up discard and capture gap detection."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

from focus_noise.audio.config import FRAME_MS, INVALID_DBFS_THRESHOLD, MonitorConfig
from focus_noise.audio.levels import level_from_rms, rms_and_peak


@dataclass(frozen=True)
class FrameSample:
    """Result of processing one sample block."""

    timestamp: float
    rms: float
    dbfs: float
    peak: Optional[float] = None
    # Time attributed to this frame; nominal frame interval right after a gap
    effective_ms: float = float(FRAME_MS)
    # Elapsed time since the previous frame when it exceeded the gap threshold
    gap_ms: Optional[float] = None

    @property
    def valid(self) -> bool:
        """False for frames at the device noise floor; they skip slice statistics."""
        return self.dbfs >= INVALID_DBFS_THRESHOLD


class FrameProcessor:
    """Turns (timestamp, block) pairs into FrameSamples.

    - The first `warmup_frames` blocks after restart() are dropped.
    - If the time since the previous processed frame exceeds
      max(1000 ms, 5 * frame interval), the frame carries `gap_ms` and its
      effective duration falls back to the nominal frame interval.

    Interface:
      processor = FrameProcessor(MonitorConfig())
      processor.restart()
      sample = processor.process(ts_ms, block)   # None during warm-up
    """

    def __init__(self, config: Optional[MonitorConfig] = None):
        self.config = config or MonitorConfig()
        self._warmup_remaining = 0
        self._last_ts: Optional[float] = None

    @property
    def warming_up(self) -> bool:
        return self._warmup_remaining > 0

    def restart(self) -> None:
        """Re-arm warm-up and forget the previous frame (capture (re)start)."""
        self._warmup_remaining = max(0, self.config.warmup_frames)
        self._last_ts = None

    def reset_timing(self) -> None:
        """Forget the previous frame so the next one counts as nominal."""
        self._last_ts = None

    def process(self, timestamp: float, block: np.ndarray) -> Optional[FrameSample]:
        if self._warmup_remaining > 0:
            self._warmup_remaining -= 1
            return None

        rms, peak = rms_and_peak(block)
        dbfs = level_from_rms(rms)

        effective_ms = float(FRAME_MS)
        gap_ms: Optional[float] = None
        if self._last_ts is not None:
            elapsed = timestamp - self._last_ts
            if elapsed > self.config.gap_threshold_ms:
                gap_ms = elapsed
            else:
                effective_ms = max(0.0, elapsed)
        self._last_ts = timestamp

        return FrameSample(
            timestamp=timestamp,
            rms=rms,
            dbfs=dbfs,
            peak=peak,
            effective_ms=effective_ms,
            gap_ms=gap_ms,
        )
