"""Noise segment detection: hysteresis on the score threshold with burst merging.

A segment starts on a below -> above transition. If the previous burst
ended less than the merge gap ago, the new burst continues the same
segment (e.g. a chair scraping several times counts once).

Minimal deps: none (stdlib only).
"""

from __future__ import annotations

from typing import Optional

from focus_noise.audio.config import SCORE_THRESHOLD_DBFS, SEGMENT_MERGE_GAP_MS


class SegmentDetector:
    """Count discrete above-threshold events within one window.

    Interface:
      detector = SegmentDetector()
      above = detector.update(ts_ms, level_dbfs)
      detector.segment_count
      detector.reset()   # new window
    """

    def __init__(self) -> None:
        self._above = False
        self._segment_count = 0
        self._last_end_ts: Optional[float] = None

    @property
    def merge_gap_ms(self) -> int:
        return SEGMENT_MERGE_GAP_MS

    def update(self, timestamp: float, level: float) -> bool:
        """Feed one valid frame; return True if it is above the threshold."""
        above = level > SCORE_THRESHOLD_DBFS
        if above and not self._above:
            if self._last_end_ts is None or timestamp - self._last_end_ts >= SEGMENT_MERGE_GAP_MS:
                self._segment_count += 1
            # Otherwise merged into the ongoing segment
        elif not above and self._above:
            self._last_end_ts = timestamp
        self._above = above
        return above

    def reset(self) -> None:
        self._above = False
        self._segment_count = 0
        self._last_end_ts = None

    @property
    def segment_count(self) -> int:
        return self._segment_count

    @property
    def is_above(self) -> bool:
        return self._above
