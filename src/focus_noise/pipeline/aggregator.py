"""Slice aggregation: per-window state, interim score and finalization."""

from __future__ import annotations

import logging
import uuid
from typing import Callable, Optional, Tuple

from focus_noise.analysis.segments import SegmentDetector
from focus_noise.analysis.statistics import LevelStatistics
from focus_noise.audio.config import INTERIM_MIN_FRAMES, MonitorConfig
from focus_noise.audio.frame import FrameSample
from focus_noise.audio.levels import rms_from_level
from focus_noise.scoring.engine import compute_slice_score
from focus_noise.scoring.types import (
    ScoreBreakdown,
    SliceDisplayStats,
    SliceRawStats,
    SliceSummary,
)

logger = logging.getLogger(__name__)

# Maps a linear RMS reading to a calibrated display level
DisplayMapper = Callable[[float], float]

PERFECT_SCORE = 100.0


class SliceAggregator:
    """Accumulates one window of frames and turns it into a SliceSummary.

    Only valid frames feed statistics, segments and durations; every
    processed frame contributes to gap bookkeeping.

    Interface:
      aggregator = SliceAggregator(MonitorConfig())
      aggregator.reset(start_ts)
      aggregator.add_frame(sample)
      aggregator.update_interim(now)
      if aggregator.is_due(now):
          summary = aggregator.finalize(now, calibration.display_level)
    """

    def __init__(self, config: Optional[MonitorConfig] = None, start_ts: float = 0.0):
        self.config = config or MonitorConfig()
        self._levels = LevelStatistics()
        self._segments = SegmentDetector()
        self.reset(start_ts)

    def reset(self, start_ts: float) -> None:
        self.start_ts = float(start_ts)
        self._levels.clear()
        self._segments.reset()
        self._above_ms = 0.0
        self._sampled_ms = 0.0
        self._frames = 0
        self._gap_count = 0
        self._max_gap_ms = 0.0
        self._interim_score = PERFECT_SCORE
        self._interim_detail: Optional[ScoreBreakdown] = None

    @property
    def frame_count(self) -> int:
        """Valid frames accumulated in this window."""
        return self._frames

    @property
    def gap_count(self) -> int:
        return self._gap_count

    @property
    def max_gap_ms(self) -> float:
        return self._max_gap_ms

    @property
    def sampled_duration_ms(self) -> float:
        return self._sampled_ms

    @property
    def interim_score(self) -> float:
        return self._interim_score

    @property
    def interim_detail(self) -> Optional[ScoreBreakdown]:
        return self._interim_detail

    def add_frame(self, sample: FrameSample) -> None:
        if sample.gap_ms is not None:
            self._gap_count += 1
            self._max_gap_ms = max(self._max_gap_ms, sample.gap_ms)

        if not sample.valid:
            return

        self._levels.add(sample.dbfs)
        self._frames += 1
        self._sampled_ms += sample.effective_ms
        if self._segments.update(sample.timestamp, sample.dbfs):
            self._above_ms += sample.effective_ms

    def raw_stats(self) -> SliceRawStats:
        over_ratio = self._above_ms / self._sampled_ms if self._sampled_ms > 0 else 0.0
        return SliceRawStats(
            avg_dbfs=self._levels.average(),
            max_dbfs=self._levels.maximum(),
            p50_dbfs=self._levels.quantile(0.5),
            p95_dbfs=self._levels.quantile(0.95),
            over_ratio=over_ratio,
            segment_count=self._segments.segment_count,
            sampled_duration_ms=self._sampled_ms,
            gap_count=self._gap_count,
            max_gap_ms=self._max_gap_ms,
        )

    def update_interim(self, now: float) -> Tuple[float, Optional[ScoreBreakdown]]:
        """Recompute the live score; stays at 100 until enough frames exist."""
        if self._levels.count < INTERIM_MIN_FRAMES:
            self._interim_score = PERFECT_SCORE
            self._interim_detail = None
        else:
            self._interim_score, self._interim_detail = compute_slice_score(
                self.raw_stats(), max(0.0, now - self.start_ts)
            )
        return self._interim_score, self._interim_detail

    def is_due(self, now: float) -> bool:
        return now - self.start_ts >= self.config.slice_ms

    def finalize(self, now: float, display_mapper: DisplayMapper) -> Optional[SliceSummary]:
        """Close the window and start a new one at `now`.

        Returns None (and emits nothing) when no valid frame arrived.
        """
        if self._levels.count == 0:
            logger.debug("Discarding empty slice started at %.0f", self.start_ts)
            self.reset(now)
            return None

        raw = self.raw_stats()
        duration_ms = max(0.0, now - self.start_ts)
        score, detail = compute_slice_score(raw, duration_ms)
        # Calibration only touches presentation levels, never p50 or the ratio
        display = SliceDisplayStats(
            avg_db=display_mapper(rms_from_level(raw.avg_dbfs)),
            p95_db=display_mapper(rms_from_level(raw.p95_dbfs)),
        )
        summary = SliceSummary(
            id=uuid.uuid4().hex,
            start=self.start_ts,
            end=float(now),
            frames=self._frames,
            raw=raw,
            display=display,
            score=score,
            score_detail=detail,
        )
        self.reset(now)
        return summary
