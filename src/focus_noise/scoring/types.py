"""Slice statistics, score breakdown and slice summary records."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from focus_noise.audio.config import (
    MAX_SEGMENTS_PER_MIN,
    SCORE_THRESHOLD_DBFS,
    SEGMENT_MERGE_GAP_MS,
)


@dataclass(frozen=True)
class SliceRawStats:
    """dBFS statistics of one window; the only input to scoring."""

    avg_dbfs: float
    max_dbfs: float
    p50_dbfs: float
    p95_dbfs: float
    over_ratio: float
    segment_count: int
    sampled_duration_ms: Optional[float] = None
    gap_count: int = 0
    max_gap_ms: float = 0.0


@dataclass(frozen=True)
class SliceDisplayStats:
    """Calibrated levels for presentation only."""

    avg_db: float
    p95_db: float


@dataclass(frozen=True)
class ScoreThresholds:
    """Scoring parameters in effect when a score was computed."""

    score_threshold_dbfs: float = SCORE_THRESHOLD_DBFS
    segment_merge_gap_ms: float = SEGMENT_MERGE_GAP_MS
    max_segments_per_min: float = MAX_SEGMENTS_PER_MIN


@dataclass(frozen=True)
class ScoreBreakdown:
    sustained_penalty: float
    time_penalty: float
    segment_penalty: float
    thresholds_used: ScoreThresholds
    sustained_level_dbfs: float
    over_ratio: float
    segment_count: int
    minutes: float
    duration_ms: float
    sampled_duration_ms: Optional[float]
    coverage_ratio: float

    @property
    def total_penalty(self) -> float:
        return 0.4 * self.sustained_penalty + 0.3 * self.time_penalty + 0.3 * self.segment_penalty

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScoreBreakdown":
        fields = dict(data)
        fields["thresholds_used"] = ScoreThresholds(**fields.get("thresholds_used", {}))
        return cls(**fields)


@dataclass(frozen=True)
class SliceSummary:
    """Finalized window: identity, timing, stats and score. Never mutated."""

    id: str
    start: float
    end: float
    frames: int
    raw: SliceRawStats
    display: SliceDisplayStats
    score: float
    score_detail: ScoreBreakdown

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SliceSummary":
        """Rebuild from to_dict() output; raises KeyError/TypeError on bad shape."""
        return cls(
            id=str(data["id"]),
            start=float(data["start"]),
            end=float(data["end"]),
            frames=int(data["frames"]),
            raw=SliceRawStats(**data["raw"]),
            display=SliceDisplayStats(**data["display"]),
            score=float(data["score"]),
            score_detail=ScoreBreakdown.from_dict(data["score_detail"]),
        )
