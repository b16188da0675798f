"""Noise score (0-100) from slice statistics.

Penalty model, each term saturating at 1.0:
  1. Sustained noise (weight 0.4): median level above threshold, full at +6 dB.
  2. Time over threshold (weight 0.3): full once 30% of sampled time is above.
  3. Interruption frequency (weight 0.3): full at MAX_SEGMENTS_PER_MIN.

Score = 100 * (1 - total penalty), rounded to one decimal, clamped [0, 100].

Minimal deps: none (stdlib only).
"""

from __future__ import annotations

import dataclasses
from typing import Tuple

from focus_noise.audio.config import (
    MAX_SEGMENTS_PER_MIN,
    SCORE_THRESHOLD_DBFS,
)
from focus_noise.audio.levels import clamp01
from focus_noise.scoring.types import ScoreBreakdown, ScoreThresholds, SliceRawStats

SUSTAINED_FULL_DB = 6.0
TIME_FULL_RATIO = 0.30
WEIGHT_SUSTAINED = 0.4
WEIGHT_TIME = 0.3
WEIGHT_SEGMENT = 0.3

_MIN_MINUTES = 1e-6


def compute_slice_score(raw: SliceRawStats, duration_ms: float) -> Tuple[float, ScoreBreakdown]:
    """Score one window.

    Args:
        raw: Window statistics.
        duration_ms: Physical (wall-clock) window duration.

    Returns:
        (score, breakdown). The breakdown echoes the fixed thresholds and the
        intermediate values used, so a stored score can be audited.
    """
    sustained_diff = max(0.0, raw.p50_dbfs - SCORE_THRESHOLD_DBFS)
    sustained_penalty = clamp01(sustained_diff / SUSTAINED_FULL_DB)

    time_penalty = clamp01(raw.over_ratio / TIME_FULL_RATIO)

    # Sampled duration excludes gaps; fall back to the physical span
    if raw.sampled_duration_ms is not None and raw.sampled_duration_ms > 0:
        effective_ms = raw.sampled_duration_ms
    else:
        effective_ms = duration_ms
    minutes = max(_MIN_MINUTES, effective_ms / 60000.0)
    segments_per_min = raw.segment_count / minutes
    segment_penalty = clamp01(segments_per_min / max(_MIN_MINUTES, MAX_SEGMENTS_PER_MIN))

    total = (
        WEIGHT_SUSTAINED * sustained_penalty
        + WEIGHT_TIME * time_penalty
        + WEIGHT_SEGMENT * segment_penalty
    )
    score = max(0.0, min(100.0, round(100.0 * (1.0 - total), 1)))

    if raw.sampled_duration_ms and duration_ms > 0:
        coverage = raw.sampled_duration_ms / duration_ms
    else:
        coverage = 1.0

    breakdown = ScoreBreakdown(
        sustained_penalty=sustained_penalty,
        time_penalty=time_penalty,
        segment_penalty=segment_penalty,
        thresholds_used=ScoreThresholds(),
        sustained_level_dbfs=raw.p50_dbfs,
        over_ratio=raw.over_ratio,
        segment_count=raw.segment_count,
        minutes=minutes,
        duration_ms=duration_ms,
        sampled_duration_ms=raw.sampled_duration_ms,
        coverage_ratio=coverage,
    )
    return score, breakdown


def pin_thresholds(breakdown: ScoreBreakdown) -> ScoreBreakdown:
    """Copy of breakdown whose thresholds are the compiled-in constants."""
    return dataclasses.replace(breakdown, thresholds_used=ScoreThresholds())
