"""Realtime display history and the snapshot pushed to listeners."""

from __future__ import annotations

import enum
from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional, Tuple

from focus_noise.scoring.types import ScoreBreakdown, SliceSummary


class StreamStatus(str, enum.Enum):
    INITIALIZING = "initializing"
    ACTIVE = "active"
    PAUSED = "paused"
    PERMISSION_DENIED = "permission-denied"
    ERROR = "error"


@dataclass(frozen=True)
class RealtimePoint:
    t: float
    dbfs: float
    display_db: float


class RingBuffer:
    """Fixed-capacity FIFO of RealtimePoints; the oldest point is evicted when full."""

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._points: Deque[RealtimePoint] = deque(maxlen=capacity)

    def push(self, point: RealtimePoint) -> None:
        self._points.append(point)

    def snapshot(self) -> Tuple[RealtimePoint, ...]:
        """Points in chronological order; an empty tuple when nothing was pushed."""
        return tuple(self._points)

    def latest(self) -> Optional[RealtimePoint]:
        return self._points[-1] if self._points else None

    def clear(self) -> None:
        self._points.clear()

    def __len__(self) -> int:
        return len(self._points)


@dataclass(frozen=True)
class StreamSnapshot:
    status: StreamStatus
    current_dbfs: float
    current_display_db: float
    ring_buffer: Tuple[RealtimePoint, ...]
    last_slice: Optional[SliceSummary]
    current_score: Optional[float] = None
    current_score_detail: Optional[ScoreBreakdown] = None
