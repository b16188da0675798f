"""Slice aggregation, realtime history and the monitor engine."""

from focus_noise.pipeline.aggregator import SliceAggregator
from focus_noise.pipeline.monitor import NoiseMonitor
from focus_noise.pipeline.realtime import RealtimePoint, RingBuffer, StreamSnapshot, StreamStatus

__all__ = [
    "NoiseMonitor",
    "RealtimePoint",
    "RingBuffer",
    "SliceAggregator",
    "StreamSnapshot",
    "StreamStatus",
]
