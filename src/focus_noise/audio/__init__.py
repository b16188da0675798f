"""Frame capture, level conversion and per-frame processing."""

from focus_noise.audio.collector import (
    ArrayFrameSource,
    FrameSource,
    MicrophoneFrameSource,
    WavFileFrameSource,
)
from focus_noise.audio.config import MonitorConfig
from focus_noise.audio.frame import FrameProcessor, FrameSample

__all__ = [
    "ArrayFrameSource",
    "FrameProcessor",
    "FrameSample",
    "FrameSource",
    "MicrophoneFrameSource",
    "MonitorConfig",
    "WavFileFrameSource",
]
