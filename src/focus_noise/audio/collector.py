"""Frame sources: the capture collaborators that hand blocks to the monitor.

A frame source yields (timestamp_ms, block) pairs, block being a fixed-length
mono float array in [-1, 1]. Filtering happens upstream of this interface.
"""

from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Iterable, Iterator, Optional, Protocol, Tuple, Union

import numpy as np

try:
    import sounddevice as sd
except (ImportError, OSError):  # OSError: PortAudio library missing
    sd = None  # type: ignore

from focus_noise.audio.config import FRAME_MS, MonitorConfig
from focus_noise.errors import CaptureError, CaptureUnavailableError, SourceExhausted

Frame = Tuple[float, np.ndarray]


def now_ms() -> float:
    """Wall-clock time in milliseconds."""
    return time.time() * 1000.0


class FrameSource(Protocol):
    """Capture capability consumed by NoiseMonitor."""

    def open(self) -> None: ...

    def read(self) -> Frame: ...

    def close(self) -> None: ...


class MicrophoneFrameSource:
    """Live mono capture via sounddevice.

    The PortAudio callback shifts each chunk into a window of the newest
    `block_size` samples (zeros until it fills); read() returns a copy of
    that window, like sampling an analyser node.
    """

    def __init__(
        self,
        config: Optional[MonitorConfig] = None,
        device: Optional[int] = None,
    ):
        self.config = config or MonitorConfig()
        self.device = device
        self._window = np.zeros(self.config.block_size, dtype=np.float32)
        self._lock = threading.Lock()
        self._stream = None
        self._fault: Optional[str] = None

    def _callback(self, indata: np.ndarray, _frames: int, _time: object, status: object) -> None:
        chunk = indata[:, 0] if indata.ndim > 1 else indata
        chunk = chunk[-len(self._window) :]
        with self._lock:
            if status:
                self._fault = str(status)
            self._window = np.roll(self._window, -len(chunk))
            self._window[len(self._window) - len(chunk) :] = chunk

    def open(self) -> None:
        if sd is None:
            raise CaptureUnavailableError("sounddevice is required for recording. pip install sounddevice")
        try:
            stream = sd.InputStream(
                samplerate=self.config.sample_rate,
                channels=1,
                dtype="float32",
                device=self.device,
                callback=self._callback,
            )
        except (sd.PortAudioError, ValueError) as exc:
            raise CaptureUnavailableError(f"microphone unavailable: {exc}") from exc
        try:
            stream.start()
        except (sd.PortAudioError, ValueError) as exc:
            stream.close()
            raise CaptureUnavailableError(f"microphone unavailable: {exc}") from exc
        self._stream = stream

    def read(self) -> Frame:
        if self._stream is None:
            raise CaptureError("microphone stream is not open")
        with self._lock:
            fault, self._fault = self._fault, None
            block = self._window.copy()
        if fault and "overflow" not in fault:
            raise CaptureError(f"capture fault: {fault}")
        return now_ms(), block

    def close(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.stop()
            stream.close()
        with self._lock:
            self._window = np.zeros(self.config.block_size, dtype=np.float32)


class ArrayFrameSource:
    """Scripted source over pre-built (timestamp, block) frames."""

    def __init__(self, frames: Iterable[Frame]):
        self._frames = list(frames)
        self._iter: Optional[Iterator[Frame]] = None

    def open(self) -> None:
        self._iter = iter(self._frames)

    def read(self) -> Frame:
        if self._iter is None:
            raise CaptureError("source is not open")
        try:
            ts, block = next(self._iter)
        except StopIteration:
            raise SourceExhausted("no more frames") from None
        return float(ts), np.asarray(block, dtype=np.float32)

    def close(self) -> None:
        self._iter = None


def _normalize_pcm(audio: np.ndarray) -> np.ndarray:
    if audio.dtype == np.int16:
        audio = audio.astype(np.float32) / 32768.0
    elif audio.dtype == np.int32:
        audio = audio.astype(np.float32) / 2147483648.0
    elif audio.dtype == np.uint8:
        audio = (audio.astype(np.float32) - 128.0) / 128.0
    else:
        audio = audio.astype(np.float32)
    if audio.ndim > 1:
        audio = audio.mean(axis=1)
    return np.clip(audio, -1.0, 1.0)


class WavFileFrameSource:
    """Replays a WAV file as frames spaced one frame interval apart.

    Each frame is the `block_size` samples ending at the current playhead,
    and the playhead advances by FRAME_MS of audio per read.
    """

    def __init__(
        self,
        path: Union[str, Path],
        config: Optional[MonitorConfig] = None,
        start_ms: Optional[float] = None,
    ):
        self.path = Path(path)
        self.config = config or MonitorConfig()
        self.start_ms = start_ms
        self._audio: Optional[np.ndarray] = None
        self._hop = 0
        self._pos = 0
        self._index = 0
        self._t0 = 0.0

    def open(self) -> None:
        import scipy.io.wavfile as wavfile

        if not self.path.exists():
            raise CaptureUnavailableError(f"audio file not found: {self.path}")
        try:
            sr, audio = wavfile.read(str(self.path))
        except ValueError as exc:
            raise CaptureUnavailableError(f"unreadable audio file {self.path}: {exc}") from exc
        self._audio = _normalize_pcm(audio)
        self._hop = max(1, int(sr * FRAME_MS / 1000))
        self._pos = self._hop
        self._index = 0
        self._t0 = self.start_ms if self.start_ms is not None else now_ms()

    def read(self) -> Frame:
        if self._audio is None:
            raise CaptureError("source is not open")
        if self._pos - self._hop >= len(self._audio):
            raise SourceExhausted(str(self.path))
        end = min(self._pos, len(self._audio))
        start = max(0, end - self.config.block_size)
        block = self._audio[start:end]
        ts = self._t0 + self._index * FRAME_MS
        self._pos += self._hop
        self._index += 1
        return ts, block

    def close(self) -> None:
        self._audio = None
