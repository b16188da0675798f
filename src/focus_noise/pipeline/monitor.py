"""Monitor loop: frame source -> frame processor -> ring buffer / slice aggregator -> listeners.

One owned engine per capture stream. The host either calls tick() roughly
every frame interval from its own scheduler, or calls run() to block on a
simple sleep-paced loop.

Per tick: read one block, compute levels, feed calibration, push the
realtime point, aggregate, refresh the interim score (throttled to
interim_interval_ms), fan out a snapshot, and finalize the slice when its
30 s elapse. Listeners run synchronously inside tick() and must not block.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, List, Optional

from focus_noise.audio.collector import FrameSource, now_ms
from focus_noise.audio.config import DBFS_MIN, DISPLAY_DB_MIN, FRAME_MS, MonitorConfig
from focus_noise.audio.frame import FrameProcessor
from focus_noise.calibration.controller import (
    CalibrationCallback,
    CalibrationController,
    CalibrationResult,
)
from focus_noise.errors import CaptureError, CaptureUnavailableError, SourceExhausted, StorageError
from focus_noise.pipeline.aggregator import SliceAggregator
from focus_noise.pipeline.realtime import RealtimePoint, RingBuffer, StreamSnapshot, StreamStatus
from focus_noise.scoring.types import SliceSummary
from focus_noise.storage.history import HistoryStore
from focus_noise.storage.settings import ControlSettings, SettingsStore

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[StreamSnapshot], None]
SliceListener = Callable[[SliceSummary], None]
Clock = Callable[[], float]


class NoiseMonitor:
    """Owned noise monitoring engine with explicit start/stop.

    Components are injected so tests can use scripted frame sources, an
    in-memory store and a fake clock.

    The first kept frame after start() opens the window at its own
    timestamp. The clock only stamps the end of a window flushed by stop(),
    and never earlier than the last frame, so it should share the source's
    timebase (milliseconds).

    Interface:
      monitor = NoiseMonitor(
          source=MicrophoneFrameSource(),
          history=HistoryStore(MemoryKeyValueStore()),
          settings=SettingsStore(MemoryKeyValueStore()),
      )
      unsubscribe = monitor.subscribe(print)
      monitor.start()
      monitor.run()      # blocks; stop() from a listener or another thread
    """

    def __init__(
        self,
        source: FrameSource,
        history: Optional[HistoryStore] = None,
        settings: Optional[SettingsStore] = None,
        config: Optional[MonitorConfig] = None,
        clock: Optional[Clock] = None,
    ):
        self.source = source
        self.config = config or MonitorConfig()
        self.history = history
        self.settings = settings
        self._clock = clock or now_ms

        self.processor = FrameProcessor(self.config)
        self.aggregator = SliceAggregator(self.config)
        self.calibration = CalibrationController(self.config)
        self.ring = RingBuffer(self.config.ring_capacity)

        self._status = StreamStatus.PAUSED
        self._capturing = False
        self._listeners: List[SnapshotListener] = []
        self._slice_listeners: List[SliceListener] = []
        self._last_slice: Optional[SliceSummary] = None
        self._last_score_ts: Optional[float] = None
        self._last_frame_ts: Optional[float] = None
        self._lock = threading.RLock()

        self._settings_unsubscribe: Optional[Callable[[], None]] = None
        if settings is not None:
            self._apply_settings(settings.load())
            self._settings_unsubscribe = settings.subscribe(self._apply_settings)

    # -- lifecycle -------------------------------------------------------

    @property
    def status(self) -> StreamStatus:
        return self._status

    @property
    def running(self) -> bool:
        return self._capturing and self._status in (StreamStatus.ACTIVE, StreamStatus.ERROR)

    def start(self) -> None:
        """Open the source and begin warm-up. No-op while already capturing."""
        with self._lock:
            if self._capturing:
                return
            self._status = StreamStatus.INITIALIZING
            self._emit()
            try:
                self.source.open()
            except CaptureUnavailableError as exc:
                logger.error("Capture unavailable: %s", exc)
                self._status = StreamStatus.PERMISSION_DENIED
                self._emit()
                return
            except (CaptureError, OSError) as exc:
                logger.error("Failed to start capture: %s", exc)
                self._status = StreamStatus.ERROR
                self._emit()
                return

            self._capturing = True
            self.processor.restart()
            self.aggregator.reset(self._clock())
            self._last_score_ts = None
            self._last_frame_ts = None
            self._status = StreamStatus.ACTIVE
            logger.info("Noise monitoring started")
            self._emit()

    def stop(self) -> None:
        """Flush the current slice and release the source. No-op while paused."""
        with self._lock:
            if self._status is StreamStatus.PAUSED:
                return
            self.calibration.abort()
            if self._capturing:
                now = self._clock()
                if self._last_frame_ts is not None:
                    now = max(now, self._last_frame_ts)
                self._finalize(now)
                try:
                    self.source.close()
                except (CaptureError, OSError) as exc:
                    logger.warning("Error closing capture source: %s", exc)
                self._capturing = False
            self._status = StreamStatus.PAUSED
            logger.info("Noise monitoring stopped")
            self._emit()

    def close(self) -> None:
        """Stop and detach from the settings store."""
        self.stop()
        if self._settings_unsubscribe is not None:
            self._settings_unsubscribe()
            self._settings_unsubscribe = None

    # -- per-frame work --------------------------------------------------

    def tick(self) -> Optional[StreamSnapshot]:
        """Process one frame. Returns the emitted snapshot, or None if nothing was emitted."""
        with self._lock:
            if not self.running:
                return None
            try:
                ts, block = self.source.read()
            except SourceExhausted:
                logger.info("Frame source exhausted")
                self.stop()
                return None
            except (CaptureError, OSError) as exc:
                # Aggregation state is left untouched; the next good read recovers
                if self._status is not StreamStatus.ERROR:
                    logger.warning("Capture fault: %s", exc)
                self._status = StreamStatus.ERROR
                return self._emit()

            if self._status is StreamStatus.ERROR:
                logger.info("Capture recovered")
                self._status = StreamStatus.ACTIVE

            sample = self.processor.process(ts, block)
            if sample is None:
                return None
            if self._last_frame_ts is None:
                # Window boundaries follow the source's timestamps
                self.aggregator.reset(ts)
            self._last_frame_ts = ts

            result = self.calibration.feed(sample.rms)
            if result is not None:
                self._store_calibration(result)

            display_db = self.calibration.display_level(sample.rms)
            self.ring.push(RealtimePoint(t=ts, dbfs=sample.dbfs, display_db=display_db))
            self.aggregator.add_frame(sample)

            if self._last_score_ts is None or ts - self._last_score_ts >= self.config.interim_interval_ms:
                self.aggregator.update_interim(ts)
                self._last_score_ts = ts

            snapshot = self._emit()

            if self.aggregator.is_due(ts):
                self._finalize(ts)
            return snapshot

    def run(
        self,
        max_frames: Optional[int] = None,
        realtime: bool = True,
        sleep: Callable[[float], None] = time.sleep,
    ) -> int:
        """Call tick() every frame interval until stopped or the source ends.

        Args:
            max_frames: Stop looping (without stopping the monitor) after this many ticks.
            realtime: Pace ticks at FRAME_MS; False replays as fast as possible.
            sleep: Injected for tests.

        Returns:
            Number of ticks performed.
        """
        period = FRAME_MS / 1000.0
        ticks = 0
        while self.running:
            started = time.monotonic()
            self.tick()
            ticks += 1
            if max_frames is not None and ticks >= max_frames:
                break
            if realtime:
                remaining = period - (time.monotonic() - started)
                if remaining > 0:
                    sleep(remaining)
        return ticks

    # -- calibration -----------------------------------------------------

    def calibrate(self, target_db: float, on_complete: Optional[CalibrationCallback] = None) -> None:
        """Start calibrating the current level to target_db.

        Raises:
            CalibrationError: if monitoring is not active.
        """
        with self._lock:
            self.calibration.request(
                target_db,
                running=self._capturing and self._status is StreamStatus.ACTIVE,
                on_complete=on_complete,
            )

    def _store_calibration(self, result: CalibrationResult) -> None:
        if self.settings is None:
            return
        try:
            self.settings.save(baseline_db=result.baseline_db, baseline_rms=result.baseline_rms)
        except StorageError as exc:
            logger.warning("Failed to persist calibration: %s", exc)

    def _apply_settings(self, settings: ControlSettings) -> None:
        with self._lock:
            self.calibration.apply_baseline(settings.baseline_db, settings.baseline_rms)

    # -- listeners -------------------------------------------------------

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Receive a snapshot after every processed frame and status change.

        The current snapshot is delivered immediately. Returns an unsubscribe function.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        self._deliver(listener, self.snapshot())
        return unsubscribe

    def subscribe_slices(self, listener: SliceListener) -> Callable[[], None]:
        """Receive every finalized SliceSummary. Returns an unsubscribe function."""
        self._slice_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._slice_listeners:
                self._slice_listeners.remove(listener)

        return unsubscribe

    def snapshot(self) -> StreamSnapshot:
        latest = self.ring.latest()
        return StreamSnapshot(
            status=self._status,
            current_dbfs=latest.dbfs if latest is not None else DBFS_MIN,
            current_display_db=latest.display_db if latest is not None else DISPLAY_DB_MIN,
            ring_buffer=self.ring.snapshot(),
            last_slice=self._last_slice,
            current_score=self.aggregator.interim_score,
            current_score_detail=self.aggregator.interim_detail,
        )

    def _emit(self) -> StreamSnapshot:
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            self._deliver(listener, snapshot)
        return snapshot

    @staticmethod
    def _deliver(listener: Callable, payload: object) -> None:
        try:
            listener(payload)
        except Exception:
            logger.exception("Listener %r failed", listener)

    # -- slices ----------------------------------------------------------

    @property
    def last_slice(self) -> Optional[SliceSummary]:
        return self._last_slice

    def _finalize(self, now: float) -> Optional[SliceSummary]:
        summary = self.aggregator.finalize(now, self.calibration.display_level)
        self.processor.reset_timing()
        self._last_score_ts = None
        if summary is None:
            return None
        self._last_slice = summary
        logger.info(
            "Slice finalized: score %.1f, %d frames, avg %.1f dBFS, %d segments",
            summary.score,
            summary.frames,
            summary.raw.avg_dbfs,
            summary.raw.segment_count,
        )
        if self.history is not None:
            self.history.append(summary)
        for listener in list(self._slice_listeners):
            self._deliver(listener, summary)
        return summary

    def get_history(self) -> List[SliceSummary]:
        return self.history.load() if self.history is not None else []

    def clear_history(self) -> None:
        if self.history is not None:
            self.history.clear()
