"""Unit tests and toy example for the monitor loop."""

from __future__ import annotations

import tempfile
import unittest
from pathlib import Path
from typing import List, Optional

import numpy as np

from focus_noise.audio import ArrayFrameSource, MonitorConfig, WavFileFrameSource
from focus_noise.audio.config import FRAME_MS
from focus_noise.errors import CalibrationError, CaptureError, CaptureUnavailableError
from focus_noise.pipeline import (
    NoiseMonitor,
    RealtimePoint,
    RingBuffer,
    SliceAggregator,
    StreamSnapshot,
    StreamStatus,
)
from focus_noise.audio.frame import FrameSample
from focus_noise.scoring import SliceSummary
from focus_noise.storage import HistoryStore, MemoryKeyValueStore, SettingsStore

QUIET = 0.001  # -60 dBFS, below the -50 dBFS score threshold
LOUD = 0.1  # -20 dBFS


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _frames(amplitudes, start: float = 0.0, step: float = FRAME_MS, n: int = 256):
    return [(start + i * step, np.full(n, a, dtype=np.float32)) for i, a in enumerate(amplitudes)]


class FlakySource(ArrayFrameSource):
    """Raises CaptureError on the given read indexes."""

    def __init__(self, frames, fail_on=()):
        super().__init__(frames)
        self.fail_on = set(fail_on)
        self.reads = 0

    def read(self):
        index = self.reads
        self.reads += 1
        if index in self.fail_on:
            raise CaptureError("device hiccup")
        return super().read()


class DeniedSource(ArrayFrameSource):
    def __init__(self):
        super().__init__([])
        self.open_calls = 0

    def open(self) -> None:
        self.open_calls += 1
        raise CaptureUnavailableError("permission denied")


class TestRingBuffer(unittest.TestCase):
    """Tests for the realtime RingBuffer."""

    def test_empty_snapshot(self) -> None:
        ring = RingBuffer(3)
        self.assertEqual(ring.snapshot(), ())
        self.assertIsNone(ring.latest())
        self.assertEqual(len(ring), 0)

    def test_oldest_evicted(self) -> None:
        ring = RingBuffer(3)
        for i in range(5):
            ring.push(RealtimePoint(t=float(i), dbfs=-50.0, display_db=40.0))
        self.assertEqual([p.t for p in ring.snapshot()], [2.0, 3.0, 4.0])
        self.assertEqual(ring.latest().t, 4.0)

    def test_snapshot_is_immutable_copy(self) -> None:
        ring = RingBuffer(2)
        ring.push(RealtimePoint(t=0.0, dbfs=-50.0, display_db=40.0))
        snap = ring.snapshot()
        ring.push(RealtimePoint(t=1.0, dbfs=-50.0, display_db=40.0))
        self.assertEqual(len(snap), 1)
        self.assertIsInstance(snap, tuple)

    def test_invalid_capacity(self) -> None:
        with self.assertRaises(ValueError):
            RingBuffer(0)

    def test_default_capacity_covers_ten_seconds(self) -> None:
        self.assertEqual(MonitorConfig().ring_capacity, 200)


class TestSliceAggregator(unittest.TestCase):
    """Tests for SliceAggregator window bookkeeping."""

    def _sample(self, ts: float, dbfs: float, effective: float = 50.0, gap: Optional[float] = None):
        return FrameSample(timestamp=ts, rms=10 ** (dbfs / 20), dbfs=dbfs, effective_ms=effective, gap_ms=gap)

    def test_empty_window_is_discarded(self) -> None:
        aggregator = SliceAggregator(start_ts=0.0)
        aggregator.add_frame(self._sample(0.0, -100.0))
        self.assertIsNone(aggregator.finalize(30_000.0, lambda rms: 40.0))
        self.assertEqual(aggregator.start_ts, 30_000.0)
        self.assertEqual(aggregator.gap_count, 0)

    def test_gap_bookkeeping(self) -> None:
        aggregator = SliceAggregator(start_ts=0.0)
        aggregator.add_frame(self._sample(0.0, -60.0))
        aggregator.add_frame(self._sample(1250.0, -60.0, effective=50.0, gap=1200.0))
        self.assertEqual(aggregator.gap_count, 1)
        self.assertEqual(aggregator.max_gap_ms, 1200.0)
        self.assertEqual(aggregator.sampled_duration_ms, 100.0)

    def test_over_ratio_and_display_mapping(self) -> None:
        aggregator = SliceAggregator(start_ts=0.0)
        for i in range(6):
            aggregator.add_frame(self._sample(i * 50.0, -20.0 if i < 3 else -60.0))
        raw = aggregator.raw_stats()
        self.assertAlmostEqual(raw.over_ratio, 0.5)
        self.assertEqual(raw.segment_count, 1)

        mapped: List[float] = []

        def mapper(rms: float) -> float:
            mapped.append(rms)
            return 55.0

        summary = aggregator.finalize(300.0, mapper)
        # Only the average and p95 go through the display mapping
        self.assertEqual(len(mapped), 2)
        self.assertEqual(summary.display.avg_db, 55.0)
        self.assertEqual(summary.display.p95_db, 55.0)
        self.assertEqual(summary.frames, 6)
        self.assertEqual(summary.raw, raw)

    def test_interim_score_seeded_perfect(self) -> None:
        aggregator = SliceAggregator(start_ts=0.0)
        for i in range(9):
            aggregator.add_frame(self._sample(i * 50.0, -20.0))
        self.assertEqual(aggregator.update_interim(450.0), (100.0, None))
        aggregator.add_frame(self._sample(450.0, -20.0))
        score, detail = aggregator.update_interim(500.0)
        self.assertLess(score, 100.0)
        self.assertIsNotNone(detail)


class TestNoiseMonitor(unittest.TestCase):
    """Tests for NoiseMonitor lifecycle, aggregation and fan-out."""

    def setUp(self) -> None:
        self.clock = FakeClock(0.0)
        self.config = MonitorConfig(warmup_frames=0)
        self.kv = MemoryKeyValueStore()
        self.history = HistoryStore(self.kv, clock=self.clock)
        self.settings = SettingsStore(self.kv)
        self.slices: List[SliceSummary] = []
        self.snapshots: List[StreamSnapshot] = []

    def _monitor(self, source) -> NoiseMonitor:
        monitor = NoiseMonitor(
            source=source,
            history=self.history,
            settings=self.settings,
            config=self.config,
            clock=self.clock,
        )
        monitor.subscribe_slices(self.slices.append)
        monitor.subscribe(self.snapshots.append)
        return monitor

    def _run_ticks(self, monitor: NoiseMonitor, count: int) -> None:
        for _ in range(count):
            monitor.tick()

    def test_quiet_window_finalizes_at_30s_with_perfect_score(self) -> None:
        monitor = self._monitor(ArrayFrameSource(_frames([QUIET] * 601)))
        monitor.start()
        self._run_ticks(monitor, 601)
        self.clock.now = 30_000.0
        self.assertEqual(len(self.slices), 1)
        summary = self.slices[0]
        self.assertEqual(summary.score, 100.0)
        self.assertEqual(summary.frames, 601)
        self.assertEqual(summary.start, 0.0)
        self.assertEqual(summary.end, 30_000.0)
        self.assertEqual(summary.raw.segment_count, 0)
        self.assertAlmostEqual(summary.raw.p50_dbfs, -60.0, places=3)
        self.assertEqual(self.history.load(), [summary])
        self.assertEqual(monitor.last_slice, summary)

    def test_loud_window_is_penalized(self) -> None:
        monitor = self._monitor(ArrayFrameSource(_frames([LOUD] * 601)))
        monitor.start()
        self._run_ticks(monitor, 601)
        summary = self.slices[0]
        self.assertAlmostEqual(summary.raw.over_ratio, 1.0)
        self.assertEqual(summary.raw.segment_count, 1)
        self.assertEqual(summary.score, 20.0)

    def test_empty_window_emits_nothing(self) -> None:
        """A window with only silent frames produces no summary and resets."""
        monitor = self._monitor(ArrayFrameSource(_frames([0.0] * 601)))
        monitor.start()
        self._run_ticks(monitor, 601)
        self.assertEqual(self.slices, [])
        self.assertEqual(self.history.load(), [])
        self.assertEqual(monitor.aggregator.start_ts, 30_000.0)
        self.assertEqual(monitor.aggregator.frame_count, 0)

    def test_stop_flushes_partial_window(self) -> None:
        monitor = self._monitor(ArrayFrameSource(_frames([LOUD] * 20)))
        monitor.start()
        self._run_ticks(monitor, 20)
        self.clock.now = 1000.0
        monitor.stop()
        self.assertEqual(monitor.status, StreamStatus.PAUSED)
        self.assertEqual(len(self.slices), 1)
        self.assertEqual(self.slices[0].frames, 20)
        self.assertEqual(self.slices[0].end, 1000.0)
        self.assertEqual(len(self.history.load()), 1)

    def test_duplicate_start_and_stop_are_noops(self) -> None:
        source = ArrayFrameSource(_frames([QUIET] * 5))
        monitor = self._monitor(source)
        monitor.stop()
        self.assertEqual(monitor.status, StreamStatus.PAUSED)
        monitor.start()
        monitor.tick()
        monitor.start()
        # Still reading the same stream: second frame follows the first
        snapshot = monitor.tick()
        self.assertEqual([p.t for p in snapshot.ring_buffer], [0.0, 50.0])
        monitor.stop()
        emitted = len(self.snapshots)
        monitor.stop()
        self.assertEqual(len(self.snapshots), emitted)
        self.assertEqual(len(self.slices), 1)

    def test_warmup_frames_are_discarded(self) -> None:
        self.config = MonitorConfig(warmup_frames=10)
        monitor = self._monitor(ArrayFrameSource(_frames([LOUD] * 15)))
        monitor.start()
        results = [monitor.tick() for _ in range(15)]
        self.assertTrue(all(r is None for r in results[:10]))
        self.assertEqual(len(monitor.ring), 5)
        self.assertEqual(monitor.aggregator.frame_count, 5)

    def test_permission_denied_is_terminal(self) -> None:
        source = DeniedSource()
        monitor = self._monitor(source)
        monitor.start()
        self.assertEqual(monitor.status, StreamStatus.PERMISSION_DENIED)
        self.assertIsNone(monitor.tick())
        self.assertEqual(source.open_calls, 1)
        self.assertEqual(self.snapshots[-1].status, StreamStatus.PERMISSION_DENIED)

    def test_transient_fault_keeps_aggregation(self) -> None:
        source = FlakySource(_frames([QUIET] * 5), fail_on={2})
        monitor = self._monitor(source)
        monitor.start()
        monitor.tick()
        monitor.tick()
        frames_before = monitor.aggregator.frame_count
        snapshot = monitor.tick()
        self.assertEqual(snapshot.status, StreamStatus.ERROR)
        self.assertEqual(monitor.aggregator.frame_count, frames_before)
        snapshot = monitor.tick()
        self.assertEqual(snapshot.status, StreamStatus.ACTIVE)
        self.assertEqual(monitor.aggregator.frame_count, frames_before + 1)

    def test_capture_gap_recorded_in_slice(self) -> None:
        frames = _frames([QUIET] * 3) + _frames([QUIET] * 3, start=1300.0)
        monitor = self._monitor(ArrayFrameSource(frames))
        monitor.start()
        self._run_ticks(monitor, 6)
        self.clock.now = 1400.0
        monitor.stop()
        raw = self.slices[0].raw
        self.assertEqual(raw.gap_count, 1)
        self.assertEqual(raw.max_gap_ms, 1200.0)
        # 3 nominal + 1 post-gap nominal + 2 x 50 ms
        self.assertEqual(raw.sampled_duration_ms, 300.0)

    def test_interim_score_throttled_and_seeded(self) -> None:
        monitor = self._monitor(ArrayFrameSource(_frames([LOUD] * 30)))
        monitor.start()
        first = monitor.tick()
        self.assertEqual(first.current_score, 100.0)
        self.assertIsNone(first.current_score_detail)
        snapshots = [monitor.tick() for _ in range(14)]
        # 15 frames in; last recompute happened at t=500 with 11 frames
        self.assertLess(snapshots[-1].current_score, 100.0)
        self.assertIsNotNone(snapshots[-1].current_score_detail)

    def test_snapshot_contents(self) -> None:
        monitor = self._monitor(ArrayFrameSource(_frames([LOUD] * 3)))
        initial = self.snapshots[0]
        self.assertEqual(initial.status, StreamStatus.PAUSED)
        self.assertEqual(initial.current_dbfs, -100.0)
        self.assertEqual(initial.current_display_db, 20.0)
        self.assertEqual(initial.ring_buffer, ())
        monitor.start()
        snapshot = monitor.tick()
        self.assertAlmostEqual(snapshot.current_dbfs, -20.0, places=4)
        self.assertAlmostEqual(snapshot.current_display_db, 80.0, places=3)
        self.assertIsNone(snapshot.last_slice)

    def test_listener_failure_is_isolated_and_unsubscribe(self) -> None:
        monitor = self._monitor(ArrayFrameSource(_frames([QUIET] * 3)))

        def broken(_snapshot: StreamSnapshot) -> None:
            raise RuntimeError("listener bug")

        with self.assertLogs("focus_noise.pipeline.monitor", level="ERROR"):
            unsubscribe = monitor.subscribe(broken)
        monitor.start()
        received = len(self.snapshots)
        with self.assertLogs("focus_noise.pipeline.monitor", level="ERROR"):
            monitor.tick()
        self.assertEqual(len(self.snapshots), received + 1)
        unsubscribe()
        monitor.tick()
        self.assertEqual(len(self.snapshots), received + 2)

    def test_calibration_rejected_when_inactive(self) -> None:
        monitor = self._monitor(ArrayFrameSource([]))
        with self.assertRaises(CalibrationError):
            monitor.calibrate(50.0)
        self.assertFalse(monitor.calibration.collecting)
        self.assertEqual(monitor.status, StreamStatus.PAUSED)

    def test_calibration_commits_and_persists(self) -> None:
        monitor = self._monitor(ArrayFrameSource(_frames([0.02] * 70)))
        monitor.start()
        monitor.tick()
        done = []
        monitor.calibrate(50.0, on_complete=done.append)
        self._run_ticks(monitor, 60)
        self.assertEqual(len(done), 1)
        self.assertAlmostEqual(monitor.calibration.display_level(0.02), 50.0, places=4)
        stored = self.settings.load()
        self.assertEqual(stored.baseline_db, 50.0)
        self.assertAlmostEqual(stored.baseline_rms, 0.02, places=6)
        snapshot = monitor.tick()
        self.assertAlmostEqual(snapshot.current_display_db, 50.0, places=3)

    def test_calibration_does_not_change_score(self) -> None:
        """The same audio scores identically with and without calibration."""
        amplitudes = [QUIET, LOUD] * 150 + [QUIET] * 100
        scores = []
        for calibrate in (False, True):
            self.slices = []
            self.clock.now = 0.0
            self.kv = MemoryKeyValueStore()
            self.history = HistoryStore(self.kv, clock=self.clock)
            self.settings = SettingsStore(self.kv)
            monitor = self._monitor(ArrayFrameSource(_frames(amplitudes)))
            monitor.start()
            monitor.tick()
            if calibrate:
                monitor.calibrate(90.0)
            self._run_ticks(monitor, len(amplitudes) - 1)
            self.clock.now = len(amplitudes) * FRAME_MS
            monitor.stop()
            scores.append((self.slices[0].score, self.slices[0].raw))
        self.assertEqual(scores[0], scores[1])

    def test_stop_mid_calibration_discards(self) -> None:
        monitor = self._monitor(ArrayFrameSource(_frames([0.3] * 40)))
        monitor.start()
        monitor.tick()
        monitor.calibrate(75.0)
        self._run_ticks(monitor, 30)
        monitor.stop()
        self.assertFalse(monitor.calibration.collecting)
        self.assertEqual(monitor.calibration.baseline_db, 40.0)
        self.assertIsNone(self.settings.load().baseline_rms)

    def test_settings_change_updates_display_mapping(self) -> None:
        monitor = self._monitor(ArrayFrameSource(_frames([0.01] * 3)))
        self.settings.save(baseline_db=60.0, baseline_rms=0.01)
        monitor.start()
        snapshot = monitor.tick()
        self.assertAlmostEqual(snapshot.current_display_db, 60.0, places=3)
        monitor.close()
        self.settings.save(baseline_db=30.0)
        self.assertEqual(monitor.calibration.baseline_db, 60.0)

    def test_wrongly_typed_stored_settings_use_default_baseline(self) -> None:
        self.kv.set(self.settings.key, '{"baseline_db": null, "baseline_rms": "abc"}')
        with self.assertLogs("focus_noise.storage.settings", level="WARNING"):
            monitor = self._monitor(ArrayFrameSource(_frames([LOUD] * 3)))
        self.assertEqual(monitor.calibration.baseline_db, 40.0)
        monitor.start()
        self.assertAlmostEqual(monitor.tick().current_display_db, 80.0, places=3)

    def test_window_opens_at_first_frame_timestamp(self) -> None:
        """Frames on their own timebase still finalize after 30 s of frame time."""
        self.clock.now = 1.7e12
        monitor = self._monitor(ArrayFrameSource(_frames([QUIET] * 601, start=5_000.0)))
        monitor.start()
        self._run_ticks(monitor, 601)
        self.assertEqual(len(self.slices), 1)
        self.assertEqual(self.slices[0].start, 5_000.0)
        self.assertEqual(self.slices[0].end, 35_000.0)
        self.assertEqual(self.slices[0].frames, 601)

    def test_run_until_source_exhausted(self) -> None:
        monitor = self._monitor(ArrayFrameSource(_frames([LOUD] * 50)))
        monitor.start()
        ticks = monitor.run(realtime=False)
        self.assertEqual(ticks, 51)
        self.assertEqual(monitor.status, StreamStatus.PAUSED)
        self.assertEqual(len(self.slices), 1)
        self.assertEqual(self.slices[0].frames, 50)

    def test_run_max_frames(self) -> None:
        monitor = self._monitor(ArrayFrameSource(_frames([LOUD] * 50)))
        monitor.start()
        self.assertEqual(monitor.run(max_frames=10, realtime=False), 10)
        self.assertTrue(monitor.running)

    def test_wav_file_source(self) -> None:
        import scipy.io.wavfile as wavfile

        sample_rate = 8000
        tone = (0.1 * np.sqrt(2) * np.sin(2 * np.pi * 440 * np.arange(sample_rate * 2) / sample_rate))
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "tone.wav"
            wavfile.write(str(path), sample_rate, (tone * 32767).astype(np.int16))
            config = MonitorConfig(warmup_frames=0, block_size=400)
            self.config = config
            monitor = self._monitor(WavFileFrameSource(path, config, start_ms=0.0))
            monitor.start()
            monitor.run(realtime=False)
        self.assertEqual(len(self.slices), 1)
        summary = self.slices[0]
        self.assertEqual(summary.frames, 40)
        self.assertAlmostEqual(summary.raw.p50_dbfs, -20.0, delta=0.5)


def run_toy_example() -> None:
    """Toy: one noisy 30 s window at 20 fps, printed as a slice summary."""
    print("=== Toy example: noise monitor ===\n")
    rng = np.random.default_rng(7)
    amplitudes = [LOUD if rng.random() < 0.1 else QUIET for _ in range(601)]
    clock = FakeClock(0.0)
    monitor = NoiseMonitor(
        source=ArrayFrameSource(_frames(amplitudes)),
        history=HistoryStore(MemoryKeyValueStore(), clock=clock),
        config=MonitorConfig(warmup_frames=0),
        clock=clock,
    )
    monitor.subscribe_slices(
        lambda s: print(
            f"  score {s.score:.1f}  segments {s.raw.segment_count}  "
            f"over {s.raw.over_ratio:.2f}  p50 {s.raw.p50_dbfs:.1f} dBFS"
        )
    )
    monitor.start()
    monitor.run(realtime=False)
    print("\nDone.")


if __name__ == "__main__":
    run_toy_example()
    print("\n--- Running unit tests ---")
    unittest.main(argv=[""], exit=False, verbosity=2)
