"""CLI for live or file-based noise monitoring."""

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path

from focus_noise.audio import MicrophoneFrameSource, MonitorConfig, WavFileFrameSource
from focus_noise.errors import CalibrationError
from focus_noise.pipeline import NoiseMonitor, StreamSnapshot, StreamStatus
from focus_noise.scoring import SliceSummary
from focus_noise.storage import HistoryStore, JsonFileKeyValueStore, SettingsStore


def _format_slice(summary: SliceSummary) -> str:
    start = datetime.fromtimestamp(summary.start / 1000).strftime("%Y-%m-%d %H:%M:%S")
    detail = summary.score_detail
    return (
        f"{start}  score {summary.score:5.1f}  avg {summary.display.avg_db:5.1f} dB  "
        f"p95 {summary.display.p95_db:5.1f} dB  segments {summary.raw.segment_count}  "
        f"penalties {detail.sustained_penalty:.2f}/{detail.time_penalty:.2f}/{detail.segment_penalty:.2f}"
    )


def main() -> None:
    parser = argparse.ArgumentParser(description="Monitor ambient noise and score focus disruption")
    parser.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Stop after this many seconds (default: run until Ctrl+C)",
    )
    parser.add_argument(
        "--input",
        "-i",
        type=Path,
        default=None,
        help="Replay a WAV file instead of the microphone",
    )
    parser.add_argument(
        "--device",
        type=int,
        default=None,
        help="Input device index (list with --list-devices)",
    )
    parser.add_argument(
        "--list-devices",
        action="store_true",
        help="List available audio input devices and exit",
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=Path.home() / ".focus-noise",
        help="Directory for slice history and settings",
    )
    parser.add_argument(
        "--calibrate",
        type=float,
        default=None,
        metavar="DB",
        help="Calibrate the current room level to DB after warm-up",
    )
    parser.add_argument("--history", action="store_true", help="Print stored slices and exit")
    parser.add_argument("--clear-history", action="store_true", help="Delete stored slices and exit")
    parser.add_argument("--reset-settings", action="store_true", help="Restore default settings and exit")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.list_devices:
        try:
            import sounddevice as sd
            print(sd.query_devices())
        except (ImportError, OSError):
            print("sounddevice not installed: pip install sounddevice", file=sys.stderr)
            sys.exit(1)
        return

    kv = JsonFileKeyValueStore(args.data_dir)
    history = HistoryStore(kv)
    settings = SettingsStore(kv)

    if args.history:
        for summary in history.load():
            print(_format_slice(summary))
        return
    if args.clear_history:
        history.clear()
        print("History cleared.")
        return
    if args.reset_settings:
        settings.reset()
        print("Settings reset.")
        return

    config = MonitorConfig()
    if args.input is not None:
        source = WavFileFrameSource(args.input, config)
    else:
        source = MicrophoneFrameSource(config, device=args.device)

    monitor = NoiseMonitor(source=source, history=history, settings=settings, config=config)
    monitor.subscribe_slices(lambda s: print(_format_slice(s)))

    calibration_pending = [args.calibrate]
    max_frames = None
    if args.duration is not None:
        max_frames = int(args.duration * 1000 / config.frame_ms)

    def on_snapshot(snapshot: StreamSnapshot) -> None:
        target = calibration_pending[0]
        if target is not None and snapshot.status is StreamStatus.ACTIVE and snapshot.ring_buffer:
            calibration_pending[0] = None
            try:
                monitor.calibrate(
                    target,
                    on_complete=lambda r: print(f"Calibrated: RMS {r.baseline_rms:.6f} -> {r.baseline_db:.1f} dB"),
                )
            except CalibrationError as exc:
                print(f"Calibration rejected: {exc}", file=sys.stderr)

    monitor.subscribe(on_snapshot)
    monitor.start()
    if monitor.status is StreamStatus.PERMISSION_DENIED:
        print("Microphone unavailable or access denied.", file=sys.stderr)
        sys.exit(1)

    try:
        monitor.run(max_frames=max_frames, realtime=args.input is None)
    except KeyboardInterrupt:
        pass
    finally:
        monitor.close()


if __name__ == "__main__":
    main()
