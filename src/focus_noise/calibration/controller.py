"""Display calibration: map the device's raw amplitude scale to a chosen dB level.

Calibration collects linear RMS readings for a fixed duration, averages
them, and pairs the mean with the target display level. Afterwards

    displayDb = baseline_db + 20 * log10(rms / baseline_rms)

Calibration only changes the display mapping. Scores are computed from raw
dBFS and never see the baseline.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from focus_noise.audio.config import (
    DEFAULT_BASELINE_RMS,
    DEFAULT_DISPLAY_BASELINE_DB,
    MonitorConfig,
)
from focus_noise.audio.levels import display_level_from_rms
from focus_noise.errors import CalibrationError

logger = logging.getLogger(__name__)


class CalibrationState(enum.Enum):
    IDLE = "idle"
    COLLECTING = "collecting"


@dataclass(frozen=True)
class CalibrationResult:
    baseline_db: float
    baseline_rms: float
    samples: int


CalibrationCallback = Callable[[CalibrationResult], None]


class CalibrationController:
    """Idle/collecting state machine owning the display baseline pair.

    Interface:
      controller = CalibrationController(MonitorConfig())
      controller.request(45.0, running=True)
      result = controller.feed(rms)      # per frame; result once complete
      controller.display_level(rms)
      controller.abort()                 # stream stopped: keep old baseline
    """

    def __init__(
        self,
        config: Optional[MonitorConfig] = None,
        baseline_db: float = DEFAULT_DISPLAY_BASELINE_DB,
        baseline_rms: float = DEFAULT_BASELINE_RMS,
    ):
        self.config = config or MonitorConfig()
        self._baseline_db = float(baseline_db)
        self._baseline_rms = float(baseline_rms)
        self._state = CalibrationState.IDLE
        self._target_db = 0.0
        self._samples: List[float] = []
        self._on_complete: Optional[CalibrationCallback] = None

    @property
    def state(self) -> CalibrationState:
        return self._state

    @property
    def collecting(self) -> bool:
        return self._state is CalibrationState.COLLECTING

    @property
    def baseline_db(self) -> float:
        return self._baseline_db

    @property
    def baseline_rms(self) -> float:
        return self._baseline_rms

    def request(
        self,
        target_db: float,
        running: bool,
        on_complete: Optional[CalibrationCallback] = None,
    ) -> None:
        """Begin collecting; rejected with CalibrationError unless the stream runs."""
        if not running:
            raise CalibrationError("monitoring is not running; start the stream before calibrating")
        self._state = CalibrationState.COLLECTING
        self._target_db = float(target_db)
        self._samples = []
        self._on_complete = on_complete
        logger.info("Starting calibration to %.1f dB", self._target_db)

    def feed(self, rms: float) -> Optional[CalibrationResult]:
        """Add one linear RMS reading; returns the result when collection completes."""
        if self._state is not CalibrationState.COLLECTING:
            return None
        self._samples.append(float(rms))
        if len(self._samples) < self.config.calibration_frames:
            return None

        avg_rms = sum(self._samples) / len(self._samples)
        result = CalibrationResult(
            baseline_db=self._target_db,
            baseline_rms=avg_rms,
            samples=len(self._samples),
        )
        self._baseline_db = result.baseline_db
        self._baseline_rms = result.baseline_rms
        callback = self._on_complete
        self._reset_collection()
        logger.info("Calibration complete: RMS %.6f -> %.1f dB", avg_rms, result.baseline_db)
        if callback is not None:
            callback(result)
        return result

    def abort(self) -> None:
        """Drop an in-progress collection; the previous baseline stays."""
        if self._state is CalibrationState.COLLECTING:
            logger.info("Calibration aborted after %d samples", len(self._samples))
        self._reset_collection()

    def apply_baseline(self, baseline_db: float, baseline_rms: Optional[float]) -> None:
        """Adopt a stored baseline; a missing or non-positive RMS keeps the current one."""
        self._baseline_db = float(baseline_db)
        if baseline_rms is not None and baseline_rms > 0:
            self._baseline_rms = float(baseline_rms)

    def display_level(self, rms: float) -> float:
        return display_level_from_rms(rms, self._baseline_rms, self._baseline_db)

    def _reset_collection(self) -> None:
        self._state = CalibrationState.IDLE
        self._samples = []
        self._on_complete = None
