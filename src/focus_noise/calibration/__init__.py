"""Display-level calibration, isolated from scoring."""

from focus_noise.calibration.controller import (
    CalibrationController,
    CalibrationResult,
    CalibrationState,
)

__all__ = ["CalibrationController", "CalibrationResult", "CalibrationState"]
