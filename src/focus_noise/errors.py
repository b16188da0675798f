"""Exception hierarchy for capture, calibration and storage faults."""


class FocusNoiseError(Exception):
    """Base class for all errors raised by focus_noise."""


class CaptureError(FocusNoiseError):
    """Transient capture or runtime fault; the stream may recover."""


class CaptureUnavailableError(CaptureError):
    """Capture device missing or access denied. Terminal, never retried."""


class SourceExhausted(FocusNoiseError):
    """A finite frame source has no more blocks."""


class CalibrationError(FocusNoiseError):
    """Calibration requested in a state where it cannot run."""


class StorageError(FocusNoiseError):
    """Key/value backend failed to read or write."""


class StorageQuotaError(StorageError):
    """Key/value backend refused a write because it is full."""
