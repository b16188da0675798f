"""User control settings with pinned scoring parameters and change notification.

Caller-mutable: max_level_db, baseline_db, show_realtime_db, avg_window_sec,
alert_sound_enabled, baseline_rms.

Fixed: slice_sec, frame_ms, score_threshold_dbfs, segment_merge_gap_ms,
max_segments_per_min. save() always overwrites these with the engine
constants so stored settings cannot change how scores are computed.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import math
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Optional

from focus_noise.audio.config import (
    DEFAULT_DISPLAY_BASELINE_DB,
    DEFAULT_MAX_LEVEL_DB,
    FRAME_MS,
    MAX_SEGMENTS_PER_MIN,
    SCORE_THRESHOLD_DBFS,
    SEGMENT_MERGE_GAP_MS,
    SETTINGS_STORAGE_KEY,
    SLICE_SEC,
)
from focus_noise.errors import StorageError
from focus_noise.storage.kv import KeyValueStore

logger = logging.getLogger(__name__)

FIXED_FIELDS = (
    "slice_sec",
    "frame_ms",
    "score_threshold_dbfs",
    "segment_merge_gap_ms",
    "max_segments_per_min",
)

_FLOAT_FIELDS = ("max_level_db", "baseline_db", "avg_window_sec", "score_threshold_dbfs")
_INT_FIELDS = ("slice_sec", "frame_ms", "segment_merge_gap_ms", "max_segments_per_min")
_BOOL_FIELDS = ("show_realtime_db", "alert_sound_enabled")


def _as_float(name: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"{name}: expected a number, got {type(value).__name__}")
    result = float(value)
    if not math.isfinite(result):
        raise ValueError(f"{name}: expected a finite number, got {value!r}")
    return result


@dataclass(frozen=True)
class ControlSettings:
    max_level_db: float = DEFAULT_MAX_LEVEL_DB
    baseline_db: float = DEFAULT_DISPLAY_BASELINE_DB
    show_realtime_db: bool = True
    avg_window_sec: float = 1.0
    alert_sound_enabled: bool = False
    baseline_rms: Optional[float] = None

    slice_sec: int = SLICE_SEC
    frame_ms: int = FRAME_MS
    score_threshold_dbfs: float = SCORE_THRESHOLD_DBFS
    segment_merge_gap_ms: int = SEGMENT_MERGE_GAP_MS
    max_segments_per_min: int = MAX_SEGMENTS_PER_MIN

    def pinned(self) -> "ControlSettings":
        """Copy with the fixed fields reset to the engine constants."""
        return dataclasses.replace(
            self,
            slice_sec=SLICE_SEC,
            frame_ms=FRAME_MS,
            score_threshold_dbfs=SCORE_THRESHOLD_DBFS,
            segment_merge_gap_ms=SEGMENT_MERGE_GAP_MS,
            max_segments_per_min=MAX_SEGMENTS_PER_MIN,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ControlSettings":
        """Defaults overlaid with the known keys of data; unknown keys are ignored.

        Raises:
            TypeError, ValueError: if a known key holds a value of the wrong type.
        """
        values: Dict[str, Any] = {}
        for name, value in data.items():
            if name in _FLOAT_FIELDS:
                values[name] = _as_float(name, value)
            elif name in _INT_FIELDS:
                values[name] = int(_as_float(name, value))
            elif name in _BOOL_FIELDS:
                if not isinstance(value, bool):
                    raise TypeError(f"{name}: expected a boolean, got {type(value).__name__}")
                values[name] = value
            elif name == "baseline_rms":
                values[name] = None if value is None else _as_float(name, value)
        return cls(**values)


SettingsHandler = Callable[[ControlSettings], None]


class SettingsStore:
    """Owns persisted ControlSettings and notifies subscribers on save/reset."""

    def __init__(self, kv: KeyValueStore, key: str = SETTINGS_STORAGE_KEY):
        self.kv = kv
        self.key = key
        self._handlers: List[SettingsHandler] = []

    def load(self) -> ControlSettings:
        """Stored settings merged over defaults; defaults if missing or malformed."""
        try:
            payload = self.kv.get(self.key)
            if payload:
                data = json.loads(payload)
                if not isinstance(data, dict):
                    raise TypeError(f"expected an object, got {type(data).__name__}")
                return ControlSettings.from_dict(data)
        except (StorageError, ValueError, TypeError) as exc:
            logger.warning("Failed to load settings: %s", exc)
        return ControlSettings()

    def save(self, **changes: Any) -> ControlSettings:
        """Merge changes into the current settings, pin fixed fields, store, notify.

        Raises:
            TypeError: if a change names an unknown field.
            StorageError: if the backend cannot write.
        """
        current = self.load()
        merged = dataclasses.replace(current, **changes).pinned()
        ignored = [name for name in FIXED_FIELDS if name in changes and changes[name] != getattr(merged, name)]
        if ignored:
            logger.info("Ignoring attempt to change fixed scoring fields: %s", ", ".join(ignored))
        self.kv.set(self.key, json.dumps(merged.to_dict()))
        self._notify(merged)
        return merged

    def reset(self) -> ControlSettings:
        self.kv.remove(self.key)
        defaults = ControlSettings()
        self._notify(defaults)
        return defaults

    def subscribe(self, handler: SettingsHandler) -> Callable[[], None]:
        """Register a change handler; returns a function that unregisters it."""
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def _notify(self, settings: ControlSettings) -> None:
        for handler in list(self._handlers):
            try:
                handler(settings)
            except Exception:
                logger.exception("Settings handler %r failed", handler)
