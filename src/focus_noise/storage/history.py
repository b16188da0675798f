"""Slice history persistence with retention and size cap.

Every append reloads the stored list, adds the new summary, drops entries
that ended more than HISTORY_RETENTION_DAYS ago, trims the oldest down to
HISTORY_MAX_SLICES, and writes the list back. Failures never propagate:
a failed write loses only that record, an unreadable payload reads as an
empty history.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import time
from typing import Callable, List, Optional

from focus_noise.audio.config import (
    HISTORY_MAX_SLICES,
    HISTORY_RETENTION_DAYS,
    HISTORY_STORAGE_KEY,
)
from focus_noise.errors import StorageError
from focus_noise.scoring.engine import pin_thresholds
from focus_noise.scoring.types import SliceSummary
from focus_noise.storage.kv import KeyValueStore

logger = logging.getLogger(__name__)

RETENTION_MS = HISTORY_RETENTION_DAYS * 24 * 60 * 60 * 1000


class HistoryStore:
    """Append-only store of SliceSummary records behind a key/value backend."""

    def __init__(
        self,
        kv: KeyValueStore,
        key: str = HISTORY_STORAGE_KEY,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.kv = kv
        self.key = key
        self._clock = clock or (lambda: time.time() * 1000.0)

    def load(self) -> List[SliceSummary]:
        """All retained summaries, oldest first; [] when missing or unreadable."""
        try:
            payload = self.kv.get(self.key)
        except (StorageError, ValueError) as exc:
            logger.warning("Failed to read slice history: %s", exc)
            return []
        if not payload:
            return []
        try:
            items = json.loads(payload)
            if not isinstance(items, list):
                raise TypeError(f"expected a list, got {type(items).__name__}")
            return [SliceSummary.from_dict(item) for item in items]
        except (ValueError, TypeError, KeyError, AttributeError) as exc:
            logger.warning("Ignoring malformed slice history: %s", exc)
            return []

    def append(self, summary: SliceSummary, now_ms: Optional[float] = None) -> bool:
        """Persist one summary; returns False (and logs) if it could not be stored."""
        now = self._clock() if now_ms is None else now_ms
        entries = self.load()
        if any(entry.id == summary.id for entry in entries):
            logger.debug("Slice %s already stored", summary.id)
            return True

        pinned = dataclasses.replace(summary, score_detail=pin_thresholds(summary.score_detail))
        if pinned.score_detail != summary.score_detail:
            logger.warning("Overriding non-standard scoring thresholds on slice %s", summary.id)
        entries.append(pinned)

        retained = [entry for entry in entries if now - entry.end < RETENTION_MS]
        while len(retained) > HISTORY_MAX_SLICES:
            retained.pop(0)

        try:
            self.kv.set(self.key, json.dumps([entry.to_dict() for entry in retained]))
        except (StorageError, OSError, TypeError, ValueError) as exc:
            logger.warning("Failed to persist slice %s: %s", summary.id, exc)
            return False
        return True

    def clear(self) -> None:
        try:
            self.kv.remove(self.key)
        except StorageError as exc:
            logger.warning("Failed to clear slice history: %s", exc)
