"""Key/value backends, slice history and control settings."""

from focus_noise.storage.history import HistoryStore
from focus_noise.storage.kv import JsonFileKeyValueStore, KeyValueStore, MemoryKeyValueStore
from focus_noise.storage.settings import ControlSettings, SettingsStore

__all__ = [
    "ControlSettings",
    "HistoryStore",
    "JsonFileKeyValueStore",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "SettingsStore",
]
