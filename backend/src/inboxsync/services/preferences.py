"""User preferences persisted through a key-value port."""

import json
import logging
from pathlib import Path

from pydantic import BaseModel, Field

from inboxsync.ports import KeyValueStore

logger = logging.getLogger(__name__)

SOUND_ENABLED_KEY = "chatSoundEnabled"


class Preferences(BaseModel):
    """Per-operator dashboard preferences."""

    sound_enabled: bool = Field(True, description="Play a sound on inbound messages")


class PreferenceStore:
    """Loads and saves Preferences through a KeyValueStore."""

    def __init__(self, kv: KeyValueStore):
        self._kv = kv

    def load(self) -> Preferences:
        raw = self._kv.get(SOUND_ENABLED_KEY)
        if raw is None:
            return Preferences()
        try:
            return Preferences(sound_enabled=bool(json.loads(raw)))
        except ValueError:
            logger.warning(f"Ignoring unreadable {SOUND_ENABLED_KEY} value: {raw!r}")
            return Preferences()

    def save(self, preferences: Preferences) -> None:
        self._kv.set(SOUND_ENABLED_KEY, json.dumps(preferences.sound_enabled))


class MemoryKeyValueStore:
    """Process-local key-value storage."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._data = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value


class JsonFileKeyValueStore:
    """Key-value storage in a single JSON file."""

    def __init__(self, path: Path):
        self.path = path

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read preferences from {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key: str) -> str | None:
        return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2), encoding="utf-8")
