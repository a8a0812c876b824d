"""Local key-value store for anonymous use.

Settings and the completed-pomodoro count live in one JSON file under fixed
keys. Only the session coordinator reads and writes it.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from pomoflow.config import get_local_store_path
from pomoflow.models import Settings

log = logging.getLogger(__name__)

SETTINGS_KEY = "pomodoroSettings"
POMODOROS_KEY = "pomodorosCompleted"


class LocalStore:
    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = path or get_local_store_path()

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text())
        except (OSError, json.JSONDecodeError):
            log.warning("Local store %s is unreadable; starting fresh.", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, key: str, value: Any) -> None:
        data = self._read()
        data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2))

    def load_settings(self) -> Optional[Settings]:
        raw = self._read().get(SETTINGS_KEY)
        if raw is None:
            return None
        try:
            return Settings.model_validate(raw)
        except ValidationError:
            log.warning("Ignoring invalid locally saved settings.")
            return None

    def save_settings(self, settings: Settings) -> None:
        self._write(SETTINGS_KEY, settings.model_dump())

    def load_pomodoros(self) -> int:
        raw = self._read().get(POMODOROS_KEY, 0)
        try:
            return max(0, int(raw))
        except (TypeError, ValueError):
            return 0

    def save_pomodoros(self, count: int) -> None:
        self._write(POMODOROS_KEY, int(count))
