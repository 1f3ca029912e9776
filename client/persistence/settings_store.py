"""
Last-known client settings on disk.

Responsibilities:
- Load/save ClientSettings as pretty-printed JSON
- Fall back to defaults when no file exists yet

Non-responsibilities:
- No conversation history (owned by the backend)
- Not consulted by the connection state machine; capture reads it once at
  start time
"""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Any

from observability.logger import log_event


class SettingsError(Exception):
    """The settings file exists but cannot be read or parsed."""


@dataclass(frozen=True)
class ClientSettings:
    """
    User-chosen settings persisted between runs.

    Device ids are whatever the device provider accepts (index or name);
    None means the system default.
    """
    input_device_id: int | str | None = None
    output_device_id: int | str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(data: dict[str, Any]) -> ClientSettings:
        return ClientSettings(
            input_device_id=_device_id(data, "input_device_id"),
            output_device_id=_device_id(data, "output_device_id"),
        )


def _device_id(data: dict[str, Any], key: str) -> int | str | None:
    value = data.get(key)
    if value is None or (isinstance(value, (int, str)) and not isinstance(value, bool)):
        return value
    raise SettingsError(f"{key} must be an index, a name or null")


class SettingsStore:
    """JSON file store for ClientSettings."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path = Path(path).expanduser()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> ClientSettings:
        """
        Read settings, returning defaults if the file does not exist.

        Raises:
            SettingsError if the file is unreadable or malformed.
        """
        if not self._path.exists():
            return ClientSettings()

        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            log_event({
                "event_type": "SETTINGS_LOAD_FAILED",
                "path": str(self._path),
                "error": str(e),
            })
            raise SettingsError(f"cannot read {self._path}: {e}") from e

        if not isinstance(raw, dict):
            raise SettingsError(f"{self._path} does not contain a JSON object")
        return ClientSettings.from_dict(raw)

    def save(self, settings: ClientSettings) -> None:
        """Write settings atomically (temp file + rename)."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(settings.to_dict(), indent=2), encoding="utf-8")
        os.replace(tmp, self._path)
        log_event({
            "event_type": "SETTINGS_SAVED",
            "path": str(self._path),
        })

    def update(self, **changes: Any) -> ClientSettings:
        """Load, apply field changes, save and return the new settings."""
        settings = replace(self.load(), **changes)
        self.save(settings)
        return settings
