from __future__ import annotations

import json
from pathlib import Path

from buildcache.runtime import atomic_write_text


class PhaseState:
    """String key-value store shared by the phases of one pipeline run.

    Every phase runs as its own process, so each ``save`` is written through
    to disk immediately and every ``get`` re-reads the file.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return {}
        if not isinstance(raw, dict):
            return {}
        return {str(key): str(value) for key, value in raw.items()}

    def save(self, key: str, value: object) -> None:
        data = self._load()
        if isinstance(value, bool):
            value = "true" if value else "false"
        data[key] = "" if value is None else str(value)
        atomic_write_text(self.path, json.dumps(data, indent=2, sort_keys=True) + "\n")

    def delete(self, *keys: str) -> None:
        data = self._load()
        if not any(key in data for key in keys):
            return
        for key in keys:
            data.pop(key, None)
        atomic_write_text(self.path, json.dumps(data, indent=2, sort_keys=True) + "\n")

    def get(self, key: str, default: str = "") -> str:
        return self._load().get(key, default)

    def as_dict(self) -> dict[str, str]:
        return self._load()
