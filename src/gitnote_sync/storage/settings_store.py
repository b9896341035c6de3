"""Persistent dotted-key settings store backed by a JSON file.

``get("github.owner")`` walks nested dicts; ``set`` creates intermediate
levels as needed. Each mutation is written to disk immediately via an
atomic temp-file rename.
"""
import json
import logging
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Union

logger = logging.getLogger(__name__)

_MISSING = object()


class SettingsStore:
    """Key-value settings with dotted keys."""

    def __init__(self, file_path: Union[str, Path]):
        self._file_path = Path(file_path)
        self._lock = Lock()
        self._data: Dict[str, Any] = {}
        self._load()

    @property
    def file_path(self) -> Path:
        return self._file_path

    def get(self, key: str, default: Any = None) -> Any:
        """Return the value at ``key`` or ``default`` if any level is absent."""
        with self._lock:
            value: Any = self._data
            for part in key.split("."):
                if not isinstance(value, dict):
                    return default
                value = value.get(part, _MISSING)
                if value is _MISSING:
                    return default
            return value

    def set(self, key: str, value: Any) -> None:
        """Store ``value`` at ``key`` and persist."""
        parts = key.split(".")
        with self._lock:
            node = self._data
            for part in parts[:-1]:
                if not isinstance(node.get(part), dict):
                    node[part] = {}
                node = node[part]
            node[parts[-1]] = value
            self._save_unlocked()

    def delete(self, key: str) -> None:
        """Remove ``key`` if present and persist."""
        parts = key.split(".")
        with self._lock:
            node = self._data
            for part in parts[:-1]:
                node = node.get(part)
                if not isinstance(node, dict):
                    return
            if parts[-1] in node:
                del node[parts[-1]]
                self._save_unlocked()

    def snapshot(self) -> Dict[str, Any]:
        """Deep copy of all settings."""
        with self._lock:
            return json.loads(json.dumps(self._data))

    def _load(self) -> None:
        if not self._file_path.exists():
            return
        try:
            with open(self._file_path, "r", encoding="utf-8") as f:
                data = json.load(f)
            if isinstance(data, dict):
                self._data = data
            else:
                logger.warning("Ignoring non-object settings file %s", self._file_path)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Failed to load settings from %s: %s", self._file_path, e)
            self._data = {}

    def _save_unlocked(self) -> None:
        try:
            self._file_path.parent.mkdir(parents=True, exist_ok=True)
            temp_file = self._file_path.with_suffix(".tmp")
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2, ensure_ascii=False)
            temp_file.replace(self._file_path)
        except (OSError, TypeError) as e:
            logger.error("Failed to save settings to %s: %s", self._file_path, e)
