from __future__ import annotations

import copy
import os
from pathlib import Path
from threading import RLock
from typing import Any, Dict, Mapping

from filelock import FileLock

import yaml


class OptionStore:
    """General purpose key/value store of the host, persisted as YAML.

    The polling scheduler keeps its whole manifest in the ``cron`` option
    unless the manifest cache takes over.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        if path is None:
            path = os.getenv("CRON_BRIDGE_OPTIONS_PATH")
        if path is None:
            from .config import default_home

            path = default_home() / "options.yml"
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = FileLock(str(self.path) + ".lock")
        self._mutex = RLock()
        self._data: Dict[str, Any] = self._load()

    def _load(self) -> Dict[str, Any]:
        if self.path.exists():
            with open(self.path, "r") as fh:
                data = yaml.safe_load(fh) or {}
                if isinstance(data, dict):
                    return data
        return {}

    def _save(self) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w") as fh:
            yaml.safe_dump(self._data, fh)
        os.replace(tmp, self.path)

    def reload(self) -> None:
        with self._mutex, self._lock:
            self._data = self._load()

    def get(self, name: str, default: Any = None) -> Any:
        with self._mutex:
            if name not in self._data:
                return default
            return copy.deepcopy(self._data[name])

    def update(self, name: str, value: Any) -> bool:
        """Store ``value`` under ``name``; return ``False`` if nothing changed.

        Only ``name`` is written: other options are taken from the file as it
        is under the lock, so writes made by other processes survive.
        """

        with self._mutex, self._lock:
            self._data = self._load()
            if name in self._data and self._data[name] == value:
                return False
            self._data[name] = copy.deepcopy(value)
            self._save()
            return True

    def delete(self, name: str) -> bool:
        with self._mutex, self._lock:
            self._data = self._load()
            if name not in self._data:
                return False
            del self._data[name]
            self._save()
            return True

    def merge(self, name: str, entries: Mapping[str, Any]) -> Dict[str, Any]:
        """Merge ``entries`` into the mapping option ``name``.

        The file is re-read under the lock first so entries written by other
        processes since this store was loaded are kept.
        """

        with self._mutex, self._lock:
            on_disk = self._load().get(name)
            current: Dict[str, Any] = dict(on_disk) if isinstance(on_disk, dict) else {}
            existing = self._data.get(name)
            if isinstance(existing, dict):
                for key, value in existing.items():
                    current.setdefault(key, value)
            current.update(copy.deepcopy(dict(entries)))
            self._data[name] = current
            self._save()
            return copy.deepcopy(current)
