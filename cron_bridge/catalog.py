"""Map raw queue intervals onto named polling-scheduler intervals."""

from __future__ import annotations

import logging
from threading import Lock
from typing import Callable, Dict, Mapping

from .models import CatalogEntry, validate_interval
from .options import OptionStore


logger = logging.getLogger(__name__)

DISCOVERED_OPTION = "discovered_schedules"


def interval_name(seconds: int) -> str:
    return f"as_every_{seconds}_seconds"


def interval_label(seconds: int) -> str:
    return f"Queue scheduler, every {seconds} seconds"


class CatalogReconciler:
    """Find or create the catalog name for an interval in seconds.

    ``catalog`` returns the full current catalog (built-in, static and
    discovered entries).  New entries are persisted in the option store and
    are never removed, since scheduled tasks keep referring to them by name.
    """

    def __init__(
        self,
        catalog: Callable[[], Mapping[str, CatalogEntry]],
        options: OptionStore,
    ) -> None:
        self._catalog = catalog
        self.options = options
        self._lock = Lock()

    def discovered(self) -> Dict[str, CatalogEntry]:
        """Entries created by earlier reconciliations, as stored."""

        stored = self.options.get(DISCOVERED_OPTION) or {}
        entries: Dict[str, CatalogEntry] = {}
        for name, data in stored.items():
            if isinstance(data, dict):
                entries[name] = CatalogEntry.from_dict(name, data)
        return entries

    def find(self, interval_seconds: int) -> str | None:
        seconds = validate_interval(interval_seconds)
        # sorted() is stable: equal intervals keep catalog order
        for entry in sorted(self._catalog().values(), key=lambda e: e.interval_seconds):
            if entry.interval_seconds == seconds:
                return entry.name
        return None

    def find_or_create(self, interval_seconds: int) -> str:
        seconds = validate_interval(interval_seconds)
        with self._lock:
            catalog = self._catalog()
            name = self.find(seconds)
            if name is not None:
                return name
            name = self._free_name(seconds, catalog)
            entry = CatalogEntry(name, seconds, interval_label(seconds))
            self.options.merge(DISCOVERED_OPTION, {entry.name: entry.to_dict()})
        logger.info("Added schedule %s (%d seconds)", entry.name, seconds)
        return entry.name

    @staticmethod
    def _free_name(seconds: int, catalog: Mapping[str, CatalogEntry]) -> str:
        # Discovered entries override by name; the new name must be unused.
        base = interval_name(seconds)
        name, suffix = base, 2
        while name in catalog:
            logger.warning(
                "Schedule name %s is taken by a %d second interval",
                name,
                catalog[name].interval_seconds,
            )
            name = f"{base}_{suffix}"
            suffix += 1
        return name
