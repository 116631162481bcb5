from __future__ import annotations

import time
from typing import Any, Callable, Dict, Mapping, Optional

from . import hooks as hook_names
from .hooks import HookRegistry
from .models import CatalogEntry, ScheduledTask


def parse_static_entries(intervals: Mapping[str, Any]) -> Dict[str, CatalogEntry]:
    """Build catalog entries from the ``schedule_intervals`` configuration.

    Each value is either ``{"interval": seconds, "display": label}`` or a
    bare number of seconds.
    """

    entries: Dict[str, CatalogEntry] = {}
    for name, data in (intervals or {}).items():
        if isinstance(data, dict):
            entries[name] = CatalogEntry.from_dict(name, data)
        else:
            entries[name] = CatalogEntry(name, data, name)
    return entries


class IntervalPolicy:
    """Minimum interval for recurring tasks and extra catalog entries."""

    def __init__(
        self,
        minimum_interval: Optional[int] = None,
        static_entries: Optional[Mapping[str, CatalogEntry]] = None,
        discovered: Optional[Callable[[], Mapping[str, CatalogEntry]]] = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.minimum_interval = minimum_interval or 0
        self.static_entries = dict(static_entries or {})
        self._discovered = discovered
        self._clock = clock

    def enforce_floor(self, task: Optional[ScheduledTask]) -> Optional[ScheduledTask]:
        if task is None or not task.is_recurring or not self.minimum_interval:
            return task
        if (task.interval or 0) >= self.minimum_interval:
            return task
        floor = self.minimum_interval
        return task.with_interval(floor, int(self._clock()) + floor)

    def extend_catalog(self, catalog: Mapping[str, CatalogEntry]) -> Dict[str, CatalogEntry]:
        merged = dict(catalog)
        merged.update(self.static_entries)
        if self._discovered is not None:
            merged.update(self._discovered())
        return merged

    def attach(self, hooks: HookRegistry, priority: int = 1000) -> None:
        hooks.add_filter(hook_names.SCHEDULE_TASK, self.enforce_floor, priority)
        hooks.add_filter(hook_names.CRON_SCHEDULES, self.extend_catalog, priority)

    def detach(self, hooks: HookRegistry) -> None:
        hooks.remove_filter(hook_names.SCHEDULE_TASK, self.enforce_floor)
        hooks.remove_filter(hook_names.CRON_SCHEDULES, self.extend_catalog)
