"""Named extension points used by both schedulers.

Each scheduler consults a :class:`HookRegistry` before performing an operation
so that other components (the routers, the manifest cache, the interval
policy) can observe, replace or short-circuit it.  Callbacks run in ascending
priority order; callbacks sharing a priority run in registration order.
"""

from __future__ import annotations

import itertools
from threading import RLock
from typing import Any, Callable, Dict, List, Optional, Tuple


# Polling scheduler (scheduler A)
PRE_SCHEDULE_TASK = "pre_schedule_task"
PRE_RESCHEDULE_TASK = "pre_reschedule_task"
PRE_UNSCHEDULE_TASK = "pre_unschedule_task"
PRE_CLEAR_SCHEDULED_HOOK = "pre_clear_scheduled_hook"
PRE_UNSCHEDULE_HOOK = "pre_unschedule_hook"
PRE_GET_SCHEDULED_TASK = "pre_get_scheduled_task"
SCHEDULE_TASK = "schedule_task"
CRON_SCHEDULES = "cron_schedules"
PRE_READ_MANIFEST = "pre_read_manifest"
PRE_WRITE_MANIFEST = "pre_write_manifest"
RESCHEDULE_ERROR = "reschedule_task_error"
UNSCHEDULE_ERROR = "unschedule_task_error"

# Action queue (scheduler B)
PRE_SCHEDULE_SINGLE_ACTION = "pre_schedule_single_action"
PRE_SCHEDULE_RECURRING_ACTION = "pre_schedule_recurring_action"
PRE_ENQUEUE_ASYNC_ACTION = "pre_enqueue_async_action"
ACTION_FAILED = "action_failed"
ACTION_SCHEDULE_NEXT_FAILED = "action_schedule_next_failed"

DEFAULT_PRIORITY = 10

_Entry = Tuple[int, int, Callable[..., Any]]


class HookRegistry:
    """Thread-safe table of filters and actions keyed by extension point."""

    def __init__(self) -> None:
        self._callbacks: Dict[str, List[_Entry]] = {}
        self._counter = itertools.count()
        self._lock = RLock()

    def add_filter(
        self, name: str, callback: Callable[..., Any], priority: int = DEFAULT_PRIORITY
    ) -> None:
        """Register ``callback`` on ``name``."""

        with self._lock:
            entries = self._callbacks.setdefault(name, [])
            entries.append((priority, next(self._counter), callback))
            entries.sort(key=lambda entry: (entry[0], entry[1]))

    add_action = add_filter

    def remove_filter(self, name: str, callback: Callable[..., Any]) -> bool:
        """Remove ``callback`` from ``name``; return ``True`` if it was present."""

        with self._lock:
            entries = self._callbacks.get(name, [])
            kept = [entry for entry in entries if entry[2] != callback]
            if len(kept) == len(entries):
                return False
            if kept:
                self._callbacks[name] = kept
            else:
                self._callbacks.pop(name, None)
            return True

    remove_action = remove_filter

    def has_filter(
        self, name: str, callback: Optional[Callable[..., Any]] = None
    ) -> bool:
        with self._lock:
            entries = self._callbacks.get(name, [])
            if callback is None:
                return bool(entries)
            return any(entry[2] == callback for entry in entries)

    has_action = has_filter

    def _snapshot(self, name: str) -> List[Callable[..., Any]]:
        with self._lock:
            return [entry[2] for entry in self._callbacks.get(name, [])]

    def apply_filters(self, name: str, value: Any, *args: Any) -> Any:
        """Thread ``value`` through every filter registered on ``name``."""

        for callback in self._snapshot(name):
            value = callback(value, *args)
        return value

    def do_action(self, name: str, *args: Any) -> int:
        """Call every action registered on ``name``; return how many ran."""

        callbacks = self._snapshot(name)
        for callback in callbacks:
            callback(*args)
        return len(callbacks)

    def clear(self, name: str | None = None) -> None:
        with self._lock:
            if name is None:
                self._callbacks.clear()
            else:
                self._callbacks.pop(name, None)
