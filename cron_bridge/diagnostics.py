"""Optional logging observers for both schedulers."""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Callable, List, Tuple

from . import hooks as hook_names
from .hooks import HookRegistry


logger = logging.getLogger(__name__)

# Runs after every other filter so the logged value is the final one.
LOWEST_PRIORITY = sys.maxsize

SCHEDULING_FILTERS = (
    hook_names.PRE_SCHEDULE_TASK,
    hook_names.PRE_RESCHEDULE_TASK,
    hook_names.PRE_UNSCHEDULE_TASK,
    hook_names.PRE_CLEAR_SCHEDULED_HOOK,
    hook_names.PRE_UNSCHEDULE_HOOK,
    hook_names.PRE_GET_SCHEDULED_TASK,
    hook_names.PRE_SCHEDULE_SINGLE_ACTION,
    hook_names.PRE_SCHEDULE_RECURRING_ACTION,
    hook_names.PRE_ENQUEUE_ASYNC_ACTION,
)


class Diagnostics:
    """Register error and debug observers on a :class:`HookRegistry`."""

    def __init__(self, hooks: HookRegistry) -> None:
        self.hooks = hooks
        self._registered: List[Tuple[str, Callable[..., Any]]] = []

    def watch_errors(self) -> None:
        """Log scheduling failures reported by either scheduler."""

        self._register(hook_names.RESCHEDULE_ERROR, self.reschedule_failed)
        self._register(hook_names.UNSCHEDULE_ERROR, self.unschedule_failed)
        self._register(hook_names.ACTION_FAILED, self.action_failed)
        self._register(hook_names.ACTION_SCHEDULE_NEXT_FAILED, self.schedule_next_failed)

    def watch_scheduling(self) -> None:
        """Log every scheduling pre-filter at DEBUG level."""

        for name in SCHEDULING_FILTERS:
            self._register(name, self._observer(name), LOWEST_PRIORITY)

    def detach(self) -> None:
        for name, callback in self._registered:
            self.hooks.remove_filter(name, callback)
        self._registered.clear()

    def _register(
        self, name: str, callback: Callable[..., Any], priority: int = hook_names.DEFAULT_PRIORITY
    ) -> None:
        self.hooks.add_filter(name, callback, priority)
        self._registered.append((name, callback))

    def _observer(self, name: str) -> Callable[..., Any]:
        def observe(result: Any, *args: Any) -> Any:
            stamp = datetime.now(timezone.utc).isoformat()
            logger.debug("%s %s result=%r args=%r", stamp, name, result, args)
            return result

        return observe

    # ------------------------------------------------------------------
    # Error observers
    def reschedule_failed(self, error: Any, hook: str, task: Any) -> None:
        logger.error("Failed to reschedule %s: %s (%r)", hook, error, task)

    def unschedule_failed(self, error: Any, hook: str, task: Any) -> None:
        logger.error("Failed to unschedule %s: %s (%r)", hook, error, task)

    def action_failed(self, action_id: int, error: Exception, action: Any) -> None:
        logger.error("Action %s (%s) failed: %s", action_id, action.hook, error)

    def schedule_next_failed(self, action_id: int, error: Exception, action: Any) -> None:
        logger.error(
            "Could not schedule the next instance of action %s (%s): %s",
            action_id,
            action.hook,
            error,
        )
