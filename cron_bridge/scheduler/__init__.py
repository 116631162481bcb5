"""Trigger-on-visit polling scheduler.

Every pending task lives in a single manifest,
``{timestamp: {hook: {args_signature: entry}}}``, which is read and rewritten
as a whole on each change.  Nothing runs on its own: something external
(a request, the CLI, a system cron) calls :meth:`PollingScheduler.run_due`.

Each public operation first consults its ``pre_*`` extension point on the
:class:`~cron_bridge.hooks.HookRegistry`; any non-``None`` value returned by
an interceptor is used as the result and the native operation is skipped.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, Iterable, List, Optional

from .. import hooks as hook_names
from .. import lifecycle
from ..errors import BridgeError, CatalogError
from ..hooks import HookRegistry
from ..models import (
    CatalogEntry,
    Manifest,
    NamedInterval,
    ScheduledTask,
    args_signature,
)
from ..options import OptionStore


logger = logging.getLogger(__name__)

MANIFEST_OPTION = "cron"

DEFAULT_CATALOG = (
    CatalogEntry("hourly", 3600, "Once Hourly"),
    CatalogEntry("twicedaily", 43200, "Twice Daily"),
    CatalogEntry("daily", 86400, "Once Daily"),
    CatalogEntry("weekly", 604800, "Once Weekly"),
)


class PollingScheduler:
    """Manifest based scheduler ("scheduler A")."""

    def __init__(
        self,
        hooks: HookRegistry,
        options: OptionStore,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.hooks = hooks
        self.options = options
        self._clock = clock
        self._lock = threading.RLock()

    def now(self) -> int:
        return int(self._clock())

    # ------------------------------------------------------------------
    # Manifest persistence
    def read_manifest(self) -> Manifest:
        manifest = self.hooks.apply_filters(hook_names.PRE_READ_MANIFEST, None)
        if manifest is None:
            manifest = self.options.get(MANIFEST_OPTION)
        if not isinstance(manifest, dict):
            return {}
        return {
            int(timestamp): events
            for timestamp, events in manifest.items()
            if isinstance(events, dict)
        }

    def write_manifest(self, manifest: Manifest) -> bool:
        """Persist ``manifest``; ``False`` means nothing was written."""

        ordered = {ts: manifest[ts] for ts in sorted(manifest) if manifest[ts]}
        result = self.hooks.apply_filters(hook_names.PRE_WRITE_MANIFEST, None, ordered)
        if result is not None:
            return bool(result)
        return self.options.update(MANIFEST_OPTION, ordered)

    # ------------------------------------------------------------------
    # Catalog
    def list_catalog(self) -> Dict[str, CatalogEntry]:
        """Return every named interval, including those added by filters."""

        catalog = {entry.name: entry for entry in DEFAULT_CATALOG}
        return self.hooks.apply_filters(hook_names.CRON_SCHEDULES, catalog)

    def resolve_schedule(self, name: str) -> NamedInterval:
        entry = self.list_catalog().get(name)
        if entry is None:
            raise CatalogError(f"Unknown schedule: {name}")
        return NamedInterval(entry.name, entry.interval_seconds)

    def _require_schedule(self, task: ScheduledTask) -> None:
        if not isinstance(task.recurrence, NamedInterval):
            raise CatalogError(
                f"Recurring task '{task.hook}' must use a named catalog interval"
            )
        if task.schedule not in self.list_catalog():
            raise CatalogError(f"Unknown schedule: {task.schedule}")

    # ------------------------------------------------------------------
    # Scheduling
    def schedule_single(
        self, timestamp: int, hook: str, args: Iterable[Any] = ()
    ) -> Any:
        return self.schedule_task(ScheduledTask(hook, tuple(args), timestamp))

    def schedule_recurring(
        self, timestamp: int, schedule: str, hook: str, args: Iterable[Any] = ()
    ) -> Any:
        recurrence = self.resolve_schedule(schedule)
        return self.schedule_task(ScheduledTask(hook, tuple(args), timestamp, recurrence))

    def schedule_task(self, task: ScheduledTask) -> Any:
        """Add ``task`` to the manifest.

        Returns ``True`` once committed, ``False`` if a filter discarded the
        task, or whatever an interceptor returned in place of the native
        operation.
        """

        if task.is_recurring:
            self._require_schedule(task)
        result = self.hooks.apply_filters(hook_names.PRE_SCHEDULE_TASK, None, task)
        if result is not None:
            return result
        task = self.hooks.apply_filters(hook_names.SCHEDULE_TASK, task)
        if task is None:
            return False
        with self._lock:
            manifest = self.read_manifest()
            events = manifest.setdefault(task.timestamp, {}).setdefault(task.hook, {})
            events[task.signature] = task.to_entry()
            self.write_manifest(manifest)
        return True

    def reschedule_task(self, task: ScheduledTask) -> Any:
        """Schedule the next occurrence of a recurring ``task``."""

        if not task.is_recurring:
            raise CatalogError(f"Task '{task.hook}' is not recurring")
        result = self.hooks.apply_filters(hook_names.PRE_RESCHEDULE_TASK, None, task)
        if result is not None:
            return result

        interval = task.interval or 0
        entry = self.list_catalog().get(task.schedule or "")
        if entry is not None:
            interval = entry.interval_seconds
        now = self.now()
        if task.timestamp >= now:
            timestamp = now + interval
        else:
            timestamp = now + (interval - ((now - task.timestamp) % interval))
        return self.schedule_task(task.with_interval(interval, timestamp))

    # ------------------------------------------------------------------
    # Removal
    def cancel_task(self, timestamp: int, hook: str, args: Iterable[Any] = ()) -> Any:
        """Remove the single occurrence of ``hook``/``args`` at ``timestamp``."""

        args = tuple(args)
        result = self.hooks.apply_filters(
            hook_names.PRE_UNSCHEDULE_TASK, None, timestamp, hook, args
        )
        if result is not None:
            return result
        signature = args_signature(args)
        with self._lock:
            manifest = self.read_manifest()
            events = manifest.get(int(timestamp), {}).get(hook, {})
            if signature not in events:
                return False
            del events[signature]
            self._prune(manifest, int(timestamp), hook)
            self.write_manifest(manifest)
        return True

    def clear_scheduled_hook(self, hook: str, args: Iterable[Any] = ()) -> Any:
        """Remove every occurrence of ``hook`` with exactly ``args``."""

        args = tuple(args)
        result = self.hooks.apply_filters(
            hook_names.PRE_CLEAR_SCHEDULED_HOOK, None, hook, args
        )
        if result is not None:
            return result
        return self._remove(hook, args_signature(args))

    def unschedule_hook(self, hook: str) -> Any:
        """Remove every occurrence of ``hook`` whatever its arguments."""

        result = self.hooks.apply_filters(hook_names.PRE_UNSCHEDULE_HOOK, None, hook)
        if result is not None:
            return result
        return self._remove(hook, None)

    def _remove(self, hook: str, signature: Optional[str]) -> int:
        removed = 0
        with self._lock:
            manifest = self.read_manifest()
            for timestamp in list(manifest):
                events = manifest[timestamp].get(hook)
                if not events:
                    continue
                for sig in list(events):
                    if signature is None or sig == signature:
                        del events[sig]
                        removed += 1
                self._prune(manifest, timestamp, hook)
            if removed:
                self.write_manifest(manifest)
        return removed

    @staticmethod
    def _prune(manifest: Manifest, timestamp: int, hook: str) -> None:
        hooks_at = manifest.get(timestamp)
        if hooks_at is None:
            return
        if not hooks_at.get(hook):
            hooks_at.pop(hook, None)
        if not hooks_at:
            manifest.pop(timestamp, None)

    # ------------------------------------------------------------------
    # Queries
    def list_tasks(self) -> List[ScheduledTask]:
        manifest = self.read_manifest()
        catalog: Optional[Dict[str, CatalogEntry]] = None
        tasks: List[ScheduledTask] = []
        for timestamp in sorted(manifest):
            for hook, events in manifest[timestamp].items():
                for entry in events.values():
                    needs_catalog = entry.get("schedule") and entry.get("interval") is None
                    if needs_catalog and catalog is None:
                        catalog = self.list_catalog()
                    try:
                        task = ScheduledTask.from_entry(timestamp, hook, entry, catalog)
                    except CatalogError as exc:
                        logger.warning("Skipping task '%s' at %s: %s", hook, timestamp, exc)
                        continue
                    tasks.append(task)
        return tasks

    def query_next(
        self,
        hook: str,
        args: Optional[Iterable[Any]] = None,
        timestamp: Optional[int] = None,
    ) -> Optional[ScheduledTask]:
        """Return the earliest task for ``hook``.

        ``args`` narrows the match when given; ``timestamp`` excludes tasks
        scheduled before it.
        """

        args = None if args is None else tuple(args)
        result = self.hooks.apply_filters(
            hook_names.PRE_GET_SCHEDULED_TASK, None, hook, args, timestamp
        )
        if result is not None:
            return result or None
        signature = None if args is None else args_signature(args)
        for task in self.list_tasks():
            if task.hook != hook:
                continue
            if signature is not None and task.signature != signature:
                continue
            if timestamp is not None and task.timestamp < timestamp:
                continue
            return task
        return None

    def due_tasks(self, now: Optional[int] = None) -> List[ScheduledTask]:
        now = self.now() if now is None else int(now)
        return [task for task in self.list_tasks() if task.timestamp <= now]

    # ------------------------------------------------------------------
    # Execution
    def run_due(self, now: Optional[int] = None) -> int:
        """Run every task whose time has come; return how many ran.

        All manifest writes made while running share one batch cycle.
        """

        ran = 0
        with lifecycle.batch_cycle():
            for task in self.due_tasks(now):
                if task.is_recurring:
                    try:
                        outcome = self.reschedule_task(task)
                    except BridgeError as exc:
                        outcome = exc
                    if outcome is False or isinstance(outcome, Exception):
                        self.hooks.do_action(
                            hook_names.RESCHEDULE_ERROR, outcome, task.hook, task
                        )
                try:
                    removed = self.cancel_task(task.timestamp, task.hook, task.args)
                except BridgeError as exc:
                    removed = exc
                if removed is False or isinstance(removed, Exception):
                    self.hooks.do_action(
                        hook_names.UNSCHEDULE_ERROR, removed, task.hook, task
                    )
                with lifecycle.trigger_context(task.hook):
                    try:
                        self.hooks.do_action(task.hook, *task.args)
                    except Exception:
                        logger.exception("Error running scheduled task %s", task.hook)
                ran += 1
        return ran
