"""Queue based background action scheduler ("scheduler B").

Actions are stored as pending rows carrying an APScheduler trigger
(:class:`~apscheduler.triggers.date.DateTrigger` for one-shot actions,
:class:`~apscheduler.triggers.interval.IntervalTrigger` for recurring ones).
The queue does not run by itself: its runner is a hook on the polling
scheduler (:data:`QUEUE_RUNNER_HOOK`), so every queue run is started by a
polling-scheduler trigger.
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Iterable, List, Optional, Tuple, Union

from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from .. import hooks as hook_names
from ..hooks import HookRegistry
from ..models import CatalogEntry, validate_interval

if TYPE_CHECKING:  # pragma: no cover - used for type hints only
    from zoneinfo import ZoneInfo
    from . import PollingScheduler


logger = logging.getLogger(__name__)

QUEUE_RUNNER_HOOK = "action_queue_run"
RUNNER_SCHEDULE = CatalogEntry("every_minute", 60, "Every minute")


class ActionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "in-progress"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELED = "canceled"


Trigger = Union[DateTrigger, IntervalTrigger]


@dataclass
class QueuedAction:
    """A row of the action queue."""

    action_id: int
    hook: str
    args: Tuple[Any, ...]
    trigger: Trigger
    scheduled_date: datetime
    group: str = ""
    status: ActionStatus = ActionStatus.PENDING
    last_attempt: Optional[datetime] = None

    @property
    def timestamp(self) -> int:
        return int(self.scheduled_date.timestamp())

    @property
    def is_recurring(self) -> bool:
        return isinstance(self.trigger, IntervalTrigger)

    @property
    def recurrence(self) -> Optional[int]:
        """Interval in seconds for recurring actions."""

        if isinstance(self.trigger, IntervalTrigger):
            return int(self.trigger.interval.total_seconds())
        return None

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.action_id,
            "hook": self.hook,
            "args": list(self.args),
            "timestamp": self.timestamp,
            "recurrence": self.recurrence,
            "group": self.group,
            "status": self.status.value,
        }


class ActionQueue:
    """In-process action queue.

    Parameters
    ----------
    hooks:
        Registry holding both the queue's ``pre_*`` extension points and the
        handlers actions dispatch to.
    time_limit:
        Seconds a single :meth:`run_queue` call may spend processing actions.
    retention_period:
        Age in seconds after which finished actions are purged by
        :meth:`cleanup`.
    cleanup_batch_size:
        Maximum number of actions purged per :meth:`cleanup` call.
    """

    def __init__(
        self,
        hooks: HookRegistry,
        *,
        timezone: str | ZoneInfo = "UTC",
        time_limit: int = 30,
        retention_period: int = 30 * 86400,
        cleanup_batch_size: int = 20,
        cleanup_statuses: Iterable[ActionStatus] = (
            ActionStatus.COMPLETE,
            ActionStatus.CANCELED,
        ),
        clock: Callable[[], float] = time.time,
    ) -> None:
        from zoneinfo import ZoneInfo

        self.hooks = hooks
        self.timezone = ZoneInfo(timezone) if isinstance(timezone, str) else timezone
        self.time_limit = time_limit
        self.retention_period = retention_period
        self.cleanup_batch_size = cleanup_batch_size
        self.cleanup_statuses = tuple(cleanup_statuses)
        self._clock = clock
        self._actions: dict[int, QueuedAction] = {}
        self._ids = itertools.count(1)
        self._lock = threading.RLock()

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=self.timezone)

    def _to_datetime(self, timestamp: int) -> datetime:
        return datetime.fromtimestamp(int(timestamp), tz=self.timezone)

    def _store(self, hook: str, args: Iterable[Any], trigger: Trigger, group: str) -> int:
        # The first occurrence is the requested time even when it has passed.
        if isinstance(trigger, IntervalTrigger):
            first = trigger.start_date
        else:
            first = trigger.run_date
        with self._lock:
            action = QueuedAction(
                action_id=next(self._ids),
                hook=hook,
                args=tuple(args),
                trigger=trigger,
                scheduled_date=first,
                group=group,
            )
            self._actions[action.action_id] = action
        return action.action_id

    # ------------------------------------------------------------------
    # Scheduling
    def create_single_action(
        self, timestamp: int, hook: str, args: Iterable[Any] = (), group: str = ""
    ) -> Any:
        args = tuple(args)
        result = self.hooks.apply_filters(
            hook_names.PRE_SCHEDULE_SINGLE_ACTION, None, timestamp, hook, args, group
        )
        if result is not None:
            return result
        trigger = DateTrigger(run_date=self._to_datetime(timestamp), timezone=self.timezone)
        return self._store(hook, args, trigger, group)

    def create_recurring_action(
        self,
        timestamp: int,
        interval_seconds: int,
        hook: str,
        args: Iterable[Any] = (),
        group: str = "",
    ) -> Any:
        interval_seconds = validate_interval(interval_seconds)
        args = tuple(args)
        result = self.hooks.apply_filters(
            hook_names.PRE_SCHEDULE_RECURRING_ACTION,
            None,
            timestamp,
            interval_seconds,
            hook,
            args,
            group,
        )
        if result is not None:
            return result
        trigger = IntervalTrigger(
            seconds=interval_seconds,
            start_date=self._to_datetime(timestamp),
            timezone=self.timezone,
        )
        return self._store(hook, args, trigger, group)

    def enqueue_async_action(
        self, hook: str, args: Iterable[Any] = (), group: str = ""
    ) -> Any:
        args = tuple(args)
        result = self.hooks.apply_filters(
            hook_names.PRE_ENQUEUE_ASYNC_ACTION, None, hook, args, group
        )
        if result is not None:
            return result
        trigger = DateTrigger(run_date=self._now(), timezone=self.timezone)
        return self._store(hook, args, trigger, group)

    # ------------------------------------------------------------------
    # Queries
    def query_pending_actions(
        self,
        hook: Optional[str] = None,
        args: Optional[Iterable[Any]] = None,
        *,
        date: Optional[int] = None,
        date_compare: str = ">=",
        group: Optional[str] = None,
        status: Optional[ActionStatus] = ActionStatus.PENDING,
        per_page: Optional[int] = None,
    ) -> List[QueuedAction]:
        """Return matching actions ordered by scheduled date.

        ``args`` of ``None`` matches any arguments.
        """

        if date_compare not in (">=", "<=", "="):
            raise ValueError(f"Unsupported date comparison: {date_compare}")
        args = None if args is None else tuple(args)
        with self._lock:
            actions = list(self._actions.values())
        matches = []
        for action in actions:
            if status is not None and action.status is not status:
                continue
            if hook is not None and action.hook != hook:
                continue
            if args is not None and action.args != args:
                continue
            if group is not None and action.group != group:
                continue
            if date is not None:
                ts = action.timestamp
                if date_compare == ">=" and ts < date:
                    continue
                if date_compare == "<=" and ts > date:
                    continue
                if date_compare == "=" and ts != date:
                    continue
            matches.append(action)
        matches.sort(key=lambda a: (a.scheduled_date, a.action_id))
        return matches[:per_page] if per_page else matches

    def next_scheduled(self, hook: str, args: Optional[Iterable[Any]] = None) -> Optional[int]:
        found = self.query_pending_actions(hook, args, per_page=1)
        return found[0].timestamp if found else None

    def get_action(self, action_id: int) -> Optional[QueuedAction]:
        with self._lock:
            return self._actions.get(action_id)

    # ------------------------------------------------------------------
    # Cancellation
    def cancel_action(
        self, hook: str, args: Optional[Iterable[Any]] = None, group: Optional[str] = None
    ) -> Optional[int]:
        """Cancel the next pending action for ``hook``; return its id."""

        with self._lock:
            found = self.query_pending_actions(hook, args, group=group, per_page=1)
            if not found:
                return None
            found[0].status = ActionStatus.CANCELED
            found[0].last_attempt = self._now()
            return found[0].action_id

    def cancel_all_actions(
        self, hook: str, args: Optional[Iterable[Any]] = None, group: Optional[str] = None
    ) -> int:
        with self._lock:
            found = self.query_pending_actions(hook, args, group=group)
            now = self._now()
            for action in found:
                action.status = ActionStatus.CANCELED
                action.last_attempt = now
        return len(found)

    # ------------------------------------------------------------------
    # Execution
    def run_queue(self) -> int:
        """Process due actions until none remain or the time limit is hit."""

        started = time.monotonic()
        now = self._now()
        processed = 0
        for action in self.query_pending_actions(date=int(now.timestamp()), date_compare="<="):
            if self.time_limit and time.monotonic() - started >= self.time_limit:
                logger.debug("Queue run stopped after %d actions (time limit)", processed)
                break
            self._process(action, now)
            processed += 1
        self.cleanup()
        return processed

    def _process(self, action: QueuedAction, now: datetime) -> None:
        with self._lock:
            if action.status is not ActionStatus.PENDING:
                return
            action.status = ActionStatus.RUNNING
            action.last_attempt = now
        if action.is_recurring:
            self._schedule_next(action, now)
        try:
            self.hooks.do_action(action.hook, *action.args)
        except Exception as exc:
            action.status = ActionStatus.FAILED
            logger.exception("Action %s (%s) failed", action.action_id, action.hook)
            self.hooks.do_action(hook_names.ACTION_FAILED, action.action_id, exc, action)
        else:
            action.status = ActionStatus.COMPLETE

    def _schedule_next(self, action: QueuedAction, now: datetime) -> None:
        try:
            next_date = action.trigger.get_next_fire_time(action.scheduled_date, now)
            while next_date is not None and next_date <= now:
                next_date = action.trigger.get_next_fire_time(next_date, now)
            if next_date is None:
                return
            with self._lock:
                follow_up = QueuedAction(
                    action_id=next(self._ids),
                    hook=action.hook,
                    args=action.args,
                    trigger=action.trigger,
                    scheduled_date=next_date,
                    group=action.group,
                )
                self._actions[follow_up.action_id] = follow_up
        except Exception as exc:
            logger.exception("Unable to schedule next instance of %s", action.hook)
            self.hooks.do_action(
                hook_names.ACTION_SCHEDULE_NEXT_FAILED, action.action_id, exc, action
            )

    def cleanup(self) -> int:
        """Purge finished actions older than the retention period."""

        cutoff = self._now() - timedelta(seconds=self.retention_period)
        with self._lock:
            stale = [
                action.action_id
                for action in sorted(self._actions.values(), key=lambda a: a.action_id)
                if action.status in self.cleanup_statuses
                and (action.last_attempt or action.scheduled_date) < cutoff
            ]
            if self.cleanup_batch_size:
                stale = stale[: self.cleanup_batch_size]
            for action_id in stale:
                del self._actions[action_id]
        return len(stale)

    # ------------------------------------------------------------------
    # Integration with the polling scheduler
    def add_runner_schedule(self, catalog: dict[str, CatalogEntry]) -> dict[str, CatalogEntry]:
        catalog = dict(catalog)
        catalog.setdefault(RUNNER_SCHEDULE.name, RUNNER_SCHEDULE)
        return catalog

    def run_from_trigger(self) -> None:
        self.run_queue()

    def attach_runner(self, polling: "PollingScheduler") -> None:
        """Run the queue from the polling scheduler every minute."""

        if not self.hooks.has_action(QUEUE_RUNNER_HOOK, self.run_from_trigger):
            self.hooks.add_filter(hook_names.CRON_SCHEDULES, self.add_runner_schedule, 5)
            self.hooks.add_action(QUEUE_RUNNER_HOOK, self.run_from_trigger)
        if polling.query_next(QUEUE_RUNNER_HOOK) is None:
            polling.schedule_recurring(
                polling.now(), RUNNER_SCHEDULE.name, QUEUE_RUNNER_HOOK
            )

    def detach_runner(self, polling: "PollingScheduler") -> None:
        self.hooks.remove_action(QUEUE_RUNNER_HOOK, self.run_from_trigger)
        self.hooks.remove_filter(hook_names.CRON_SCHEDULES, self.add_runner_schedule)
        polling.unschedule_hook(QUEUE_RUNNER_HOOK)
