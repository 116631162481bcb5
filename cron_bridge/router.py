"""Route operations from one scheduler to the other.

Only one direction is active at a time:

``polling-to-queue``
    :class:`PollingToQueueRouter` intercepts the polling scheduler's
    operations and re-issues them on the action queue.
``queue-to-polling``
    :class:`QueueToPollingRouter` intercepts the action queue's scheduling
    calls and re-issues them on the polling scheduler.

Tasks that already exist when a router attaches stay where they are.
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Any, Callable, Optional, Tuple

from . import hooks as hook_names
from . import lifecycle
from .catalog import CatalogReconciler
from .hooks import HookRegistry
from .metrics import PASSTHROUGH_OPERATIONS, track_route
from .models import NamedInterval, ScheduledTask, Source
from .scheduler import PollingScheduler
from .scheduler.queue import QUEUE_RUNNER_HOOK, ActionQueue, QueuedAction


logger = logging.getLogger(__name__)

ROUTED_GROUP = "polling-scheduler"


class RouteMode(str, Enum):
    NONE = "none"
    POLLING_TO_QUEUE = "polling-to-queue"
    QUEUE_TO_POLLING = "queue-to-polling"


class PollingToQueueRouter:
    """Redirect polling-scheduler operations to the action queue.

    The queue's own runner is itself a polling-scheduler task, so routing
    everything would move the runner into the queue it is meant to drive.
    Each method therefore translates only while the queue runner is the
    active trigger, never for the runner hook itself, and never when another
    interceptor has already produced a result.
    """

    direction = RouteMode.POLLING_TO_QUEUE.value

    def __init__(
        self,
        queue: ActionQueue,
        reconciler: CatalogReconciler,
        *,
        runner_hook: str = QUEUE_RUNNER_HOOK,
        group: str = ROUTED_GROUP,
    ) -> None:
        self.queue = queue
        self.reconciler = reconciler
        self.runner_hook = runner_hook
        self.group = group

    def _ready(self, result: Any, hook: str, operation: str) -> bool:
        if result or hook == self.runner_hook:
            ready = False
        else:
            ready = lifecycle.current_trigger() == self.runner_hook
        if not ready:
            PASSTHROUGH_OPERATIONS.labels(operation).inc()
        return ready

    def schedule_task(self, result: Any, task: ScheduledTask) -> Any:
        if not self._ready(result, task.hook, "schedule_task"):
            return result
        return self._schedule(task)

    @track_route(direction, "schedule_task")
    def _schedule(self, task: ScheduledTask) -> Any:
        if task.is_recurring:
            return self.queue.create_recurring_action(
                task.timestamp, task.interval, task.hook, task.args, self.group
            )
        return self.queue.create_single_action(
            task.timestamp, task.hook, task.args, self.group
        )

    def reschedule_task(self, result: Any, task: ScheduledTask) -> Any:
        if not self._ready(result, task.hook, "reschedule_task"):
            return result
        return self._reschedule(task)

    @track_route(direction, "reschedule_task")
    def _reschedule(self, task: ScheduledTask) -> Any:
        self.queue.cancel_action(task.hook, task.args)
        return self.queue.create_recurring_action(
            task.timestamp, task.interval, task.hook, task.args, self.group
        )

    def cancel_task(
        self, result: Any, timestamp: int, hook: str, args: Tuple[Any, ...]
    ) -> Any:
        # The polling scheduler still removes its own copy.
        if self._ready(result, hook, "cancel_task"):
            self._cancel(hook, args)
        return result

    @track_route(direction, "cancel_task")
    def _cancel(self, hook: str, args: Tuple[Any, ...]) -> Optional[int]:
        return self.queue.cancel_action(hook, args)

    def clear_scheduled_hook(
        self, result: Any, hook: str, args: Tuple[Any, ...]
    ) -> Any:
        if self._ready(result, hook, "clear_scheduled_hook"):
            self._cancel_all(hook, args)
        return result

    def unschedule_hook(self, result: Any, hook: str) -> Any:
        if self._ready(result, hook, "unschedule_hook"):
            self._cancel_all(hook, None)
        return result

    @track_route(direction, "cancel_all")
    def _cancel_all(self, hook: str, args: Optional[Tuple[Any, ...]]) -> int:
        return self.queue.cancel_all_actions(hook, args)

    def query_next(
        self,
        result: Any,
        hook: str,
        args: Optional[Tuple[Any, ...]],
        timestamp: Optional[int],
    ) -> Any:
        if not self._ready(result, hook, "query_next"):
            return result
        return self._query(hook, args, timestamp)

    @track_route(direction, "query_next")
    def _query(
        self, hook: str, args: Optional[Tuple[Any, ...]], timestamp: Optional[int]
    ) -> Any:
        found = self.queue.query_pending_actions(
            hook, args or None, date=timestamp, per_page=1
        )
        if not found:
            return False
        return self.task_from_action(found[0])

    def task_from_action(self, action: QueuedAction) -> ScheduledTask:
        recurrence = None
        if action.is_recurring and action.recurrence:
            name = self.reconciler.find_or_create(action.recurrence)
            recurrence = NamedInterval(name, action.recurrence)
        return ScheduledTask(
            hook=action.hook,
            args=action.args,
            timestamp=action.timestamp,
            recurrence=recurrence,
            source=Source.QUEUE,
        )

    def attach(self, hooks: HookRegistry, priority: int = 10) -> None:
        for name, callback in self._filters():
            hooks.add_filter(name, callback, priority)

    def detach(self, hooks: HookRegistry) -> None:
        for name, callback in self._filters():
            hooks.remove_filter(name, callback)

    def _filters(self):
        return (
            (hook_names.PRE_SCHEDULE_TASK, self.schedule_task),
            (hook_names.PRE_RESCHEDULE_TASK, self.reschedule_task),
            (hook_names.PRE_UNSCHEDULE_TASK, self.cancel_task),
            (hook_names.PRE_CLEAR_SCHEDULED_HOOK, self.clear_scheduled_hook),
            (hook_names.PRE_UNSCHEDULE_HOOK, self.unschedule_hook),
            (hook_names.PRE_GET_SCHEDULED_TASK, self.query_next),
        )


class QueueToPollingRouter:
    """Redirect action-queue scheduling calls to the polling scheduler.

    The queue never re-enters its own scheduling calls from the polling
    side, so these translations need no loop guard.
    """

    direction = RouteMode.QUEUE_TO_POLLING.value

    def __init__(
        self,
        polling: PollingScheduler,
        reconciler: CatalogReconciler,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.polling = polling
        self.reconciler = reconciler
        self._clock = clock

    @track_route(direction, "schedule_single")
    def schedule_single(
        self, result: Any, timestamp: int, hook: str, args: Tuple[Any, ...], group: str
    ) -> Any:
        return self.polling.schedule_single(timestamp, hook, args)

    @track_route(direction, "schedule_recurring")
    def schedule_recurring(
        self,
        result: Any,
        timestamp: int,
        interval: int,
        hook: str,
        args: Tuple[Any, ...],
        group: str,
    ) -> Any:
        name = self.reconciler.find_or_create(interval)
        return self.polling.schedule_recurring(timestamp, name, hook, args)

    @track_route(direction, "enqueue_async")
    def enqueue_async(
        self, result: Any, hook: str, args: Tuple[Any, ...], group: str
    ) -> Any:
        return self.polling.schedule_single(int(self._clock()), hook, args)

    def attach(self, hooks: HookRegistry, priority: int = 10) -> None:
        for name, callback in self._filters():
            hooks.add_filter(name, callback, priority)

    def detach(self, hooks: HookRegistry) -> None:
        for name, callback in self._filters():
            hooks.remove_filter(name, callback)

    def _filters(self):
        return (
            (hook_names.PRE_SCHEDULE_SINGLE_ACTION, self.schedule_single),
            (hook_names.PRE_SCHEDULE_RECURRING_ACTION, self.schedule_recurring),
            (hook_names.PRE_ENQUEUE_ASYNC_ACTION, self.enqueue_async),
        )


Router = Any


def attach_router(
    mode: RouteMode | str,
    *,
    hooks: HookRegistry,
    polling: PollingScheduler,
    queue: ActionQueue,
    reconciler: CatalogReconciler,
    clock: Callable[[], float] = time.time,
) -> Optional[Router]:
    """Attach the router for ``mode``; return it, or ``None`` for ``none``."""

    mode = RouteMode(mode)
    router: Optional[Router] = None
    if mode is RouteMode.POLLING_TO_QUEUE:
        router = PollingToQueueRouter(queue, reconciler)
    elif mode is RouteMode.QUEUE_TO_POLLING:
        router = QueueToPollingRouter(polling, reconciler, clock=clock)
    if router is not None:
        router.attach(hooks)
        logger.info("Routing scheduler operations %s", mode.value)
    return router
