import pytest

from cron_bridge import lifecycle
from cron_bridge.catalog import CatalogReconciler
from cron_bridge.intervals import IntervalPolicy
from cron_bridge.metrics import PASSTHROUGH_OPERATIONS, ROUTED_OPERATIONS
from cron_bridge.models import NamedInterval, ScheduledTask, Source
from cron_bridge.router import PollingToQueueRouter, RouteMode, attach_router
from cron_bridge.scheduler.queue import QUEUE_RUNNER_HOOK, ActionStatus


@pytest.fixture
def router(hooks, polling, queue, options):
    reconciler = CatalogReconciler(polling.list_catalog, options)
    IntervalPolicy(discovered=reconciler.discovered).attach(hooks)
    return attach_router(
        RouteMode.POLLING_TO_QUEUE,
        hooks=hooks,
        polling=polling,
        queue=queue,
        reconciler=reconciler,
    )


def test_single_task_routed_under_runner_trigger(router, polling, queue, clock):
    before = ROUTED_OPERATIONS.labels("polling-to-queue", "schedule_task")._value.get()

    with lifecycle.trigger_context(QUEUE_RUNNER_HOOK):
        result = polling.schedule_single(clock.now + 60, "h", [])

    actions = queue.query_pending_actions()
    assert len(actions) == 1
    assert result == actions[0].action_id
    assert (actions[0].hook, actions[0].args, actions[0].timestamp) == ("h", (), clock.now + 60)
    assert actions[0].recurrence is None
    assert polling.list_tasks() == []
    after = ROUTED_OPERATIONS.labels("polling-to-queue", "schedule_task")._value.get()
    assert after == before + 1


def test_outside_runner_trigger_queue_is_untouched(router, polling, queue, clock):
    before = PASSTHROUGH_OPERATIONS.labels("schedule_task")._value.get()

    assert polling.schedule_single(clock.now + 60, "h", []) is True
    with lifecycle.trigger_context("some_other_hook"):
        polling.schedule_single(clock.now + 70, "h", [])

    assert queue.query_pending_actions() == []
    assert len(polling.list_tasks()) == 2
    assert PASSTHROUGH_OPERATIONS.labels("schedule_task")._value.get() == before + 2


def test_runner_hook_is_never_routed(router, polling, queue, clock):
    with lifecycle.trigger_context(QUEUE_RUNNER_HOOK):
        polling.schedule_recurring(clock.now, "hourly", QUEUE_RUNNER_HOOK)
    assert queue.query_pending_actions() == []
    assert polling.query_next(QUEUE_RUNNER_HOOK).hook == QUEUE_RUNNER_HOOK


def test_earlier_interceptor_result_is_kept(hooks, router, polling, queue, clock):
    hooks.add_filter("pre_schedule_task", lambda result, task: "claimed", 1)
    with lifecycle.trigger_context(QUEUE_RUNNER_HOOK):
        assert polling.schedule_single(clock.now, "h") == "claimed"
    assert queue.query_pending_actions() == []


def test_recurring_task_becomes_recurring_action(router, polling, queue, clock):
    with lifecycle.trigger_context(QUEUE_RUNNER_HOOK):
        polling.schedule_recurring(clock.now + 5, "daily", "h", ["x"])
    action = queue.query_pending_actions("h")[0]
    assert action.recurrence == 86400
    assert action.args == ("x",)
    assert action.group == "polling-scheduler"


def test_reschedule_replaces_pending_action(router, polling, queue, clock):
    with lifecycle.trigger_context(QUEUE_RUNNER_HOOK):
        polling.schedule_recurring(clock.now, "hourly", "h")
        task = ScheduledTask("h", (), clock.now, NamedInterval("hourly", 3600))
        polling.reschedule_task(task)

    pending = queue.query_pending_actions("h")
    assert len(pending) == 1
    assert queue.query_pending_actions("h", status=ActionStatus.CANCELED)


def test_cancel_and_clear_route_and_fall_through(router, polling, queue, clock):
    polling.schedule_single(clock.now + 1, "h", [1])
    with lifecycle.trigger_context(QUEUE_RUNNER_HOOK):
        polling.schedule_single(clock.now + 2, "h", [1])
        polling.schedule_single(clock.now + 3, "h", [1])
        polling.schedule_single(clock.now + 4, "g", [2])

        assert polling.cancel_task(clock.now + 1, "h", [1]) is True
        assert len(queue.query_pending_actions("h")) == 1
        assert polling.list_tasks() == []

        polling.clear_scheduled_hook("h", [1])
        assert queue.query_pending_actions("h") == []

        polling.unschedule_hook("g")
        assert queue.query_pending_actions() == []


def test_query_next_translates_pending_action(router, polling, queue, clock):
    queue.create_recurring_action(clock.now + 10, 7200, "h", ["a"])

    with lifecycle.trigger_context(QUEUE_RUNNER_HOOK):
        task = polling.query_next("h")
        missing = polling.query_next("nothing")
        later = polling.query_next("h", timestamp=clock.now + 11)

    assert task.source is Source.QUEUE
    assert task.timestamp == clock.now + 10
    assert task.args == ("a",)
    assert task.interval == 7200
    assert polling.resolve_schedule(task.schedule).seconds == 7200
    assert missing is None
    assert later is None


def test_query_next_with_empty_args_matches_any(router, polling, queue, clock):
    queue.create_single_action(clock.now, "h", ["a"])
    with lifecycle.trigger_context(QUEUE_RUNNER_HOOK):
        assert polling.query_next("h", []).args == ("a",)


def test_detach_restores_native_behaviour(router, hooks, polling, queue, clock):
    assert isinstance(router, PollingToQueueRouter)
    router.detach(hooks)
    with lifecycle.trigger_context(QUEUE_RUNNER_HOOK):
        assert polling.schedule_single(clock.now, "h") is True
    assert queue.query_pending_actions() == []
