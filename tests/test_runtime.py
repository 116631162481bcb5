import logging

import pytest

import cron_bridge
from cron_bridge import lifecycle
from cron_bridge.config import load_config
from cron_bridge.manifest_cache import LEGACY_OPTION, MANIFEST_KEY, VERSION_OPTION
from cron_bridge.router import PollingToQueueRouter, QueueToPollingRouter
from cron_bridge.runtime import create_bridge, get_default_bridge
from cron_bridge.scheduler.queue import QUEUE_RUNNER_HOOK


def _config(monkeypatch, **env):
    for key, value in env.items():
        monkeypatch.setenv(f"CRON_BRIDGE_{key.upper()}", value)
    return load_config()


def test_default_bridge_wiring(monkeypatch, clock):
    bridge = create_bridge(_config(monkeypatch), clock=clock)

    assert bridge.cache.active
    assert bridge.router is None
    runner = bridge.polling.query_next(QUEUE_RUNNER_HOOK)
    assert runner.interval == 300
    assert runner.timestamp == clock.now + 300
    assert "monthly" in bridge.polling.list_catalog()
    assert bridge.table.get(MANIFEST_KEY) is not None
    bridge.shutdown()


def test_disable_queue_runner(monkeypatch, clock):
    bridge = create_bridge(_config(monkeypatch, disable_queue_runner="1"), clock=clock)
    assert bridge.polling.query_next(QUEUE_RUNNER_HOOK) is None
    bridge.shutdown()


def test_cache_disabled_keeps_option_store(monkeypatch, clock):
    bridge = create_bridge(_config(monkeypatch, cache_events="false"), clock=clock)
    assert not bridge.cache.active
    assert bridge.options.get(LEGACY_OPTION)
    bridge.shutdown()


def test_revert_mode_restores_manifest(monkeypatch, clock):
    first = create_bridge(_config(monkeypatch), clock=clock)
    first.polling.schedule_single(clock.now + 10, "h")
    first.shutdown()

    second = create_bridge(
        _config(monkeypatch, cache_events="revert", disable_queue_runner="1"), clock=clock
    )
    assert not second.cache.active
    assert second.options.get(VERSION_OPTION) is None
    assert second.polling.query_next("h").timestamp == clock.now + 10
    second.shutdown()


@pytest.mark.parametrize(
    "mode, cls",
    [("polling-to-queue", PollingToQueueRouter), ("queue-to-polling", QueueToPollingRouter)],
)
def test_router_selected_by_config(monkeypatch, clock, mode, cls):
    bridge = create_bridge(_config(monkeypatch, reroute=mode), clock=clock)
    assert isinstance(bridge.router, cls)
    bridge.shutdown()


def test_queue_runner_routes_tasks_end_to_end(monkeypatch, clock):
    bridge = create_bridge(_config(monkeypatch, reroute="polling-to-queue"), clock=clock)
    seen = []

    def spawn():
        bridge.polling.schedule_single(clock.now + 30, "child", ["c"])

    bridge.hooks.add_action("spawn", spawn)
    bridge.hooks.add_action("child", lambda value: seen.append(value))
    bridge.queue.create_single_action(clock.now, "spawn")

    clock.advance(300)
    bridge.polling.run_due()

    child = bridge.queue.query_pending_actions("child")
    assert len(child) == 1
    assert bridge.polling.query_next("child") is None
    assert bridge.polling.query_next(QUEUE_RUNNER_HOOK) is not None
    bridge.shutdown()


def test_error_observers_log(monkeypatch, clock, caplog):
    bridge = create_bridge(
        _config(monkeypatch, log_errors="1", disable_queue_runner="1"), clock=clock
    )
    bridge.hooks.add_action("bad", lambda: 1 / 0)
    bridge.queue.create_single_action(clock.now, "bad")

    with caplog.at_level(logging.ERROR, logger="cron_bridge.diagnostics"):
        bridge.queue.run_queue()

    assert any(
        r.name == "cron_bridge.diagnostics" and "failed" in r.getMessage()
        for r in caplog.records
    )
    bridge.shutdown()


def test_debug_observers_pass_results_through(monkeypatch, clock, caplog):
    bridge = create_bridge(
        _config(monkeypatch, debug="1", disable_queue_runner="1"), clock=clock
    )
    with caplog.at_level(logging.DEBUG, logger="cron_bridge.diagnostics"):
        with lifecycle.request_cycle():
            assert bridge.polling.schedule_single(clock.now, "h") is True

    assert "pre_schedule_task" in caplog.text
    bridge.shutdown()


def test_initialize_sets_default(tmp_path):
    path = tmp_path / "cfg.yml"
    path.write_text("disable_queue_runner: true\n")
    bridge = cron_bridge.initialize(str(path))
    assert get_default_bridge() is bridge
    assert bridge.config["disable_queue_runner"] is True
