import sys
from pathlib import Path

import pytest

# Ensure package root is on sys.path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from cron_bridge import runtime  # noqa: E402
from cron_bridge.hooks import HookRegistry  # noqa: E402
from cron_bridge.options import OptionStore  # noqa: E402
from cron_bridge.scheduler import PollingScheduler  # noqa: E402
from cron_bridge.scheduler.queue import ActionQueue  # noqa: E402
from cron_bridge.storage import CacheTable  # noqa: E402


T0 = 1_700_000_000


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: float = T0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    for name in (
        "CRON_BRIDGE_CONFIG",
        "CRON_BRIDGE_REROUTE",
        "CRON_BRIDGE_CACHE_EVENTS",
        "CRON_BRIDGE_MINIMUM_INTERVAL",
        "CRON_BRIDGE_LOG_ERRORS",
        "CRON_BRIDGE_DEBUG",
        "CRON_BRIDGE_DISABLE_QUEUE_RUNNER",
        "CRON_BRIDGE_TIMEZONE",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("CRON_BRIDGE_OPTIONS_PATH", str(tmp_path / "options.yml"))
    monkeypatch.setenv("CRON_BRIDGE_DATABASE_URL", f"sqlite:///{tmp_path / 'cache.db'}")
    yield


@pytest.fixture(autouse=True)
def reset_default_bridge():
    yield
    bridge = runtime._default_bridge
    if bridge is not None:
        bridge.table.engine.dispose()
    runtime.set_default_bridge(None)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def hooks():
    return HookRegistry()


@pytest.fixture
def options(tmp_path):
    return OptionStore(tmp_path / "options.yml")


@pytest.fixture
def table(tmp_path):
    table = CacheTable(f"sqlite:///{tmp_path / 'cache.db'}")
    yield table
    table.engine.dispose()


@pytest.fixture
def polling(hooks, options, clock):
    return PollingScheduler(hooks, options, clock=clock)


@pytest.fixture
def queue(hooks, clock):
    return ActionQueue(hooks, clock=clock)
