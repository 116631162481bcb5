"""Assemble the bridge components from configuration."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .catalog import CatalogReconciler
from .config import load_config
from .diagnostics import Diagnostics
from .hooks import HookRegistry
from .intervals import IntervalPolicy, parse_static_entries
from .manifest_cache import VERSION_OPTION, ManifestCache
from .options import OptionStore
from .router import RouteMode, Router, attach_router
from .scheduler import PollingScheduler
from .scheduler.queue import ActionQueue, ActionStatus
from .storage import CacheTable


logger = logging.getLogger(__name__)


@dataclass
class Bridge:
    """Every component of a running bridge, owned in one place."""

    config: Dict[str, Any]
    hooks: HookRegistry
    options: OptionStore
    table: CacheTable
    polling: PollingScheduler
    queue: ActionQueue
    cache: ManifestCache
    reconciler: CatalogReconciler
    policy: IntervalPolicy
    diagnostics: Diagnostics
    router: Optional[Router] = None

    @property
    def route_mode(self) -> RouteMode:
        return RouteMode(self.config.get("reroute", "none"))

    def flush(self) -> bool:
        """Write any pending manifest change to the durable table now."""

        if not self.cache.flush_pending:
            return False
        return self.cache.flush()

    def shutdown(self) -> None:
        self.flush()
        if self.router is not None:
            self.router.detach(self.hooks)
            self.router = None
        self.table.engine.dispose()


def create_bridge(
    config: Optional[Dict[str, Any]] = None,
    *,
    clock: Callable[[], float] = time.time,
) -> Bridge:
    """Build a :class:`Bridge` for ``config`` (loaded when omitted)."""

    cfg = load_config() if config is None else config
    hooks = HookRegistry()
    options = OptionStore(cfg.get("options_path"))
    polling = PollingScheduler(hooks, options, clock=clock)

    diagnostics = Diagnostics(hooks)
    if cfg.get("log_errors"):
        diagnostics.watch_errors()
    if cfg.get("debug"):
        diagnostics.watch_scheduling()

    table = CacheTable(cfg["database_url"])
    cache = ManifestCache(table, options, hooks)
    cache_events = cfg.get("cache_events", True)
    if cache_events == "revert":
        if options.get(VERSION_OPTION) is not None:
            cache.revert()
            logger.info("Manifest moved back into the option store")
    elif cache_events:
        cache.activate()

    reconciler = CatalogReconciler(polling.list_catalog, options)
    policy = IntervalPolicy(
        cfg.get("minimum_interval"),
        parse_static_entries(cfg.get("schedule_intervals") or {}),
        reconciler.discovered,
        clock=clock,
    )
    policy.attach(hooks)

    queue = ActionQueue(
        hooks,
        timezone=cfg.get("timezone", "UTC"),
        time_limit=cfg.get("queue_time_limit", 60),
        retention_period=cfg.get("cleanup_retention_period", 604800),
        cleanup_batch_size=cfg.get("cleanup_batch_size", 100),
        cleanup_statuses=(
            ActionStatus.COMPLETE,
            ActionStatus.CANCELED,
            ActionStatus.FAILED,
        ),
        clock=clock,
    )
    if not cfg.get("disable_queue_runner"):
        queue.attach_runner(polling)

    router = attach_router(
        cfg.get("reroute", "none"),
        hooks=hooks,
        polling=polling,
        queue=queue,
        reconciler=reconciler,
        clock=clock,
    )

    return Bridge(
        config=cfg,
        hooks=hooks,
        options=options,
        table=table,
        polling=polling,
        queue=queue,
        cache=cache,
        reconciler=reconciler,
        policy=policy,
        diagnostics=diagnostics,
        router=router,
    )


# ---------------------------------------------------------------------------
# Default bridge accessor

_default_bridge: Bridge | None = None


def set_default_bridge(bridge: Bridge | None) -> None:
    """Set the global default bridge instance."""

    global _default_bridge
    _default_bridge = bridge


def get_default_bridge() -> Bridge:
    """Return the configured default bridge."""

    if _default_bridge is None:
        raise RuntimeError("Default bridge has not been initialised")
    return _default_bridge
