"""Configuration helpers for cron-bridge."""

from __future__ import annotations

import calendar
import os
from datetime import date
from pathlib import Path
from typing import Any, Dict

import yaml


ROUTE_MODES = ("none", "polling-to-queue", "queue-to-polling")
MINUTE_IN_SECONDS = 60
DAY_IN_SECONDS = 86400
WEEK_IN_SECONDS = 7 * DAY_IN_SECONDS


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in ("", "0", "false", "no", "off")
    return bool(value)


def _monthly_interval(today: date | None = None) -> Dict[str, Any]:
    today = today or date.today()
    days = calendar.monthrange(today.year, today.month)[1]
    return {"interval": days * DAY_IN_SECONDS, "display": f"Monthly ({days} days)"}


def default_home() -> Path:
    return Path.home() / ".cron_bridge"


def load_config(path: str | None = None) -> Dict[str, Any]:
    """Load configuration from ``path`` or ``CRON_BRIDGE_CONFIG`` env var.

    ``reroute`` selects the routing direction (``none``, ``polling-to-queue``
    or ``queue-to-polling``).  ``cache_events`` enables the manifest cache
    (``true``), disables it (``false``) or reverts a previously cached
    manifest back into the option store (``revert``).  Environment variables
    prefixed with ``CRON_BRIDGE_`` override any value found in the YAML file.
    """

    cfg: Dict[str, Any] = {}
    path = path or os.getenv("CRON_BRIDGE_CONFIG")
    if path and os.path.exists(path):
        with open(path, "r") as fh:
            cfg = yaml.safe_load(fh) or {}

    reroute = os.getenv("CRON_BRIDGE_REROUTE", cfg.get("reroute", "none"))
    reroute = str(reroute or "none").lower()
    if reroute in ("false", "0", "off"):
        reroute = "none"
    if reroute not in ROUTE_MODES:
        raise ValueError(f"Unknown reroute mode: {reroute}")
    cfg["reroute"] = reroute

    cache_events = os.getenv("CRON_BRIDGE_CACHE_EVENTS", cfg.get("cache_events", True))
    if isinstance(cache_events, str) and cache_events.strip().lower() == "revert":
        cfg["cache_events"] = "revert"
    else:
        cfg["cache_events"] = _as_bool(cache_events)

    floor = os.getenv("CRON_BRIDGE_MINIMUM_INTERVAL", cfg.get("minimum_interval", 5 * MINUTE_IN_SECONDS))
    floor = int(floor or 0)
    if floor < 0:
        raise ValueError("minimum_interval must not be negative")
    cfg["minimum_interval"] = floor

    intervals = cfg.get("schedule_intervals")
    if intervals is None:
        intervals = {"monthly": _monthly_interval()}
    cfg["schedule_intervals"] = dict(intervals)

    for key, env in (
        ("log_errors", "CRON_BRIDGE_LOG_ERRORS"),
        ("debug", "CRON_BRIDGE_DEBUG"),
        ("disable_queue_runner", "CRON_BRIDGE_DISABLE_QUEUE_RUNNER"),
    ):
        cfg[key] = _as_bool(os.getenv(env, cfg.get(key, False)))

    for key, env, default in (
        ("queue_time_limit", "CRON_BRIDGE_QUEUE_TIME_LIMIT", MINUTE_IN_SECONDS),
        ("cleanup_retention_period", "CRON_BRIDGE_CLEANUP_RETENTION", WEEK_IN_SECONDS),
        ("cleanup_batch_size", "CRON_BRIDGE_CLEANUP_BATCH_SIZE", 100),
    ):
        cfg[key] = int(os.getenv(env, cfg.get(key, default)))

    if "CRON_BRIDGE_DATABASE_URL" in os.environ:
        cfg["database_url"] = os.environ["CRON_BRIDGE_DATABASE_URL"]
    else:
        cfg.setdefault("database_url", f"sqlite:///{default_home() / 'cache.db'}")

    if "CRON_BRIDGE_OPTIONS_PATH" in os.environ:
        cfg["options_path"] = os.environ["CRON_BRIDGE_OPTIONS_PATH"]
    else:
        cfg.setdefault("options_path", str(default_home() / "options.yml"))

    cfg["timezone"] = os.getenv("CRON_BRIDGE_TIMEZONE", cfg.get("timezone", "UTC"))

    return cfg
