"""cron-bridge package root.

Bridges a request-triggered polling scheduler and a queue based action
scheduler: a write-back cache for the polling scheduler's manifest, routing
of scheduling operations in either direction and a shared interval catalog.
"""

from .config import load_config
from .errors import BridgeError, CatalogError, StorageError
from .hooks import HookRegistry
from .models import CatalogEntry, NamedInterval, RawInterval, ScheduledTask, Source
from .runtime import Bridge, create_bridge, get_default_bridge, set_default_bridge


def initialize(config_path: str | None = None) -> Bridge:
    """Load configuration, build the bridge and make it the default."""

    cfg = load_config(config_path)
    bridge = create_bridge(cfg)
    set_default_bridge(bridge)
    return bridge


__all__ = [
    "Bridge",
    "BridgeError",
    "CatalogEntry",
    "CatalogError",
    "HookRegistry",
    "NamedInterval",
    "RawInterval",
    "ScheduledTask",
    "Source",
    "StorageError",
    "create_bridge",
    "get_default_bridge",
    "initialize",
    "load_config",
    "set_default_bridge",
]
