"""Write-back cache for the polling scheduler's manifest.

The polling scheduler rewrites its entire manifest every time a task is
touched, which turns the single ``cron`` option into a hot row.  The cache
keeps the manifest in process memory and writes it to a dedicated table at
most once per cycle.

Reads and writes reach the cache through the scheduler's
``pre_read_manifest`` / ``pre_write_manifest`` extension points, so the
scheduler itself is unaware of where its manifest lives.
"""

from __future__ import annotations

import copy
import logging
from threading import Lock, RLock
from typing import Any, Optional

import yaml

from . import hooks as hook_names
from . import lifecycle
from .errors import StorageError, StorageWriteError
from .hooks import HookRegistry
from .metrics import FLUSH_LATENCY, MANIFEST_FLUSHES, MANIFEST_WRITES
from .models import Manifest
from .options import OptionStore
from .storage import SCHEMA_VERSION, CacheTable


logger = logging.getLogger(__name__)

MANIFEST_KEY = "cron_manifest"
LEGACY_OPTION = "cron"
VERSION_OPTION = "cron_bridge_schema"


def serialize_manifest(manifest: Any) -> bytes:
    """Canonical byte form; equal manifests always serialize identically."""

    return yaml.safe_dump(manifest, sort_keys=True).encode("utf-8")


def deserialize_manifest(blob: bytes | str | None) -> Optional[Manifest]:
    if not blob:
        return None
    if isinstance(blob, bytes):
        blob = blob.decode("utf-8")
    data = yaml.safe_load(blob)
    return data if isinstance(data, dict) else None


class ManifestCache:
    """In-process manifest with a deferred, coalesced durable flush.

    Parameters
    ----------
    table:
        Durable :class:`~cron_bridge.storage.CacheTable`.
    options:
        Host option store holding the legacy manifest and the schema version.
    hooks:
        Registry the read/write interceptors are attached to.
    """

    def __init__(
        self,
        table: CacheTable,
        options: OptionStore,
        hooks: HookRegistry,
        *,
        key: str = MANIFEST_KEY,
        legacy_option: str = LEGACY_OPTION,
    ) -> None:
        self.table = table
        self.options = options
        self.hooks = hooks
        self.key = key
        self.legacy_option = legacy_option
        self._value: Optional[Manifest] = None
        self._serialized: Optional[bytes] = None
        self._loaded = False
        self._flush_pending = False
        self._lock = RLock()
        self._flush_lock = Lock()

    @property
    def active(self) -> bool:
        return self.hooks.has_filter(hook_names.PRE_READ_MANIFEST, self.intercept_read)

    @property
    def flush_pending(self) -> bool:
        return self._flush_pending

    # ------------------------------------------------------------------
    # Cache operations
    def _materialize(self) -> None:
        if self._loaded:
            return
        blob = self.table.get(self.key)
        self._value = deserialize_manifest(blob)
        self._serialized = serialize_manifest(self._value) if self._value is not None else None
        self._loaded = True

    def get(self) -> Optional[Manifest]:
        """Return a copy of the manifest, loading it from the table on first use."""

        with self._lock:
            self._materialize()
            return copy.deepcopy(self._value)

    def set(self, manifest: Manifest) -> bool:
        """Replace the manifest; return ``False`` when it did not change."""

        blob = serialize_manifest(manifest)
        with self._lock:
            self._materialize()
            if blob == self._serialized:
                MANIFEST_WRITES.labels("unchanged").inc()
                logger.debug("Manifest unchanged, write ignored")
                return False
            self._value = copy.deepcopy(manifest)
            self._serialized = blob
            MANIFEST_WRITES.labels("stored").inc()
            if self._flush_pending:
                return True
            current = lifecycle.current_cycle()
            if current is not None:
                self._flush_pending = True
                current.on_complete(self._flush_if_pending)
                return True
        self.flush()
        return True

    def _flush_if_pending(self) -> None:
        if self._flush_pending:
            self.flush()

    def flush(self) -> bool:
        """Write the current manifest to the durable table."""

        with self._flush_lock:
            with self._lock:
                self._flush_pending = False
                blob = self._serialized
            if blob is None:
                return False
            try:
                with FLUSH_LATENCY.time():
                    self.table.upsert(self.key, blob)
            except StorageWriteError as exc:
                MANIFEST_FLUSHES.labels("failure").inc()
                logger.error("Unable to flush task manifest: %s", exc)
                return False
        MANIFEST_FLUSHES.labels("success").inc()
        logger.debug("Flushed task manifest (%d bytes)", len(blob))
        return True

    def invalidate(self) -> None:
        """Forget the in-process copy; the next read reloads the table."""

        with self._lock:
            self._value = None
            self._serialized = None
            self._loaded = False
            self._flush_pending = False

    # ------------------------------------------------------------------
    # Interceptors
    def intercept_read(self, result: Any) -> Any:
        if result is not None:
            return result
        return self.get()

    def intercept_write(self, result: Any, manifest: Manifest) -> Any:
        if result is not None:
            return result
        return self.set(manifest)

    def attach(self) -> None:
        self.hooks.add_filter(hook_names.PRE_READ_MANIFEST, self.intercept_read)
        self.hooks.add_filter(hook_names.PRE_WRITE_MANIFEST, self.intercept_write)

    def detach(self) -> None:
        self.hooks.remove_filter(hook_names.PRE_READ_MANIFEST, self.intercept_read)
        self.hooks.remove_filter(hook_names.PRE_WRITE_MANIFEST, self.intercept_write)

    # ------------------------------------------------------------------
    # Activation, migration and revert
    def activate(self) -> bool:
        """Migrate if the schema version changed, then attach the interceptors.

        When the table cannot be prepared the interceptors stay detached and
        the manifest keeps living in the option store.
        """

        if self.options.get(VERSION_OPTION) != SCHEMA_VERSION:
            try:
                self.migrate()
            except StorageError as exc:
                logger.error("Manifest cache disabled: %s", exc)
                return False
            self.options.update(VERSION_OPTION, SCHEMA_VERSION)
        self.attach()
        return True

    def migrate(self) -> str:
        """Prepare the table and move a legacy manifest into it."""

        outcome = self.table.ensure_schema()
        legacy = self.options.get(self.legacy_option)
        if legacy:
            blob = serialize_manifest(legacy)
            self.table.upsert(self.key, blob)
            with self._lock:
                self._value = copy.deepcopy(legacy)
                self._serialized = blob
                self._loaded = True
            self.options.delete(self.legacy_option)
            logger.info("Moved legacy manifest into %s", self.table.name)
        return outcome

    def revert(self) -> bool:
        """Move the manifest back into the legacy option and drop the row.

        The latest in-process value is copied, so changes still waiting for a
        flush are not lost; the pending flush itself is cancelled.
        """

        self.detach()
        try:
            value = self.get()
        except StorageError as exc:
            logger.error("Unable to read cached manifest for revert: %s", exc)
            return False
        with self._lock:
            self._flush_pending = False
        if value:
            self.options.update(self.legacy_option, value)
        try:
            self.table.delete(self.key)
        except StorageWriteError as exc:
            logger.error("Unable to delete cached manifest: %s", exc)
        self.invalidate()
        self.options.delete(VERSION_OPTION)
        return bool(value)
