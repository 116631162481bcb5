"""Exceptions raised by cron-bridge components."""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for every error raised by the bridge."""


class StorageError(BridgeError):
    """The durable cache table could not be used."""


class StorageReadError(StorageError):
    """Reading a durable row failed (absence is not an error)."""


class StorageWriteError(StorageError):
    """An upsert or delete against the durable table did not succeed."""


class CatalogError(BridgeError, ValueError):
    """A recurrence interval or schedule name cannot be represented."""
