"""Typed records shared by both schedulers and the router."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Union

from .errors import CatalogError


# ``{timestamp: {hook: {signature: entry}}}``
Manifest = Dict[int, Dict[str, Dict[str, Dict[str, Any]]]]


class Source(str, Enum):
    """Scheduler a task originated from."""

    POLLING = "polling"
    QUEUE = "queue"


def validate_interval(seconds: Any) -> int:
    """Return ``seconds`` as an ``int`` or raise :class:`CatalogError`."""

    if isinstance(seconds, bool) or not isinstance(seconds, (int, float)):
        raise CatalogError(f"Interval must be a number of seconds, got {seconds!r}")
    if int(seconds) != seconds or seconds <= 0:
        raise CatalogError(f"Interval must be a positive whole number, got {seconds!r}")
    return int(seconds)


def args_signature(args: Iterable[Any]) -> str:
    """Stable key addressing ``args`` inside a manifest."""

    encoded = json.dumps(list(args), sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.md5(encoded.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class NamedInterval:
    """Recurrence expressed as an entry of the polling scheduler's catalog."""

    name: str
    seconds: int

    def __post_init__(self) -> None:
        if not self.name:
            raise CatalogError("Named interval requires a name")
        object.__setattr__(self, "seconds", validate_interval(self.seconds))


@dataclass(frozen=True)
class RawInterval:
    """Recurrence expressed as plain seconds, as the action queue does."""

    seconds: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "seconds", validate_interval(self.seconds))


Recurrence = Union[NamedInterval, RawInterval]


@dataclass
class ScheduledTask:
    """A pending unit of work identified by ``(hook, args)``."""

    hook: str
    args: Tuple[Any, ...] = ()
    timestamp: int = 0
    recurrence: Optional[Recurrence] = None
    source: Source = Source.POLLING

    def __post_init__(self) -> None:
        self.args = tuple(self.args or ())
        self.timestamp = int(self.timestamp)

    @property
    def is_recurring(self) -> bool:
        return self.recurrence is not None

    @property
    def interval(self) -> int | None:
        return self.recurrence.seconds if self.recurrence is not None else None

    @property
    def schedule(self) -> str | None:
        """Catalog name of the recurrence, if it has one."""

        if isinstance(self.recurrence, NamedInterval):
            return self.recurrence.name
        return None

    @property
    def key(self) -> Tuple[str, Tuple[Any, ...]]:
        return self.hook, self.args

    @property
    def signature(self) -> str:
        return args_signature(self.args)

    def with_interval(self, seconds: int, timestamp: int) -> "ScheduledTask":
        """Return a copy repeating every ``seconds`` starting at ``timestamp``."""

        if isinstance(self.recurrence, NamedInterval):
            recurrence: Recurrence = NamedInterval(self.recurrence.name, seconds)
        else:
            recurrence = RawInterval(seconds)
        return replace(self, recurrence=recurrence, timestamp=timestamp)

    def to_entry(self) -> Dict[str, Any]:
        """Manifest form of the task, keyed elsewhere by timestamp/hook/signature."""

        entry: Dict[str, Any] = {"schedule": self.schedule, "args": list(self.args)}
        if self.recurrence is not None:
            entry["interval"] = self.recurrence.seconds
        return entry

    @classmethod
    def from_entry(
        cls,
        timestamp: int,
        hook: str,
        entry: Dict[str, Any],
        catalog: Optional[Mapping[str, "CatalogEntry"]] = None,
    ) -> "ScheduledTask":
        """Build a task from its manifest form.

        Entries naming a schedule without an ``interval`` take the interval
        from ``catalog``; :class:`CatalogError` is raised when it is unknown.
        """

        schedule = entry.get("schedule")
        interval = entry.get("interval")
        recurrence: Optional[Recurrence] = None
        if schedule and interval is None and catalog is not None:
            known = catalog.get(schedule)
            if known is not None:
                interval = known.interval_seconds
        if schedule:
            recurrence = NamedInterval(schedule, interval)
        elif interval:
            recurrence = RawInterval(interval)
        return cls(
            hook=hook,
            args=tuple(entry.get("args") or ()),
            timestamp=int(timestamp),
            recurrence=recurrence,
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "hook": self.hook,
            "args": list(self.args),
            "timestamp": self.timestamp,
            "schedule": self.schedule,
            "interval": self.interval,
            "source": self.source.value,
        }


@dataclass(frozen=True)
class CatalogEntry:
    """Named recurrence known to the polling scheduler."""

    name: str
    interval_seconds: int
    display_label: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        if not self.name:
            raise CatalogError("Catalog entry requires a name")
        object.__setattr__(
            self, "interval_seconds", validate_interval(self.interval_seconds)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"interval": self.interval_seconds, "display": self.display_label}

    @classmethod
    def from_dict(cls, name: str, data: Dict[str, Any]) -> "CatalogEntry":
        return cls(name, data.get("interval"), data.get("display") or name)
