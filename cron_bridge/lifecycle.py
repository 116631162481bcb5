"""Units of work that deferred callbacks attach to.

A *cycle* is one inbound request or one batch run of due tasks.  Components
that want to act "once, when this unit of work is done" register a completion
callback on the current cycle instead of acting immediately.  The current
cycle and the current trigger are held in context variables, so every thread
sees its own.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Callable, Iterator, List, Optional


logger = logging.getLogger(__name__)

REQUEST = "request"
BATCH = "batch"


class Cycle:
    """A single unit of work with completion callbacks."""

    def __init__(self, kind: str = REQUEST) -> None:
        self.kind = kind
        self.completed = False
        self._callbacks: List[Callable[[], object]] = []

    @property
    def is_batch(self) -> bool:
        return self.kind == BATCH

    def on_complete(self, callback: Callable[[], object]) -> None:
        """Run ``callback`` once when the cycle completes."""

        if self.completed:
            raise RuntimeError("Cycle already completed")
        self._callbacks.append(callback)

    def complete(self) -> None:
        if self.completed:
            return
        self.completed = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Error running %s completion callback", self.kind)


_current_cycle: ContextVar[Optional[Cycle]] = ContextVar(
    "cron_bridge_cycle", default=None
)
_current_trigger: ContextVar[Optional[str]] = ContextVar(
    "cron_bridge_trigger", default=None
)


def current_cycle() -> Optional[Cycle]:
    return _current_cycle.get()


def in_batch() -> bool:
    cycle = _current_cycle.get()
    return cycle is not None and cycle.is_batch


@contextmanager
def cycle(kind: str = REQUEST) -> Iterator[Cycle]:
    """Open a cycle of ``kind``; nested cycles join the outer one."""

    existing = _current_cycle.get()
    if existing is not None:
        yield existing
        return
    current = Cycle(kind)
    token = _current_cycle.set(current)
    try:
        yield current
    finally:
        _current_cycle.reset(token)
        current.complete()


def request_cycle():
    return cycle(REQUEST)


def batch_cycle():
    return cycle(BATCH)


def current_trigger() -> Optional[str]:
    """Hook whose scheduled task is currently being executed, if any."""

    return _current_trigger.get()


@contextmanager
def trigger_context(hook: str) -> Iterator[str]:
    token = _current_trigger.set(hook)
    try:
        yield hook
    finally:
        _current_trigger.reset(token)
