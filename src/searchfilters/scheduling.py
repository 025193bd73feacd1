# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Deferred work on a single-threaded event loop.

- ``TimerRegistry``: every timer the engine schedules, so ``teardown()`` can
  cancel whatever has not fired when the page unloads.
- ``Debouncer``: coalesce bursts (resize/scroll) into one call after a quiet
  period; last call wins.
- ``NavigationGuard``: single slot for the pending navigation.  Once a
  navigation commits the page is gone, so the guard closes for good.

Timers go through ``loop.call_later``; the loop is resolved lazily so the
registry can be built outside a running loop.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class TimerLoop(Protocol):
    """The part of ``asyncio.AbstractEventLoop`` the registry uses."""

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle: ...


class TimerRegistry:
    """Tracks scheduled callbacks; a fired callback is forgotten automatically."""

    def __init__(self, loop: TimerLoop | None = None) -> None:
        self._loop = loop
        self._handles: set[TimerHandle] = set()
        self._closed = False

    def _resolve_loop(self) -> TimerLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    @property
    def pending(self) -> int:
        return len(self._handles)

    @property
    def closed(self) -> bool:
        return self._closed

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle | None:
        """Schedule *callback*; returns None once the registry is torn down."""
        if self._closed:
            logger.debug("Timer registry closed, dropping %s", getattr(callback, "__name__", callback))
            return None
        holder: dict[str, TimerHandle] = {}

        def _fire() -> None:
            self._handles.discard(holder["handle"])
            callback(*args)

        handle = self._resolve_loop().call_later(delay, _fire)
        holder["handle"] = handle
        self._handles.add(handle)
        return handle

    def cancel(self, handle: TimerHandle | None) -> None:
        if handle is None:
            return
        handle.cancel()
        self._handles.discard(handle)

    def teardown(self) -> int:
        """Cancel every outstanding timer.  Returns how many were cancelled."""
        count = len(self._handles)
        for handle in self._handles:
            handle.cancel()
        self._handles.clear()
        self._closed = True
        if count:
            logger.debug("Teardown cancelled %d timer(s)", count)
        return count


class Debouncer:
    """Call *func* once, *wait* seconds after the last invocation in a burst."""

    def __init__(self, registry: TimerRegistry, func: Callable[..., Any], wait: float) -> None:
        self._registry = registry
        self._func = func
        self._wait = wait
        self._handle: TimerHandle | None = None

    def __call__(self, *args: Any) -> None:
        self._registry.cancel(self._handle)
        self._handle = self._registry.call_later(self._wait, self._run, *args)

    def _run(self, *args: Any) -> None:
        self._handle = None
        self._func(*args)

    def cancel(self) -> None:
        self._registry.cancel(self._handle)
        self._handle = None

    @property
    def scheduled(self) -> bool:
        return self._handle is not None


@dataclass
class PendingNavigation:
    """The navigation occupying the guard's slot."""

    reason: str
    handle: TimerHandle | None = field(default=None, repr=False)


class NavigationGuard:
    """At most one navigation scheduled at a time; none after one has committed."""

    def __init__(self) -> None:
        self._pending: PendingNavigation | None = None
        self._committed = False

    @property
    def pending(self) -> PendingNavigation | None:
        return self._pending

    @property
    def committed(self) -> bool:
        return self._committed

    def claim(self, reason: str) -> PendingNavigation | None:
        """Take the slot.  Returns None when it is occupied or a navigation already committed."""
        if self._committed:
            logger.debug("Navigation already committed, refusing %s", reason)
            return None
        if self._pending is not None:
            logger.debug("Navigation pending (%s), refusing %s", self._pending.reason, reason)
            return None
        self._pending = PendingNavigation(reason=reason)
        return self._pending

    def commit(self, pending: PendingNavigation) -> bool:
        """Mark *pending* as the terminal navigation.  False if it no longer holds the slot."""
        if self._pending is not pending or self._committed:
            return False
        self._pending = None
        self._committed = True
        return True

    def release(self, pending: PendingNavigation) -> None:
        if self._pending is pending:
            self._pending = None
