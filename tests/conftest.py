# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared test configuration and fixtures."""

try:
    import searchfilters  # noqa: F401
except ImportError:
    raise ImportError("searchfilters is not installed. Run: pip install -e '.[dev]'") from None

from datetime import date

import pytest

from searchfilters.notifications import CollectingSink
from searchfilters.session import FilterSession, RecordingNavigator
from searchfilters.storage import InMemoryBackend

TODAY = date(2024, 6, 15)

RESULTS_URL = "https://www.google.com/search?q=foo"


class FakeHandle:
    """Handle returned by FakeLoop.call_later."""

    def __init__(self, when: float, seq: int, callback, args) -> None:
        self.when = when
        self.seq = seq
        self.callback = callback
        self.args = args
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeLoop:
    """Manually advanced stand-in for ``loop.call_later``; also serves as the clock."""

    def __init__(self) -> None:
        self.now = 0.0
        self._handles: list[FakeHandle] = []
        self._seq = 0

    def __call__(self) -> float:
        return self.now

    def call_later(self, delay, callback, *args) -> FakeHandle:
        self._seq += 1
        handle = FakeHandle(self.now + delay, self._seq, callback, args)
        self._handles.append(handle)
        return handle

    @property
    def pending(self) -> list[FakeHandle]:
        return [h for h in self._handles if not h.cancelled and not h.fired]

    def advance(self, seconds: float) -> None:
        """Move time forward, firing due callbacks in schedule order."""
        target = self.now + seconds
        while True:
            due = [h for h in self.pending if h.when <= target]
            if not due:
                break
            handle = min(due, key=lambda h: (h.when, h.seq))
            self.now = handle.when
            handle.fired = True
            handle.callback(*handle.args)
        self.now = target


@pytest.fixture
def fake_loop() -> FakeLoop:
    return FakeLoop()


@pytest.fixture
def backend() -> InMemoryBackend:
    return InMemoryBackend()


@pytest.fixture
def sink() -> CollectingSink:
    return CollectingSink()


@pytest.fixture
def navigator() -> RecordingNavigator:
    return RecordingNavigator()


@pytest.fixture
def make_session(backend, fake_loop, sink, navigator):
    """Factory: ``make_session(address, **overrides)`` sharing the fixtures above."""

    def _make(address: str = RESULTS_URL, **overrides) -> FilterSession:
        kwargs = {
            "backend": backend,
            "navigator": navigator,
            "loop": fake_loop,
            "sink": sink,
            "today": lambda: TODAY,
            "clock": fake_loop,
        }
        kwargs.update(overrides)
        return FilterSession(address, **kwargs)

    return _make
