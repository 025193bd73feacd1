# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""User-facing notices with duplicate suppression.

Presentation is external: a ``NotificationSink`` receives each notice that
survives deduplication.  The default ``LoggingSink`` writes to the log.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol, runtime_checkable

from .errors import (
    BuiltinSiteError,
    CapacityError,
    DuplicateSiteError,
    SearchFiltersError,
    SiteNotFoundError,
    StorageError,
    UnknownSelectionError,
    ValidationError,
    ValidationReason,
)
from .sanitizer import strip_hidden_chars

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = 1.0

class NoticeKind(StrEnum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class Notice:
    message: str
    kind: NoticeKind
    timestamp: float


@runtime_checkable
class NotificationSink(Protocol):
    def show(self, notice: Notice) -> None: ...


class LoggingSink:
    """Sink that writes notices to the ``searchfilters.notice`` logger."""

    _LEVELS = {
        NoticeKind.INFO: logging.INFO,
        NoticeKind.SUCCESS: logging.INFO,
        NoticeKind.WARNING: logging.WARNING,
        NoticeKind.ERROR: logging.ERROR,
    }

    def __init__(self) -> None:
        self._logger = logging.getLogger("searchfilters.notice")

    def show(self, notice: Notice) -> None:
        self._logger.log(self._LEVELS[notice.kind], "%s", notice.message)


class CollectingSink:
    """Keeps every notice in memory (CLI output, tests)."""

    def __init__(self) -> None:
        self.notices: list[Notice] = []

    def show(self, notice: Notice) -> None:
        self.notices.append(notice)

    @property
    def messages(self) -> list[str]:
        return [n.message for n in self.notices]


class NotificationDeduplicator:
    """Drop a message identical to the previous one when it arrives within *window* seconds."""

    def __init__(
        self,
        sink: NotificationSink | None = None,
        *,
        window: float = DEFAULT_WINDOW,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sink = sink or LoggingSink()
        self._window = window
        self._clock = clock
        self._last_message: str | None = None
        self._last_timestamp = 0.0
        self._suppressed = 0

    @property
    def suppressed(self) -> int:
        return self._suppressed

    def notify(self, message: str, kind: NoticeKind = NoticeKind.INFO) -> bool:
        """Forward *message* to the sink.  Returns False when empty or suppressed."""
        text = strip_hidden_chars(message or "").strip()
        if not text:
            return False
        now = self._clock()
        if text == self._last_message and now - self._last_timestamp < self._window:
            self._suppressed += 1
            logger.debug("Suppressed duplicate notice: %s", text)
            return False
        self._last_message = text
        self._last_timestamp = now
        self._sink.show(Notice(message=text, kind=kind, timestamp=now))
        return True

    def reset(self) -> None:
        self._last_message = None
        self._last_timestamp = 0.0


# ---------------------------------------------------------------------------
# Error -> message
# ---------------------------------------------------------------------------

_VALIDATION_MESSAGES: dict[ValidationReason, str] = {
    ValidationReason.EMPTY: "Site name and URL are required",
    ValidationReason.TOO_LONG: "Site name too long",
    ValidationReason.INVALID_CHARACTERS: "Invalid characters in site name",
    ValidationReason.INVALID_DOMAIN_SYNTAX: "Invalid URL format",
    ValidationReason.DUPLICATE: "Site already exists",
}


def message_for(exc: SearchFiltersError) -> str:
    """User-facing text for an engine error."""
    if isinstance(exc, ValidationError):
        return _VALIDATION_MESSAGES[exc.reason]
    if isinstance(exc, CapacityError):
        return "Maximum number of custom sites reached"
    if isinstance(exc, DuplicateSiteError):
        return "Site already exists"
    if isinstance(exc, BuiltinSiteError):
        return "Cannot remove default sites"
    if isinstance(exc, SiteNotFoundError):
        return "Site not found"
    if isinstance(exc, UnknownSelectionError):
        return "Filter option is no longer available"
    if isinstance(exc, StorageError):
        return "Error saving settings"
    return "Something went wrong"
