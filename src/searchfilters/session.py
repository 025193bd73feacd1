# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""FilterSession: per-page context object and the single command dispatcher.

Built once per page load, torn down on unload.  Owns every component
(catalog, store, validator, state manager, address synchronizer, notifier,
timers, navigation guard); nothing is module-global.

Lifecycle::

    session = FilterSession(address, backend=..., navigator=...)
    session.load()                    # inbound parse + at most one corrective navigation
    session.dispatch(Command.select(FilterCategory.SITE, "reddit"))
    session.teardown()                # page unload

Navigation is two-phase: a ``NavigationPlan`` is prepared (confirmation
notice shown, guard slot claimed, commit timer scheduled) and later
committed.  Interface language and region always navigate in isolation
(only hl or gl changes); every other change on a results page rebuilds the
whole address from the state current at commit time.  Without a running
event loop there is nothing to defer on, so plans commit immediately.

No public method raises: failures come back as ``CommandResult`` /
``LoadReport`` values.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import date
from enum import StrEnum
from typing import Any, Protocol, assert_never, runtime_checkable
from urllib.parse import urlsplit

from . import FilterCategory, FilterState, default_code
from .address import AddressSynchronizer
from .catalog import FilterCatalog, category_title
from .config import EngineConfig
from .errors import CapacityError, SearchFiltersError, StorageError, UnknownSelectionError, ValidationError
from .notifications import NoticeKind, NotificationDeduplicator, NotificationSink, message_for
from .scheduling import Debouncer, NavigationGuard, PendingNavigation, TimerLoop, TimerRegistry
from .state import FilterStateManager
from .storage import PersistentStore, StorageBackend, StorageKeys
from .validation import CustomSiteValidator

logger = logging.getLogger(__name__)

_ISOLATED = frozenset({FilterCategory.INTERFACE_LANGUAGE, FilterCategory.REGION})


# ---------------------------------------------------------------------------
# Navigator
# ---------------------------------------------------------------------------


@runtime_checkable
class Navigator(Protocol):
    """Performs the actual page navigation (terminal for the page)."""

    def navigate(self, url: str) -> None: ...


class RecordingNavigator:
    """Navigator that only records target URLs (CLI, tests)."""

    def __init__(self) -> None:
        self.urls: list[str] = []

    def navigate(self, url: str) -> None:
        self.urls.append(url)


# ---------------------------------------------------------------------------
# Commands and results
# ---------------------------------------------------------------------------


class CommandAction(StrEnum):
    SELECT = "select"
    CLEAR = "clear"
    CLEAR_ALL = "clear_all"
    SET_PERSISTENCE = "set_persistence"
    SET_AUTO_OPEN = "set_auto_open"
    ADD_SITE = "add_site"
    REMOVE_SITE = "remove_site"


@dataclass(frozen=True, slots=True)
class Command:
    """A user action: ``{category, action, value}``."""

    action: CommandAction
    category: FilterCategory | None = None
    value: Any = None

    @classmethod
    def select(cls, category: FilterCategory, code: str) -> Command:
        return cls(CommandAction.SELECT, category, code)

    @classmethod
    def clear(cls, category: FilterCategory) -> Command:
        return cls(CommandAction.CLEAR, category)

    @classmethod
    def clear_all(cls) -> Command:
        return cls(CommandAction.CLEAR_ALL)

    @classmethod
    def persistence(cls, category: FilterCategory, enabled: bool) -> Command:
        return cls(CommandAction.SET_PERSISTENCE, category, enabled)

    @classmethod
    def auto_open(cls, enabled: bool) -> Command:
        return cls(CommandAction.SET_AUTO_OPEN, value=enabled)

    @classmethod
    def add_site(cls, name: str, domain: str, short_label: str | None = None) -> Command:
        return cls(CommandAction.ADD_SITE, FilterCategory.SITE, (name, domain, short_label))

    @classmethod
    def remove_site(cls, key: str) -> Command:
        return cls(CommandAction.REMOVE_SITE, FilterCategory.SITE, key)


class NavigationKind(StrEnum):
    APPLY = "apply"  # full rebuild after a user action
    ISOLATED = "isolated"  # hl or gl only
    CORRECTIVE = "corrective"  # load-time consistency fix


@dataclass
class NavigationPlan:
    """Prepared navigation.  For APPLY the target is recomputed at commit time."""

    kind: NavigationKind
    target: str
    confirmation: str
    delay: float
    pending: PendingNavigation = field(repr=False)
    committed_to: str | None = None


@dataclass(frozen=True, slots=True)
class CommandResult:
    ok: bool
    state: FilterState
    message: str = ""
    error: SearchFiltersError | None = None
    navigation: NavigationPlan | None = None


@dataclass(frozen=True, slots=True)
class LoadReport:
    state: FilterState
    results_page: bool
    consistent: bool
    navigated_to: str | None = None
    skipped: bool = False  # host not recognized


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class FilterSession:
    """Per-page engine context.  See module docstring for the lifecycle."""

    def __init__(
        self,
        address: str,
        *,
        backend: StorageBackend,
        navigator: Navigator | None = None,
        config: EngineConfig | None = None,
        loop: TimerLoop | None = None,
        sink: NotificationSink | None = None,
        today: Callable[[], date] = date.today,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or EngineConfig()
        self._address = address
        self._navigator = navigator or RecordingNavigator()
        self._navigated_to: str | None = None

        cfg = self._config
        self._catalog = FilterCatalog(max_custom_sites=cfg.max_custom_sites)
        self._store = PersistentStore(backend, StorageKeys(cfg.storage_prefix))
        self._validator = CustomSiteValidator(
            self._catalog,
            max_name_length=cfg.max_site_name_length,
            short_label_length=cfg.short_label_length,
        )
        self._notifier = NotificationDeduplicator(sink, window=cfg.notification_window, clock=clock)
        self._timers = TimerRegistry(loop)
        self._guard = NavigationGuard()

        # Custom sites must be in the catalog before stored selections are validated.
        self._load_custom_sites()
        self._manager = FilterStateManager(self._catalog, self._store)
        self._synchronizer = AddressSynchronizer(self._catalog, cfg, today=today)

    # -- Accessors --

    @property
    def address(self) -> str:
        return self._address

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def catalog(self) -> FilterCatalog:
        return self._catalog

    @property
    def store(self) -> PersistentStore:
        return self._store

    @property
    def manager(self) -> FilterStateManager:
        return self._manager

    @property
    def synchronizer(self) -> AddressSynchronizer:
        return self._synchronizer

    @property
    def notifier(self) -> NotificationDeduplicator:
        return self._notifier

    @property
    def timers(self) -> TimerRegistry:
        return self._timers

    @property
    def guard(self) -> NavigationGuard:
        return self._guard

    @property
    def state(self) -> FilterState:
        return self._manager.state

    @property
    def navigated_to(self) -> str | None:
        return self._navigated_to

    def is_results_page(self) -> bool:
        return self._synchronizer.is_results_page(self._address)

    # -- Startup --

    def _load_custom_sites(self) -> None:
        records, error = self._store.load_custom_sites()
        if error is not None:
            logger.warning("Custom sites purged: %s", error)
        sites = []
        for key, record in records.items():
            try:
                sites.append(self._validator.from_stored(key, record))
            except ValidationError as exc:
                logger.warning("Dropping stored custom site %r: %s", key, exc.reason)
        added = self._catalog.add_custom_sites(sites)
        if added:
            logger.debug("Loaded %d custom site(s)", added)

    def load(self) -> LoadReport:
        """Load-time synchronization: stored state, then address, then at most one corrective navigation."""
        try:
            return self._load()
        except Exception:
            logger.exception("Load failed for %s", self._address)
            return LoadReport(state=self._manager.state, results_page=False, consistent=True)

    def _load(self) -> LoadReport:
        host = urlsplit(self._address).hostname or ""
        if self._config.recognized_host not in host:
            logger.info("Host %r not recognized, skipping", host)
            return LoadReport(state=self._manager.state, results_page=False, consistent=True, skipped=True)

        self._manager.load_initial()
        state = self._manager.merge_from_address(self._synchronizer.sync_from_address(self._address))

        if not self.is_results_page():
            return LoadReport(state=state, results_page=False, consistent=True)
        if self._synchronizer.matches(self._address, state):
            return LoadReport(state=state, results_page=True, consistent=True)

        target = self._synchronizer.apply_to_address(self._address, state)
        if target == self._address:
            logger.warning("Address inconsistent but rebuild is identical, not navigating: %s", target)
            return LoadReport(state=state, results_page=True, consistent=False)

        plan = self._prepare(NavigationKind.CORRECTIVE, target, confirmation="", delay=0.0)
        navigated = self.commit(plan) if plan is not None else None
        return LoadReport(state=state, results_page=True, consistent=False, navigated_to=navigated)

    # -- Navigation (two-phase) --

    def _prepare(self, kind: NavigationKind, target: str, *, confirmation: str, delay: float) -> NavigationPlan | None:
        """Claim the guard slot and show the confirmation.  None when a navigation is already pending."""
        pending = self._guard.claim(kind.value)
        if pending is None:
            return None
        if confirmation:
            self._notifier.notify(confirmation, NoticeKind.INFO)
        return NavigationPlan(kind=kind, target=target, confirmation=confirmation, delay=delay, pending=pending)

    def _schedule(self, plan: NavigationPlan) -> NavigationPlan | None:
        try:
            handle = self._timers.call_later(plan.delay, self.commit, plan)
        except RuntimeError:
            # No event loop to defer on: navigate now.
            logger.debug("No running event loop, committing %s navigation immediately", plan.kind)
            self.commit(plan)
            return plan
        if handle is None:
            self._guard.release(plan.pending)
            return None
        plan.pending.handle = handle
        return plan

    def commit(self, plan: NavigationPlan) -> str | None:
        """Navigate now.  Idempotent; returns the URL navigated to, or None if the plan lost its slot."""
        if plan.committed_to is not None:
            return plan.committed_to
        if self._guard.pending is not plan.pending:
            return None
        self._timers.cancel(plan.pending.handle)

        target = plan.target
        if plan.kind is NavigationKind.APPLY:
            target = self._synchronizer.apply_to_address(self._address, self._manager.state)

        try:
            self._navigator.navigate(target)
        except Exception:
            # Not retried: the next load's consistency check catches whatever is left.
            logger.exception("Navigation to %s failed", target)
            self._guard.release(plan.pending)
            return None

        self._guard.commit(plan.pending)
        plan.committed_to = target
        self._navigated_to = target
        logger.info("Navigated (%s): %s", plan.kind, target)
        return target

    def _plan_apply(self) -> NavigationPlan | None:
        if not self.is_results_page():
            return None
        target = self._synchronizer.apply_to_address(self._address, self._manager.state)
        plan = self._prepare(NavigationKind.APPLY, target, confirmation="", delay=self._config.apply_delay)
        return self._schedule(plan) if plan is not None else None

    def _plan_isolated(self, category: FilterCategory, code: str) -> NavigationPlan | None:
        definition = self._catalog.find(category, code)
        name = definition.display_name if definition else code
        target = self._synchronizer.isolated_address(self._address, category, code)
        plan = self._prepare(
            NavigationKind.ISOLATED,
            target,
            confirmation=f"Switching to {name}...",
            delay=self._config.isolated_navigation_delay,
        )
        return self._schedule(plan) if plan is not None else None

    # -- Commands --

    def dispatch(self, command: Command) -> CommandResult:
        """Run one user action.  Never raises."""
        try:
            return self._dispatch(command)
        except SearchFiltersError as exc:
            message = message_for(exc)
            self._notifier.notify(message, NoticeKind.WARNING)
            return CommandResult(ok=False, state=self._manager.state, message=message, error=exc)
        except Exception:
            logger.exception("Command %s failed", command.action)
            return CommandResult(ok=False, state=self._manager.state, message="Something went wrong")

    def _dispatch(self, command: Command) -> CommandResult:
        action = command.action
        match action:
            case CommandAction.SELECT:
                return self._change(_require_category(command), str(command.value))
            case CommandAction.CLEAR:
                category = _require_category(command)
                return self._change(category, default_code(category))
            case CommandAction.CLEAR_ALL:
                return self._clear_all()
            case CommandAction.SET_PERSISTENCE:
                return self._set_persistence(_require_category(command), bool(command.value))
            case CommandAction.SET_AUTO_OPEN:
                return self._set_auto_open(bool(command.value))
            case CommandAction.ADD_SITE:
                name, domain, short_label = command.value
                return self._add_site(name, domain, short_label)
            case CommandAction.REMOVE_SITE:
                return self._remove_site(str(command.value))
            case _:
                assert_never(action)

    def _change(self, category: FilterCategory, code: str) -> CommandResult:
        before = self._manager.selected(category)
        state = self._manager.select(category, code)
        rejection: UnknownSelectionError | None = self._manager.last_rejection
        if rejection is not None:
            return CommandResult(ok=False, state=state, error=rejection)
        if state[category] == before:
            return CommandResult(ok=True, state=state)
        unsaved = self._warn_if_unsaved()

        if category in _ISOLATED:
            plan = self._plan_isolated(category, code)
            return CommandResult(
                ok=True, state=state, message=plan.confirmation if plan else "", error=unsaved, navigation=plan
            )

        if code == default_code(category):
            message = f"{category_title(category)} cleared"
        else:
            definition = self._catalog.find(category, code)
            message = f"{definition.display_name if definition else code} selected"
        self._notifier.notify(message, NoticeKind.SUCCESS)
        return CommandResult(ok=True, state=state, message=message, error=unsaved, navigation=self._plan_apply())

    def _clear_all(self) -> CommandResult:
        if not self._manager.has_active_filters():
            return CommandResult(ok=True, state=self._manager.state)
        state = self._manager.clear_all()
        unsaved = self._warn_if_unsaved()
        message = "All filters cleared"
        self._notifier.notify(message, NoticeKind.SUCCESS)
        return CommandResult(ok=True, state=state, message=message, error=unsaved, navigation=self._plan_apply())

    def _set_persistence(self, category: FilterCategory, enabled: bool) -> CommandResult:
        self._manager.set_persistence(category, enabled)
        unsaved = self._warn_if_unsaved()
        message = f"{category_title(category)} persistence {'enabled' if enabled else 'disabled'}"
        self._notifier.notify(message, NoticeKind.SUCCESS)
        return CommandResult(ok=True, state=self._manager.state, message=message, error=unsaved)

    def _set_auto_open(self, enabled: bool) -> CommandResult:
        self._manager.set_auto_open(enabled)
        unsaved = self._warn_if_unsaved()
        message = f"Auto-open panel {'enabled' if enabled else 'disabled'}"
        self._notifier.notify(message, NoticeKind.SUCCESS)
        return CommandResult(ok=True, state=self._manager.state, message=message, error=unsaved)

    def _warn_if_unsaved(self) -> StorageError | None:
        """Surface a failed store write from the last mutation; the in-memory change stands."""
        error = self._manager.last_store_error
        if error is not None:
            self._notifier.notify(message_for(error), NoticeKind.WARNING)
        return error

    def _add_site(self, name: str, domain: str, short_label: str | None) -> CommandResult:
        if self._catalog.is_full():
            raise CapacityError("custom site limit reached", limit=self._catalog.capacity)
        site = self._validator.validate(name, domain, short_label)
        self._catalog.add_custom_site(site)
        if not self._store.save_custom_sites(self._catalog.custom_sites()).ok:
            self._notifier.notify("Error saving custom sites", NoticeKind.WARNING)
        message = f"{site.name} added successfully"
        self._notifier.notify(message, NoticeKind.SUCCESS)
        return CommandResult(ok=True, state=self._manager.state, message=message)

    def _remove_site(self, key: str) -> CommandResult:
        self._catalog.remove_custom_site(key)
        if self._manager.selected(FilterCategory.SITE) == key:
            self._manager.clear(FilterCategory.SITE)
        if not self._store.save_custom_sites(self._catalog.custom_sites()).ok:
            self._notifier.notify("Error saving custom sites", NoticeKind.WARNING)
        message = "Site removed successfully"
        self._notifier.notify(message, NoticeKind.SUCCESS)
        return CommandResult(ok=True, state=self._manager.state, message=message)

    # -- Misc --

    def augment_submission(self, fields: Mapping[str, str]) -> dict[str, str]:
        """Fields for a search form submission with the active restrictions added."""
        return self._synchronizer.augment_submission(fields, self._manager.state)

    def debounce(self, func: Callable[..., Any], wait: float | None = None) -> Debouncer:
        """Debounced wrapper for resize/scroll style handlers; cancelled by ``teardown()``."""
        return Debouncer(self._timers, func, self._config.debounce_delay if wait is None else wait)

    def teardown(self) -> int:
        """Page unload: cancel every outstanding timer.  Returns how many were cancelled."""
        pending = self._guard.pending
        if pending is not None:
            self._guard.release(pending)
        self._notifier.reset()
        return self._timers.teardown()


def _require_category(command: Command) -> FilterCategory:
    if command.category is None:
        raise ValueError(f"{command.action} requires a category")
    return FilterCategory(command.category)
