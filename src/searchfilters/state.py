# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""FilterStateManager: sole owner of the current selection and persistence flags.

Every mutation is validated against the catalog first; a write to the store
follows only when the category's persistence flag is on.  Store failures
degrade to in-memory behaviour (the selection still changes).

Idempotence: selecting the current value, or clearing an all-default state,
performs no store write.
"""

from __future__ import annotations

import logging

from . import FilterCategory, FilterState, default_code, default_state
from .catalog import FilterCatalog
from .errors import StorageError, UnknownSelectionError
from .storage import PersistentStore, StoreResult

logger = logging.getLogger(__name__)

PersistenceSettings = dict[FilterCategory, bool]

# Absence of a stored flag: remember languages, forget the rest.
DEFAULT_PERSISTENCE: dict[FilterCategory, bool] = {
    FilterCategory.RESULT_LANGUAGE: True,
    FilterCategory.INTERFACE_LANGUAGE: True,
    FilterCategory.REGION: False,
    FilterCategory.TIME_WINDOW: False,
    FilterCategory.SITE: False,
}


class FilterStateManager:
    """In-memory FilterState + PersistenceSettings, reconciled with a PersistentStore."""

    def __init__(self, catalog: FilterCatalog, store: PersistentStore) -> None:
        self._catalog = catalog
        self._store = store
        self._state: FilterState = default_state()
        self._persistence: PersistenceSettings = {
            category: store.load_persistence(category, DEFAULT_PERSISTENCE[category]) for category in FilterCategory
        }
        self._auto_open = store.load_auto_open()
        self._last_rejection: UnknownSelectionError | None = None
        self._last_store_error: StorageError | None = None

    # -- Read access (copies; callers never mutate owned state) --

    @property
    def state(self) -> FilterState:
        return dict(self._state)

    @property
    def persistence(self) -> PersistenceSettings:
        return dict(self._persistence)

    @property
    def auto_open(self) -> bool:
        return self._auto_open

    @property
    def last_rejection(self) -> UnknownSelectionError | None:
        """The rejection raised by the most recent ``select``/``clear`` call, if any."""
        return self._last_rejection

    @property
    def last_store_error(self) -> StorageError | None:
        """The first store failure of the most recent mutation, if any.  Memory still changed."""
        return self._last_store_error

    def selected(self, category: FilterCategory) -> str:
        return self._state[category]

    def is_default(self, category: FilterCategory) -> bool:
        return self._state[category] == default_code(category)

    def has_active_filters(self) -> bool:
        return not all(self.is_default(category) for category in FilterCategory)

    def active_summary(self) -> tuple[int, str]:
        """(count, "TR + REDDIT") over non-default categories, in category order."""
        labels: list[str] = []
        for category in FilterCategory:
            if self.is_default(category):
                continue
            definition = self._catalog.find(category, self._state[category])
            if definition is not None:
                labels.append(definition.short_label)
        return len(labels), " + ".join(labels)

    # -- Load --

    def load_initial(self) -> FilterState:
        """Rebuild the selection from the store, honouring persistence flags.

        Unknown or absent stored codes fall back to the category default.
        """
        for category in FilterCategory:
            code = default_code(category)
            if self._persistence[category]:
                stored = self._store.load_selection(category)
                if stored is not None and self._catalog.contains(category, stored):
                    code = stored
                elif stored is not None:
                    logger.debug("Ignoring stored %s=%r (not in catalog)", category, stored)
            self._state[category] = code
        logger.debug("Initial state loaded: %s", self._state)
        return self.state

    def merge_from_address(self, partial: FilterState) -> FilterState:
        """Adopt values parsed from the page address.

        In-memory state always follows the address; the store is updated only
        for categories whose persistence flag is on and whose stored value differs.
        Codes not present in the catalog are ignored.
        """
        for category, code in partial.items():
            if not self._catalog.contains(category, code):
                logger.debug("Address value %s=%r not in catalog, ignoring", category, code)
                continue
            self._state[category] = code
            if self._persistence[category] and self._store.load_selection(category) != code:
                self._store.save_selection(category, code)
        return self.state

    # -- Mutations --

    def _record(self, result: StoreResult) -> None:
        if not result.ok and self._last_store_error is None:
            self._last_store_error = result.error

    def select(self, category: FilterCategory, code: str) -> FilterState:
        """Select *code* in *category* and persist it when the flag is on.

        No-op when *code* is already selected.  An unknown code is rejected:
        the state is unchanged and ``last_rejection`` records the reason.
        """
        self._last_rejection = None
        self._last_store_error = None
        if self._state[category] == code:
            return self.state
        if not self._catalog.contains(category, code):
            self._last_rejection = UnknownSelectionError(category.value, code)
            logger.warning("Rejected selection: %s", self._last_rejection)
            return self.state

        self._state[category] = code
        if self._persistence[category]:
            self._record(self._store.save_selection(category, code))
        logger.debug("Selected %s=%s", category, code)
        return self.state

    def clear(self, category: FilterCategory) -> FilterState:
        return self.select(category, default_code(category))

    def clear_all(self) -> FilterState:
        """Reset every category to its default.  No-op when already all-default."""
        self._last_rejection = None
        self._last_store_error = None
        if not self.has_active_filters():
            return self.state
        for category in FilterCategory:
            code = default_code(category)
            self._state[category] = code
            if self._persistence[category]:
                self._record(self._store.save_selection(category, code))
        logger.debug("All filters cleared")
        return self.state

    def set_persistence(self, category: FilterCategory, enabled: bool) -> PersistenceSettings:
        """Toggle "remember across navigations" for one category.

        Disabling removes the stored selection but keeps the in-memory one;
        enabling immediately stores the in-memory selection.
        """
        self._last_store_error = None
        if self._persistence[category] == enabled:
            return self.persistence
        self._persistence[category] = enabled
        self._record(self._store.save_persistence(category, enabled))
        if enabled:
            self._record(self._store.save_selection(category, self._state[category]))
        else:
            self._record(self._store.clear_selection(category))
        logger.debug("Persistence %s=%s", category, enabled)
        return self.persistence

    def set_auto_open(self, enabled: bool) -> bool:
        self._last_store_error = None
        if self._auto_open != enabled:
            self._auto_open = enabled
            self._record(self._store.save_auto_open(enabled))
        return self._auto_open
