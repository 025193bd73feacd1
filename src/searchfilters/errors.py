# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Search Filters exception hierarchy.

All engine errors inherit from SearchFiltersError.  Lower layers (catalog,
validator, storage backends) raise them; the public operations of
FilterStateManager, PersistentStore and FilterSession catch them and return
a result or state instead.
"""

from __future__ import annotations

from enum import StrEnum


class SearchFiltersError(Exception):
    """Base exception for all Search Filters errors."""


class ValidationReason(StrEnum):
    EMPTY = "empty"
    TOO_LONG = "too-long"
    INVALID_CHARACTERS = "invalid-characters"
    INVALID_DOMAIN_SYNTAX = "invalid-domain-syntax"
    DUPLICATE = "duplicate"


class ValidationError(SearchFiltersError):
    """Bad custom-site input. State is never changed."""

    def __init__(self, reason: ValidationReason, message: str = "") -> None:
        super().__init__(message or reason.value)
        self.reason = reason


class StorageErrorKind(StrEnum):
    QUOTA = "quota"
    SERIALIZATION = "serialization"
    PARSE = "parse"


class StorageError(SearchFiltersError):
    """Persistent store write or parse failure."""

    def __init__(self, message: str, *, key: str = "", kind: StorageErrorKind = StorageErrorKind.QUOTA) -> None:
        super().__init__(message)
        self.key = key
        self.kind = kind


class UnknownSelectionError(SearchFiltersError):
    """A (category, code) pair that is not in the catalog, e.g. a removed custom site."""

    def __init__(self, category: str, code: str) -> None:
        super().__init__(f"unknown {category} code: {code!r}")
        self.category = category
        self.code = code


class CapacityError(SearchFiltersError):
    """Custom-site limit reached."""

    def __init__(self, message: str, *, limit: int = 0) -> None:
        super().__init__(message)
        self.limit = limit


class DuplicateSiteError(SearchFiltersError):
    """Custom-site key already present in the site category."""

    def __init__(self, key: str) -> None:
        super().__init__(f"site key already exists: {key!r}")
        self.key = key


class SiteNotFoundError(SearchFiltersError):
    def __init__(self, key: str) -> None:
        super().__init__(f"site not found: {key!r}")
        self.key = key


class BuiltinSiteError(SearchFiltersError):
    """Attempt to remove a built-in site definition."""

    def __init__(self, key: str) -> None:
        super().__init__(f"cannot remove built-in site: {key!r}")
        self.key = key
