# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""PersistentStore: origin-scoped key-value persistence with graceful degradation.

Defines ``StorageBackend`` (runtime-checkable Protocol) with two
implementations:

- ``InMemoryBackend``: tests and one-shot runs; optional byte quota.
- ``JsonFileBackend``: one JSON document per origin under a directory.

``PersistentStore`` sits on top and never raises: writes return a
``StoreResult``, reads return the value or None, and a JSON value that fails
to parse is deleted and reported through the result.

Key scheme (prefix configurable, default ``googleSearch``)::

    <prefix><Cat>           selected code per category
    <prefix>Persist<Cat>    "true" / "false"
    <prefix>CustomSites     JSON object {key: site record}, built-ins excluded
    <prefix>AutoOpen        "true" / "false"
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol, assert_never, runtime_checkable

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from . import CustomSite, FilterCategory
from .errors import StorageError, StorageErrorKind

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


def _category_suffix(category: FilterCategory) -> str:
    match category:
        case FilterCategory.RESULT_LANGUAGE:
            return "SearchLang"
        case FilterCategory.INTERFACE_LANGUAGE:
            return "InterfaceLang"
        case FilterCategory.REGION:
            return "Region"
        case FilterCategory.TIME_WINDOW:
            return "Time"
        case FilterCategory.SITE:
            return "Site"
        case _:
            assert_never(category)


@dataclass(frozen=True, slots=True)
class StorageKeys:
    prefix: str = "googleSearch"

    def selection(self, category: FilterCategory) -> str:
        return f"{self.prefix}{_category_suffix(category)}"

    def persistence(self, category: FilterCategory) -> str:
        return f"{self.prefix}Persist{_category_suffix(category)}"

    @property
    def custom_sites(self) -> str:
        return f"{self.prefix}CustomSites"

    @property
    def auto_open(self) -> str:
        return f"{self.prefix}AutoOpen"


# ---------------------------------------------------------------------------
# Stored custom-site record
# ---------------------------------------------------------------------------


class StoredCustomSite(BaseModel):
    """Schema of one persisted custom-site record (field names match the stored JSON)."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    name: str = Field(min_length=1)
    domain: str = Field(min_length=1)
    query: str = Field(min_length=1)
    short: str | None = None
    icon: str | None = None

    @classmethod
    def from_site(cls, site: CustomSite) -> StoredCustomSite:
        return cls(
            name=site.name,
            domain=site.domain,
            query=site.restriction_fragment,
            short=site.short_label,
            icon=site.icon_url,
        )


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


@runtime_checkable
class StorageBackend(Protocol):
    """Synchronous string key-value store.  ``set_item`` may raise StorageError or OSError."""

    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...

    def keys(self) -> list[str]: ...


class InMemoryBackend:
    """Dict-backed store.  ``quota_bytes`` caps the summed key+value length."""

    def __init__(self, initial: Mapping[str, str] | None = None, *, quota_bytes: int | None = None) -> None:
        self._items: dict[str, str] = dict(initial or {})
        self._quota_bytes = quota_bytes
        self._writes: list[tuple[str, str]] = []

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        if self._quota_bytes is not None:
            used = sum(len(k) + len(v) for k, v in self._items.items() if k != key)
            if used + len(key) + len(value) > self._quota_bytes:
                raise StorageError(f"quota exceeded writing {key}", key=key, kind=StorageErrorKind.QUOTA)
        self._items[key] = value
        self._writes.append((key, value))

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._items)

    # ── Convenience accessors (not part of Protocol) ──────────────

    @property
    def items(self) -> dict[str, str]:
        """Snapshot of the stored items (testing/debugging)."""
        return dict(self._items)

    @property
    def writes(self) -> list[tuple[str, str]]:
        """Every successful ``set_item`` call in order (testing/debugging)."""
        return list(self._writes)


_UNSAFE_FILENAME_RE = re.compile(r"[^A-Za-z0-9._-]+")


def origin_filename(origin: str) -> str:
    """``https://www.google.com`` -> ``https_www.google.com.json``."""
    cleaned = _UNSAFE_FILENAME_RE.sub("_", origin.strip().lower()).strip("_")
    return f"{cleaned or 'default'}.json"


class JsonFileBackend:
    """One JSON object per origin, rewritten atomically on every mutation.

    A missing or unreadable file starts empty; an unreadable one is logged
    and overwritten on the next write.
    """

    def __init__(self, directory: str | os.PathLike[str], origin: str) -> None:
        self._directory = Path(directory)
        self._path = self._directory / origin_filename(origin)
        self._items: dict[str, str] = self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, str]:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Store file unreadable, starting empty: %s (%s)", self._path, exc)
            return {}
        try:
            data = json.loads(raw)
        except (ValueError, RecursionError) as exc:
            logger.warning("Store file corrupt, starting empty: %s (%s)", self._path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Store file is not an object, starting empty: %s", self._path)
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _flush(self, items: dict[str, str]) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self._directory, prefix=".", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(items, fh, ensure_ascii=False, indent=2, sort_keys=True)
            os.replace(tmp, self._path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        updated = {**self._items, key: value}
        self._flush(updated)
        self._items = updated

    def remove_item(self, key: str) -> None:
        if key not in self._items:
            return
        updated = {k: v for k, v in self._items.items() if k != key}
        self._flush(updated)
        self._items = updated

    def keys(self) -> list[str]:
        return list(self._items)


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class StoreResult:
    """Outcome of a store operation.  ``value`` is None for writes and absent keys."""

    ok: bool
    value: Any = None
    error: StorageError | None = None


_OK = StoreResult(ok=True)


@dataclass
class StoreStats:
    """Counters for degraded operations (logging and CLI output)."""

    write_failures: int = 0
    parse_failures: int = 0
    purged_keys: list[str] = field(default_factory=list)


class PersistentStore:
    """Validated read/write over a StorageBackend.  Never raises past this boundary."""

    def __init__(self, backend: StorageBackend, keys: StorageKeys | None = None) -> None:
        self._backend = backend
        self._keys = keys or StorageKeys()
        self._stats = StoreStats()

    @property
    def keys(self) -> StorageKeys:
        return self._keys

    @property
    def stats(self) -> StoreStats:
        return self._stats

    # -- Primitive operations --

    def read_string(self, key: str) -> str | None:
        try:
            return self._backend.get_item(key)
        except (StorageError, OSError) as exc:
            logger.warning("Store read failed for %s: %s", key, exc)
            return None

    def write_string(self, key: str, value: str) -> StoreResult:
        try:
            self._backend.set_item(key, value)
        except StorageError as exc:
            return self._write_failed(key, exc)
        except OSError as exc:
            return self._write_failed(key, StorageError(str(exc), key=key, kind=StorageErrorKind.QUOTA))
        return _OK

    def remove(self, key: str) -> StoreResult:
        try:
            self._backend.remove_item(key)
        except StorageError as exc:
            return self._write_failed(key, exc)
        except OSError as exc:
            return self._write_failed(key, StorageError(str(exc), key=key, kind=StorageErrorKind.QUOTA))
        return _OK

    def read_json(self, key: str) -> StoreResult:
        """Parse a JSON value.  Absent -> ok with value None; corrupt -> key purged, error result."""
        raw = self.read_string(key)
        if raw is None:
            return _OK
        try:
            return StoreResult(ok=True, value=json.loads(raw))
        except (ValueError, RecursionError) as exc:
            self._stats.parse_failures += 1
            self._stats.purged_keys.append(key)
            logger.warning("Corrupt JSON under %s, purging: %s", key, exc)
            self.remove(key)
            return StoreResult(
                ok=False,
                error=StorageError(f"corrupt JSON under {key}: {exc}", key=key, kind=StorageErrorKind.PARSE),
            )

    def write_json(self, key: str, value: Any) -> StoreResult:
        try:
            serialized = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            return self._write_failed(
                key, StorageError(f"cannot serialize {key}: {exc}", key=key, kind=StorageErrorKind.SERIALIZATION)
            )
        return self.write_string(key, serialized)

    def read_flag(self, key: str, default: bool) -> bool:
        """Read a "true"/"false" flag; anything else (or absent) yields *default*."""
        raw = self.read_string(key)
        if raw == "true":
            return True
        if raw == "false":
            return False
        return default

    def write_flag(self, key: str, value: bool) -> StoreResult:
        return self.write_string(key, "true" if value else "false")

    def _write_failed(self, key: str, exc: StorageError) -> StoreResult:
        self._stats.write_failures += 1
        logger.warning("Store write failed for %s (%s), keeping in-memory value only: %s", key, exc.kind, exc)
        return StoreResult(ok=False, error=exc)

    # -- Domain helpers --

    def load_selection(self, category: FilterCategory) -> str | None:
        return self.read_string(self._keys.selection(category))

    def save_selection(self, category: FilterCategory, code: str) -> StoreResult:
        return self.write_string(self._keys.selection(category), code)

    def clear_selection(self, category: FilterCategory) -> StoreResult:
        return self.remove(self._keys.selection(category))

    def load_persistence(self, category: FilterCategory, default: bool) -> bool:
        return self.read_flag(self._keys.persistence(category), default)

    def save_persistence(self, category: FilterCategory, enabled: bool) -> StoreResult:
        return self.write_flag(self._keys.persistence(category), enabled)

    def load_auto_open(self) -> bool:
        return self.read_flag(self._keys.auto_open, True)

    def save_auto_open(self, enabled: bool) -> StoreResult:
        return self.write_flag(self._keys.auto_open, enabled)

    def load_custom_sites(self) -> tuple[dict[str, StoredCustomSite], StorageError | None]:
        """Return schema-valid stored records keyed by site key, plus any parse error.

        A payload that is not a JSON object is purged like a parse failure;
        individual records failing the schema are dropped.
        """
        key = self._keys.custom_sites
        result = self.read_json(key)
        if not result.ok:
            return {}, result.error
        if result.value is None:
            return {}, None
        if not isinstance(result.value, dict):
            logger.warning("Invalid custom sites data format under %s, purging", key)
            self._stats.purged_keys.append(key)
            self.remove(key)
            return {}, StorageError(f"{key} is not an object", key=key, kind=StorageErrorKind.PARSE)

        records: dict[str, StoredCustomSite] = {}
        for site_key, value in result.value.items():
            try:
                records[str(site_key)] = StoredCustomSite.model_validate(value)
            except pydantic.ValidationError as exc:
                logger.warning("Dropping invalid stored custom site %r: %d error(s)", site_key, exc.error_count())
        return records, None

    def save_custom_sites(self, sites: Mapping[str, CustomSite]) -> StoreResult:
        payload = {key: StoredCustomSite.from_site(site).model_dump() for key, site in sites.items()}
        return self.write_json(self._keys.custom_sites, payload)
