# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""FilterCatalog: registry of filter categories and their legal values.

Leaf module apart from the data model.  Built-in definitions are immutable;
the only mutation is appending/removing custom entries in the ``site``
category.  Neutral values (``all`` / ``auto``) can never be removed.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import assert_never

from . import (
    ALL,
    AUTO,
    CustomSite,
    FilterCategory,
    FilterDefinition,
    LanguagePayload,
    SitePayload,
    TimePayload,
    default_code,
)
from .errors import BuiltinSiteError, CapacityError, DuplicateSiteError, SiteNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_MAX_CUSTOM_SITES = 50

TWO_YEAR_TOKEN = "custom:2y"

BUILTIN_SITE_KEYS: tuple[str, ...] = ("reddit", "github", "eksisozluk", "donanimhaber")


def category_title(category: FilterCategory) -> str:
    """Human title used in confirmation messages."""
    match category:
        case FilterCategory.RESULT_LANGUAGE:
            return "Results Language"
        case FilterCategory.INTERFACE_LANGUAGE:
            return "Interface Language"
        case FilterCategory.REGION:
            return "Geographic Region"
        case FilterCategory.TIME_WINDOW:
            return "Time Filter"
        case FilterCategory.SITE:
            return "Site Filter"
        case _:
            assert_never(category)


def _site(code: str, name: str, short: str, domain: str, icon_domain: str | None = None) -> FilterDefinition:
    return FilterDefinition(
        code=code,
        display_name=name,
        short_label=short,
        payload=SitePayload(
            fragment=f"site:{domain}",
            domain=domain,
            icon_url=f"https://{icon_domain or domain}/favicon.ico",
        ),
    )


_BUILTINS: dict[FilterCategory, tuple[FilterDefinition, ...]] = {
    FilterCategory.RESULT_LANGUAGE: (
        FilterDefinition(ALL, "All Languages", "ALL", LanguagePayload(None), "Search results in any language"),
        FilterDefinition("tr", "Turkish Only", "TR", LanguagePayload("tr"), "Only Turkish language search results"),
        FilterDefinition("en", "English Only", "EN", LanguagePayload("en"), "Only English language search results"),
    ),
    FilterCategory.INTERFACE_LANGUAGE: (
        FilterDefinition(
            AUTO, "Auto Detect", "AUTO", LanguagePayload(None), "Search engine detects the interface language"
        ),
        FilterDefinition("tr", "Turkish UI", "TR", LanguagePayload("tr"), "Display the interface in Turkish"),
        FilterDefinition("en", "English UI", "EN", LanguagePayload("en"), "Display the interface in English"),
    ),
    FilterCategory.REGION: (
        FilterDefinition(AUTO, "Auto Detect", "AUTO", LanguagePayload(None), "Search engine detects your location"),
        FilterDefinition("tr", "Turkey", "TR", LanguagePayload("TR"), "Show Turkey-specific results and local content"),
        FilterDefinition("us", "United States", "US", LanguagePayload("US"), "Show US-specific results and local content"),
    ),
    FilterCategory.TIME_WINDOW: (
        FilterDefinition(ALL, "All Time", "ALL", TimePayload("")),
        FilterDefinition("day", "Today", "TODAY", TimePayload("d")),
        FilterDefinition("week", "This Week", "WEEK", TimePayload("w")),
        FilterDefinition("month", "This Month", "MONTH", TimePayload("m")),
        FilterDefinition("year", "This Year", "YEAR", TimePayload("y")),
        FilterDefinition("2year", "Last 2 Years", "2 YEARS", TimePayload(TWO_YEAR_TOKEN)),
    ),
    FilterCategory.SITE: (
        FilterDefinition(ALL, "All Sites", "ALL", SitePayload(fragment="", domain="")),
        _site("reddit", "Reddit", "REDDIT", "reddit.com"),
        _site("github", "GitHub", "GITHUB", "github.com"),
        _site("eksisozluk", "Ekşi Sözlük", "EKŞİ", "eksisozluk.com"),
        _site("donanimhaber", "DONANIMHABER", "DH", "forum.donanimhaber.com", icon_domain="donanimhaber.com"),
    ),
}


class FilterCatalog:
    """Ordered definition sets per category, plus the custom-site delta.

    Custom entries are appended after the built-ins and never reordered.
    """

    def __init__(self, *, max_custom_sites: int = DEFAULT_MAX_CUSTOM_SITES) -> None:
        self._max_custom_sites = max_custom_sites
        self._definitions: dict[FilterCategory, dict[str, FilterDefinition]] = {
            category: {d.code: d for d in definitions} for category, definitions in _BUILTINS.items()
        }
        self._custom: dict[str, CustomSite] = {}

    # -- Lookup --

    def get(self, category: FilterCategory) -> tuple[FilterDefinition, ...]:
        return tuple(self._definitions[category].values())

    def find(self, category: FilterCategory, code: str) -> FilterDefinition | None:
        return self._definitions[category].get(code)

    def contains(self, category: FilterCategory, code: str) -> bool:
        return code in self._definitions[category]

    def default(self, category: FilterCategory) -> FilterDefinition:
        return self._definitions[category][default_code(category)]

    # -- Custom sites --

    @property
    def capacity(self) -> int:
        return self._max_custom_sites

    @property
    def custom_count(self) -> int:
        return len(self._custom)

    def is_full(self) -> bool:
        return len(self._custom) >= self._max_custom_sites

    def is_builtin_site(self, key: str) -> bool:
        return key == ALL or key in BUILTIN_SITE_KEYS

    def custom_sites(self) -> dict[str, CustomSite]:
        """Custom entries in insertion order (the persisted delta)."""
        return dict(self._custom)

    def add_custom_site(self, site: CustomSite) -> FilterDefinition:
        """Append *site* to the ``site`` category.

        Raises:
            DuplicateSiteError: key already used by a built-in or custom entry.
            CapacityError: the custom-site limit is reached.
        """
        sites = self._definitions[FilterCategory.SITE]
        if site.key in sites:
            raise DuplicateSiteError(site.key)
        if self.is_full():
            raise CapacityError(
                f"custom site limit reached ({self._max_custom_sites})",
                limit=self._max_custom_sites,
            )
        definition = site.to_definition()
        sites[site.key] = definition
        self._custom[site.key] = site
        logger.debug("Custom site added: key=%s domain=%s", site.key, site.domain)
        return definition

    def add_custom_sites(self, sites: Iterable[CustomSite]) -> int:
        """Bulk add for loading the persisted delta; skips rejected entries. Returns the count added."""
        added = 0
        for site in sites:
            try:
                self.add_custom_site(site)
            except (DuplicateSiteError, CapacityError) as exc:
                logger.warning("Skipping stored custom site %s: %s", site.key, exc)
                continue
            added += 1
        return added

    def remove_custom_site(self, key: str) -> CustomSite:
        """Remove a custom entry.

        Raises:
            BuiltinSiteError: *key* is a built-in (or the neutral ``all``) entry.
            SiteNotFoundError: no such key.
        """
        if self.is_builtin_site(key):
            raise BuiltinSiteError(key)
        site = self._custom.pop(key, None)
        if site is None:
            raise SiteNotFoundError(key)
        del self._definitions[FilterCategory.SITE][key]
        logger.debug("Custom site removed: key=%s", key)
        return site
