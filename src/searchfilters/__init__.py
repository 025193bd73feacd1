# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Search Filters: filter state and address synchronization for search results pages.

Keeps three representations of the same filter selection consistent:
- the in-memory selection (one canonical code per FilterCategory)
- an origin-scoped persistent key-value store
- the page address query parameters (q, lr, tbs, hl, gl)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import assert_never


class FilterCategory(StrEnum):
    """The five independent filter axes."""

    RESULT_LANGUAGE = "result_language"
    INTERFACE_LANGUAGE = "interface_language"
    REGION = "region"
    TIME_WINDOW = "time_window"
    SITE = "site"


ALL = "all"
AUTO = "auto"


def default_code(category: FilterCategory) -> str:
    """Neutral code meaning "no restriction" for *category*."""
    match category:
        case FilterCategory.RESULT_LANGUAGE | FilterCategory.TIME_WINDOW | FilterCategory.SITE:
            return ALL
        case FilterCategory.INTERFACE_LANGUAGE | FilterCategory.REGION:
            return AUTO
        case _:
            assert_never(category)


# ---------------------------------------------------------------------------
# Category-specific payloads
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class LanguagePayload:
    """Payload for result language, interface language and region.

    ``external_code`` is the value the search engine expects in its query
    parameter; None means "no parameter".
    """

    external_code: str | None = None


@dataclass(frozen=True, slots=True)
class TimePayload:
    """Relative-duration token (d/w/m/y), "" for no restriction, or a custom marker."""

    token: str = ""

    @property
    def is_custom(self) -> bool:
        return self.token.startswith("custom:")


@dataclass(frozen=True, slots=True)
class SitePayload:
    fragment: str  # e.g. "site:reddit.com"; "" for the neutral entry
    domain: str
    icon_url: str = ""


Payload = LanguagePayload | TimePayload | SitePayload


@dataclass(frozen=True, slots=True)
class FilterDefinition:
    """A selectable value within one FilterCategory."""

    code: str
    display_name: str
    short_label: str
    payload: Payload
    description: str = ""


@dataclass(frozen=True, slots=True)
class CustomSite:
    """A user-added site restriction, validated before it reaches the catalog."""

    key: str
    name: str
    domain: str
    restriction_fragment: str
    icon_url: str
    short_label: str

    def to_definition(self) -> FilterDefinition:
        return FilterDefinition(
            code=self.key,
            display_name=self.name,
            short_label=self.short_label,
            payload=SitePayload(
                fragment=self.restriction_fragment,
                domain=self.domain,
                icon_url=self.icon_url,
            ),
        )


# Mapping FilterCategory -> selected code.  Full states always carry all five keys;
# address parsing produces partial states.
FilterState = dict[FilterCategory, str]


def default_state() -> FilterState:
    return {category: default_code(category) for category in FilterCategory}


__version__ = "0.3.0"
