# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""AddressSynchronizer: FilterState <-> page address query parameters.

Three pure transforms over URLs:

- ``sync_from_address()``: address -> partial FilterState (inbound)
- ``apply_to_address()``: (address, state) -> new address (outbound)
- ``matches()``: consistency oracle used on load to avoid a redundant navigation

Parameter mapping::

    q    free text; may end with a site restriction ("foo site:reddit.com")
    lr   lang_<code>
    tbs  qdr:<d|w|m|y>  or  cdr:1,cd_min:M/D/YYYY,cd_max:M/D/YYYY
    hl   interface language
    gl   region

hl/gl are read on every page; q/lr/tbs only on a recognized results page
(``results_path`` with a non-empty ``q``).
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping
from datetime import date
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from . import (
    FilterCategory,
    FilterDefinition,
    FilterState,
    LanguagePayload,
    SitePayload,
    TimePayload,
    default_code,
)
from .catalog import TWO_YEAR_TOKEN, FilterCatalog
from .config import EngineConfig

logger = logging.getLogger(__name__)

Q, LR, TBS, HL, GL = "q", "lr", "tbs", "hl", "gl"

LANG_PREFIX = "lang_"
QDR_PREFIX = "qdr:"
CDR_PREFIX = "cdr:1,"

_DAYS_PER_YEAR = 365.25

_SITE_FRAGMENT_RE = re.compile(r"\s*site:\S+")
_CDR_RE = re.compile(r"cd_min:(\d{1,2})/(\d{1,2})/(\d{4}),cd_max:(\d{1,2})/(\d{1,2})/(\d{4})")

# Parameter owned by each address-level category.  Site lives inside q.
_ISOLATED_PARAMS: dict[FilterCategory, str] = {
    FilterCategory.INTERFACE_LANGUAGE: HL,
    FilterCategory.REGION: GL,
}


# ---------------------------------------------------------------------------
# Date helpers
# ---------------------------------------------------------------------------


def format_search_date(d: date) -> str:
    """M/D/YYYY without zero padding."""
    return f"{d.month}/{d.day}/{d.year}"


def _years_before(d: date, years: int) -> date:
    try:
        return d.replace(year=d.year - years)
    except ValueError:  # Feb 29 -> Mar 1
        return date(d.year - years, 3, 1)


def two_year_range(today: date) -> str:
    start = _years_before(today, 2)
    return f"cdr:1,cd_min:{format_search_date(start)},cd_max:{format_search_date(today)}"


def parse_custom_range(tbs: str) -> tuple[date, date] | None:
    """Extract (start, end) from a ``cdr`` value; None when absent or not a real date."""
    m = _CDR_RE.search(tbs)
    if m is None:
        return None
    sm, sd, sy, em, ed, ey = (int(g) for g in m.groups())
    try:
        return date(sy, sm, sd), date(ey, em, ed)
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Query helpers
# ---------------------------------------------------------------------------


def strip_site_fragments(query: str) -> str:
    return re.sub(r"\s+", " ", _SITE_FRAGMENT_RE.sub("", query)).strip()


def _first(params: list[tuple[str, str]], name: str) -> str:
    for key, value in params:
        if key == name:
            return value
    return ""


def _set_param(params: list[tuple[str, str]], name: str, value: str) -> list[tuple[str, str]]:
    """Replace the first *name* in place (dropping duplicates) or append it."""
    out: list[tuple[str, str]] = []
    placed = False
    for key, current in params:
        if key != name:
            out.append((key, current))
        elif not placed:
            out.append((name, value))
            placed = True
    if not placed:
        out.append((name, value))
    return out


def _delete_param(params: list[tuple[str, str]], name: str) -> list[tuple[str, str]]:
    return [(k, v) for k, v in params if k != name]


def _with_params(address: str, params: list[tuple[str, str]]) -> str:
    parts = urlsplit(address)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(params), parts.fragment))


class AddressSynchronizer:
    """Bidirectional bridge between FilterState and the page address."""

    def __init__(
        self,
        catalog: FilterCatalog,
        config: EngineConfig | None = None,
        *,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._catalog = catalog
        self._config = config or EngineConfig()
        self._today = today

    # -- Page classification --

    def is_results_page(self, address: str) -> bool:
        parts = urlsplit(address)
        if parts.path != self._config.results_path:
            return False
        return bool(_first(parse_qsl(parts.query, keep_blank_values=True), Q))

    # -- Time encoding --

    def is_two_year_range(self, tbs: str) -> bool:
        """True for a ``cdr`` range spanning two years give or take day-of-month drift."""
        if not tbs.startswith(CDR_PREFIX):
            return False
        span = parse_custom_range(tbs)
        if span is None:
            return False
        years = (span[1] - span[0]).days / _DAYS_PER_YEAR
        return self._config.two_year_min <= years <= self._config.two_year_max

    def encode_time(self, code: str) -> str | None:
        """tbs value for a time-window code; None for the neutral value."""
        definition = self._catalog.find(FilterCategory.TIME_WINDOW, code)
        if definition is None or not isinstance(definition.payload, TimePayload) or not definition.payload.token:
            return None
        if definition.payload.token == TWO_YEAR_TOKEN:
            return two_year_range(self._today())
        return f"{QDR_PREFIX}{definition.payload.token}"

    # -- Per-definition external values --

    def _external(self, category: FilterCategory, code: str) -> str | None:
        definition = self._catalog.find(category, code)
        if definition is None or not isinstance(definition.payload, LanguagePayload):
            return None
        return definition.payload.external_code

    def _fragment(self, code: str) -> str:
        definition = self._catalog.find(FilterCategory.SITE, code)
        if definition is None or not isinstance(definition.payload, SitePayload):
            return ""
        return definition.payload.fragment

    def _find_by_external(self, category: FilterCategory, value: str) -> FilterDefinition | None:
        wanted = value.casefold()
        for definition in self._catalog.get(category):
            payload = definition.payload
            if not isinstance(payload, LanguagePayload) or not payload.external_code:
                continue
            if payload.external_code.casefold() == wanted:
                return definition
        return None

    def detect_site(self, query: str) -> str | None:
        """Site code whose fragment appears as a token in *query*; longest fragment wins, then catalog order."""
        tokens = set(query.split())
        best: str | None = None
        best_len = 0
        for definition in self._catalog.get(FilterCategory.SITE):
            payload = definition.payload
            if not isinstance(payload, SitePayload) or not payload.fragment or payload.fragment not in tokens:
                continue
            if len(payload.fragment) > best_len:
                best, best_len = definition.code, len(payload.fragment)
        return best

    def detect_time(self, tbs: str) -> str | None:
        if tbs.startswith(CDR_PREFIX):
            if not self.is_two_year_range(tbs):
                return None
            for definition in self._catalog.get(FilterCategory.TIME_WINDOW):
                if isinstance(definition.payload, TimePayload) and definition.payload.token == TWO_YEAR_TOKEN:
                    return definition.code
            return None
        if not tbs.startswith(QDR_PREFIX):
            return None
        token = tbs.removeprefix(QDR_PREFIX)
        for definition in self._catalog.get(FilterCategory.TIME_WINDOW):
            payload = definition.payload
            if isinstance(payload, TimePayload) and payload.token and not payload.is_custom and payload.token == token:
                return definition.code
        return None

    # -- Inbound --

    def sync_from_address(self, address: str) -> FilterState:
        """Parse the address into a partial FilterState.

        Absent or unrecognized parameters are left out of the result, so the
        caller's value for that category is kept.
        """
        parts = urlsplit(address)
        params = parse_qsl(parts.query, keep_blank_values=True)
        found: FilterState = {}

        for category, name in _ISOLATED_PARAMS.items():
            value = _first(params, name)
            if not value:
                continue
            definition = self._find_by_external(category, value)
            if definition is not None:
                found[category] = definition.code
            else:
                logger.debug("Unrecognized %s=%r, keeping current value", name, value)

        if not self.is_results_page(address):
            return found

        site = self.detect_site(_first(params, Q))
        if site is not None:
            found[FilterCategory.SITE] = site

        lr = _first(params, LR)
        if lr.startswith(LANG_PREFIX):
            definition = self._find_by_external(FilterCategory.RESULT_LANGUAGE, lr.removeprefix(LANG_PREFIX))
            if definition is not None:
                found[FilterCategory.RESULT_LANGUAGE] = definition.code

        tbs = _first(params, TBS)
        if tbs:
            time_code = self.detect_time(tbs)
            if time_code is not None:
                found[FilterCategory.TIME_WINDOW] = time_code

        logger.debug("Parsed from address: %s", found)
        return found

    # -- Outbound --

    def apply_to_address(self, address: str, state: FilterState) -> str:
        """Build the address that reflects *state*.  Deterministic for a given day."""
        parts = urlsplit(address)
        params = parse_qsl(parts.query, keep_blank_values=True)

        query = strip_site_fragments(_first(params, Q))
        site = state[FilterCategory.SITE]
        if site != default_code(FilterCategory.SITE):
            fragment = self._fragment(site)
            if fragment:
                query = f"{query} {fragment}".strip()
        params = _set_param(params, Q, query)

        lang = self._external(FilterCategory.RESULT_LANGUAGE, state[FilterCategory.RESULT_LANGUAGE])
        params = _set_param(params, LR, f"{LANG_PREFIX}{lang}") if lang else _delete_param(params, LR)

        tbs = self.encode_time(state[FilterCategory.TIME_WINDOW])
        params = _set_param(params, TBS, tbs) if tbs else _delete_param(params, TBS)

        for category, name in _ISOLATED_PARAMS.items():
            external = self._external(category, state[category])
            params = _set_param(params, name, external) if external else _delete_param(params, name)

        return _with_params(address, params)

    def isolated_address(self, address: str, category: FilterCategory, code: str) -> str:
        """Set or clear only the hl/gl parameter for *category*; every other parameter is kept."""
        name = _ISOLATED_PARAMS.get(category)
        if name is None:
            raise ValueError(f"{category} is not applied in isolation")
        parts = urlsplit(address)
        params = parse_qsl(parts.query, keep_blank_values=True)
        external = self._external(category, code)
        params = _set_param(params, name, external) if external else _delete_param(params, name)
        return _with_params(address, params)

    # -- Consistency --

    def matches(self, address: str, state: FilterState) -> bool:
        """True when *address* already reflects *state* (no corrective navigation needed)."""
        params = parse_qsl(urlsplit(address).query, keep_blank_values=True)

        site = state[FilterCategory.SITE]
        if site != default_code(FilterCategory.SITE):
            fragment = self._fragment(site)
            if fragment and fragment not in _first(params, Q).split():
                return False

        lang = self._external(FilterCategory.RESULT_LANGUAGE, state[FilterCategory.RESULT_LANGUAGE])
        if lang and _first(params, LR) != f"{LANG_PREFIX}{lang}":
            return False

        time_code = state[FilterCategory.TIME_WINDOW]
        expected_tbs = self.encode_time(time_code)
        if expected_tbs is not None:
            actual_tbs = _first(params, TBS)
            if expected_tbs.startswith(CDR_PREFIX):
                if not self.is_two_year_range(actual_tbs):
                    return False
            elif actual_tbs != expected_tbs:
                return False

        for category, name in _ISOLATED_PARAMS.items():
            actual = _first(params, name)
            if state[category] == default_code(category):
                if actual:
                    return False
                continue
            external = self._external(category, state[category])
            if external and actual.casefold() != external.casefold():
                return False

        return True

    # -- Search form submission --

    def augment_submission(self, fields: Mapping[str, str], state: FilterState) -> dict[str, str]:
        """Add the active site/lr/tbs restrictions to a search form submission.

        An explicit ``site:`` already typed by the user is left alone.
        """
        out = dict(fields)
        site = state[FilterCategory.SITE]
        if site != default_code(FilterCategory.SITE):
            fragment = self._fragment(site)
            query = out.get(Q, "")
            if fragment and "site:" not in query:
                out[Q] = f"{query} {fragment}".strip()
        lang = self._external(FilterCategory.RESULT_LANGUAGE, state[FilterCategory.RESULT_LANGUAGE])
        if lang:
            out[LR] = f"{LANG_PREFIX}{lang}"
        tbs = self.encode_time(state[FilterCategory.TIME_WINDOW])
        if tbs:
            out[TBS] = tbs
        return out
