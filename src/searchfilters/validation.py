# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Custom-site validation and normalization.

User-entered names end up in rendered markup and persisted state, so input
that would change under HTML escaping is rejected rather than silently
rewritten.  Domains must match a conservative host pattern after the scheme
and any path are stripped.
"""

from __future__ import annotations

import html
import re

from . import CustomSite, FilterCategory
from .catalog import FilterCatalog
from .errors import ValidationError, ValidationReason
from .sanitizer import has_hidden_chars
from .storage import StoredCustomSite

DEFAULT_MAX_NAME_LENGTH = 20
DEFAULT_SHORT_LABEL_LENGTH = 12

_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.-]*://", re.IGNORECASE)

# label(.label)+ ; labels alphanumeric/hyphen ; TLD >= 2 letters
_HOST_RE = re.compile(r"^(?:[A-Za-z0-9-]+\.)+[A-Za-z]{2,}$")

_KEY_STRIP_RE = re.compile(r"[^A-Za-z0-9_]")
_STORED_KEY_RE = re.compile(r"^[A-Za-z0-9_]+$")


def clean_domain(raw: str) -> str:
    """Strip an optional scheme and any path/query suffix: ``https://x.com/a?b`` -> ``x.com``."""
    if not raw:
        return ""
    value = _SCHEME_RE.sub("", raw.strip())
    value = re.split(r"[/?#]", value, maxsplit=1)[0]
    return value.strip().lower()


def is_valid_domain(domain: str) -> bool:
    return bool(domain) and _HOST_RE.fullmatch(domain) is not None


def derive_site_key(domain: str) -> str:
    """``forum.example.co`` -> ``forum_example_co``."""
    return _KEY_STRIP_RE.sub("", domain.replace(".", "_"))


def _escapes_cleanly(text: str) -> bool:
    return html.escape(text, quote=False) == text and not has_hidden_chars(text)


class CustomSiteValidator:
    """Turn raw (name, domain) input into a CustomSite, or raise ValidationError."""

    def __init__(
        self,
        catalog: FilterCatalog,
        *,
        max_name_length: int = DEFAULT_MAX_NAME_LENGTH,
        short_label_length: int = DEFAULT_SHORT_LABEL_LENGTH,
    ) -> None:
        self._catalog = catalog
        self._max_name_length = max_name_length
        self._short_label_length = short_label_length

    def validate_name(self, raw_name: str | None) -> str:
        name = (raw_name or "").strip()
        if not name:
            raise ValidationError(ValidationReason.EMPTY, "Site name is empty")
        if len(name) > self._max_name_length:
            raise ValidationError(
                ValidationReason.TOO_LONG, f"Site name longer than {self._max_name_length} characters"
            )
        if not _escapes_cleanly(name):
            raise ValidationError(ValidationReason.INVALID_CHARACTERS, "Site name contains markup or hidden characters")
        return name

    def validate_domain(self, raw_domain: str | None) -> str:
        if not (raw_domain or "").strip():
            raise ValidationError(ValidationReason.EMPTY, "Site domain is empty")
        domain = clean_domain(raw_domain or "")
        if not is_valid_domain(domain):
            raise ValidationError(ValidationReason.INVALID_DOMAIN_SYNTAX, f"Not a valid host: {domain!r}")
        return domain

    def short_label_for(self, name: str, explicit: str | None = None) -> str:
        if explicit is not None and explicit.strip():
            label = explicit.strip()
            if not _escapes_cleanly(label):
                raise ValidationError(
                    ValidationReason.INVALID_CHARACTERS, "Short label contains markup or hidden characters"
                )
            return label
        return name.upper()[: self._short_label_length]

    def validate(self, raw_name: str | None, raw_domain: str | None, short_label: str | None = None) -> CustomSite:
        """Validate user input against the current catalog.

        Raises:
            ValidationError: with reason empty, too-long, invalid-characters,
                invalid-domain-syntax or duplicate.
        """
        name = self.validate_name(raw_name)
        domain = self.validate_domain(raw_domain)
        key = derive_site_key(domain)
        if self._catalog.contains(FilterCategory.SITE, key):
            raise ValidationError(ValidationReason.DUPLICATE, f"Site already exists: {key}")
        return CustomSite(
            key=key,
            name=name,
            domain=domain,
            restriction_fragment=f"site:{domain}",
            icon_url=f"https://{domain}/favicon.ico",
            short_label=self.short_label_for(name, short_label),
        )

    def from_stored(self, key: str, record: StoredCustomSite) -> CustomSite:
        """Rebuild a CustomSite from a persisted record, applying the same rules as user input.

        The stored key is kept (it may predate the current key derivation) but
        must be a plain identifier.  The restriction fragment is always
        regenerated from the validated domain.
        """
        if not _STORED_KEY_RE.fullmatch(key):
            raise ValidationError(ValidationReason.INVALID_CHARACTERS, f"Invalid stored site key: {key!r}")
        name = self.validate_name(record.name)
        domain = self.validate_domain(record.domain)
        icon = record.icon if record.icon and record.icon.startswith("https://") else f"https://{domain}/favicon.ico"
        return CustomSite(
            key=key,
            name=name,
            domain=domain,
            restriction_fragment=f"site:{domain}",
            icon_url=icon,
            short_label=self.short_label_for(name, record.short),
        )
