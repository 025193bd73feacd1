# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Engine configuration.

Leaf module.  Every value can be overridden from the environment with a
``SEARCHFILTERS_<FIELD>`` variable (e.g. ``SEARCHFILTERS_APPLY_DELAY=0.5``).
"""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Mapping
from dataclasses import dataclass

ENV_PREFIX = "SEARCHFILTERS_"


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """Immutable configuration for the synchronization engine."""

    debounce_delay: float = 0.15  # resize/scroll quiet period (seconds)
    notification_window: float = 1.0  # duplicate-message suppression window
    apply_delay: float = 0.2  # pause before a full apply navigation
    isolated_navigation_delay: float = 0.8  # pause before an hl/gl navigation
    max_custom_sites: int = 50
    max_site_name_length: int = 20
    short_label_length: int = 12
    storage_prefix: str = "googleSearch"
    results_path: str = "/search"
    recognized_host: str = "google."  # substring of the hostname the engine runs on
    two_year_min: float = 1.8  # accepted span (years) for the two-year range
    two_year_max: float = 2.2

    def __post_init__(self) -> None:
        for name in ("debounce_delay", "notification_window", "apply_delay", "isolated_navigation_delay"):
            value = getattr(self, name)
            if value < 0:
                raise ValueError(f"{name} must be >= 0, got {value}")
        if self.max_custom_sites < 0:
            raise ValueError(f"max_custom_sites must be >= 0, got {self.max_custom_sites}")
        if self.max_site_name_length <= 0:
            raise ValueError(f"max_site_name_length must be > 0, got {self.max_site_name_length}")
        if self.short_label_length <= 0:
            raise ValueError(f"short_label_length must be > 0, got {self.short_label_length}")
        if not self.storage_prefix:
            raise ValueError("storage_prefix must not be empty")
        if not self.results_path.startswith("/"):
            raise ValueError(f"results_path must start with '/', got {self.results_path!r}")
        if not 0 < self.two_year_min <= self.two_year_max:
            raise ValueError(
                f"two_year_min/two_year_max must satisfy 0 < min <= max, got {self.two_year_min}/{self.two_year_max}"
            )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> EngineConfig:
        """Build a config from ``SEARCHFILTERS_*`` variables; unset fields keep their defaults."""
        env = os.environ if environ is None else environ
        defaults = cls()
        overrides: dict[str, object] = {}
        for f in dataclasses.fields(cls):
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            kind = type(getattr(defaults, f.name))
            try:
                overrides[f.name] = kind(raw)
            except ValueError:
                raise ValueError(f"{ENV_PREFIX}{f.name.upper()} must be {kind.__name__}, got {raw!r}") from None
        return cls(**overrides)
