# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Hidden-character classes shared by user-facing text.

Site names are rejected when they contain any control character (tab and
newline included).  Notices are cleaned instead, and keep tab/newline/CR as
ordinary whitespace.
"""

from __future__ import annotations

import re

# Zero-width chars, bidi overrides, word joiners/isolates, BOM, interlinear annotations
_INVISIBLE = r"\u200B-\u200F\u202A-\u202E\u2060-\u2069\uFEFF\uFFF9-\uFFFB"

_NAME_CONTROL_RE = re.compile(r"[\u0000-\u001F\u007F-\u009F" + _INVISIBLE + r"]")
_NOTICE_CONTROL_RE = re.compile(r"[\u0000-\u0008\u000B\u000C\u000E-\u001F\u007F-\u009F" + _INVISIBLE + r"]")


def has_hidden_chars(text: str) -> bool:
    """True when *text* holds a control or invisible character."""
    return _NAME_CONTROL_RE.search(text) is not None


def strip_hidden_chars(text: str) -> str:
    return _NOTICE_CONTROL_RE.sub("", text)
