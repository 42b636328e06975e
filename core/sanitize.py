"""
core/sanitize.py -- Input normalization for user-supplied text.

Called from pydantic field validators in api/models.py (mode="before"), so the
values that reach services are already trimmed and stripped of markup. The
rules:

  sanitize_text   -- drop <script>/<style> blocks with their content, drop any
                     remaining tags, collapse to the trimmed result.
  sanitize_email  -- sanitize_text plus lower-casing. Format validation is the
                     job of pydantic's EmailStr, not of this module.
  sanitize_phone  -- keep digits only ("+91 98480-22338" -> "919848022338").

Non-string input is returned unchanged so pydantic can report the type error.
"""

import re

_BLOCK_RE = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]*>")
_NON_DIGIT_RE = re.compile(r"\D")


def sanitize_text(value):
    if not isinstance(value, str):
        return value
    cleaned = _BLOCK_RE.sub("", value)
    cleaned = _TAG_RE.sub("", cleaned)
    return cleaned.strip()


def sanitize_email(value):
    if not isinstance(value, str):
        return value
    return sanitize_text(value).lower()


def sanitize_phone(value):
    if not isinstance(value, str):
        return value
    return _NON_DIGIT_RE.sub("", value)
