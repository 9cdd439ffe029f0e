"""Data normalization utilities for consistent data quality."""

import re
from typing import Optional

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def normalize_email(email: Optional[str]) -> Optional[str]:
    """Normalize email for case-insensitive matching."""
    if not email:
        return None
    normalized = email.strip().lower()
    return normalized or None


def clean_str(value, max_length: int | None = None) -> Optional[str]:
    """
    Coerce an untrusted value to a trimmed single-line string.

    Non-string scalars are stringified; dicts and lists are rejected.
    Empty results become None.
    """
    if value is None or isinstance(value, (dict, list, tuple, set)):
        return None
    if isinstance(value, bool):
        value = "true" if value else "false"
    text = _CONTROL_CHARS.sub("", str(value)).strip()
    if not text:
        return None
    if max_length is not None and len(text) > max_length:
        text = text[:max_length]
    return text


def join_name(first: Optional[str], last: Optional[str]) -> Optional[str]:
    name = " ".join(part.strip() for part in (first, last) if part and part.strip())
    return name or None
