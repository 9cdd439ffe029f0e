"""Datetime parsing helpers for CRM payloads."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "UTC"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo) and convert aware ones."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def resolve_timezone(name: str | None) -> ZoneInfo:
    """Resolve an IANA name, falling back to UTC for blank or unknown zones."""
    if name:
        try:
            return ZoneInfo(name.strip())
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown timezone %r, falling back to %s", name, DEFAULT_TIMEZONE)
    return ZoneInfo(DEFAULT_TIMEZONE)


def _from_epoch(ts: float) -> datetime | None:
    try:
        return datetime.fromtimestamp(ts, tz=timezone.utc)
    except (ValueError, OverflowError, OSError):
        logger.warning("Epoch timestamp out of range: %r", ts)
        return None


def parse_ghl_datetime(raw_value) -> datetime | None:
    """
    Parse a CRM timestamp into an aware UTC datetime.

    Accepts ISO 8601 strings (with or without Z / offset; naive values are
    UTC), epoch seconds or milliseconds as numbers or digit strings, and
    datetime instances. Returns None for anything unparseable.
    """
    if raw_value is None or raw_value == "":
        return None
    if isinstance(raw_value, datetime):
        return ensure_utc(raw_value)
    if isinstance(raw_value, bool):
        return None
    if isinstance(raw_value, (int, float)):
        ts = float(raw_value)
        if ts > 1e11:
            ts = ts / 1000
        return _from_epoch(ts)

    value = str(raw_value).strip()
    if re.fullmatch(r"\d{10,13}", value):
        ts = int(value)
        if len(value) == 13:
            ts = ts / 1000
        return _from_epoch(ts)

    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    return ensure_utc(parsed)
