"""Helpers for reading loosely-typed external payloads.

Source payloads (scraper datasets, Graph API objects, spreadsheet rows)
spell the same logical field in several ways. Each logical field is
described as a prioritized tuple of synonyms; the first present,
non-empty value wins.
"""
import hashlib
import logging
import math
import re
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Any, Iterable, Mapping, Optional, Sequence

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)

_MISSING = object()

_DURATION_PATTERN = re.compile(
    r'(\d+(?:[.,]\d+)?)\s*'
    r'(days?|d|hours?|hrs?|h|minutes?|mins?|m)\b',
    re.IGNORECASE
)

_DURATION_UNITS = {
    'd': timedelta(days=1),
    'day': timedelta(days=1),
    'days': timedelta(days=1),
    'h': timedelta(hours=1),
    'hr': timedelta(hours=1),
    'hrs': timedelta(hours=1),
    'hour': timedelta(hours=1),
    'hours': timedelta(hours=1),
    'm': timedelta(minutes=1),
    'min': timedelta(minutes=1),
    'mins': timedelta(minutes=1),
    'minute': timedelta(minutes=1),
    'minutes': timedelta(minutes=1),
}


def pick_string(value: Any) -> Optional[str]:
    """Return a stripped non-empty string, or None."""
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return None


def as_text(value: Any) -> str:
    if value is None:
        return ''
    return str(value).strip()


def pick_number(value: Any) -> Optional[float]:
    """
    Coerce a number or numeric string (comma decimals allowed).

    Args:
        value: Raw payload value

    Returns:
        Finite float or None
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str) and value.strip():
        try:
            number = float(value.strip().replace(',', '.'))
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _lookup(payload: Any, path: str) -> Any:
    current = payload
    for part in path.split('.'):
        if not isinstance(current, Mapping) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _is_empty(value: Any) -> bool:
    if value is None or value is _MISSING:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


def first_present(payload: Any, paths: Sequence[str]) -> Any:
    """
    Return the first non-empty value among dotted field paths.

    Args:
        payload: Nested mapping from an external source
        paths: Field paths in priority order, e.g. ("location.latitude", "lat")

    Returns:
        The first present value, or None
    """
    for path in paths:
        value = _lookup(payload, path)
        if not _is_empty(value):
            return value
    return None


def first_string(payload: Any, paths: Sequence[str]) -> Optional[str]:
    for path in paths:
        value = pick_string(_lookup(payload, path))
        if value:
            return value
    return None


def first_number(payload: Any, paths: Sequence[str]) -> Optional[float]:
    for path in paths:
        value = pick_number(_lookup(payload, path))
        if value is not None:
            return value
    return None


def pick_column(row: Mapping[str, Any], names: Iterable[str]) -> Any:
    """Case-insensitive column lookup across a synonym list."""
    lowered = {}
    for key in row.keys():
        lowered.setdefault(str(key).strip().lower(), key)
    for name in names:
        hit = lowered.get(name.lower())
        if hit is not None and not _is_empty(row[hit]):
            return row[hit]
    return None


def localize(value: datetime, tz: tzinfo) -> datetime:
    """Attach the working timezone to naive datetimes."""
    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value


def as_datetime(value: Any, tz: tzinfo) -> Optional[datetime]:
    """
    Coerce a timestamp-ish payload value to an aware datetime.

    Accepts datetimes, dates (local noon), epoch seconds or milliseconds,
    and ISO-8601 strings. Naive values are read in ``tz``.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return localize(value, tz)
    if isinstance(value, date):
        return datetime.combine(value, time(12, 0), tzinfo=tz)
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        seconds = value / 1000.0 if abs(value) > 1e11 else float(value)
        try:
            return datetime.fromtimestamp(seconds, tz=tz)
        except (OverflowError, OSError, ValueError):
            return None
    text = pick_string(value)
    if not text:
        return None
    try:
        return localize(date_parser.isoparse(text), tz)
    except (ValueError, OverflowError):
        logger.debug(f"Not an ISO timestamp: {text!r}")
        return None


def parse_duration(text: Any) -> Optional[timedelta]:
    """
    Parse a human-readable duration such as "3 hr" or "2 days".

    Every number/unit pair is summed, so "1 day 2 hrs" works too.

    Returns:
        timedelta or None when no unit-suffixed number is present
    """
    value = pick_string(text)
    if not value:
        return None
    total = timedelta()
    found = False
    for amount, unit in _DURATION_PATTERN.findall(value):
        total += float(amount.replace(',', '.')) * _DURATION_UNITS[unit.lower()]
        found = True
    if not found or total <= timedelta():
        return None
    return total


def stable_hash(parts: Sequence[str]) -> str:
    """SHA1 hex digest of pipe-joined parts."""
    raw = '|'.join(p or '' for p in parts)
    return hashlib.sha1(raw.encode('utf-8')).hexdigest()


def utc_iso(value: datetime) -> str:
    """UTC ISO-8601 with millisecond precision and a Z suffix."""
    text = value.astimezone(timezone.utc).isoformat(timespec='milliseconds')
    return text.replace('+00:00', 'Z')
