"""Shared utilities used across the booking core."""

import re
from datetime import date, datetime
from typing import Any, Mapping, Optional, Sequence, Union

_ISO_DATE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")

DateLike = Union[date, datetime, str]


def to_date(value: Optional[DateLike]) -> Optional[date]:
    """Truncate a date, datetime, or ISO timestamp string to a calendar date.

    Time of day and UTC offsets are dropped; the center runs on a single
    local calendar, so the date part of a server timestamp is the day.

    Examples:
        >>> to_date("2024-06-03T17:30:00Z")
        datetime.date(2024, 6, 3)
        >>> to_date(datetime(2024, 6, 3, 23, 59))
        datetime.date(2024, 6, 3)
        >>> to_date("not a date") is None
        True
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    match = _ISO_DATE.match(value.strip())
    if not match:
        return None
    try:
        return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError:
        return None


def format_ymd(value: date) -> str:
    """Format a date as YYYY-MM-DD."""
    return value.strftime("%Y-%m-%d")


def format_display(value: date) -> str:
    """Format a date as dd/mm/yyyy for user-facing text."""
    return value.strftime("%d/%m/%Y")


def parse_clock(value: Optional[str]) -> Optional[int]:
    """Convert a local ``HH:MM[:SS]`` string to minutes since midnight.

    Examples:
        >>> parse_clock("07:30")
        450
        >>> parse_clock("7:5:00")
        425
        >>> parse_clock("") is None
        True
    """
    if not value:
        return None
    parts = value.strip().split(":")
    if len(parts) < 2:
        return None
    try:
        hours, minutes = int(parts[0]), int(parts[1])
    except ValueError:
        return None
    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        return None
    return hours * 60 + minutes


def format_clock(value: Optional[str]) -> str:
    """Normalize a clock string to zero-padded ``HH:MM``; ``--:--`` when absent."""
    minutes = parse_clock(value)
    if minutes is None:
        return value or "--:--"
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def _lookup(source: Any, path: str) -> Any:
    current = source
    for part in path.split("."):
        if isinstance(current, Mapping):
            current = current.get(part)
        else:
            current = getattr(current, part, None)
        if current is None:
            return None
    return current


def first_present(source: Any, paths: Sequence[str]) -> Any:
    """Return the first non-empty value found along an ordered list of field paths.

    Paths are dotted (``"packageSubscription.id"``) and work on both dicts
    and attribute objects. ``None`` and blank strings count as absent.

    Examples:
        >>> first_present({"fullName": "An", "staffName": ""}, ["staffName", "fullName"])
        'An'
        >>> first_present({"a": {"b": 3}}, ["a.b"])
        3
    """
    for path in paths:
        value = _lookup(source, path)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None
