"""Day-key helpers.

A day key is a ``YYYY-MM-DD`` string naming a calendar day in some
timezone. Day keys are never derived by slicing a UTC ISO string: an
instant is always converted into the target timezone first.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

ISO_DATE_REGEX = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# One year of days plus a leap day and an inclusive end
MAX_DAY_KEYS = 367


def is_day_key(value: object) -> bool:
    return isinstance(value, str) and ISO_DATE_REGEX.match(value) is not None


def _parse_instant(value: str) -> datetime | None:
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        return None


def get_local_day_key(value: datetime | date | str, time_zone: str | None = None) -> str:
    """Return the ``YYYY-MM-DD`` key of ``value`` in ``time_zone``.

    Args:
        value: A day key (returned unchanged), a date, an aware or naive
            datetime (naive is treated as UTC), or an ISO datetime string.
        time_zone: IANA timezone name; UTC when omitted.

    Returns:
        The local calendar day key. Unparseable strings fall back to the
        part before ``T`` when present, otherwise the raw string.
    """
    if isinstance(value, str):
        if is_day_key(value):
            return value
        instant = _parse_instant(value)
        if instant is None:
            if "T" in value:
                return value.split("T")[0]
            return value
    elif isinstance(value, datetime):
        instant = value
    elif isinstance(value, date):
        return value.isoformat()
    else:
        return str(value)

    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    tz = ZoneInfo(time_zone) if time_zone else timezone.utc
    return instant.astimezone(tz).date().isoformat()


def to_athlete_local_day_key(value: datetime | date | str, time_zone: str) -> str:
    return get_local_day_key(value, time_zone)


def format_utc_day_key(value: datetime) -> str:
    """Format an instant using its UTC calendar fields."""
    if value.tzinfo is None:
        return value.date().isoformat()
    return value.astimezone(timezone.utc).date().isoformat()


def parse_day_key(day_key: str) -> date:
    if not is_day_key(day_key):
        raise ValueError(f"Invalid day key: {day_key}")
    try:
        return date.fromisoformat(day_key)
    except ValueError as e:
        raise ValueError(f"Invalid day key: {day_key}") from e


def parse_day_key_to_utc_date(day_key: str) -> datetime:
    """Anchor a day key at UTC midnight for stable date arithmetic."""
    parsed = parse_day_key(day_key)
    return datetime(parsed.year, parsed.month, parsed.day, tzinfo=timezone.utc)


def add_days_to_day_key(day_key: str, days: int) -> str:
    return (parse_day_key(day_key) + timedelta(days=days)).isoformat()


def start_of_week_day_key(day_key: str) -> str:
    """Monday of the week containing ``day_key``."""
    parsed = parse_day_key(day_key)
    return (parsed - timedelta(days=parsed.weekday())).isoformat()


def get_today_day_key(time_zone: str | None = None, now: datetime | None = None) -> str:
    return get_local_day_key(now or datetime.now(timezone.utc), time_zone)


def day_keys_inclusive(from_key: str, to_key: str) -> list[str]:
    """Every day key from ``from_key`` to ``to_key`` inclusive, capped at MAX_DAY_KEYS."""
    keys: list[str] = []
    current = parse_day_key(from_key)
    end = parse_day_key(to_key)
    while current <= end and len(keys) < MAX_DAY_KEYS:
        keys.append(current.isoformat())
        current += timedelta(days=1)
    return keys


def day_key_diff(from_key: str, to_key: str) -> int:
    """Number of days from ``from_key`` to ``to_key`` (negative when earlier)."""
    return (parse_day_key(to_key) - parse_day_key(from_key)).days
