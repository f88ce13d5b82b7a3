"""Conversion between athlete-local wall times and UTC instants."""

from __future__ import annotations

import re
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from coachkit.core.errors import bad_request
from coachkit.utils.day_key import get_local_day_key, parse_day_key_to_utc_date

TIME_REGEX = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")

LAST_MINUTE_OF_DAY = 23 * 60 + 59


def parse_time_to_parts(value: str) -> tuple[int, int]:
    """Parse a strict 24h ``HH:MM`` string into (hours, minutes).

    Raises:
        ApiError: 400 INVALID_TIME_FORMAT when the value is not HH:MM.
    """
    match = TIME_REGEX.match(value.strip()) if isinstance(value, str) else None
    if match is None:
        raise bad_request("INVALID_TIME_FORMAT", "Time must be HH:MM (24h).")
    return int(match.group(1)), int(match.group(2))


def zoned_day_time_to_utc(day_key: str, time: str, time_zone: str) -> datetime:
    """Convert a local wall time on ``day_key`` in ``time_zone`` to a UTC instant.

    Local times skipped by a DST gap resolve forward by the size of the gap;
    local times repeated by a DST overlap resolve to the first occurrence.

    Args:
        day_key: Local calendar day (YYYY-MM-DD)
        time: Local wall time (HH:MM)
        time_zone: IANA timezone name

    Returns:
        Timezone-aware datetime in UTC

    Raises:
        ApiError: 400 INVALID_TIME_FORMAT or INVALID_DATE_VALUE
    """
    hours, minutes = parse_time_to_parts(time)
    try:
        local_day = date.fromisoformat(day_key)
    except (TypeError, ValueError) as e:
        raise bad_request("INVALID_DATE_VALUE", "Invalid day key.") from e

    # fold=0 picks the pre-transition offset for both gaps and overlaps
    local = datetime(local_day.year, local_day.month, local_day.day, hours, minutes, tzinfo=ZoneInfo(time_zone), fold=0)
    return local.astimezone(timezone.utc)


def zoned_minutes(instant: datetime, time_zone: str) -> int:
    """Minutes after local midnight of ``instant`` in ``time_zone``."""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    local = instant.astimezone(ZoneInfo(time_zone))
    return local.hour * 60 + local.minute


def minutes_to_time_string(total_minutes: float) -> str:
    safe = max(0, min(LAST_MINUTE_OF_DAY, int(total_minutes // 1)))
    return f"{safe // 60:02d}:{safe % 60:02d}"


def calendar_item_date_to_day_key(value: date | datetime, time_zone: str) -> str:
    """Day key for a calendar item's date-only value."""
    if isinstance(value, datetime):
        return get_local_day_key(value, time_zone)
    return value.isoformat()


def day_key_to_utc_midnight(day_key: str) -> datetime:
    return parse_day_key_to_utc_date(day_key)
