"""Timezone utility functions for athlete timezone handling.

Central helper for timezone operations:
- Validate and resolve IANA timezone names
- Get a user's timezone from the User model
- Normalise stored datetimes to aware UTC
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from coachkit.config.settings import settings
from coachkit.db.models import User
from coachkit.utils.day_key import get_local_day_key


@dataclass(frozen=True)
class TimezoneOption:
    value: str
    label: str


# Australia first, UTC last
TIMEZONE_OPTIONS: tuple[TimezoneOption, ...] = (
    TimezoneOption("Australia/Brisbane", "Australia - Brisbane (AEST)"),
    TimezoneOption("Australia/Sydney", "Australia - Sydney (AEDT/AEST)"),
    TimezoneOption("Australia/Melbourne", "Australia - Melbourne (AEDT/AEST)"),
    TimezoneOption("Australia/Adelaide", "Australia - Adelaide (ACDT/ACST)"),
    TimezoneOption("Australia/Darwin", "Australia - Darwin (ACST)"),
    TimezoneOption("Australia/Perth", "Australia - Perth (AWST)"),
    TimezoneOption("Australia/Hobart", "Australia - Hobart (AEDT/AEST)"),
    TimezoneOption("Pacific/Auckland", "New Zealand - Auckland (NZDT/NZST)"),
    TimezoneOption("America/Los_Angeles", "United States - Los Angeles (PT)"),
    TimezoneOption("America/Denver", "United States - Denver (MT)"),
    TimezoneOption("America/Chicago", "United States - Chicago (CT)"),
    TimezoneOption("America/New_York", "United States - New York (ET)"),
    TimezoneOption("Europe/London", "United Kingdom - London (GMT/BST)"),
    TimezoneOption("Europe/Paris", "Europe - Paris (CET/CEST)"),
    TimezoneOption("Europe/Berlin", "Europe - Berlin (CET/CEST)"),
    TimezoneOption("Europe/Madrid", "Europe - Madrid (CET/CEST)"),
    TimezoneOption("Europe/Rome", "Europe - Rome (CET/CEST)"),
    TimezoneOption("Europe/Amsterdam", "Europe - Amsterdam (CET/CEST)"),
    TimezoneOption("Europe/Dublin", "Europe - Dublin (GMT/IST)"),
    TimezoneOption("Europe/Lisbon", "Europe - Lisbon (WET/WEST)"),
    TimezoneOption("Europe/Zurich", "Europe - Zurich (CET/CEST)"),
    TimezoneOption("Europe/Stockholm", "Europe - Stockholm (CET/CEST)"),
    TimezoneOption("Europe/Copenhagen", "Europe - Copenhagen (CET/CEST)"),
    TimezoneOption("Europe/Athens", "Europe - Athens (EET/EEST)"),
    TimezoneOption("Asia/Singapore", "Asia - Singapore (SGT)"),
    TimezoneOption("Asia/Tokyo", "Asia - Tokyo (JST)"),
    TimezoneOption("Asia/Hong_Kong", "Asia - Hong Kong (HKT)"),
    TimezoneOption("Asia/Seoul", "Asia - Seoul (KST)"),
    TimezoneOption("Asia/Bangkok", "Asia - Bangkok (ICT)"),
    TimezoneOption("Asia/Dubai", "Asia - Dubai (GST)"),
    TimezoneOption("Asia/Shanghai", "Asia - Shanghai (CST)"),
    TimezoneOption("Asia/Taipei", "Asia - Taipei (CST)"),
    TimezoneOption("Asia/Kuala_Lumpur", "Asia - Kuala Lumpur (MYT)"),
    TimezoneOption("Asia/Manila", "Asia - Manila (PHT)"),
    TimezoneOption("Asia/Jakarta", "Asia - Jakarta (WIB)"),
    TimezoneOption("Asia/Ho_Chi_Minh", "Asia - Ho Chi Minh City (ICT)"),
    TimezoneOption("America/Toronto", "Canada - Toronto (ET)"),
    TimezoneOption("America/Vancouver", "Canada - Vancouver (PT)"),
    TimezoneOption("America/Sao_Paulo", "Brazil - Sao Paulo (BRT)"),
    TimezoneOption("America/Mexico_City", "Mexico - Mexico City (CT)"),
    TimezoneOption("America/Buenos_Aires", "Argentina - Buenos Aires (ART)"),
    TimezoneOption("Africa/Johannesburg", "Africa - Johannesburg (SAST)"),
    TimezoneOption("Africa/Cairo", "Africa - Cairo (EET/EEST)"),
    TimezoneOption("UTC", "UTC"),
)

_LABELS_BY_VALUE = {option.value: option.label for option in TIMEZONE_OPTIONS}


def get_timezone_label(tz: str) -> str:
    return _LABELS_BY_VALUE.get(tz, tz)


def is_valid_iana_time_zone(tz: object) -> bool:
    if not tz or not isinstance(tz, str):
        return False
    if len(tz) > 64:
        return False
    try:
        ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def resolve_time_zone(tz: str | None, default: str | None = None) -> str:
    """Return ``tz`` when it is a valid IANA name, otherwise the default timezone."""
    if is_valid_iana_time_zone(tz):
        return tz  # type: ignore[return-value]
    return default or settings.default_timezone


def is_past_end_of_local_day(day_key: str, tz: str, now: datetime | None = None) -> bool:
    """True only once ``tz`` has rolled over past ``day_key``.

    Example: for "2026-01-11", this is False while it is still 2026-01-11 in
    ``tz`` and becomes True at local midnight of 2026-01-12.
    """
    today_key = get_local_day_key(now or datetime.now(timezone.utc), tz)
    return today_key > day_key


def get_user_timezone(user: User | None) -> str:
    """Get the user's IANA timezone name, falling back to the default.

    Args:
        user: User model instance

    Returns:
        A loadable IANA timezone name
    """
    return resolve_time_zone(getattr(user, "timezone", None))


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Normalise a datetime to aware UTC.

    SQLite hands back naive datetimes for timezone-aware columns; naive
    values are assumed to be UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
