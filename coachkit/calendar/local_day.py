"""Local-day semantics for calendar items.

Calendar items store a date-only ``date`` (the athlete's local day) and an
optional local wall time. Everything that compares items against instants
goes through the helpers here so the athlete's timezone is applied in one
place.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Protocol

from coachkit.utils.day_key import add_days_to_day_key, get_local_day_key
from coachkit.utils.timezone import ensure_utc
from coachkit.utils.zoned_time import zoned_day_time_to_utc


class CalendarItemLike(Protocol):
    date: date
    planned_start_time_local: str | None


class CompletionLike(Protocol):
    source: str | None
    start_time: datetime
    metrics_json: dict[str, Any] | None
    match_day_diff: int | None


@dataclass(frozen=True)
class UtcRange:
    """Half-open UTC interval [start_utc, end_utc)."""

    start_utc: datetime
    end_utc: datetime


def get_utc_range_for_local_day_key_range(from_day_key: str, to_day_key: str, time_zone: str) -> UtcRange:
    """UTC range covering every local day from ``from_day_key`` to ``to_day_key`` inclusive."""
    start_utc = zoned_day_time_to_utc(from_day_key, "00:00", time_zone)
    end_utc = zoned_day_time_to_utc(add_days_to_day_key(to_day_key, 1), "00:00", time_zone)
    return UtcRange(start_utc=start_utc, end_utc=end_utc)


def _item_day_key(item: CalendarItemLike) -> str:
    value = item.date
    if isinstance(value, datetime):
        value = value.date()
    return value.isoformat()


def get_stored_start_utc(item: CalendarItemLike, time_zone: str) -> datetime:
    """Planned start of ``item`` as a UTC instant.

    Items without a planned time start at local midnight.
    """
    return zoned_day_time_to_utc(_item_day_key(item), item.planned_start_time_local or "00:00", time_zone)


def _parse_iso_instant(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return ensure_utc(value)
    if not isinstance(value, str) or not value:
        return None
    raw = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        return ensure_utc(datetime.fromisoformat(raw))
    except ValueError:
        return None


def get_effective_start_utc_from_completion(completion: CompletionLike) -> datetime:
    """Start instant of a completion as shown on the calendar.

    Strava completions prefer the provider's ``startDateUtc`` and are shifted
    by ``match_day_diff`` days so they land on the day of the item they were
    matched to.
    """
    source = str(completion.source or "").upper()
    start_time = ensure_utc(completion.start_time)
    if source != "STRAVA":
        return start_time

    metrics = completion.metrics_json or {}
    strava_metrics = metrics.get("strava") if isinstance(metrics, dict) else None
    candidate = strava_metrics.get("startDateUtc") if isinstance(strava_metrics, dict) else None
    base = _parse_iso_instant(candidate) or start_time

    if completion.match_day_diff:
        return base + timedelta(days=completion.match_day_diff)
    return base


def get_effective_start_utc_for_calendar_item(
    item: CalendarItemLike,
    time_zone: str,
    completion: CompletionLike | None = None,
) -> datetime:
    if completion is not None:
        return get_effective_start_utc_from_completion(completion)
    return get_stored_start_utc(item, time_zone)


def get_local_day_key_for_calendar_item(item: CalendarItemLike, time_zone: str) -> str:
    return get_local_day_key(get_stored_start_utc(item, time_zone), time_zone)


def is_stored_start_in_utc_range(stored_start_utc: datetime, utc_range: UtcRange) -> bool:
    instant = ensure_utc(stored_start_utc)
    return utc_range.start_utc <= instant < utc_range.end_utc
