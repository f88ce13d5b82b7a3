"""Calendar feed projection: which items appear and how they render as events."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta

from coachkit.calendar.local_day import UtcRange, get_stored_start_utc, get_utc_range_for_local_day_key_range, is_stored_start_in_utc_range
from coachkit.db.models import CalendarItem, CalendarItemStatus
from coachkit.utils.timezone import ensure_utc

DEFAULT_DURATION_MINUTES = 60

COMPLETED_FEED_STATUSES = frozenset(
    {
        CalendarItemStatus.COMPLETED_MANUAL,
        CalendarItemStatus.COMPLETED_SYNCED,
        CalendarItemStatus.COMPLETED_SYNCED_DRAFT,
    }
)

FEED_STATUSES = (
    CalendarItemStatus.PLANNED,
    CalendarItemStatus.SKIPPED,
    CalendarItemStatus.MODIFIED,
    CalendarItemStatus.COMPLETED_MANUAL,
    CalendarItemStatus.COMPLETED_SYNCED,
    CalendarItemStatus.COMPLETED_SYNCED_DRAFT,
)


@dataclass
class IcalFeedCalendarItem:
    id: str
    date: date
    planned_start_time_local: str | None
    status: str
    discipline: str
    title: str
    workout_detail: str | None = None
    planned_duration_minutes: int | None = None
    latest_completion_start: datetime | None = None
    latest_completion_duration_minutes: int | None = None

    @classmethod
    def from_model(cls, item: CalendarItem) -> IcalFeedCalendarItem:
        latest = None
        if item.completed_activities:
            latest = max(item.completed_activities, key=lambda activity: ensure_utc(activity.start_time))
        return cls(
            id=item.id,
            date=item.date,
            planned_start_time_local=item.planned_start_time_local,
            status=item.status,
            discipline=item.discipline,
            title=item.title,
            workout_detail=item.workout_detail,
            planned_duration_minutes=item.planned_duration_minutes,
            latest_completion_start=ensure_utc(latest.start_time) if latest else None,
            latest_completion_duration_minutes=latest.duration_minutes if latest else None,
        )


@dataclass(frozen=True)
class IcalEvent:
    uid: str
    dt_start_utc: datetime
    dt_end_utc: datetime
    summary: str
    description: str


def filter_calendar_items_for_local_day_range(
    items: list[IcalFeedCalendarItem],
    from_day_key: str,
    to_day_key: str,
    time_zone: str,
    utc_range: UtcRange | None = None,
) -> list[IcalFeedCalendarItem]:
    """Keep items whose stored start falls inside the local day range, ordered by start."""
    if utc_range is None:
        utc_range = get_utc_range_for_local_day_key_range(from_day_key, to_day_key, time_zone)

    starts = [(item, get_stored_start_utc(item, time_zone)) for item in items]
    kept = [(item, start) for item, start in starts if is_stored_start_in_utc_range(start, utc_range)]
    kept.sort(key=lambda pair: pair[1])
    return [item for item, _ in kept]


def _status_label(status: str) -> str:
    if status == CalendarItemStatus.SKIPPED:
        return "MISSED"
    if status in COMPLETED_FEED_STATUSES:
        return "COMPLETED"
    return "PLANNED"


def build_ical_events(items: list[IcalFeedCalendarItem], time_zone: str, base_url: str) -> list[IcalEvent]:
    """Render feed items as calendar events.

    Completed items are placed at their latest completion's start and
    duration when available; everything else uses the planned start and
    duration, defaulting to one hour.
    """
    events: list[IcalEvent] = []
    for item in items:
        is_completed = item.status in COMPLETED_FEED_STATUSES

        start_utc = get_stored_start_utc(item, time_zone)
        if is_completed and item.latest_completion_start is not None:
            start_utc = ensure_utc(item.latest_completion_start)

        duration_minutes = None
        if is_completed and item.latest_completion_duration_minutes:
            duration_minutes = item.latest_completion_duration_minutes
        if duration_minutes is None and item.planned_duration_minutes:
            duration_minutes = item.planned_duration_minutes
        if duration_minutes is None:
            duration_minutes = DEFAULT_DURATION_MINUTES

        description_lines = [f"Status: {_status_label(item.status)}"]
        detail = (item.workout_detail or "").strip()
        if detail:
            description_lines.extend(["", detail])
        description_lines.extend(["", f"{base_url}/athlete/workouts/{item.id}"])

        events.append(
            IcalEvent(
                uid=f"coachkit-{item.id}@coachkit",
                dt_start_utc=start_utc,
                dt_end_utc=start_utc + timedelta(minutes=duration_minutes),
                summary=f"{item.discipline} - {item.title}",
                description="\n".join(description_lines),
            )
        )
    return events
