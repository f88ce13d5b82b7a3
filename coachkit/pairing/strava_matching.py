"""Matching of provider activities to planned calendar items.

Matching rules:
- Same athlete, same discipline, not deleted
- Item status PLANNED or MODIFIED
- Item day within one day of the activity's local day (midnight boundary)
- Same day beats adjacent day; items with a planned time beat items
  without; then the closest planned time wins

Activities that match nothing become UNPLANNED calendar items so every
synced completion is visible on the calendar.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from coachkit.db.models import CalendarItem, CalendarItemStatus, CompletedActivity
from coachkit.integrations.strava.schemas import NormalizedExternalActivity, PollSummary, StravaConnectionEntry
from coachkit.pairing.ingest import IngestKind, upsert_external_completed_activity
from coachkit.utils.day_key import day_key_diff, parse_day_key
from coachkit.utils.zoned_time import TIME_REGEX, minutes_to_time_string

MATCH_CANDIDATE_LIMIT = 25
STRAVA_ORIGIN = "STRAVA"


@dataclass
class _Candidate:
    item: CalendarItem
    day_distance: int
    planned_minutes: int | None

    def sort_key(self, activity_minutes: int) -> tuple:
        if self.planned_minutes is None:
            return (self.day_distance, 1, 0)
        return (self.day_distance, 0, abs(self.planned_minutes - activity_minutes))


def _parse_time_to_minutes(value: str | None) -> int | None:
    if not value:
        return None
    match = TIME_REGEX.match(value.strip())
    if match is None:
        return None
    return int(match.group(1)) * 60 + int(match.group(2))


def _synced_status(confirmed_at: datetime | None) -> CalendarItemStatus:
    return CalendarItemStatus.COMPLETED_SYNCED if confirmed_at else CalendarItemStatus.COMPLETED_SYNCED_DRAFT


def _day_key_of(value: date | datetime) -> str:
    return (value.date() if isinstance(value, datetime) else value).isoformat()


def match_and_link_calendar_item(
    session: Session,
    athlete_id: str,
    activity_day_key: str,
    activity_minutes: int,
    discipline: str,
    completed: CompletedActivity,
) -> CalendarItem | None:
    """Link ``completed`` to the best planned item near the activity's local day.

    Args:
        session: Database session
        athlete_id: Owning athlete
        activity_day_key: Activity's local day in the athlete's timezone
        activity_minutes: Activity start in minutes after local midnight
        discipline: Normalized discipline (RUN/BIKE/...)
        completed: The completion to link

    Returns:
        The matched calendar item, or None when nothing qualifies
    """
    activity_day = parse_day_key(activity_day_key)
    items = (
        session.execute(
            select(CalendarItem)
            .where(
                CalendarItem.athlete_id == athlete_id,
                CalendarItem.discipline == discipline,
                CalendarItem.deleted_at.is_(None),
                CalendarItem.date >= activity_day - timedelta(days=1),
                CalendarItem.date <= activity_day + timedelta(days=1),
                CalendarItem.status.in_([CalendarItemStatus.PLANNED, CalendarItemStatus.MODIFIED]),
            )
            .order_by(CalendarItem.date.asc(), CalendarItem.planned_start_time_local.asc())
            .limit(MATCH_CANDIDATE_LIMIT)
        )
        .scalars()
        .all()
    )

    candidates = [
        _Candidate(
            item=item,
            day_distance=abs(day_key_diff(activity_day_key, _day_key_of(item.date))),
            planned_minutes=_parse_time_to_minutes(item.planned_start_time_local),
        )
        for item in items
    ]
    candidates = [candidate for candidate in candidates if candidate.day_distance <= 1]
    if not candidates:
        return None

    best = min(candidates, key=lambda candidate: candidate.sort_key(activity_minutes))
    match = best.item

    match.status = _synced_status(completed.confirmed_at)
    completed.calendar_item_id = match.id
    completed.match_day_diff = day_key_diff(activity_day_key, _day_key_of(match.date))
    session.flush()

    logger.info(
        "[MATCH] Linked completion {} to item {} (day_diff={}, status={})",
        completed.id,
        match.id,
        completed.match_day_diff,
        match.status,
    )
    return match


def ensure_status_for_synced_completion(session: Session, calendar_item_id: str, confirmed_at: datetime | None) -> None:
    """Keep the linked item's status in step with the completion's confirmation."""
    item = session.get(CalendarItem, calendar_item_id)
    if item is None:
        return

    if confirmed_at is None:
        if item.status in (CalendarItemStatus.PLANNED, CalendarItemStatus.MODIFIED, CalendarItemStatus.COMPLETED_SYNCED):
            item.status = CalendarItemStatus.COMPLETED_SYNCED_DRAFT
            session.flush()
        return

    if item.status == CalendarItemStatus.COMPLETED_SYNCED_DRAFT:
        item.status = CalendarItemStatus.COMPLETED_SYNCED
        session.flush()


def _apply_unplanned_fields(item: CalendarItem, entry: StravaConnectionEntry, activity: NormalizedExternalActivity, status: CalendarItemStatus) -> None:
    distance_meters = activity.metrics.get("distanceMeters")
    item.coach_id = entry.coach_id
    item.date = parse_day_key(activity.activity_day_key)
    item.planned_start_time_local = minutes_to_time_string(activity.activity_minutes)
    item.origin = STRAVA_ORIGIN
    item.planning_status = "UNPLANNED"
    item.source_activity_id = activity.external_activity_id
    item.discipline = activity.discipline
    item.subtype = activity.subtype
    item.title = activity.title
    item.planned_duration_minutes = activity.duration_minutes
    item.planned_distance_km = activity.distance_km
    item.distance_meters = distance_meters if isinstance(distance_meters, (int, float)) else None
    item.status = status


def create_unplanned_calendar_item(
    session: Session,
    entry: StravaConnectionEntry,
    activity: NormalizedExternalActivity,
    completed: CompletedActivity,
) -> CalendarItem:
    """Upsert the UNPLANNED item for an activity that matched no plan and link it."""
    status = _synced_status(completed.confirmed_at)

    def _find_existing() -> CalendarItem | None:
        return session.execute(
            select(CalendarItem).where(
                CalendarItem.athlete_id == entry.athlete_id,
                CalendarItem.origin == STRAVA_ORIGIN,
                CalendarItem.source_activity_id == activity.external_activity_id,
            )
        ).scalar_one_or_none()

    item = _find_existing()
    if item is None:
        item = CalendarItem(athlete_id=entry.athlete_id)
        _apply_unplanned_fields(item, entry, activity, status)
        try:
            with session.begin_nested():
                session.add(item)
                session.flush()
        except IntegrityError:
            logger.debug("[MATCH] Unplanned item for activity {} created concurrently", activity.external_activity_id)
            item = _find_existing()
            if item is None:
                raise
            _apply_unplanned_fields(item, entry, activity, status)
    else:
        _apply_unplanned_fields(item, entry, activity, status)

    completed.calendar_item_id = item.id
    session.flush()
    logger.info("[MATCH] Unplanned calendar item {} for activity {}", item.id, activity.external_activity_id)
    return item


def ingest_normalized_activity(
    session: Session,
    entry: StravaConnectionEntry,
    activity: NormalizedExternalActivity,
    summary: PollSummary,
) -> CompletedActivity:
    """Upsert one activity, then link it to a planned or unplanned item.

    The caller commits.
    """
    result = upsert_external_completed_activity(session, entry.athlete_id, activity)
    completed = result.completed
    if result.kind == IngestKind.CREATED:
        summary.created += 1
    elif result.kind == IngestKind.UPDATED:
        summary.updated += 1
    else:
        summary.skipped_existing += 1

    calendar_item_id = completed.calendar_item_id
    if calendar_item_id is None:
        match = match_and_link_calendar_item(
            session,
            entry.athlete_id,
            activity.activity_day_key,
            activity.activity_minutes,
            activity.discipline,
            completed,
        )
        if match is not None:
            summary.matched += 1
            calendar_item_id = match.id

    if calendar_item_id is not None:
        ensure_status_for_synced_completion(session, calendar_item_id, completed.confirmed_at)
        return completed

    create_unplanned_calendar_item(session, entry, activity, completed)
    summary.created_calendar_items += 1
    return completed
