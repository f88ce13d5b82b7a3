from __future__ import annotations

from dataclasses import asdict
from datetime import timedelta

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from coachkit.api.dependencies.athlete import current_athlete
from coachkit.calendar.completion import CalendarCompletionItem, get_range_completion_summary
from coachkit.calendar.range_summary import get_athlete_range_summary
from coachkit.core.errors import bad_request, success
from coachkit.db.models import CalendarItem, User
from coachkit.db.session import get_db
from coachkit.utils.day_key import MAX_DAY_KEYS, day_key_diff, get_today_day_key, is_day_key, parse_day_key
from coachkit.utils.timezone import get_user_timezone

router = APIRouter(prefix="/api/athlete/calendar", tags=["calendar"])


def _validate_range(from_day_key: str, to_day_key: str) -> None:
    if not is_day_key(from_day_key) or not is_day_key(to_day_key):
        raise bad_request("INVALID_DATE_FORMAT", "from and to must be YYYY-MM-DD.")
    try:
        span = day_key_diff(from_day_key, to_day_key)
    except ValueError as e:
        raise bad_request("INVALID_DATE_VALUE", str(e)) from e
    if span < 0:
        raise bad_request("INVALID_DATE_RANGE", "from must not be after to.")
    if span + 1 > MAX_DAY_KEYS:
        raise bad_request("INVALID_DATE_RANGE", f"Range must not exceed {MAX_DAY_KEYS} days.")


@router.get("/summary")
def get_calendar_summary(
    from_day_key: str = Query(alias="from"),
    to_day_key: str = Query(alias="to"),
    athlete: User = Depends(current_athlete),
    session: Session = Depends(get_db),
):
    """Planned vs completed totals for the athlete over a local day range."""
    _validate_range(from_day_key, to_day_key)
    time_zone = get_user_timezone(athlete)

    rows = (
        session.execute(
            select(CalendarItem)
            .options(selectinload(CalendarItem.completed_activities))
            .where(
                CalendarItem.athlete_id == athlete.id,
                CalendarItem.deleted_at.is_(None),
                CalendarItem.date >= parse_day_key(from_day_key) - timedelta(days=1),
                CalendarItem.date <= parse_day_key(to_day_key) + timedelta(days=1),
            )
        )
        .scalars()
        .all()
    )
    items = [CalendarCompletionItem.from_model(row) for row in rows]

    summary = get_athlete_range_summary(
        items,
        time_zone,
        from_day_key,
        to_day_key,
        today_day_key=get_today_day_key(time_zone),
    )
    completion = get_range_completion_summary(items, time_zone, from_day_key, to_day_key)

    data = summary.to_dict()
    data["completion"] = asdict(completion)
    return success(data)
