"""Athlete calendar subscription feed and its link management.

The feed endpoint authenticates with the token in the URL because calendar
clients cannot send headers; its errors are plain text.
"""

from __future__ import annotations

import math
from datetime import timedelta

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import PlainTextResponse, Response
from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from coachkit.api.dependencies.athlete import current_athlete
from coachkit.calendar.ical_feed import (
    FEED_STATUSES,
    IcalFeedCalendarItem,
    build_ical_events,
    filter_calendar_items_for_local_day_range,
)
from coachkit.calendar.ical_token import get_or_create_ical_token, rotate_ical_token
from coachkit.calendar.ics import build_ics_calendar
from coachkit.config.settings import settings
from coachkit.core.errors import success
from coachkit.core.rate_limit import FixedWindowRateLimiter
from coachkit.db.models import AthleteProfile, CalendarItem, User
from coachkit.db.session import get_db
from coachkit.utils.day_key import add_days_to_day_key, day_key_diff, get_today_day_key, is_day_key, parse_day_key
from coachkit.utils.timezone import resolve_time_zone

router = APIRouter(prefix="/api/athlete", tags=["calendar"])

FEED_PATH = "/api/athlete/calendar.ics"
CALENDAR_NAME = "CoachKit Workouts"
DEFAULT_PAST_DAYS = 90
DEFAULT_FUTURE_DAYS = 180
MAX_RANGE_DAYS = 365

ical_rate_limiter = FixedWindowRateLimiter(
    max_requests=settings.ical_rate_limit_max,
    window_seconds=settings.ical_rate_limit_window_seconds,
)


def _clamp_days(value: str | int | None, default: int) -> int:
    """Lenient day count: unparsable, non-finite or zero values give ``default``; fractions are floored."""
    if value is None:
        return default
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(parsed) or parsed == 0:
        return default
    return max(1, min(MAX_RANGE_DAYS, math.floor(parsed)))


def _plain_error(status_code: int, message: str, headers: dict[str, str] | None = None) -> PlainTextResponse:
    return PlainTextResponse(message, status_code=status_code, headers=headers)


def build_feed_url(token: str) -> str:
    return f"{settings.base_url}{FEED_PATH}?token={token}"


@router.get("/calendar.ics")
def get_calendar_feed(
    token: str | None = Query(default=None),
    from_day_key: str | None = Query(default=None, alias="from"),
    to_day_key: str | None = Query(default=None, alias="to"),
    past_days: str | None = Query(default=None, alias="pastDays"),
    future_days: str | None = Query(default=None, alias="futureDays"),
    session: Session = Depends(get_db),
) -> Response:
    token = (token or "").strip()
    if not token:
        return _plain_error(status.HTTP_401_UNAUTHORIZED, "Missing token")

    retry_after = ical_rate_limiter.hit(token)
    if retry_after is not None:
        logger.warning("[ICAL] Rate limit exceeded for feed token")
        return _plain_error(
            status.HTTP_429_TOO_MANY_REQUESTS,
            "Too many requests",
            headers={"Retry-After": str(retry_after)},
        )

    profile = session.execute(select(AthleteProfile).where(AthleteProfile.ical_token == token)).scalar_one_or_none()
    user = session.get(User, profile.user_id) if profile is not None else None
    if user is None:
        return _plain_error(status.HTTP_401_UNAUTHORIZED, "Invalid token")

    time_zone = resolve_time_zone(user.timezone)

    if from_day_key is not None or to_day_key is not None:
        if not is_day_key(from_day_key) or not is_day_key(to_day_key):
            return _plain_error(status.HTTP_400_BAD_REQUEST, "from and to must both be YYYY-MM-DD")
        try:
            span = day_key_diff(from_day_key, to_day_key)
        except ValueError:
            return _plain_error(status.HTTP_400_BAD_REQUEST, "from and to must be valid dates")
        if span < 0:
            return _plain_error(status.HTTP_400_BAD_REQUEST, "from must not be after to")
        if span + 1 > MAX_RANGE_DAYS:
            return _plain_error(status.HTTP_400_BAD_REQUEST, f"Range must not exceed {MAX_RANGE_DAYS} days")
        range_from, range_to = from_day_key, to_day_key
    else:
        today = get_today_day_key(time_zone)
        range_from = add_days_to_day_key(today, -_clamp_days(past_days, DEFAULT_PAST_DAYS))
        range_to = add_days_to_day_key(today, _clamp_days(future_days, DEFAULT_FUTURE_DAYS))

    # The date column is the local day; widen by a day and filter on exact UTC
    candidates = (
        session.execute(
            select(CalendarItem)
            .options(selectinload(CalendarItem.completed_activities))
            .where(
                CalendarItem.athlete_id == user.id,
                CalendarItem.deleted_at.is_(None),
                CalendarItem.status.in_(FEED_STATUSES),
                CalendarItem.date >= parse_day_key(range_from) - timedelta(days=1),
                CalendarItem.date <= parse_day_key(range_to) + timedelta(days=1),
            )
            .order_by(CalendarItem.date.asc(), CalendarItem.planned_start_time_local.asc())
        )
        .scalars()
        .all()
    )

    feed_items = filter_calendar_items_for_local_day_range(
        [IcalFeedCalendarItem.from_model(item) for item in candidates],
        range_from,
        range_to,
        time_zone,
    )
    events = build_ical_events(feed_items, time_zone, settings.base_url)
    body = build_ics_calendar(events, CALENDAR_NAME, time_zone)

    logger.info(f"[ICAL] Served {len(events)} events for user_id={user.id} ({range_from}..{range_to}, {time_zone})")
    return Response(
        content=body,
        media_type="text/calendar; charset=utf-8",
        headers={"Cache-Control": "private, max-age=60"},
    )


@router.get("/ical-link")
def get_ical_link(athlete: User = Depends(current_athlete), session: Session = Depends(get_db)):
    token = get_or_create_ical_token(session, athlete.id)
    return success({"url": build_feed_url(token)})


@router.post("/ical-link/rotate")
def rotate_ical_link(athlete: User = Depends(current_athlete), session: Session = Depends(get_db)):
    token = rotate_ical_token(session, athlete.id)
    return success({"url": build_feed_url(token)})
