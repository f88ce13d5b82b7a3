"""Athlete-driven state changes on calendar items: complete, skip, confirm synced."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from fastapi import status
from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session

from coachkit.api.schemas.calendar_items import (
    CompleteCalendarItemRequest,
    ConfirmSyncedCalendarItemRequest,
    SkipCalendarItemRequest,
)
from coachkit.calendar.local_day import get_stored_start_utc
from coachkit.core.errors import ApiError, not_found
from coachkit.db.models import CalendarItem, CalendarItemStatus, Comment, CompletedActivity, CompletionSource, User
from coachkit.utils.timezone import get_user_timezone

FINAL_COMPLETED_STATUSES = (CalendarItemStatus.COMPLETED_MANUAL, CalendarItemStatus.COMPLETED_SYNCED)


@dataclass
class CompleteResult:
    item: CalendarItem
    completed_activity: CompletedActivity


def _conflict(code: str, message: str) -> ApiError:
    return ApiError(status.HTTP_409_CONFLICT, code, message)


def _load_item(session: Session, athlete: User, item_id: str, include_deleted: bool = False) -> CalendarItem:
    query = select(CalendarItem).where(CalendarItem.id == item_id, CalendarItem.athlete_id == athlete.id)
    if not include_deleted:
        query = query.where(CalendarItem.deleted_at.is_(None))
    item = session.execute(query).scalar_one_or_none()
    if item is None:
        raise not_found("Calendar item not found.")
    return item


def _add_comment(session: Session, item: CalendarItem, athlete: User, body: str | None) -> None:
    if body and body.strip():
        session.add(Comment(calendar_item_id=item.id, author_id=athlete.id, body=body.strip()))


def complete_calendar_item(
    session: Session,
    athlete: User,
    item_id: str,
    payload: CompleteCalendarItemRequest,
) -> CompleteResult:
    """Record a manual completion for a planned item.

    The completion starts at the item's planned start in the athlete's
    timezone.

    Raises:
        ApiError: 404 when the item is missing or deleted; 409
            ALREADY_COMPLETED / ALREADY_SKIPPED when the item is already
            final or already has a manual completion.
    """
    item = _load_item(session, athlete, item_id)

    if item.status in FINAL_COMPLETED_STATUSES:
        raise _conflict("ALREADY_COMPLETED", "This workout is already completed.")
    if item.status == CalendarItemStatus.SKIPPED:
        raise _conflict("ALREADY_SKIPPED", "Missed workouts cannot be completed.")

    existing_manual = session.execute(
        select(CompletedActivity.id).where(
            CompletedActivity.calendar_item_id == item.id,
            CompletedActivity.source == CompletionSource.MANUAL,
        )
    ).first()
    if existing_manual is not None:
        raise _conflict("ALREADY_COMPLETED", "This workout already has a manual completion.")

    now = datetime.now(timezone.utc)
    completed = CompletedActivity(
        athlete_id=athlete.id,
        calendar_item_id=item.id,
        source=CompletionSource.MANUAL,
        start_time=get_stored_start_utc(item, get_user_timezone(athlete)),
        duration_minutes=payload.duration_minutes,
        distance_km=payload.distance_km,
        rpe=payload.rpe,
        notes=payload.notes,
        pain_flag=payload.pain_flag,
        created_at=now,
    )
    session.add(completed)

    item.status = CalendarItemStatus.COMPLETED_MANUAL
    item.action_at = now
    _add_comment(session, item, athlete, payload.comment_body)

    session.commit()
    session.refresh(item)
    logger.info(f"[CALENDAR] Item {item.id} completed manually by athlete {athlete.id}")
    return CompleteResult(item=item, completed_activity=completed)


def skip_calendar_item(
    session: Session,
    athlete: User,
    item_id: str,
    payload: SkipCalendarItemRequest | None = None,
) -> CalendarItem:
    """Mark an item as missed. Skipping an already-skipped item only adds the comment."""
    payload = payload or SkipCalendarItemRequest()
    item = _load_item(session, athlete, item_id)

    if item.status in FINAL_COMPLETED_STATUSES:
        raise _conflict("ALREADY_COMPLETED", "Completed workouts cannot be marked missed.")

    if item.status != CalendarItemStatus.SKIPPED:
        item.status = CalendarItemStatus.SKIPPED
        item.action_at = datetime.now(timezone.utc)
        logger.info(f"[CALENDAR] Item {item.id} skipped by athlete {athlete.id}")

    _add_comment(session, item, athlete, payload.comment_body)
    session.commit()
    session.refresh(item)
    return item


def confirm_synced_calendar_item(
    session: Session,
    athlete: User,
    item_id: str,
    payload: ConfirmSyncedCalendarItemRequest,
) -> CalendarItem:
    """Confirm a provider-synced completion so the coach sees it as completed.

    Notes and pain flag are only written on the first confirmation.
    """
    item = _load_item(session, athlete, item_id, include_deleted=True)

    if item.status == CalendarItemStatus.COMPLETED_MANUAL:
        raise _conflict("ALREADY_COMPLETED", "This workout is already completed manually.")
    if item.status == CalendarItemStatus.SKIPPED:
        raise _conflict("ALREADY_SKIPPED", "Skipped workouts cannot be completed.")

    completion = session.execute(
        select(CompletedActivity).where(
            CompletedActivity.calendar_item_id == item.id,
            CompletedActivity.source == CompletionSource.STRAVA,
        )
    ).scalars().first()
    if completion is None:
        raise _conflict("NO_SYNCED_ACTIVITY", "No Strava-synced activity found for this workout.")

    if completion.confirmed_at is None:
        completion.confirmed_at = datetime.now(timezone.utc)
        completion.notes = payload.notes
        completion.pain_flag = payload.pain_flag

    if item.status != CalendarItemStatus.COMPLETED_SYNCED:
        item.status = CalendarItemStatus.COMPLETED_SYNCED

    _add_comment(session, item, athlete, payload.comment_body)
    session.commit()
    session.refresh(item)
    logger.info(f"[CALENDAR] Synced completion confirmed for item {item.id} by athlete {athlete.id}")
    return item
