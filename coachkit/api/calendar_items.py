from __future__ import annotations

import json

from fastapi import APIRouter, Depends, Request
from loguru import logger
from pydantic import ValidationError
from sqlalchemy.orm import Session

from coachkit.api.dependencies.athlete import current_athlete
from coachkit.api.schemas.calendar_items import (
    CalendarItemResponse,
    CompleteCalendarItemRequest,
    CompletedActivityResponse,
    ConfirmSyncedCalendarItemRequest,
    SkipCalendarItemRequest,
)
from coachkit.calendar.item_actions import complete_calendar_item, confirm_synced_calendar_item, skip_calendar_item
from coachkit.core.errors import success
from coachkit.db.models import User
from coachkit.db.session import get_db

router = APIRouter(prefix="/api/athlete/calendar-items", tags=["calendar"])


def _dump(model) -> dict:
    return model.model_dump(by_alias=True, mode="json")


@router.post("/{item_id}/complete")
def complete_item(
    item_id: str,
    payload: CompleteCalendarItemRequest,
    athlete: User = Depends(current_athlete),
    session: Session = Depends(get_db),
):
    result = complete_calendar_item(session, athlete, item_id, payload)
    return success(
        {
            "item": _dump(CalendarItemResponse.from_model(result.item)),
            "completedActivity": _dump(CompletedActivityResponse.from_model(result.completed_activity)),
        }
    )


@router.post("/{item_id}/skip")
async def skip_item(
    item_id: str,
    request: Request,
    athlete: User = Depends(current_athlete),
    session: Session = Depends(get_db),
):
    """Mark the item missed. The body is optional; an unreadable one is ignored."""
    payload = SkipCalendarItemRequest()
    body = await request.body()
    if body:
        try:
            payload = SkipCalendarItemRequest.model_validate(json.loads(body))
        except (ValueError, ValidationError) as e:
            logger.debug(f"[CALENDAR] Ignoring unreadable skip payload for item {item_id}: {e}")

    item = skip_calendar_item(session, athlete, item_id, payload)
    return success({"item": _dump(CalendarItemResponse.from_model(item))})


@router.post("/{item_id}/confirm-synced")
def confirm_synced_item(
    item_id: str,
    payload: ConfirmSyncedCalendarItemRequest | None = None,
    athlete: User = Depends(current_athlete),
    session: Session = Depends(get_db),
):
    item = confirm_synced_calendar_item(session, athlete, item_id, payload or ConfirmSyncedCalendarItemRequest())
    return success({"item": _dump(CalendarItemResponse.from_model(item))})
