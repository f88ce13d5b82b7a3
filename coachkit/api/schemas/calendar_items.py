"""Request and response schemas for athlete calendar item actions."""

from __future__ import annotations

from datetime import date as date_type
from datetime import datetime
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, StringConstraints
from pydantic.alias_generators import to_camel

from coachkit.db.models import CalendarItem, CompletedActivity
from coachkit.utils.timezone import ensure_utc

TrimmedText = Annotated[str, StringConstraints(strip_whitespace=True, max_length=2000)]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CompleteCalendarItemRequest(_CamelModel):
    duration_minutes: int = Field(gt=0, le=1000, description="Actual session duration in minutes")
    distance_km: float | None = Field(default=None, ge=0, le=1000)
    rpe: int | None = Field(default=None, ge=1, le=10, description="Rate of perceived exertion (1-10)")
    notes: TrimmedText | None = None
    pain_flag: bool = False
    comment_body: TrimmedText | None = Field(default=None, description="Optional comment for the coach")


class SkipCalendarItemRequest(_CamelModel):
    comment_body: TrimmedText | None = None


class ConfirmSyncedCalendarItemRequest(_CamelModel):
    notes: TrimmedText | None = None
    pain_flag: bool = False
    comment_body: TrimmedText | None = None


class CompletedActivityResponse(_CamelModel):
    id: str
    source: str
    start_time: datetime
    duration_minutes: int
    distance_km: float | None = None
    rpe: int | None = None
    notes: str | None = None
    pain_flag: bool = False
    confirmed_at: datetime | None = None
    match_day_diff: int | None = None

    @classmethod
    def from_model(cls, activity: CompletedActivity) -> CompletedActivityResponse:
        return cls(
            id=activity.id,
            source=activity.source,
            start_time=activity.start_time,
            duration_minutes=activity.duration_minutes,
            distance_km=activity.distance_km,
            rpe=activity.rpe,
            notes=activity.notes,
            pain_flag=activity.pain_flag,
            confirmed_at=activity.confirmed_at,
            match_day_diff=activity.match_day_diff,
        )


class CalendarItemResponse(_CamelModel):
    id: str
    athlete_id: str
    date: date_type
    planned_start_time_local: str | None = None
    discipline: str
    title: str
    status: str
    planned_duration_minutes: int | None = None
    planned_distance_km: float | None = None
    action_at: datetime | None = None
    latest_completed_activity: CompletedActivityResponse | None = None

    @classmethod
    def from_model(cls, item: CalendarItem) -> CalendarItemResponse:
        latest = None
        if item.completed_activities:
            newest = max(item.completed_activities, key=lambda activity: ensure_utc(activity.start_time))
            latest = CompletedActivityResponse.from_model(newest)
        return cls(
            id=item.id,
            athlete_id=item.athlete_id,
            date=item.date,
            planned_start_time_local=item.planned_start_time_local,
            discipline=item.discipline,
            title=item.title,
            status=item.status,
            planned_duration_minutes=item.planned_duration_minutes,
            planned_distance_km=item.planned_distance_km,
            action_at=item.action_at,
            latest_completed_activity=latest,
        )
