from __future__ import annotations

import uuid
from datetime import date as date_type
from datetime import datetime, timezone
from enum import StrEnum

from sqlalchemy import JSON, Boolean, Date, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all database models."""


class UserRole(StrEnum):
    COACH = "COACH"
    ATHLETE = "ATHLETE"


class CalendarItemStatus(StrEnum):
    PLANNED = "PLANNED"
    MODIFIED = "MODIFIED"
    SKIPPED = "SKIPPED"
    COMPLETED_MANUAL = "COMPLETED_MANUAL"
    COMPLETED_SYNCED = "COMPLETED_SYNCED"
    # Synced from a provider but not yet confirmed by the athlete.
    COMPLETED_SYNCED_DRAFT = "COMPLETED_SYNCED_DRAFT"


class CompletionSource(StrEnum):
    MANUAL = "MANUAL"
    STRAVA = "STRAVA"
    GARMIN = "GARMIN"
    FILE = "FILE"


class WebhookEventStatus(StrEnum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    PROCESSED = "PROCESSED"
    FAILED = "FAILED"


class User(Base):
    """Coach or athlete account.

    timezone is the IANA zone used to turn stored UTC instants into the
    athlete's calendar days.
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    email: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    role: Mapped[str] = mapped_column(String, nullable=False, default=UserRole.ATHLETE)
    timezone: Mapped[str] = mapped_column(String, nullable=False, default="Australia/Brisbane")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)

    athlete_profile: Mapped[AthleteProfile | None] = relationship(
        back_populates="user",
        foreign_keys="AthleteProfile.user_id",
        uselist=False,
    )


class AthleteProfile(Base):
    __tablename__ = "athlete_profiles"

    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), primary_key=True)
    coach_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False, index=True)
    ical_token: Mapped[str | None] = mapped_column(String, nullable=True, unique=True)
    ical_token_rotated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    user: Mapped[User] = relationship(back_populates="athlete_profile", foreign_keys=[user_id])


class CalendarItem(Base):
    """Scheduled (or provider-recorded) workout on an athlete's calendar.

    date is the athlete-local calendar day; planned_start_time_local is the
    wall-clock start (HH:MM) in the athlete's timezone, or null for
    unscheduled items.
    """

    __tablename__ = "calendar_items"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    athlete_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False, index=True)
    coach_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False)
    date: Mapped[date_type] = mapped_column(Date, nullable=False)
    planned_start_time_local: Mapped[str | None] = mapped_column(String(5), nullable=True)
    discipline: Mapped[str] = mapped_column(String, nullable=False)
    subtype: Mapped[str | None] = mapped_column(String, nullable=True)
    title: Mapped[str] = mapped_column(String, nullable=False)
    workout_detail: Mapped[str | None] = mapped_column(Text, nullable=True)
    planned_duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    planned_distance_km: Mapped[float | None] = mapped_column(Float, nullable=True)
    planned_calories_kcal: Mapped[float | None] = mapped_column(Float, nullable=True)
    distance_meters: Mapped[float | None] = mapped_column(Float, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default=CalendarItemStatus.PLANNED)
    origin: Mapped[str | None] = mapped_column(String, nullable=True)
    planning_status: Mapped[str] = mapped_column(String, nullable=False, default="PLANNED")
    source_activity_id: Mapped[str | None] = mapped_column(String, nullable=True)
    action_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now, onupdate=_now)

    completed_activities: Mapped[list[CompletedActivity]] = relationship(back_populates="calendar_item")
    comments: Mapped[list[Comment]] = relationship(back_populates="calendar_item")

    __table_args__ = (
        UniqueConstraint("athlete_id", "origin", "source_activity_id", name="uq_calendar_item_origin_source"),
        Index("idx_calendar_items_athlete_date", "athlete_id", "date"),
    )


class CompletedActivity(Base):
    """Actual workout execution, entered manually or ingested from a provider.

    metrics_json is namespaced by provider (e.g. {"strava": {...}}).
    match_day_diff is the calendar-day offset between the activity's local
    day and the item it was matched to (item day minus activity day).
    """

    __tablename__ = "completed_activities"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    athlete_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False, index=True)
    calendar_item_id: Mapped[str | None] = mapped_column(String, ForeignKey("calendar_items.id"), nullable=True, index=True)
    source: Mapped[str] = mapped_column(String, nullable=False)
    external_provider: Mapped[str | None] = mapped_column(String, nullable=True)
    external_activity_id: Mapped[str | None] = mapped_column(String, nullable=True)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    distance_km: Mapped[float | None] = mapped_column(Float, nullable=True)
    rpe: Mapped[int | None] = mapped_column(Integer, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    pain_flag: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    metrics_json: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    match_day_diff: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)

    calendar_item: Mapped[CalendarItem | None] = relationship(back_populates="completed_activities")

    __table_args__ = (
        UniqueConstraint("athlete_id", "source", "external_activity_id", name="uq_completed_activity_external"),
    )


class Comment(Base):
    __tablename__ = "comments"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    calendar_item_id: Mapped[str] = mapped_column(String, ForeignKey("calendar_items.id"), nullable=False, index=True)
    author_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)

    calendar_item: Mapped[CalendarItem] = relationship(back_populates="comments")


class StravaConnection(Base):
    """Strava OAuth connection per athlete.

    access_token and refresh_token are Fernet-encrypted at rest.
    """

    __tablename__ = "strava_connections"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    athlete_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False, unique=True)
    strava_athlete_id: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    access_token: Mapped[str] = mapped_column(String, nullable=False)
    refresh_token: Mapped[str] = mapped_column(String, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    scope: Mapped[str | None] = mapped_column(String, nullable=True)
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)


class ExternalWebhookEvent(Base):
    """Inbound provider webhook event and its processing outcome."""

    __tablename__ = "external_webhook_events"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    provider: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default=WebhookEventStatus.PENDING)
    athlete_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    external_athlete_id: Mapped[str | None] = mapped_column(String, nullable=True)
    external_activity_id: Mapped[str | None] = mapped_column(String, nullable=True)
    event_type: Mapped[str | None] = mapped_column(String, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    payload_json: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now, onupdate=_now)
    next_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("idx_webhook_events_status_received", "status", "received_at"),)
