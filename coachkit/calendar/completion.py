"""Completion contract for athlete calendar summaries.

- Completed sessions are calendar items with status COMPLETED_MANUAL or
  COMPLETED_SYNCED.
- COMPLETED_SYNCED_DRAFT is NOT completed (pending athlete confirmation).
- Metrics prefer the latest completed activity when available; otherwise
  fall back to planned duration/distance for completed items only.
- Each calendar item is counted once.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from coachkit.db.models import CalendarItem, CalendarItemStatus, CompletedActivity
from coachkit.utils.day_key import get_local_day_key
from coachkit.utils.timezone import ensure_utc

COMPLETED_STATUSES = frozenset({CalendarItemStatus.COMPLETED_MANUAL, CalendarItemStatus.COMPLETED_SYNCED})


def safe_number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return value


def normalize_discipline(value: Any) -> str:
    raw = value.strip().upper() if isinstance(value, str) else ""
    return raw or "OTHER"


def _completion_calories(activity: CompletedActivity) -> float | None:
    metrics = activity.metrics_json or {}
    for namespace in metrics.values():
        if isinstance(namespace, dict):
            calories = safe_number(namespace.get("caloriesKcal"))
            if calories is not None:
                return calories
    return None


@dataclass
class LatestCompletion:
    confirmed_at: datetime | None = None
    duration_minutes: float | None = None
    distance_km: float | None = None
    calories_kcal: float | None = None

    @classmethod
    def from_model(cls, activity: CompletedActivity) -> LatestCompletion:
        return cls(
            confirmed_at=ensure_utc(activity.confirmed_at),
            duration_minutes=activity.duration_minutes,
            distance_km=activity.distance_km,
            calories_kcal=_completion_calories(activity),
        )


@dataclass
class CalendarCompletionItem:
    """Calendar item projection used by completion and range summaries."""

    date: str
    discipline: str | None = None
    status: str | None = None
    planned_duration_minutes: float | None = None
    planned_distance_km: float | None = None
    planned_calories_kcal: float | None = None
    latest_completed_activity: LatestCompletion | None = None
    athlete_id: str | None = None

    @classmethod
    def from_model(cls, item: CalendarItem) -> CalendarCompletionItem:
        latest = None
        if item.completed_activities:
            newest = max(item.completed_activities, key=lambda activity: ensure_utc(activity.start_time))
            latest = LatestCompletion.from_model(newest)
        item_date = item.date.date() if isinstance(item.date, datetime) else item.date
        return cls(
            date=item_date.isoformat() if isinstance(item_date, date) else str(item_date),
            discipline=item.discipline,
            status=item.status,
            planned_duration_minutes=item.planned_duration_minutes,
            planned_distance_km=item.planned_distance_km,
            planned_calories_kcal=item.planned_calories_kcal,
            latest_completed_activity=latest,
            athlete_id=item.athlete_id,
        )


@dataclass
class CompletionSummaryRow:
    discipline: str
    duration_minutes: float = 0
    distance_km: float = 0
    calories_kcal: float = 0


@dataclass
class CompletionSummary:
    totals: CompletionSummaryRow
    by_discipline: list[CompletionSummaryRow] = field(default_factory=list)
    workout_count: int = 0


def is_completed_calendar_item(item: CalendarCompletionItem) -> bool:
    return str(item.status or "").upper() in COMPLETED_STATUSES


def positive_number(value: Any) -> float | None:
    number = safe_number(value)
    if number is not None and number > 0:
        return number
    return None


def get_completion_minutes(item: CalendarCompletionItem) -> float | None:
    if not is_completed_calendar_item(item):
        return None
    completion = item.latest_completed_activity
    from_completion = positive_number(completion.duration_minutes) if completion else None
    return from_completion or positive_number(item.planned_duration_minutes)


def get_completion_distance_km(item: CalendarCompletionItem) -> float | None:
    if not is_completed_calendar_item(item):
        return None
    completion = item.latest_completed_activity
    from_completion = positive_number(completion.distance_km) if completion else None
    return from_completion or positive_number(item.planned_distance_km)


def get_completion_calories_kcal(item: CalendarCompletionItem) -> float | None:
    """Calories only ever come from the completion; there is no planned fallback."""
    if not is_completed_calendar_item(item):
        return None
    completion = item.latest_completed_activity
    return positive_number(completion.calories_kcal) if completion else None


def get_range_completion_summary(
    items: list[CalendarCompletionItem],
    time_zone: str,
    from_day_key: str,
    to_day_key: str,
    item_filter: Callable[[CalendarCompletionItem], bool] | None = None,
) -> CompletionSummary:
    """Totals and per-discipline rows for completed items inside the local day range."""
    rows: dict[str, CompletionSummaryRow] = {}
    totals = CompletionSummaryRow(discipline="TOTAL")
    workout_count = 0

    for item in items:
        if item_filter is not None and not item_filter(item):
            continue
        if not is_completed_calendar_item(item):
            continue

        local_day_key = get_local_day_key(item.date, time_zone)
        if local_day_key < from_day_key or local_day_key > to_day_key:
            continue

        workout_count += 1

        duration = max(0, get_completion_minutes(item) or 0)
        distance = max(0, get_completion_distance_km(item) or 0)
        calories = max(0, get_completion_calories_kcal(item) or 0)
        if duration <= 0 and distance <= 0 and calories <= 0:
            continue

        totals.duration_minutes += duration
        totals.distance_km += distance
        totals.calories_kcal += calories

        discipline = normalize_discipline(item.discipline)
        row = rows.setdefault(discipline, CompletionSummaryRow(discipline=discipline))
        row.duration_minutes += duration
        row.distance_km += distance
        row.calories_kcal += calories

    by_discipline = sorted(
        rows.values(),
        key=lambda row: (row.duration_minutes, row.distance_km, row.calories_kcal),
        reverse=True,
    )
    return CompletionSummary(totals=totals, by_discipline=by_discipline, workout_count=workout_count)
