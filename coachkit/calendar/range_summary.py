from __future__ import annotations

from collections.abc import Callable
from dataclasses import asdict, dataclass, field

from coachkit.calendar.completion import (
    CalendarCompletionItem,
    get_completion_calories_kcal,
    get_completion_distance_km,
    get_completion_minutes,
    is_completed_calendar_item,
    normalize_discipline,
    positive_number,
)
from coachkit.utils.day_key import day_keys_inclusive, get_local_day_key


@dataclass
class RangeSummaryRow:
    discipline: str
    planned_minutes: float = 0
    completed_minutes: float = 0
    planned_distance_km: float = 0
    completed_distance_km: float = 0
    planned_calories_kcal: float | None = None
    completed_calories_kcal: float = 0


@dataclass
class RangeSummaryTotals:
    planned_minutes: float = 0
    completed_minutes: float = 0
    planned_distance_km: float = 0
    completed_distance_km: float = 0
    planned_calories_kcal: float | None = None
    completed_calories_kcal: float = 0
    workouts_planned: int = 0
    workouts_completed: int = 0
    workouts_skipped: int = 0
    workouts_missed: int = 0


@dataclass
class DailyCalories:
    day_key: str
    completed_calories_kcal: float = 0
    planned_calories_kcal: float | None = None


@dataclass
class RangeSummaryMeta:
    time_zone: str
    item_count: int = 0
    planned_item_count: int = 0
    completed_item_count: int = 0
    skipped_item_count: int = 0


@dataclass
class RangeSummary:
    from_day_key: str
    to_day_key: str
    totals: RangeSummaryTotals
    by_discipline: list[RangeSummaryRow]
    calories_by_day: list[DailyCalories]
    meta: RangeSummaryMeta = field(default_factory=lambda: RangeSummaryMeta(time_zone="UTC"))

    def to_dict(self) -> dict:
        return asdict(self)


def get_athlete_range_summary(
    items: list[CalendarCompletionItem],
    time_zone: str,
    from_day_key: str,
    to_day_key: str,
    today_day_key: str,
    item_filter: Callable[[CalendarCompletionItem], bool] | None = None,
) -> RangeSummary:
    """Planned vs completed load for an athlete over a local day range.

    An item counts as planned when it carries any planned metric or is still
    in PLANNED status; a PLANNED item whose day is before ``today_day_key``
    also counts as missed. Items with no planned or completed metrics are
    counted but do not produce a discipline row.

    Args:
        items: Calendar item projections (may extend beyond the range)
        time_zone: Athlete IANA timezone
        from_day_key: First local day (inclusive)
        to_day_key: Last local day (inclusive)
        today_day_key: The athlete's current local day
        item_filter: Optional predicate applied before anything else

    Returns:
        RangeSummary with totals, per-discipline rows and a daily calories series
    """
    totals = RangeSummaryTotals()
    meta = RangeSummaryMeta(time_zone=time_zone, item_count=len(items))
    rows: dict[str, RangeSummaryRow] = {}
    calories_by_day: dict[str, DailyCalories] = {}

    for item in items:
        if item_filter is not None and not item_filter(item):
            continue

        local_day_key = get_local_day_key(item.date, time_zone)
        if local_day_key < from_day_key or local_day_key > to_day_key:
            continue

        status = str(item.status or "").upper()
        planned_minutes = max(0, positive_number(item.planned_duration_minutes) or 0)
        planned_distance = max(0, positive_number(item.planned_distance_km) or 0)
        planned_calories = positive_number(item.planned_calories_kcal)
        completed_minutes = max(0, get_completion_minutes(item) or 0)
        completed_distance = max(0, get_completion_distance_km(item) or 0)
        completed_calories = max(0, get_completion_calories_kcal(item) or 0)

        is_planned = planned_minutes > 0 or planned_distance > 0 or planned_calories is not None or status == "PLANNED"
        is_completed = is_completed_calendar_item(item)

        if is_planned:
            totals.workouts_planned += 1
            meta.planned_item_count += 1
        if is_completed:
            totals.workouts_completed += 1
            meta.completed_item_count += 1
        if status == "SKIPPED":
            totals.workouts_skipped += 1
            meta.skipped_item_count += 1
        if is_planned and status == "PLANNED" and local_day_key < today_day_key:
            totals.workouts_missed += 1

        totals.planned_minutes += planned_minutes
        totals.planned_distance_km += planned_distance
        if planned_calories is not None:
            totals.planned_calories_kcal = (totals.planned_calories_kcal or 0) + planned_calories
        totals.completed_minutes += completed_minutes
        totals.completed_distance_km += completed_distance
        totals.completed_calories_kcal += completed_calories

        if completed_calories > 0 or planned_calories is not None:
            day = calories_by_day.setdefault(local_day_key, DailyCalories(day_key=local_day_key))
            day.completed_calories_kcal += completed_calories
            if planned_calories is not None:
                day.planned_calories_kcal = (day.planned_calories_kcal or 0) + planned_calories

        if (
            planned_minutes <= 0
            and completed_minutes <= 0
            and planned_distance <= 0
            and completed_distance <= 0
            and completed_calories <= 0
        ):
            continue

        discipline = normalize_discipline(item.discipline)
        row = rows.setdefault(discipline, RangeSummaryRow(discipline=discipline))
        row.planned_minutes += planned_minutes
        row.completed_minutes += completed_minutes
        row.planned_distance_km += planned_distance
        row.completed_distance_km += completed_distance
        if planned_calories is not None:
            row.planned_calories_kcal = (row.planned_calories_kcal or 0) + planned_calories
        row.completed_calories_kcal += completed_calories

    by_discipline = sorted(
        rows.values(),
        key=lambda row: (max(row.planned_minutes, row.completed_minutes), row.planned_minutes, row.completed_minutes),
        reverse=True,
    )

    series = [
        calories_by_day.get(day_key) or DailyCalories(day_key=day_key)
        for day_key in day_keys_inclusive(from_day_key, to_day_key)
    ]

    return RangeSummary(
        from_day_key=from_day_key,
        to_day_key=to_day_key,
        totals=totals,
        by_discipline=by_discipline,
        calories_by_day=series,
        meta=meta,
    )
