from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict

from coachkit.db.models import CompletionSource, StravaConnection
from coachkit.utils.day_key import to_athlete_local_day_key
from coachkit.utils.zoned_time import zoned_minutes

UNPLANNED_TITLE = "Unplanned (Imported from Strava)"

# Large per-activity arrays that are never read back
BULKY_ACTIVITY_KEYS = (
    "segment_efforts",
    "splits_metric",
    "splits_standard",
    "laps",
    "best_efforts",
    "photos",
    "similar_activities",
)

STRENGTH_KEYWORDS = ("workout", "weight", "strength", "training", "crossfit", "yoga", "pilates")


class StravaActivityMap(BaseModel):
    model_config = ConfigDict(extra="allow")

    summary_polyline: str | None = None


class StravaActivity(BaseModel):
    """Strava activity payload (summary or detailed); unknown fields are kept."""

    model_config = ConfigDict(extra="allow")

    id: int | str | None = None
    name: str | None = None
    type: str | None = None
    sport_type: str | None = None
    start_date: str | None = None
    start_date_local: str | None = None
    timezone: str | None = None
    elapsed_time: float | None = None
    moving_time: float | None = None
    distance: float | None = None
    total_elevation_gain: float | None = None
    elev_high: float | None = None
    elev_low: float | None = None
    average_speed: float | None = None
    max_speed: float | None = None
    average_heartrate: float | None = None
    max_heartrate: float | None = None
    average_cadence: float | None = None
    calories: float | None = None
    map: StravaActivityMap | None = None


@dataclass
class NormalizedExternalActivity:
    """Provider activity in the shape the ingest and matching code expects.

    activity_day_key and activity_minutes are in the athlete's timezone.
    """

    external_activity_id: str
    provider: str
    source: str
    discipline: str
    subtype: str | None
    title: str
    start_time: datetime
    activity_day_key: str
    activity_minutes: int
    duration_minutes: int
    distance_km: float | None
    notes: str | None = None
    metrics_namespace: str = "strava"
    metrics: dict[str, Any] = field(default_factory=dict)


def map_strava_discipline(activity: StravaActivity) -> str:
    raw = (activity.sport_type or activity.type or "").lower()

    if "run" in raw:
        return "RUN"
    if "ride" in raw or "bike" in raw:
        return "BIKE"
    if "swim" in raw:
        return "SWIM"
    if any(keyword in raw for keyword in STRENGTH_KEYWORDS):
        return "STRENGTH"
    return "OTHER"


def parse_strava_instant(value: str | None) -> datetime | None:
    if not value:
        return None
    raw = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def round_half_up(value: float) -> int:
    # Builtin round() goes to the nearest even integer on .5
    return math.floor(value + 0.5)


def derive_avg_pace_sec_per_km(avg_speed_mps: float | None) -> int | None:
    if not avg_speed_mps or avg_speed_mps <= 0:
        return None
    return round_half_up(1000 / avg_speed_mps)


def sanitize_activity_for_storage(raw: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in raw.items() if key not in BULKY_ACTIVITY_KEYS}


def _coerce(raw: StravaActivity | dict[str, Any]) -> tuple[StravaActivity, dict[str, Any]]:
    if isinstance(raw, StravaActivity):
        return raw, raw.model_dump(mode="json", exclude_none=True)
    return StravaActivity.model_validate(raw), dict(raw)


def normalize_strava_activity(
    raw: StravaActivity | dict[str, Any],
    athlete_timezone: str,
) -> NormalizedExternalActivity | None:
    """Normalize a Strava payload for ingestion.

    Args:
        raw: Strava activity payload
        athlete_timezone: Athlete IANA timezone used for the local day and minutes

    Returns:
        NormalizedExternalActivity, or None when the payload has no id, no
        parseable start, or no positive moving/elapsed time
    """
    activity, payload = _coerce(raw)

    external_activity_id = str(activity.id if activity.id is not None else "").strip()
    if not external_activity_id:
        return None

    start = parse_strava_instant(activity.start_date)
    if start is None:
        return None

    moving_time_sec = max(0.0, float(activity.moving_time or activity.elapsed_time or 0))
    if moving_time_sec <= 0:
        return None

    distance_meters = float(activity.distance or 0)
    discipline = map_strava_discipline(activity)
    average_speed = activity.average_speed

    metrics = {
        "activityId": external_activity_id,
        "startDateUtc": activity.start_date,
        "startDateLocal": activity.start_date_local,
        "timezone": activity.timezone,
        "activity": sanitize_activity_for_storage(payload),
        "name": activity.name,
        "sportType": activity.sport_type,
        "type": activity.type,
        "distanceMeters": distance_meters,
        "movingTimeSec": moving_time_sec,
        "elapsedTimeSec": activity.elapsed_time,
        "totalElevationGainM": activity.total_elevation_gain,
        "elevHighM": activity.elev_high,
        "elevLowM": activity.elev_low,
        "averageSpeedMps": average_speed,
        "maxSpeedMps": activity.max_speed,
        "averageHeartrateBpm": activity.average_heartrate,
        "maxHeartrateBpm": activity.max_heartrate,
        "averageCadenceRpm": activity.average_cadence,
        "caloriesKcal": activity.calories,
        "summaryPolyline": activity.map.summary_polyline if activity.map else None,
        "avgSpeedMps": average_speed,
        "avgPaceSecPerKm": derive_avg_pace_sec_per_km(average_speed) if discipline == "RUN" else None,
        "avgHr": round_half_up(activity.average_heartrate) if activity.average_heartrate is not None else None,
        "maxHr": round_half_up(activity.max_heartrate) if activity.max_heartrate is not None else None,
    }

    return NormalizedExternalActivity(
        external_activity_id=external_activity_id,
        provider="STRAVA",
        source=CompletionSource.STRAVA,
        discipline=discipline,
        subtype=activity.type,
        title=(activity.name or "").strip() or UNPLANNED_TITLE,
        start_time=start,
        activity_day_key=to_athlete_local_day_key(start, athlete_timezone),
        activity_minutes=zoned_minutes(start, athlete_timezone),
        duration_minutes=max(1, round_half_up(moving_time_sec / 60)),
        distance_km=distance_meters / 1000 if distance_meters > 0 else None,
        metrics_namespace="strava",
        metrics={key: value for key, value in metrics.items() if value is not None},
    )


@dataclass
class SyncError:
    athlete_id: str
    message: str


@dataclass
class PollSummary:
    """Counters for one sync run across one or more athletes."""

    polled_athletes: int = 0
    fetched: int = 0
    created: int = 0
    updated: int = 0
    matched: int = 0
    created_calendar_items: int = 0
    skipped_existing: int = 0
    errors: list[SyncError] = field(default_factory=list)


@dataclass
class StravaConnectionEntry:
    athlete_id: str
    athlete_timezone: str
    coach_id: str
    connection: StravaConnection
