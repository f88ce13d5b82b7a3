"""Idempotent upsert of provider activities into completed_activities.

Rows are keyed by (athlete_id, source, external_activity_id). The insert is
attempted first inside a savepoint; a unique-constraint conflict falls back
to comparing against and updating the existing row.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from coachkit.db.models import CompletedActivity
from coachkit.integrations.strava.schemas import NormalizedExternalActivity
from coachkit.utils.timezone import ensure_utc


class IngestKind(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


@dataclass
class IngestResult:
    kind: IngestKind
    completed: CompletedActivity


class IngestConflictError(RuntimeError):
    """Unique conflict on insert, but the conflicting row could not be loaded."""


def _json_equal(left: Any, right: Any) -> bool:
    try:
        return json.dumps(left, sort_keys=True, default=str) == json.dumps(right, sort_keys=True, default=str)
    except (TypeError, ValueError):
        return False


def _namespace_metrics(metrics_json: Any, namespace: str) -> Any:
    if not isinstance(metrics_json, dict):
        return None
    return metrics_json.get(namespace)


def _is_unchanged(existing: CompletedActivity, activity: NormalizedExternalActivity) -> bool:
    return (
        existing.duration_minutes == activity.duration_minutes
        and existing.distance_km == activity.distance_km
        and ensure_utc(existing.start_time) == ensure_utc(activity.start_time)
        and _json_equal(_namespace_metrics(existing.metrics_json, activity.metrics_namespace), activity.metrics)
    )


def _load_existing(session: Session, athlete_id: str, activity: NormalizedExternalActivity) -> CompletedActivity | None:
    return session.execute(
        select(CompletedActivity).where(
            CompletedActivity.athlete_id == athlete_id,
            CompletedActivity.source == activity.source,
            CompletedActivity.external_activity_id == activity.external_activity_id,
        )
    ).scalar_one_or_none()


def upsert_external_completed_activity(
    session: Session,
    athlete_id: str,
    activity: NormalizedExternalActivity,
) -> IngestResult:
    """Insert or refresh the completed activity for a provider activity.

    Args:
        session: Database session (flushed, not committed)
        athlete_id: Owning athlete
        activity: Normalized provider activity

    Returns:
        IngestResult with kind created, updated or unchanged
    """
    completed = CompletedActivity(
        athlete_id=athlete_id,
        source=activity.source,
        external_provider=activity.provider,
        external_activity_id=activity.external_activity_id,
        start_time=activity.start_time,
        duration_minutes=activity.duration_minutes,
        distance_km=activity.distance_km,
        notes=activity.notes,
        pain_flag=False,
        confirmed_at=None,
        metrics_json={activity.metrics_namespace: activity.metrics},
    )

    try:
        with session.begin_nested():
            session.add(completed)
            session.flush()
    except IntegrityError:
        logger.debug(
            "[INGEST] Completed activity already exists athlete_id={} external_id={}",
            athlete_id,
            activity.external_activity_id,
        )
    else:
        return IngestResult(kind=IngestKind.CREATED, completed=completed)

    existing = _load_existing(session, athlete_id, activity)
    if existing is None:
        raise IngestConflictError(f"Conflict on upsert but completion {activity.external_activity_id} was not found")

    if _is_unchanged(existing, activity):
        return IngestResult(kind=IngestKind.UNCHANGED, completed=existing)

    merged = dict(existing.metrics_json or {})
    merged[activity.metrics_namespace] = activity.metrics
    existing.start_time = activity.start_time
    existing.duration_minutes = activity.duration_minutes
    existing.distance_km = activity.distance_km
    existing.metrics_json = merged
    session.flush()
    return IngestResult(kind=IngestKind.UPDATED, completed=existing)
