"""Strava polling sync.

Fetches recent activities for connected athletes, ingests them as
completed activities and links them to calendar items. Used by the
scheduled poll, the manual poll endpoint and the webhook.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session

from coachkit.core.errors import ApiError
from coachkit.db.models import StravaConnection, User
from coachkit.db.session import get_session
from coachkit.integrations.strava.client import StravaClient
from coachkit.integrations.strava.schemas import (
    PollSummary,
    StravaConnectionEntry,
    SyncError,
    normalize_strava_activity,
)
from coachkit.integrations.strava.token_service import ensure_fresh_access_token
from coachkit.pairing.strava_matching import ingest_normalized_activity
from coachkit.utils.timezone import ensure_utc, resolve_time_zone

DEFAULT_LOOKBACK_DAYS = 14
AFTER_BUFFER = timedelta(hours=2)

ClientFactory = Callable[[str], StravaClient]


def _is_rate_limited(error: Exception) -> bool:
    return isinstance(error, ApiError) and (error.status_code == 429 or error.code == "STRAVA_RATE_LIMITED")


def _error_message(error: Exception) -> str:
    if isinstance(error, ApiError):
        return error.message
    return str(error) or "Strava sync failed."


def compute_after_unix(
    last_sync_at: datetime | None,
    force_days: int | None,
    now: datetime,
) -> int:
    """Lower bound for the activities query, in unix seconds.

    force_days wins over last_sync_at; without either the default lookback
    applies. A two hour buffer catches activities uploaded late.
    """
    if force_days:
        base = now - timedelta(days=force_days)
    elif last_sync_at is not None:
        base = ensure_utc(last_sync_at)
    else:
        base = now - timedelta(days=DEFAULT_LOOKBACK_DAYS)
    return max(0, int((base - AFTER_BUFFER).timestamp()))


def _ingest_payloads(session: Session, entry: StravaConnectionEntry, payloads: list[dict], summary: PollSummary) -> None:
    summary.fetched += len(payloads)
    for payload in payloads:
        activity = normalize_strava_activity(payload, entry.athlete_timezone)
        if activity is None:
            logger.debug("[STRAVA_SYNC] Skipping unusable activity payload id={}", payload.get("id"))
            continue
        ingest_normalized_activity(session, entry, activity, summary)


def sync_strava_for_connections(
    session: Session,
    entries: list[StravaConnectionEntry],
    force_days: int | None = None,
    override_after_unix: int | None = None,
    client_factory: ClientFactory = StravaClient,
) -> PollSummary:
    """Poll Strava for each connection and ingest what comes back.

    Errors are recorded per athlete and do not stop the run, except a
    Strava rate limit which ends the loop.

    Args:
        session: Database session
        entries: Connections to poll
        force_days: Look back this many days regardless of last_sync_at
        override_after_unix: Use this lower bound instead of computing one
        client_factory: Builds a client from an access token

    Returns:
        PollSummary for the whole run
    """
    summary = PollSummary()

    for entry in entries:
        summary.polled_athletes += 1
        try:
            access_token = ensure_fresh_access_token(session, entry.connection)
            now = datetime.now(timezone.utc)
            after_unix = (
                override_after_unix
                if override_after_unix is not None
                else compute_after_unix(entry.connection.last_sync_at, force_days, now)
            )

            payloads = client_factory(access_token).fetch_recent_activities(after_unix=after_unix)
            _ingest_payloads(session, entry, payloads, summary)

            entry.connection.last_sync_at = datetime.now(timezone.utc)
            session.commit()
            logger.info(
                "[STRAVA_SYNC] athlete_id={} fetched={} created={} matched={}",
                entry.athlete_id,
                len(payloads),
                summary.created,
                summary.matched,
            )
        except Exception as e:
            session.rollback()
            logger.warning(f"[STRAVA_SYNC] Sync failed for athlete_id={entry.athlete_id}: {e}")
            summary.errors.append(SyncError(athlete_id=entry.athlete_id, message=_error_message(e)))
            if _is_rate_limited(e):
                logger.warning("[STRAVA_SYNC] Rate limited by Strava, stopping run")
                break

    return summary


def sync_strava_activity_by_id(
    session: Session,
    entry: StravaConnectionEntry,
    activity_id: str,
    client_factory: ClientFactory = StravaClient,
) -> PollSummary:
    """Fetch and ingest a single activity (webhook create/update)."""
    summary = PollSummary(polled_athletes=1)
    try:
        access_token = ensure_fresh_access_token(session, entry.connection)
        payload = client_factory(access_token).fetch_activity(activity_id)
        _ingest_payloads(session, entry, [payload], summary)
        entry.connection.last_sync_at = datetime.now(timezone.utc)
        session.commit()
    except Exception as e:
        session.rollback()
        logger.warning(f"[STRAVA_SYNC] Activity {activity_id} sync failed for athlete_id={entry.athlete_id}: {e}")
        summary.errors.append(SyncError(athlete_id=entry.athlete_id, message=_error_message(e)))
    return summary


def load_connection_entries(session: Session, athlete_ids: list[str] | None = None) -> list[StravaConnectionEntry]:
    """Connections joined with their athlete's timezone and coach."""
    query = select(StravaConnection, User).join(User, User.id == StravaConnection.athlete_id)
    if athlete_ids is not None:
        query = query.where(StravaConnection.athlete_id.in_(athlete_ids))

    entries: list[StravaConnectionEntry] = []
    for connection, user in session.execute(query.order_by(StravaConnection.created_at)).all():
        profile = user.athlete_profile
        if profile is None:
            logger.debug(f"[STRAVA_SYNC] Skipping connection for {user.id}: no athlete profile")
            continue
        entries.append(
            StravaConnectionEntry(
                athlete_id=user.id,
                athlete_timezone=resolve_time_zone(user.timezone),
                coach_id=profile.coach_id,
                connection=connection,
            )
        )
    return entries


def poll_all_strava_connections() -> PollSummary:
    """Scheduled job: poll every connected athlete."""
    logger.info("[STRAVA_SYNC] Scheduled poll starting")
    with get_session() as session:
        entries = load_connection_entries(session)
        summary = sync_strava_for_connections(session, entries)
    logger.info(
        "[STRAVA_SYNC] Scheduled poll finished: athletes={} fetched={} created={} updated={} matched={} errors={}",
        summary.polled_athletes,
        summary.fetched,
        summary.created,
        summary.updated,
        summary.matched,
        len(summary.errors),
    )
    return summary
