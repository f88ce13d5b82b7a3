"""Strava OAuth token persistence and refresh.

Tokens are stored Fernet-encrypted on StravaConnection and decrypted only
when a request is about to be made.
"""

from __future__ import annotations

from datetime import datetime, timezone

import requests
from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session

from coachkit.config.settings import settings
from coachkit.core.encryption import decrypt_token, encrypt_token
from coachkit.core.errors import ApiError
from coachkit.db.models import StravaConnection
from coachkit.integrations.strava.tokens import get_token_expiry_datetime, is_token_expiring, refresh_access_token


def _require_credentials() -> tuple[str, str]:
    if not settings.strava_client_id or not settings.strava_client_secret:
        raise ApiError(500, "STRAVA_CONFIG_MISSING", "STRAVA_CLIENT_ID/STRAVA_CLIENT_SECRET are not set.")
    return settings.strava_client_id, settings.strava_client_secret


def ensure_fresh_access_token(session: Session, connection: StravaConnection, now: datetime | None = None) -> str:
    """Return a usable access token, refreshing and persisting it when near expiry.

    Args:
        session: Database session
        connection: The athlete's Strava connection
        now: Current time (defaults to now)

    Returns:
        Decrypted access token

    Raises:
        ApiError: 500 STRAVA_CONFIG_MISSING when credentials are unset,
            502 STRAVA_TOKEN_REFRESH_FAILED / STRAVA_TOKEN_REFRESH_INVALID
            when Strava rejects or garbles the refresh
    """
    if not is_token_expiring(connection.expires_at, now=now):
        return decrypt_token(connection.access_token)

    client_id, client_secret = _require_credentials()
    logger.info(f"[STRAVA] Refreshing access token for athlete_id={connection.athlete_id}")
    try:
        token_data = refresh_access_token(
            client_id=client_id,
            client_secret=client_secret,
            refresh_token=decrypt_token(connection.refresh_token),
        )
    except requests.RequestException as e:
        raise ApiError(502, "STRAVA_TOKEN_REFRESH_FAILED", "Failed to refresh Strava token.") from e

    access_token = token_data.get("access_token")
    refresh_token = token_data.get("refresh_token")
    expires_at = token_data.get("expires_at")
    if not access_token or not refresh_token or not expires_at:
        raise ApiError(502, "STRAVA_TOKEN_REFRESH_INVALID", "Strava token refresh response missing required fields.")

    connection.access_token = encrypt_token(access_token)
    connection.refresh_token = encrypt_token(refresh_token)
    connection.expires_at = get_token_expiry_datetime(int(expires_at))
    connection.scope = token_data.get("scope") or connection.scope
    session.commit()
    logger.info(f"[STRAVA] Tokens rotated for athlete_id={connection.athlete_id}")
    return access_token


def save_connection_from_token_response(
    session: Session,
    athlete_id: str,
    token_data: dict,
    scope: str | None = None,
) -> StravaConnection:
    """Create or update the athlete's connection from an OAuth token response.

    Raises:
        ApiError: 502 STRAVA_TOKEN_EXCHANGE_INVALID when required fields are missing
    """
    strava_athlete = token_data.get("athlete") or {}
    strava_athlete_id = str(strava_athlete.get("id") or "").strip()
    access_token = token_data.get("access_token")
    refresh_token = token_data.get("refresh_token")
    expires_at = token_data.get("expires_at")
    if not strava_athlete_id or not access_token or not refresh_token or not expires_at:
        raise ApiError(502, "STRAVA_TOKEN_EXCHANGE_INVALID", "Strava token response missing required fields.")

    connection = session.execute(
        select(StravaConnection).where(StravaConnection.athlete_id == athlete_id)
    ).scalar_one_or_none()

    # A Strava account can only be linked to one athlete at a time
    other = session.execute(
        select(StravaConnection).where(
            StravaConnection.strava_athlete_id == strava_athlete_id,
            StravaConnection.athlete_id != athlete_id,
        )
    ).scalar_one_or_none()
    if other is not None:
        logger.warning(f"[STRAVA] Strava athlete {strava_athlete_id} moved from athlete_id={other.athlete_id} to {athlete_id}")
        session.delete(other)
        session.flush()

    if connection is None:
        connection = StravaConnection(athlete_id=athlete_id, strava_athlete_id=strava_athlete_id)
        session.add(connection)

    connection.strava_athlete_id = strava_athlete_id
    connection.access_token = encrypt_token(access_token)
    connection.refresh_token = encrypt_token(refresh_token)
    connection.expires_at = get_token_expiry_datetime(int(expires_at))
    connection.scope = scope or token_data.get("scope") or connection.scope
    connection.created_at = connection.created_at or datetime.now(timezone.utc)
    session.commit()
    logger.info(f"[STRAVA] Connection saved for athlete_id={athlete_id} strava_athlete_id={strava_athlete_id}")
    return connection
