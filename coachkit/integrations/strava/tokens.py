from __future__ import annotations

import datetime as dt

import requests
from loguru import logger

STRAVA_TOKEN_URL = "https://www.strava.com/oauth/token"
STRAVA_AUTHORIZE_URL = "https://www.strava.com/oauth/authorize"

# Refresh when the access token expires within this many seconds
TOKEN_EXPIRY_SKEW_SECONDS = 60


def exchange_code_for_token(
    *,
    client_id: str,
    client_secret: str,
    code: str,
    redirect_uri: str,
) -> dict:
    """Exchange a Strava authorization code for tokens.

    Args:
        client_id: Strava application client ID
        client_secret: Strava application client secret
        code: Authorization code from the Strava callback
        redirect_uri: Redirect URI used in authorization (must match exactly)

    Returns:
        Token response containing access_token, refresh_token, expires_at and athlete

    Raises:
        requests.HTTPError: If the token exchange fails
    """
    logger.info("[STRAVA] Exchanging authorization code for access token")
    try:
        resp = requests.post(
            STRAVA_TOKEN_URL,
            data={
                "client_id": client_id,
                "client_secret": client_secret,
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": redirect_uri,
            },
            timeout=10,
        )
        resp.raise_for_status()
    except requests.HTTPError as e:
        status = e.response.status_code if e.response is not None else "Unknown"
        text = e.response.text if e.response is not None else "No response text"
        logger.error(f"[STRAVA] OAuth token exchange failed: {status} - {text}")
        raise
    return resp.json()


def refresh_access_token(
    *,
    client_id: str,
    client_secret: str,
    refresh_token: str,
) -> dict:
    """Exchange a refresh token for a new access token."""
    logger.debug("[STRAVA] Refreshing access token")
    try:
        resp = requests.post(
            STRAVA_TOKEN_URL,
            data={
                "client_id": client_id,
                "client_secret": client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
            timeout=10,
        )
        resp.raise_for_status()
    except requests.HTTPError as e:
        status = e.response.status_code if e.response is not None else "Unknown"
        logger.error(f"[STRAVA] Token refresh failed: {status}")
        raise
    return resp.json()


def is_token_expiring(expires_at: dt.datetime, skew_seconds: int = TOKEN_EXPIRY_SKEW_SECONDS, now: dt.datetime | None = None) -> bool:
    """True when ``expires_at`` is within ``skew_seconds`` of now (or already past)."""
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=dt.timezone.utc)
    current = now or dt.datetime.now(dt.timezone.utc)
    return current >= expires_at - dt.timedelta(seconds=skew_seconds)


def get_token_expiry_datetime(expires_at: int) -> dt.datetime:
    """Convert a Strava expires_at timestamp to datetime."""
    return dt.datetime.fromtimestamp(expires_at, tz=dt.timezone.utc)
