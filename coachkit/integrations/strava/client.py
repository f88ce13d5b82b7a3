from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from coachkit.core.errors import ApiError

STRAVA_BASE_URL = "https://www.strava.com/api/v3"


def _rate_limited() -> ApiError:
    return ApiError(429, "STRAVA_RATE_LIMITED", "Strava rate limit hit. Try again later.")


class StravaClient:
    """Thin Strava API client.

    - No pagination
    - No sleeping
    - Rate limits surface as ApiError(429) so callers can stop early
    """

    def __init__(self, access_token: str, http: httpx.Client | None = None):
        self._access_token = access_token
        self._http = http

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._access_token}"}

    def _get(self, path: str, params: dict[str, Any] | None = None) -> httpx.Response:
        url = f"{STRAVA_BASE_URL}{path}"
        if self._http is not None:
            return self._http.get(url, headers=self._headers(), params=params, timeout=15)
        return httpx.get(url, headers=self._headers(), params=params, timeout=15)

    def fetch_recent_activities(self, *, after_unix: int, per_page: int = 50) -> list[dict[str, Any]]:
        """Fetch ONE PAGE of activities started after ``after_unix``.

        Raises:
            ApiError: 429 STRAVA_RATE_LIMITED, 502 when the request fails or
                the response is not a list
        """
        try:
            resp = self._get("/athlete/activities", params={"after": after_unix, "per_page": per_page})
        except httpx.HTTPError as e:
            logger.error(f"[STRAVA] Activities request failed: {e}")
            raise ApiError(502, "STRAVA_ACTIVITIES_FETCH_FAILED", "Failed to fetch Strava activities.") from e

        if resp.status_code == 429:
            raise _rate_limited()
        if resp.is_error:
            logger.warning(f"[STRAVA] Activities request returned {resp.status_code}")
            raise ApiError(502, "STRAVA_ACTIVITIES_FETCH_FAILED", "Failed to fetch Strava activities.")

        payload = resp.json()
        if not isinstance(payload, list):
            raise ApiError(502, "STRAVA_ACTIVITIES_INVALID", "Strava activities response was not an array.")
        return payload

    def fetch_activity(self, activity_id: str | int) -> dict[str, Any]:
        """Fetch one detailed activity."""
        try:
            resp = self._get(f"/activities/{activity_id}")
        except httpx.HTTPError as e:
            logger.error(f"[STRAVA] Activity {activity_id} request failed: {e}")
            raise ApiError(502, "STRAVA_ACTIVITY_FETCH_FAILED", "Failed to fetch Strava activity.") from e

        if resp.status_code == 429:
            raise _rate_limited()
        if resp.is_error:
            logger.warning(f"[STRAVA] Activity {activity_id} request returned {resp.status_code}")
            raise ApiError(502, "STRAVA_ACTIVITY_FETCH_FAILED", "Failed to fetch Strava activity.")

        payload = resp.json()
        if not isinstance(payload, dict):
            raise ApiError(502, "STRAVA_ACTIVITY_FETCH_FAILED", "Strava activity response was not an object.")
        return payload
