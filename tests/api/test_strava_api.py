"""Tests for the Strava integration endpoints.

The Strava HTTP client is replaced through the get_strava_client_factory
dependency; OAuth token exchange is patched on the router module.
"""

from urllib.parse import parse_qs, urlparse

import pytest
from sqlalchemy import select

import coachkit.api.strava as strava_api
from coachkit.api.strava import get_strava_client_factory
from coachkit.config.settings import settings
from coachkit.core.encryption import decrypt_token, encrypt_token
from coachkit.core.errors import ApiError
from coachkit.db.models import CompletedActivity, ExternalWebhookEvent, StravaConnection, WebhookEventStatus

WEBHOOK_URL = "/api/integrations/strava/webhook"


@pytest.fixture
def strava_settings(monkeypatch):
    monkeypatch.setattr(settings, "strava_client_id", "client-id")
    monkeypatch.setattr(settings, "strava_client_secret", "client-secret")
    monkeypatch.setattr(settings, "strava_redirect_uri", "https://api.example/api/integrations/strava/callback")
    monkeypatch.setattr(settings, "strava_webhook_verify_token", "verify-me")
    monkeypatch.setattr(settings, "base_url", "https://coach.example")


@pytest.fixture
def use_fake_client(client):
    def _install(fake):
        client.app.dependency_overrides[get_strava_client_factory] = lambda: fake
        return fake

    return _install


def _event(**overrides) -> dict:
    event = {
        "object_type": "activity",
        "aspect_type": "create",
        "object_id": 1001,
        "owner_id": 55501,
        "event_time": 1718000000,
    }
    event.update(overrides)
    return event


class TestConnect:
    def test_redirects_to_strava(self, client, athlete_headers, athlete, strava_settings):
        response = client.get("/api/integrations/strava/connect", headers=athlete_headers, follow_redirects=False)

        assert response.status_code == 302
        location = urlparse(response.headers["location"])
        assert f"{location.scheme}://{location.netloc}{location.path}" == "https://www.strava.com/oauth/authorize"
        params = parse_qs(location.query)
        assert params["client_id"] == ["client-id"]
        assert params["scope"] == ["read,activity:read_all"]
        assert decrypt_token(params["state"][0]) == athlete.id

    def test_missing_config(self, client, athlete_headers, monkeypatch):
        monkeypatch.setattr(settings, "strava_client_id", "")
        response = client.get("/api/integrations/strava/connect", headers=athlete_headers, follow_redirects=False)

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "STRAVA_CONFIG_MISSING"


class TestCallback:
    def test_stores_connection(self, client, db_session, athlete, strava_settings, monkeypatch):
        seen = {}

        def fake_exchange(**kwargs):
            seen.update(kwargs)
            return {"access_token": "a1", "refresh_token": "r1", "expires_at": 1718042400, "athlete": {"id": 777}}

        monkeypatch.setattr(strava_api, "exchange_code_for_token", fake_exchange)

        response = client.get(
            "/api/integrations/strava/callback",
            params={"code": "abc", "state": encrypt_token(athlete.id), "scope": "read,activity:read_all"},
            follow_redirects=False,
        )

        assert response.status_code == 302
        assert response.headers["location"] == "https://coach.example/athlete/settings?strava=connected"
        assert seen["code"] == "abc"
        connection = db_session.execute(select(StravaConnection)).scalar_one()
        assert connection.strava_athlete_id == "777"

    @pytest.mark.parametrize(
        "params",
        [
            {"error": "access_denied"},
            {"code": "abc"},
            {"code": "abc", "state": "tampered"},
        ],
    )
    def test_error_outcomes(self, client, athlete, strava_settings, params):
        response = client.get("/api/integrations/strava/callback", params=params, follow_redirects=False)
        assert response.headers["location"] == "https://coach.example/athlete/settings?strava=error"

    def test_exchange_failure(self, client, db_session, athlete, strava_settings, monkeypatch):
        def failing_exchange(**kwargs):
            raise ApiError(502, "STRAVA_TOKEN_EXCHANGE_INVALID", "bad")

        monkeypatch.setattr(strava_api, "exchange_code_for_token", failing_exchange)

        response = client.get(
            "/api/integrations/strava/callback",
            params={"code": "abc", "state": encrypt_token(athlete.id)},
            follow_redirects=False,
        )

        assert response.headers["location"].endswith("strava=error")
        assert db_session.execute(select(StravaConnection)).first() is None


class TestPoll:
    def test_without_connection(self, client, athlete_headers):
        response = client.post("/api/integrations/strava/poll", headers=athlete_headers)

        assert response.status_code == 200
        assert response.json()["data"]["polled_athletes"] == 0

    def test_polls_with_clamped_force_days(self, client, athlete_headers, strava_connection, strava_payload, fake_strava, use_fake_client):
        fake = use_fake_client(fake_strava(activities=[strava_payload()]))

        response = client.post("/api/integrations/strava/poll", params={"forceDays": 90}, headers=athlete_headers)

        data = response.json()["data"]
        assert data["polled_athletes"] == 1
        assert data["created"] == 1
        assert data["created_calendar_items"] == 1
        assert fake.tokens == ["access-abc"]
        assert len(fake.after_unix) == 1


class TestWebhookVerification:
    def test_echoes_challenge(self, client, strava_settings):
        response = client.get(
            WEBHOOK_URL,
            params={"hub.mode": "subscribe", "hub.challenge": "xyz", "hub.verify_token": "verify-me"},
        )
        assert response.status_code == 200
        assert response.json() == {"hub.challenge": "xyz"}

    def test_rejects_wrong_token(self, client, strava_settings):
        response = client.get(
            WEBHOOK_URL,
            params={"hub.mode": "subscribe", "hub.challenge": "xyz", "hub.verify_token": "wrong"},
        )
        assert response.status_code == 403
        assert response.json() == {"error": "invalid"}

    def test_unconfigured(self, client, monkeypatch):
        monkeypatch.setattr(settings, "strava_webhook_verify_token", "")
        response = client.get(WEBHOOK_URL, params={"hub.mode": "subscribe", "hub.challenge": "xyz"})
        assert response.status_code == 500
        assert response.json()["error"]["code"] == "STRAVA_WEBHOOK_VERIFY_TOKEN_MISSING"


class TestWebhookEvents:
    def test_create_event_ingests_activity(self, client, db_session, strava_connection, strava_payload, fake_strava, use_fake_client):
        fake = use_fake_client(fake_strava(activities=[strava_payload()]))

        response = client.post(WEBHOOK_URL, json=_event())

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["mode"] == "activity"
        assert data["summary"]["created"] == 1
        assert fake.fetched_ids == ["1001"]

        row = db_session.execute(select(ExternalWebhookEvent)).scalar_one()
        assert row.status == WebhookEventStatus.PROCESSED
        assert row.athlete_id == strava_connection.athlete_id
        assert row.external_activity_id == "1001"
        assert row.attempts == 1
        assert db_session.execute(select(CompletedActivity)).scalar_one().external_activity_id == "1001"

    def test_delete_event_falls_back_to_poll(self, client, strava_connection, fake_strava, use_fake_client):
        fake = use_fake_client(fake_strava(activities=[]))

        data = client.post(WEBHOOK_URL, json=_event(aspect_type="delete")).json()["data"]

        assert data["mode"] == "poll"
        assert fake.fetched_ids == []
        assert len(fake.after_unix) == 1

    def test_failed_sync_is_recorded(self, client, db_session, strava_connection, fake_strava, use_fake_client):
        use_fake_client(fake_strava(error=ApiError(502, "STRAVA_ACTIVITY_FETCH_FAILED", "Failed to fetch Strava activity.")))

        response = client.post(WEBHOOK_URL, json=_event())

        assert response.status_code == 200
        row = db_session.execute(select(ExternalWebhookEvent)).scalar_one()
        assert row.status == WebhookEventStatus.FAILED
        assert row.last_error == "Failed to fetch Strava activity."

    @pytest.mark.parametrize(
        "event",
        [
            _event(object_type="athlete"),
            _event(owner_id=None),
            _event(owner_id=424242),
        ],
    )
    def test_ignored_events(self, client, db_session, strava_connection, event):
        response = client.post(WEBHOOK_URL, json=event)

        assert response.json() == {"ok": True}
        assert db_session.execute(select(ExternalWebhookEvent)).first() is None

    def test_malformed_body_still_answers_200(self, client):
        response = client.post(WEBHOOK_URL, content=b"{oops", headers={"Content-Type": "application/json"})

        assert response.status_code == 200
        assert response.json() == {"ok": False}
