"""Strava integration endpoints: OAuth connect/callback, manual poll and webhook.

Webhook POSTs always answer 200 so Strava does not retry-storm us; the
outcome is recorded on an ExternalWebhookEvent row instead.
"""

from __future__ import annotations

import json
from dataclasses import asdict
from datetime import datetime, timezone
from urllib.parse import urlencode

import requests
from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse, RedirectResponse
from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session

from coachkit.api.dependencies.athlete import current_athlete
from coachkit.config.settings import settings
from coachkit.core.encryption import EncryptionError, decrypt_token, encrypt_token
from coachkit.core.errors import ApiError, success
from coachkit.db.models import ExternalWebhookEvent, StravaConnection, User, UserRole, WebhookEventStatus
from coachkit.db.session import get_db
from coachkit.integrations.strava.client import StravaClient
from coachkit.integrations.strava.schemas import PollSummary
from coachkit.integrations.strava.sync import (
    ClientFactory,
    load_connection_entries,
    sync_strava_activity_by_id,
    sync_strava_for_connections,
)
from coachkit.integrations.strava.token_service import save_connection_from_token_response
from coachkit.integrations.strava.tokens import STRAVA_AUTHORIZE_URL, exchange_code_for_token

router = APIRouter(prefix="/api/integrations/strava", tags=["strava"])

STRAVA_PROVIDER = "STRAVA"
STRAVA_SCOPE = "read,activity:read_all"
MAX_FORCE_DAYS = 30
WEBHOOK_UPDATE_FORCE_DAYS = 30
WEBHOOK_DEFAULT_FORCE_DAYS = 2


def get_strava_client_factory() -> ClientFactory:
    return StravaClient


def _settings_redirect(outcome: str) -> RedirectResponse:
    return RedirectResponse(f"{settings.base_url}/athlete/settings?strava={outcome}", status_code=status.HTTP_302_FOUND)


@router.get("/connect")
def strava_connect(athlete: User = Depends(current_athlete)):
    """Redirect the athlete to Strava's consent screen."""
    if not settings.strava_client_id or not settings.strava_redirect_uri:
        raise ApiError(500, "STRAVA_CONFIG_MISSING", "STRAVA_CLIENT_ID/STRAVA_REDIRECT_URI are not set.")

    params = {
        "client_id": settings.strava_client_id,
        "response_type": "code",
        "redirect_uri": settings.strava_redirect_uri,
        "approval_prompt": "auto",
        "scope": STRAVA_SCOPE,
        "state": encrypt_token(athlete.id),
    }
    logger.info(f"[STRAVA] OAuth connect initiated for athlete_id={athlete.id}")
    return RedirectResponse(f"{STRAVA_AUTHORIZE_URL}?{urlencode(params)}", status_code=status.HTTP_302_FOUND)


@router.get("/callback")
def strava_callback(
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
    error: str | None = Query(default=None),
    scope: str | None = Query(default=None),
    session: Session = Depends(get_db),
):
    """Exchange the authorization code and store the connection.

    The athlete is recovered from the encrypted state; the browser always
    lands back on the settings page with the outcome in the query string.
    """
    if error or not code or not state:
        logger.warning(f"[STRAVA] OAuth callback without code (error={error})")
        return _settings_redirect("error")

    try:
        athlete_id = decrypt_token(state)
    except EncryptionError:
        logger.warning("[STRAVA] OAuth callback with invalid state")
        return _settings_redirect("error")

    athlete = session.get(User, athlete_id)
    if athlete is None or athlete.role != UserRole.ATHLETE:
        logger.warning(f"[STRAVA] OAuth callback for unknown athlete_id={athlete_id}")
        return _settings_redirect("error")

    if not settings.strava_client_id or not settings.strava_client_secret:
        raise ApiError(500, "STRAVA_CONFIG_MISSING", "STRAVA_CLIENT_ID/STRAVA_CLIENT_SECRET are not set.")

    try:
        token_data = exchange_code_for_token(
            client_id=settings.strava_client_id,
            client_secret=settings.strava_client_secret,
            code=code,
            redirect_uri=settings.strava_redirect_uri,
        )
        save_connection_from_token_response(session, athlete.id, token_data, scope=scope)
    except (requests.RequestException, ApiError) as e:
        session.rollback()
        logger.error(f"[STRAVA] OAuth callback failed for athlete_id={athlete.id}: {e}")
        return _settings_redirect("error")

    return _settings_redirect("connected")


@router.post("/poll")
def strava_poll(
    force_days: int | None = Query(default=None, alias="forceDays"),
    athlete: User = Depends(current_athlete),
    session: Session = Depends(get_db),
    client_factory: ClientFactory = Depends(get_strava_client_factory),
):
    """Sync the calling athlete's Strava activities now."""
    entries = load_connection_entries(session, [athlete.id])
    if not entries:
        return success(asdict(PollSummary()))

    clamped = max(1, min(MAX_FORCE_DAYS, force_days)) if force_days else None
    summary = sync_strava_for_connections(session, entries, force_days=clamped, client_factory=client_factory)
    return success(asdict(summary))


@router.get("/webhook")
def strava_webhook_verify(
    hub_mode: str | None = Query(default=None, alias="hub.mode"),
    hub_challenge: str | None = Query(default=None, alias="hub.challenge"),
    hub_verify_token: str | None = Query(default=None, alias="hub.verify_token"),
):
    """Answer Strava's subscription verification handshake."""
    expected = settings.strava_webhook_verify_token
    if not expected:
        raise ApiError(500, "STRAVA_WEBHOOK_VERIFY_TOKEN_MISSING", "STRAVA_WEBHOOK_VERIFY_TOKEN is not set.")

    if not hub_challenge or not hub_verify_token or hub_mode != "subscribe" or hub_verify_token != expected:
        logger.warning("[WEBHOOK] Strava subscription verification rejected")
        return JSONResponse({"error": "invalid"}, status_code=status.HTTP_403_FORBIDDEN)

    logger.info("[WEBHOOK] Strava subscription verified")
    return JSONResponse({"hub.challenge": hub_challenge})


def _record_event(session: Session, event: dict, athlete_id: str | None) -> ExternalWebhookEvent:
    object_id = event.get("object_id")
    owner_id = event.get("owner_id")
    row = ExternalWebhookEvent(
        provider=STRAVA_PROVIDER,
        status=WebhookEventStatus.PROCESSING,
        athlete_id=athlete_id,
        external_athlete_id=str(owner_id) if owner_id else None,
        external_activity_id=str(object_id) if object_id else None,
        event_type=event.get("aspect_type"),
        attempts=1,
        payload_json=event,
    )
    session.add(row)
    session.commit()
    return row


def _finish_event(session: Session, row: ExternalWebhookEvent, summary: PollSummary | None, error: str | None = None) -> None:
    if error is None and summary is not None and summary.errors:
        error = summary.errors[0].message
    row.status = WebhookEventStatus.FAILED if error else WebhookEventStatus.PROCESSED
    row.last_error = error
    row.updated_at = datetime.now(timezone.utc)
    session.commit()


@router.post("/webhook")
async def strava_webhook_event(
    request: Request,
    session: Session = Depends(get_db),
    client_factory: ClientFactory = Depends(get_strava_client_factory),
):
    """Ingest the activity named by a Strava webhook event."""
    row: ExternalWebhookEvent | None = None
    try:
        event = json.loads(await request.body())
        if not isinstance(event, dict):
            raise ValueError("Webhook payload must be a JSON object")

        object_type = event.get("object_type")
        aspect_type = event.get("aspect_type")
        owner_id = str(event["owner_id"]) if event.get("owner_id") else None
        activity_id = str(event["object_id"]) if event.get("object_id") else None
        logger.info(f"[WEBHOOK] Strava event object_type={object_type} aspect_type={aspect_type} owner_id={owner_id} object_id={activity_id}")

        if object_type != "activity" or not owner_id:
            return JSONResponse({"ok": True})

        connection = session.execute(
            select(StravaConnection).where(StravaConnection.strava_athlete_id == owner_id)
        ).scalar_one_or_none()
        if connection is None:
            logger.info(f"[WEBHOOK] No connection for Strava owner_id={owner_id}")
            return JSONResponse({"ok": True})

        row = _record_event(session, event, connection.athlete_id)
        entries = load_connection_entries(session, [connection.athlete_id])
        if not entries:
            _finish_event(session, row, None, "Athlete profile missing for connection.")
            return JSONResponse({"ok": True})
        entry = entries[0]

        if activity_id and aspect_type in ("create", "update"):
            summary = sync_strava_activity_by_id(session, entry, activity_id, client_factory=client_factory)
            mode = "activity"
        else:
            force_days = WEBHOOK_UPDATE_FORCE_DAYS if aspect_type == "update" else WEBHOOK_DEFAULT_FORCE_DAYS
            summary = sync_strava_for_connections(session, [entry], force_days=force_days, client_factory=client_factory)
            mode = "poll"

        _finish_event(session, row, summary)
        return success({"ok": True, "mode": mode, "summary": asdict(summary)})
    except Exception as e:
        logger.exception(f"[WEBHOOK] Strava webhook failed: {e}")
        session.rollback()
        if row is not None:
            try:
                _finish_event(session, row, None, str(e) or type(e).__name__)
            except Exception as record_error:
                session.rollback()
                logger.error(f"[WEBHOOK] Could not record webhook failure: {record_error}")
        return JSONResponse({"ok": False})
