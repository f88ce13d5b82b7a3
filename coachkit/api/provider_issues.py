from __future__ import annotations

from dataclasses import asdict
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from coachkit.api.dependencies.athlete import current_athlete
from coachkit.core.errors import success
from coachkit.db.models import ExternalWebhookEvent, User, WebhookEventStatus
from coachkit.db.session import get_db
from coachkit.integrations.reconciliation import normalize_webhook_issue

router = APIRouter(prefix="/api/integrations/providers", tags=["integrations"])

DEFAULT_ISSUE_LIMIT = 50
MAX_ISSUE_LIMIT = 200
RETRYABLE_STATUSES = (WebhookEventStatus.FAILED, WebhookEventStatus.PENDING)


class RetryIssuesRequest(BaseModel):
    ids: list[str] = Field(min_length=1, max_length=100)


@router.get("/issues")
def list_provider_issues(
    provider: str | None = Query(default=None),
    event_status: WebhookEventStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=DEFAULT_ISSUE_LIMIT, ge=1, le=MAX_ISSUE_LIMIT),
    athlete: User = Depends(current_athlete),
    session: Session = Depends(get_db),
):
    """Recent webhook events for the athlete, newest first, with per-status counts."""
    query = select(ExternalWebhookEvent).where(ExternalWebhookEvent.athlete_id == athlete.id)
    if provider:
        query = query.where(ExternalWebhookEvent.provider == provider.upper())
    if event_status is not None:
        query = query.where(ExternalWebhookEvent.status == event_status)

    rows = session.execute(query.order_by(ExternalWebhookEvent.updated_at.desc()).limit(limit)).scalars().all()

    counts = {"total": 0, **{value.value: 0 for value in WebhookEventStatus}}
    for row in rows:
        counts["total"] += 1
        counts[row.status] = counts.get(row.status, 0) + 1

    return success({"items": [asdict(normalize_webhook_issue(row)) for row in rows], "counts": counts})


@router.patch("/issues")
def retry_provider_issues(
    payload: RetryIssuesRequest,
    athlete: User = Depends(current_athlete),
    session: Session = Depends(get_db),
):
    """Queue failed or pending events for another attempt."""
    result = session.execute(
        update(ExternalWebhookEvent)
        .where(
            ExternalWebhookEvent.id.in_(payload.ids),
            ExternalWebhookEvent.athlete_id == athlete.id,
            ExternalWebhookEvent.status.in_(RETRYABLE_STATUSES),
        )
        .values(
            status=WebhookEventStatus.PENDING,
            last_error=None,
            next_attempt_at=None,
            updated_at=datetime.now(timezone.utc),
        )
    )
    session.commit()
    logger.info(f"[WEBHOOK] Athlete {athlete.id} queued {result.rowcount} events for retry")
    return success({"updated": result.rowcount})
