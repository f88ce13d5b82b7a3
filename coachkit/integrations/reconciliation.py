"""Presentation of provider webhook events as reconciliation issues."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from coachkit.db.models import ExternalWebhookEvent, WebhookEventStatus
from coachkit.utils.timezone import ensure_utc

SUMMARY_SEPARATOR = " · "


class IssueSeverity(StrEnum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class ReconciliationIssue:
    id: str
    provider: str
    status: str
    severity: IssueSeverity
    athlete_id: str | None
    external_athlete_id: str | None
    external_activity_id: str | None
    event_type: str | None
    attempts: int
    summary: str
    hint: str
    last_error: str | None
    received_at: str
    updated_at: str
    next_attempt_at: str | None


def build_summary(
    provider: str,
    event_type: str | None,
    external_activity_id: str | None,
    external_athlete_id: str | None,
) -> str:
    parts = [provider]
    if event_type:
        parts.append(event_type)
    if external_activity_id:
        parts.append(f"activity {external_activity_id}")
    elif external_athlete_id:
        parts.append(f"athlete {external_athlete_id}")
    return SUMMARY_SEPARATOR.join(parts)


def status_hint(status: str, attempts: int, last_error: str | None) -> str:
    if status == WebhookEventStatus.FAILED:
        if last_error:
            return f"Last error: {last_error}"
        return "Failed after retries. Retry after checking provider credentials."
    if status == WebhookEventStatus.PENDING:
        if attempts > 0:
            return f"Pending retry ({attempts} prior attempts)."
        return "Pending processing."
    if status == WebhookEventStatus.PROCESSING:
        return "Processing in queue."
    return "Processed successfully."


def status_severity(status: str) -> IssueSeverity:
    if status == WebhookEventStatus.FAILED:
        return IssueSeverity.ERROR
    if status == WebhookEventStatus.PENDING:
        return IssueSeverity.WARNING
    return IssueSeverity.INFO


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return ensure_utc(value).isoformat().replace("+00:00", "Z")


def normalize_webhook_issue(row: ExternalWebhookEvent) -> ReconciliationIssue:
    return ReconciliationIssue(
        id=row.id,
        provider=row.provider,
        status=row.status,
        severity=status_severity(row.status),
        athlete_id=row.athlete_id,
        external_athlete_id=row.external_athlete_id,
        external_activity_id=row.external_activity_id,
        event_type=row.event_type,
        attempts=row.attempts,
        summary=build_summary(row.provider, row.event_type, row.external_activity_id, row.external_athlete_id),
        hint=status_hint(row.status, row.attempts, row.last_error),
        last_error=row.last_error,
        received_at=_iso(row.received_at),
        updated_at=_iso(row.updated_at),
        next_attempt_at=_iso(row.next_attempt_at),
    )
