"""Per-athlete calendar feed tokens.

The token is an opaque bearer secret embedded in the subscription URL.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timezone

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from coachkit.core.errors import not_found
from coachkit.db.models import AthleteProfile

MAX_TOKEN_ATTEMPTS = 3


class IcalTokenError(RuntimeError):
    pass


def generate_token() -> str:
    return secrets.token_urlsafe(24)


def _get_profile(session: Session, user_id: str) -> AthleteProfile:
    profile = session.execute(select(AthleteProfile).where(AthleteProfile.user_id == user_id)).scalar_one_or_none()
    if profile is None:
        raise not_found("Athlete profile not found.")
    return profile


def _assign_new_token(session: Session, profile: AthleteProfile) -> str:
    for attempt in range(1, MAX_TOKEN_ATTEMPTS + 1):
        token = generate_token()
        try:
            with session.begin_nested():
                profile.ical_token = token
                profile.ical_token_rotated_at = datetime.now(timezone.utc)
                session.flush()
        except IntegrityError:
            logger.warning(f"[ICAL] Token collision for user_id={profile.user_id}, attempt {attempt}")
            session.refresh(profile)
            continue
        session.commit()
        return token

    raise IcalTokenError("Failed to generate a unique iCal token.")


def get_or_create_ical_token(session: Session, user_id: str) -> str:
    profile = _get_profile(session, user_id)
    if profile.ical_token:
        return profile.ical_token
    token = _assign_new_token(session, profile)
    logger.info(f"[ICAL] Created calendar token for user_id={user_id}")
    return token


def rotate_ical_token(session: Session, user_id: str) -> str:
    """Replace the athlete's token, invalidating existing subscriptions."""
    profile = _get_profile(session, user_id)
    token = _assign_new_token(session, profile)
    logger.info(f"[ICAL] Rotated calendar token for user_id={user_id}")
    return token
