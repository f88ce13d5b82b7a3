"""Athlete-scoped identity dependency.

Authentication happens upstream of this service; the gateway forwards the
resolved user id in the X-Athlete-Id header.
"""

from __future__ import annotations

from fastapi import Depends, Header, status
from loguru import logger
from sqlalchemy.orm import Session

from coachkit.core.errors import ApiError
from coachkit.db.models import User, UserRole
from coachkit.db.session import get_db


def current_athlete(
    x_athlete_id: str | None = Header(default=None, alias="X-Athlete-Id"),
    session: Session = Depends(get_db),
) -> User:
    """FastAPI dependency resolving the calling athlete.

    Raises:
        ApiError: 401 UNAUTHORIZED when the header is missing or unknown,
            403 FORBIDDEN when the user is not an athlete
    """
    user_id = (x_athlete_id or "").strip()
    if not user_id:
        raise ApiError(status.HTTP_401_UNAUTHORIZED, "UNAUTHORIZED", "Missing athlete identity.")

    user = session.get(User, user_id)
    if user is None:
        logger.info(f"[AUTH] Unknown athlete id {user_id}")
        raise ApiError(status.HTTP_401_UNAUTHORIZED, "UNAUTHORIZED", "Unknown athlete.")
    if user.role != UserRole.ATHLETE:
        raise ApiError(status.HTTP_403_FORBIDDEN, "FORBIDDEN", "Athlete access required.")
    return user
