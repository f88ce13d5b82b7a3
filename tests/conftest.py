"""Root conftest for all tests.

Provides an isolated in-memory SQLite database per test, a FastAPI test
client wired to it, and a small set of users and calendar items.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date, datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from coachkit.core.encryption import encrypt_token
from coachkit.db.models import AthleteProfile, Base, CalendarItem, CalendarItemStatus, StravaConnection, User, UserRole
from coachkit.db.session import enable_sqlite_savepoints, get_db
from coachkit.integrations.strava.schemas import StravaConnectionEntry

ATHLETE_TZ = "Australia/Brisbane"


@pytest.fixture(scope="function")
def db_engine():
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(engine)
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture(scope="function")
def db_session(db_engine, monkeypatch) -> Iterator[Session]:
    """Session bound to the per-test in-memory database.

    get_session() is patched so code paths that open their own session
    (the scheduled poll) use the same database.
    """
    session_local = sessionmaker(bind=db_engine, autocommit=False, autoflush=False)
    session = session_local()

    @contextmanager
    def mock_get_session():
        yield session
        session.commit()

    import coachkit.db.session as session_module
    import coachkit.integrations.strava.sync as sync_module

    monkeypatch.setattr(session_module, "get_session", mock_get_session)
    monkeypatch.setattr(sync_module, "get_session", mock_get_session)

    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def client(db_session) -> Iterator[TestClient]:
    from coachkit.main import app

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def reset_ical_rate_limiter():
    from coachkit.api.calendar_feed import ical_rate_limiter

    ical_rate_limiter.reset()
    yield
    ical_rate_limiter.reset()


@pytest.fixture
def coach(db_session) -> User:
    user = User(id="coach-1", email="coach@example.com", name="Coach", role=UserRole.COACH, timezone=ATHLETE_TZ)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def athlete(db_session, coach) -> User:
    user = User(id="athlete-1", email="athlete@example.com", name="Athlete", role=UserRole.ATHLETE, timezone=ATHLETE_TZ)
    db_session.add(user)
    db_session.flush()
    db_session.add(AthleteProfile(user_id=user.id, coach_id=coach.id))
    db_session.commit()
    return user


@pytest.fixture
def athlete_headers(athlete) -> dict[str, str]:
    return {"X-Athlete-Id": athlete.id}


@pytest.fixture
def make_item(db_session, athlete, coach):
    """Factory for calendar items owned by the default athlete."""

    def _make(
        day: date,
        discipline: str = "RUN",
        start: str | None = "06:00",
        status: str = CalendarItemStatus.PLANNED,
        **fields,
    ) -> CalendarItem:
        item = CalendarItem(
            athlete_id=fields.pop("athlete_id", athlete.id),
            coach_id=coach.id,
            date=day,
            planned_start_time_local=start,
            discipline=discipline,
            title=fields.pop("title", f"{discipline.title()} session"),
            status=status,
            **fields,
        )
        db_session.add(item)
        db_session.commit()
        return item

    return _make


@pytest.fixture
def strava_payload():
    """Factory for Strava activity payloads (a 45 minute run at 06:10 Brisbane time by default)."""

    def _payload(
        activity_id=1001,
        start_date="2024-06-09T20:10:00Z",
        sport_type="Run",
        moving_time=2700,
        distance=9000.0,
        name="Morning Run",
        **extra,
    ) -> dict:
        payload = {
            "id": activity_id,
            "name": name,
            "type": sport_type,
            "sport_type": sport_type,
            "start_date": start_date,
            "start_date_local": start_date.replace("Z", ""),
            "timezone": "(GMT+10:00) Australia/Brisbane",
            "moving_time": moving_time,
            "elapsed_time": moving_time + 60,
            "distance": distance,
            "average_speed": 3.33,
            "average_heartrate": 148.6,
            "calories": 610,
            "segment_efforts": [{"id": 1}],
        }
        payload.update(extra)
        return payload

    return _payload


@pytest.fixture
def strava_connection(db_session, athlete) -> StravaConnection:
    connection = StravaConnection(
        athlete_id=athlete.id,
        strava_athlete_id="55501",
        access_token=encrypt_token("access-abc"),
        refresh_token=encrypt_token("refresh-abc"),
        expires_at=datetime.now(timezone.utc) + timedelta(hours=6),
        scope="read,activity:read_all",
    )
    db_session.add(connection)
    db_session.commit()
    return connection


@pytest.fixture
def connection_entry(athlete, coach, strava_connection) -> StravaConnectionEntry:
    return StravaConnectionEntry(
        athlete_id=athlete.id,
        athlete_timezone=ATHLETE_TZ,
        coach_id=coach.id,
        connection=strava_connection,
    )


class FakeStravaClient:
    """Stands in for StravaClient; records calls and serves canned payloads."""

    def __init__(self, activities=None, error=None):
        self.activities = list(activities or [])
        self.error = error
        self.tokens: list[str] = []
        self.after_unix: list[int] = []
        self.fetched_ids: list[str] = []

    def __call__(self, access_token: str) -> "FakeStravaClient":
        self.tokens.append(access_token)
        return self

    def fetch_recent_activities(self, *, after_unix: int, per_page: int = 50) -> list[dict]:
        self.after_unix.append(after_unix)
        if self.error is not None:
            raise self.error
        return self.activities

    def fetch_activity(self, activity_id) -> dict:
        self.fetched_ids.append(str(activity_id))
        if self.error is not None:
            raise self.error
        return next(activity for activity in self.activities if str(activity["id"]) == str(activity_id))


@pytest.fixture
def fake_strava():
    """Factory building a FakeStravaClient to pass as client_factory."""
    return FakeStravaClient
