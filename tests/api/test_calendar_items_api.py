from datetime import date, datetime, timezone

from sqlalchemy import select

from coachkit.db.models import CalendarItemStatus, Comment, CompletedActivity, CompletionSource


def _url(item_id: str, action: str) -> str:
    return f"/api/athlete/calendar-items/{item_id}/{action}"


class TestCompleteEndpoint:
    def test_completes_item(self, client, athlete_headers, make_item):
        item = make_item(date(2024, 6, 10), start="06:00")

        response = client.post(
            _url(item.id, "complete"),
            json={"durationMinutes": 42, "distanceKm": 8.2, "rpe": 7, "painFlag": True},
            headers=athlete_headers,
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["item"]["status"] == CalendarItemStatus.COMPLETED_MANUAL
        assert data["item"]["date"] == "2024-06-10"
        assert data["item"]["latestCompletedActivity"]["durationMinutes"] == 42
        assert data["completedActivity"]["source"] == CompletionSource.MANUAL
        assert data["completedActivity"]["painFlag"] is True

    def test_invalid_payload(self, client, athlete_headers, make_item):
        item = make_item(date(2024, 6, 10))
        response = client.post(_url(item.id, "complete"), json={"durationMinutes": 0}, headers=athlete_headers)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_REQUEST"

    def test_conflict(self, client, athlete_headers, make_item):
        item = make_item(date(2024, 6, 10), status=CalendarItemStatus.SKIPPED)
        response = client.post(_url(item.id, "complete"), json={"durationMinutes": 30}, headers=athlete_headers)

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "ALREADY_SKIPPED"

    def test_other_athletes_item_is_not_found(self, client, coach, athlete_headers, make_item):
        item = make_item(date(2024, 6, 10), athlete_id=coach.id)
        response = client.post(_url(item.id, "complete"), json={"durationMinutes": 30}, headers=athlete_headers)
        assert response.status_code == 404


class TestSkipEndpoint:
    def test_skip_without_body(self, client, athlete_headers, make_item):
        item = make_item(date(2024, 6, 10))
        response = client.post(_url(item.id, "skip"), headers=athlete_headers)

        assert response.status_code == 200
        assert response.json()["data"]["item"]["status"] == CalendarItemStatus.SKIPPED

    def test_skip_with_comment(self, client, db_session, athlete_headers, make_item):
        item = make_item(date(2024, 6, 10))
        client.post(_url(item.id, "skip"), json={"commentBody": "sick"}, headers=athlete_headers)

        assert db_session.execute(select(Comment.body)).scalar_one() == "sick"

    def test_unreadable_body_is_ignored(self, client, db_session, athlete_headers, make_item):
        item = make_item(date(2024, 6, 10))
        response = client.post(
            _url(item.id, "skip"),
            content=b"not json",
            headers={**athlete_headers, "Content-Type": "application/json"},
        )

        assert response.status_code == 200
        assert db_session.execute(select(Comment)).first() is None

    def test_completed_cannot_be_skipped(self, client, athlete_headers, make_item):
        item = make_item(date(2024, 6, 10), status=CalendarItemStatus.COMPLETED_MANUAL)
        response = client.post(_url(item.id, "skip"), headers=athlete_headers)
        assert response.status_code == 409


class TestConfirmSyncedEndpoint:
    def test_confirms_synced_completion(self, client, db_session, athlete_headers, make_item):
        item = make_item(date(2024, 6, 10), status=CalendarItemStatus.COMPLETED_SYNCED_DRAFT)
        db_session.add(
            CompletedActivity(
                athlete_id=item.athlete_id,
                calendar_item_id=item.id,
                source=CompletionSource.STRAVA,
                external_provider="STRAVA",
                external_activity_id="1001",
                start_time=datetime(2024, 6, 9, 20, 10, tzinfo=timezone.utc),
                duration_minutes=45,
            )
        )
        db_session.commit()

        response = client.post(_url(item.id, "confirm-synced"), json={"notes": "easy"}, headers=athlete_headers)

        assert response.status_code == 200
        data = response.json()["data"]["item"]
        assert data["status"] == CalendarItemStatus.COMPLETED_SYNCED
        assert data["latestCompletedActivity"]["notes"] == "easy"
        assert data["latestCompletedActivity"]["confirmedAt"] is not None

    def test_without_synced_activity(self, client, athlete_headers, make_item):
        item = make_item(date(2024, 6, 10))
        response = client.post(_url(item.id, "confirm-synced"), headers=athlete_headers)

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "NO_SYNCED_ACTIVITY"
