from datetime import date, datetime, timezone

import pytest

from coachkit.db.models import CalendarItemStatus, CompletedActivity, CompletionSource

SUMMARY_URL = "/api/athlete/calendar/summary"


class TestCalendarSummaryEndpoint:
    def test_summary_with_completion(self, client, db_session, athlete_headers, make_item):
        make_item(date(2024, 6, 10), planned_duration_minutes=60, planned_distance_km=10)
        done = make_item(
            date(2024, 6, 11),
            discipline="BIKE",
            status=CalendarItemStatus.COMPLETED_MANUAL,
            planned_duration_minutes=90,
        )
        db_session.add(
            CompletedActivity(
                athlete_id=done.athlete_id,
                calendar_item_id=done.id,
                source=CompletionSource.MANUAL,
                start_time=datetime(2024, 6, 10, 20, 0, tzinfo=timezone.utc),
                duration_minutes=100,
                distance_km=40,
            )
        )
        db_session.commit()

        response = client.get(SUMMARY_URL, params={"from": "2024-06-10", "to": "2024-06-12"}, headers=athlete_headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["from_day_key"] == "2024-06-10"
        assert data["totals"]["planned_minutes"] == 150
        assert data["totals"]["completed_minutes"] == 100
        assert data["totals"]["workouts_planned"] == 2
        assert data["totals"]["workouts_completed"] == 1
        assert [row["discipline"] for row in data["by_discipline"]] == ["BIKE", "RUN"]
        assert [day["day_key"] for day in data["calories_by_day"]] == ["2024-06-10", "2024-06-11", "2024-06-12"]
        assert data["meta"]["time_zone"] == "Australia/Brisbane"
        assert data["completion"]["workout_count"] == 1
        assert data["completion"]["totals"]["distance_km"] == 40

    def test_excludes_other_athletes_and_deleted(self, client, coach, athlete_headers, make_item):
        make_item(date(2024, 6, 10), athlete_id=coach.id, planned_duration_minutes=30)
        make_item(date(2024, 6, 10), planned_duration_minutes=30, deleted_at=datetime(2024, 6, 1, tzinfo=timezone.utc))

        data = client.get(SUMMARY_URL, params={"from": "2024-06-10", "to": "2024-06-10"}, headers=athlete_headers).json()["data"]

        assert data["totals"]["planned_minutes"] == 0
        assert data["meta"]["item_count"] == 0

    @pytest.mark.parametrize(
        ("params", "code"),
        [
            ({"from": "06/10/2024", "to": "2024-06-12"}, "INVALID_DATE_FORMAT"),
            ({"from": "2024-02-30", "to": "2024-03-02"}, "INVALID_DATE_VALUE"),
            ({"from": "2024-06-12", "to": "2024-06-10"}, "INVALID_DATE_RANGE"),
            ({"from": "2024-01-01", "to": "2025-03-01"}, "INVALID_DATE_RANGE"),
        ],
    )
    def test_invalid_ranges(self, client, athlete_headers, params, code):
        response = client.get(SUMMARY_URL, params=params, headers=athlete_headers)
        assert response.status_code == 400
        assert response.json()["error"]["code"] == code

    def test_missing_params(self, client, athlete_headers):
        response = client.get(SUMMARY_URL, headers=athlete_headers)
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_REQUEST"

    def test_requires_identity(self, client):
        assert client.get(SUMMARY_URL, params={"from": "2024-06-10", "to": "2024-06-10"}).status_code == 401
