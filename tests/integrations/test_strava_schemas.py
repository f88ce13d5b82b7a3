from datetime import datetime, timezone

import pytest

from coachkit.integrations.strava.schemas import (
    UNPLANNED_TITLE,
    PollSummary,
    StravaActivity,
    derive_avg_pace_sec_per_km,
    map_strava_discipline,
    normalize_strava_activity,
    parse_strava_instant,
    round_half_up,
)

TZ = "Australia/Brisbane"


class TestMapStravaDiscipline:
    @pytest.mark.parametrize(
        ("sport_type", "expected"),
        [
            ("Run", "RUN"),
            ("TrailRun", "RUN"),
            ("VirtualRide", "BIKE"),
            ("EBikeRide", "BIKE"),
            ("Swim", "SWIM"),
            ("WeightTraining", "STRENGTH"),
            ("Yoga", "STRENGTH"),
            ("Crossfit", "STRENGTH"),
            ("Hike", "OTHER"),
            (None, "OTHER"),
        ],
    )
    def test_keywords(self, sport_type, expected):
        assert map_strava_discipline(StravaActivity(sport_type=sport_type)) == expected

    def test_falls_back_to_type(self):
        assert map_strava_discipline(StravaActivity(type="Ride")) == "BIKE"


class TestNormalizeStravaActivity:
    def test_normalizes_run(self, strava_payload):
        activity = normalize_strava_activity(strava_payload(), TZ)

        assert activity.external_activity_id == "1001"
        assert activity.discipline == "RUN"
        assert activity.title == "Morning Run"
        assert activity.start_time == datetime(2024, 6, 9, 20, 10, tzinfo=timezone.utc)
        assert activity.activity_day_key == "2024-06-10"
        assert activity.activity_minutes == 6 * 60 + 10
        assert activity.duration_minutes == 45
        assert activity.distance_km == 9.0
        assert activity.metrics["avgPaceSecPerKm"] == 300
        assert activity.metrics["avgHr"] == 149
        assert activity.metrics["caloriesKcal"] == 610
        assert "segment_efforts" not in activity.metrics["activity"]
        assert None not in activity.metrics.values()

    def test_half_minute_rounds_up(self, strava_payload):
        assert normalize_strava_activity(strava_payload(moving_time=90), TZ).duration_minutes == 2

    def test_short_activity_is_at_least_one_minute(self, strava_payload):
        assert normalize_strava_activity(strava_payload(moving_time=10), TZ).duration_minutes == 1

    def test_heart_rate_halves_round_up(self, strava_payload):
        activity = normalize_strava_activity(strava_payload(average_heartrate=150.5, max_heartrate=172.5), TZ)
        assert activity.metrics["avgHr"] == 151
        assert activity.metrics["maxHr"] == 173

    def test_pace_only_for_runs(self, strava_payload):
        activity = normalize_strava_activity(strava_payload(sport_type="Ride"), TZ)
        assert "avgPaceSecPerKm" not in activity.metrics

    def test_default_title_and_no_distance(self, strava_payload):
        activity = normalize_strava_activity(strava_payload(name="  ", distance=0), TZ)
        assert activity.title == UNPLANNED_TITLE
        assert activity.distance_km is None

    @pytest.mark.parametrize(
        "overrides",
        [
            {"activity_id": None},
            {"activity_id": " "},
            {"start_date": "not-a-date"},
            {"moving_time": 0, "elapsed_time": 0},
        ],
    )
    def test_unusable_payloads(self, strava_payload, overrides):
        assert normalize_strava_activity(strava_payload(**overrides), TZ) is None


def test_parse_strava_instant():
    assert parse_strava_instant("2024-06-09T20:10:00Z") == datetime(2024, 6, 9, 20, 10, tzinfo=timezone.utc)
    assert parse_strava_instant(None) is None


def test_derive_avg_pace():
    assert derive_avg_pace_sec_per_km(4.0) == 250
    assert derive_avg_pace_sec_per_km(0) is None


def test_poll_summary_defaults():
    summary = PollSummary()
    assert summary.errors == []
    assert summary.polled_athletes == 0


@pytest.mark.parametrize(("value", "expected"), [(0.5, 1), (2.5, 3), (150.49, 150), (-0.5, 0)])
def test_round_half_up(value, expected):
    assert round_half_up(value) == expected
