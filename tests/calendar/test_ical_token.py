import pytest

from coachkit.calendar import ical_token
from coachkit.calendar.ical_token import IcalTokenError, get_or_create_ical_token, rotate_ical_token
from coachkit.core.errors import ApiError
from coachkit.db.models import AthleteProfile, User, UserRole


class TestIcalToken:
    def test_creates_once_and_reuses(self, db_session, athlete):
        first = get_or_create_ical_token(db_session, athlete.id)
        second = get_or_create_ical_token(db_session, athlete.id)

        assert first == second
        assert len(first) >= 32
        profile = db_session.get(AthleteProfile, athlete.id)
        assert profile.ical_token == first
        assert profile.ical_token_rotated_at is not None

    def test_rotate_replaces_token(self, db_session, athlete):
        original = get_or_create_ical_token(db_session, athlete.id)
        rotated = rotate_ical_token(db_session, athlete.id)
        assert rotated != original
        assert db_session.get(AthleteProfile, athlete.id).ical_token == rotated

    def test_missing_profile_is_404(self, db_session, coach):
        with pytest.raises(ApiError) as exc:
            get_or_create_ical_token(db_session, coach.id)
        assert exc.value.status_code == 404

    def test_retries_on_collision(self, db_session, athlete, coach, monkeypatch):
        other = User(id="athlete-2", email="other@example.com", role=UserRole.ATHLETE)
        db_session.add(other)
        db_session.flush()
        db_session.add(AthleteProfile(user_id=other.id, coach_id=coach.id, ical_token="taken"))
        db_session.commit()

        tokens = iter(["taken", "fresh"])
        monkeypatch.setattr(ical_token, "generate_token", lambda: next(tokens))

        assert get_or_create_ical_token(db_session, athlete.id) == "fresh"

    def test_gives_up_after_three_collisions(self, db_session, athlete, coach, monkeypatch):
        other = User(id="athlete-2", email="other@example.com", role=UserRole.ATHLETE)
        db_session.add(other)
        db_session.flush()
        db_session.add(AthleteProfile(user_id=other.id, coach_id=coach.id, ical_token="taken"))
        db_session.commit()

        monkeypatch.setattr(ical_token, "generate_token", lambda: "taken")

        with pytest.raises(IcalTokenError):
            rotate_ical_token(db_session, athlete.id)
