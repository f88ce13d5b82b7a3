import httpx
import pytest

from coachkit.core.errors import ApiError
from coachkit.integrations.strava.client import StravaClient


def _client(handler) -> StravaClient:
    return StravaClient("token-123", http=httpx.Client(transport=httpx.MockTransport(handler)))


class TestFetchRecentActivities:
    def test_sends_auth_and_params(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers["Authorization"]
            seen["path"] = request.url.path
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json=[{"id": 1}])

        activities = _client(handler).fetch_recent_activities(after_unix=1700000000, per_page=10)

        assert activities == [{"id": 1}]
        assert seen == {
            "auth": "Bearer token-123",
            "path": "/api/v3/athlete/activities",
            "params": {"after": "1700000000", "per_page": "10"},
        }

    def test_rate_limited(self):
        with pytest.raises(ApiError) as exc_info:
            _client(lambda request: httpx.Response(429)).fetch_recent_activities(after_unix=0)
        assert exc_info.value.status_code == 429
        assert exc_info.value.code == "STRAVA_RATE_LIMITED"

    def test_upstream_error(self):
        with pytest.raises(ApiError) as exc_info:
            _client(lambda request: httpx.Response(500)).fetch_recent_activities(after_unix=0)
        assert exc_info.value.code == "STRAVA_ACTIVITIES_FETCH_FAILED"

    def test_non_list_response(self):
        with pytest.raises(ApiError) as exc_info:
            _client(lambda request: httpx.Response(200, json={"message": "nope"})).fetch_recent_activities(after_unix=0)
        assert exc_info.value.code == "STRAVA_ACTIVITIES_INVALID"

    def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        with pytest.raises(ApiError) as exc_info:
            _client(handler).fetch_recent_activities(after_unix=0)
        assert exc_info.value.status_code == 502


class TestFetchActivity:
    def test_fetches_by_id(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/v3/activities/987"
            return httpx.Response(200, json={"id": 987})

        assert _client(handler).fetch_activity(987) == {"id": 987}

    def test_not_found(self):
        with pytest.raises(ApiError) as exc_info:
            _client(lambda request: httpx.Response(404)).fetch_activity("1")
        assert exc_info.value.code == "STRAVA_ACTIVITY_FETCH_FAILED"

    def test_rate_limited(self):
        with pytest.raises(ApiError) as exc_info:
            _client(lambda request: httpx.Response(429)).fetch_activity("1")
        assert exc_info.value.code == "STRAVA_RATE_LIMITED"
