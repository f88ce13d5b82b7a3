def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_routes_are_mounted(client):
    paths = {route.path for route in client.app.routes}
    assert {
        "/api/athlete/calendar.ics",
        "/api/athlete/ical-link",
        "/api/athlete/calendar/summary",
        "/api/athlete/calendar-items/{item_id}/complete",
        "/api/integrations/strava/webhook",
        "/api/integrations/providers/issues",
    } <= paths
