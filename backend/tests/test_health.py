"""Health endpoint tests."""


def test_health_returns_ok(client):
    """GET /health returns { status: ok }."""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_lifespan_leaves_periodic_checks_off_when_autostart_disabled(client):
    """PROXIMITY_AUTOSTART=false keeps the sweep timer idle."""
    assert client.app.state.services.proximity.is_running is False
