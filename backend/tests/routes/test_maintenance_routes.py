from studio_booking.core.config import settings


def test_trigger_disabled_without_secret(client, monkeypatch):
    monkeypatch.setattr(settings, "cron_secret", None)

    response = client.post("/api/v1/maintenance/expire")

    assert response.status_code == 503
    assert response.json()["code"] == "CRON_DISABLED"


def test_trigger_rejects_bad_secret(client, monkeypatch):
    monkeypatch.setattr(settings, "cron_secret", "s3cret")

    response = client.post("/api/v1/maintenance/expire", headers={"X-Cron-Secret": "guess"})

    assert response.status_code == 401
    assert response.json()["code"] == "INVALID_CRON_SECRET"


def test_trigger_runs_sweeps(client, monkeypatch):
    monkeypatch.setattr(settings, "cron_secret", "s3cret")

    response = client.post("/api/v1/maintenance/expire", headers={"X-Cron-Secret": "s3cret"})

    assert response.status_code == 200
    assert response.json() == {"expired_bookings": 0, "expired_holds": 0, "notified_holds": 0}


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_request_id_is_echoed(client):
    response = client.get("/health", headers={"X-Request-ID": "req-123"})

    assert response.headers["X-Request-ID"] == "req-123"


def test_metrics_endpoint(client):
    response = client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
