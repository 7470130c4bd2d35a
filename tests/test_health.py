from spotcheck.metrics import metrics


def test_healthz(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"ok": True}


def test_health_endpoint_returns_valid_payload(client):
    response = client.get("/health")
    assert response.status_code == 200

    payload = response.json()
    # Redis is disabled in tests, which is not a degradation.
    assert payload["status"] == "ok"
    assert "timestamp" in payload
    assert payload["redis"] == {"enabled": False, "connected": False, "require_redis": False}


def test_metrics_lite_counts_auth_failures(client):
    metrics.reset()
    client.get("/policy")
    client.get("/policy", headers={"Authorization": "Bearer nope"})

    snapshot = client.get("/metrics-lite").json()
    assert snapshot["counters"]["auth_failures{surface=device}"] == 2
    assert snapshot["gauges"]["notification_stream_length"] == 0


def test_version(client):
    assert client.get("/__version").json()["version"] == "1.0.0"
