"""Health check endpoint tests"""

from fastapi.testclient import TestClient


def test_health_check(client: TestClient):
    """Test basic health check endpoint."""
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["service"] == "choosemypower-api"


def test_readiness_check(client: TestClient):
    """Test readiness check endpoint."""
    response = client.get("/readyz")
    assert response.status_code == 200
    assert response.json()["status"] == "ready"
    assert response.json()["dependencies"]["database"] == "healthy"


def test_metrics_endpoint(client: TestClient, api_key: str):
    """Test Prometheus metrics endpoint."""
    response = client.get("/metrics", headers={"X-API-Key": api_key})
    assert response.status_code == 200
    assert "text/plain" in response.headers["content-type"]
    assert "plan_cache_lookups_total" in response.text


def test_metrics_endpoint_requires_auth(client: TestClient):
    """Test that metrics endpoint requires authentication."""
    assert client.get("/metrics").status_code == 401
    assert client.get("/metrics", headers={"X-API-Key": "wrong"}).status_code == 401


def test_security_and_run_id_headers(client: TestClient):
    response = client.get("/healthz")
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "DENY"
    assert response.headers["X-Run-ID"]


def test_readiness_reports_degraded_pricing_api(client: TestClient, fake_pricing_client, upstream_error):
    fake_pricing_client.error = upstream_error

    response = client.get("/readyz")

    assert response.status_code == 200
    assert response.json()["dependencies"]["pricing_api"] == "degraded"
