"""
Tests for the health routes.
"""


class TestHealthEndpoints:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "healthy"
        assert data["checks"]["kv_store"]["backend"] == "memory"
        assert data["checks"]["rate_limiter"]["drive_queries_per_minute"] == 60

    def test_liveness(self, client):
        response = client.get("/health/liveness")
        assert response.json() == {"data": {"status": "alive"}}
        assert "X-Request-ID" in response.headers
