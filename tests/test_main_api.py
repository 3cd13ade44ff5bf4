"""
Integration tests for the FastAPI application
Tests application wiring, middleware and health endpoints
"""
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from countries_api_server.auth import require_api_key
from countries_api_server.country_routes import get_countries_client
from countries_api_server.main_api import app
from tests.conftest import make_record


class TestRootEndpoint:
    """Test suite for root endpoint"""

    def test_root_endpoint(self, client):
        """Test that root endpoint returns welcome message"""
        response = client.get("/")

        assert response.status_code == 200
        assert response.json() == {"message": "Countries API is running."}


class TestMiddleware:
    """Test suite for request middleware"""

    def test_request_id_header(self, client):
        response = client.get("/")

        assert "X-Request-ID" in response.headers
        assert len(response.headers["X-Request-ID"]) == 36

    def test_request_ids_are_unique(self, client):
        first = client.get("/").headers["X-Request-ID"]
        second = client.get("/").headers["X-Request-ID"]
        assert first != second

    def test_security_headers(self, client):
        response = client.get("/")

        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert "Strict-Transport-Security" in response.headers

    def test_rejections_counted_in_metrics(self, client):
        from countries_api_server.health import metrics

        before = metrics.status_counts[401]
        client.get("/api/countries/name/peru")

        assert metrics.status_counts[401] == before + 1


class TestHealthEndpoints:
    """Test suite for /api/v1 endpoints"""

    def test_health(self, client):
        response = client.get("/api/v1/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert "timestamp" in body

    def test_ready(self, client):
        response = client.get("/api/v1/ready")

        assert response.status_code == 200
        body = response.json()
        assert body["ready"] is True
        assert body["checks"]["database"]["status"] == "healthy"

    def test_not_ready_when_database_fails(self, client):
        with patch(
            "countries_api_server.health.check_database",
            return_value={"status": "unhealthy", "error": "connection refused"},
        ):
            response = client.get("/api/v1/ready")

        assert response.status_code == 503
        assert response.json()["ready"] is False

    def test_metrics(self, client):
        client.get("/")

        response = client.get("/api/v1/metrics")

        assert response.status_code == 200
        requests = response.json()["metrics"]["requests"]
        assert requests["total"] >= 1
        assert "unauthorized" in requests
        assert "server_errors" in requests

    def test_version(self, client):
        body = client.get("/api/v1/version").json()

        assert body["version"] == app.version
        assert body["environment"] == "test"
        assert body["features"]["uniform_auth_errors"] is False


class TestMetrics:
    """Test suite for in-memory metrics"""

    def test_counts_by_status(self):
        from countries_api_server.health import Metrics

        m = Metrics()
        for status_code in (200, 200, 401, 500, 503):
            m.record_request(status_code)

        requests = m.to_dict()["requests"]
        assert requests["total"] == 5
        assert requests["unauthorized"] == 1
        assert requests["server_errors"] == 2

    @pytest.mark.parametrize("seconds,expected", [
        (0, "0s"),
        (59.9, "59s"),
        (61, "1m 1s"),
        (3600, "1h 0m 0s"),
        (90061, "1d 1h 1m 1s"),
    ])
    def test_format_duration(self, seconds, expected):
        from countries_api_server.health import format_duration

        assert format_duration(seconds) == expected


class TestApplicationMetadata:
    """Test FastAPI application metadata"""

    def test_app_title(self):
        assert app.title == "Countries API"

    @pytest.mark.parametrize("method,path", [
        ("get", "/"),
        ("post", "/api/auth/register"),
        ("post", "/api/auth/login"),
        ("get", "/api/auth/profile"),
        ("get", "/api/keys"),
        ("get", "/api/keys/logs"),
        ("get", "/api/keys/check-status"),
        ("patch", "/api/keys/1/toggle"),
        ("get", "/api/keys/1/usage"),
        ("delete", "/api/keys/1"),
        ("get", "/api/countries/name/peru"),
        ("get", "/api/v1/health"),
    ])
    def test_app_has_routes(self, client, method, path):
        """Test that every router is mounted: each path answers with something other than 404"""
        response = getattr(client, method)(path)
        assert response.status_code not in (404, 405)


class TestErrorHandling:
    """Test error handling"""

    def test_invalid_endpoint_returns_404(self, client):
        response = client.get("/invalid/endpoint")
        assert response.status_code == 404

    def test_invalid_method(self, client):
        response = client.delete("/api/auth/login")
        assert response.status_code == 405

    def test_unhandled_exception_returns_500(self, database):
        """Test that unexpected errors are reported without internals"""
        class ExplodingClient:
            async def get_by_name(self, name):
                raise RuntimeError("boom")

        app.dependency_overrides[get_countries_client] = lambda: ExplodingClient()
        app.dependency_overrides[require_api_key] = lambda: make_record()
        try:
            client = TestClient(app, raise_server_exceptions=False)
            response = client.get("/api/countries/name/peru")
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 500
        assert response.json()["detail"] == "Internal server error"
        assert "boom" not in response.text


class TestLifespan:
    """Test startup and shutdown"""

    def test_startup_creates_tables(self, database):
        from countries_api_server.database import engine
        from countries_api_server.db_models import Base, User

        Base.metadata.drop_all(bind=engine)

        with TestClient(app) as client:
            response = client.get("/api/v1/ready")

        assert response.status_code == 200
        with database() as session:
            assert session.query(User).count() == 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
