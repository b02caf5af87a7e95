# backend/tests/routers/test_error_handling.py
"""
Every error leaves the API as {"error", "message", "details"}.
"""

from datetime import timedelta

from roi_engine.dependencies import get_dashboard_service
from roi_engine.main import app
from roi_engine.services.exceptions import PriceProviderRateLimitError, ServiceError
from roi_engine.utils.date_utils import utc_today
from tests.conftest import create_allocation, create_prices


class BrokenDashboardService:
    def get_global(self, db, force_refresh=False):
        raise ServiceError("snapshot store unavailable")


class TestErrorFormat:
    """Tests for the global exception handlers."""

    def test_unknown_route(self, client):
        response = client.get("/api/nowhere")

        assert response.status_code == 404
        assert response.json() == {"error": "NotFoundError", "message": "Not Found", "details": None}

    def test_method_not_allowed(self, client):
        response = client.delete("/api/roi")

        assert response.status_code == 405
        assert response.json()["error"] == "MethodNotAllowedError"

    def test_request_validation(self, client):
        response = client.post("/api/roi/simulate", json={"amount": "lots"})

        assert response.status_code == 422
        data = response.json()
        assert data["error"] == "ValidationError"
        assert data["message"] == "Request validation failed"
        assert data["details"][0]["field"] == "body.amount"

    def test_service_validation_error(self, client):
        response = client.get("/api/roi", params={"range": "forever"})

        assert response.status_code == 400
        assert response.json()["error"] == "ValidationError"
        assert "forever" in response.json()["message"]

    def test_non_positive_price(self, client, db):
        today = utc_today()
        create_allocation(db, "t1_none_aggressive", today - timedelta(days=1), [("BTC", "1")])
        create_prices(db, "BTC", today - timedelta(days=2), [100, 0])

        response = client.post(
            "/api/admin/roi/backfill",
            json={"portfolio_key": "t1_none_aggressive", "days": 5},
        )

        assert response.status_code == 422
        data = response.json()
        assert data["error"] == "NonPositivePriceError"
        assert data["details"]["symbol"] == "BTC"

    def test_provider_rate_limit(self, client, fake_provider):
        fake_provider.set_error("BTC", PriceProviderRateLimitError("fake", retry_after=30))

        response = client.post(
            "/api/admin/roi/prices/ingest",
            json={"symbols": ["BTC"], "start_date": "2024-01-01", "end_date": "2024-01-02"},
        )

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "30"
        assert response.json()["details"] == {"provider": "fake", "retry_after": 30}

    def test_unhandled_service_error(self, client):
        app.dependency_overrides[get_dashboard_service] = BrokenDashboardService

        response = client.get("/api/roi/dashboard")

        assert response.status_code == 500
        assert response.json() == {
            "error": "ServiceError",
            "message": "snapshot store unavailable",
            "details": None,
        }
