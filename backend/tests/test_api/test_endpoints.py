"""
HTTP-level tests: routing, headers, envelopes and error mapping

Services are patched where the routers import them.

Author: TM3
Date: 2026-02-27
"""
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from marketplace.core.exceptions import ApiError
from marketplace.main import app

USER_HEADERS = {"X-User-Id": "8a6e0804-2bd0-4672-b79d-d97027f9071a"}


@pytest.fixture
def client():
    return TestClient(app)


class TestHealth:

    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["status"] == "online"

    def test_healthy(self, client):
        with patch("marketplace.main.check_database", return_value=True):
            body = client.get("/health").json()

        assert body["status"] == "healthy"
        assert body["database"]["status"] == "connected"

    def test_degraded_when_database_fails(self, client):
        with patch("marketplace.main.check_database", side_effect=RuntimeError("connection refused")):
            body = client.get("/health").json()

        assert body["status"] == "degraded"
        assert body["database"]["error"] == "connection refused"


class TestErrorMapping:

    def test_api_error_becomes_json_response(self, client):
        with patch("marketplace.api.vendors.VendorService.delete_vendor",
                   side_effect=ApiError("Cannot delete vendor with existing products", 400)):
            response = client.delete("/api/v1/vendors/v1")

        assert response.status_code == 400
        assert response.json() == {
            "status": "error",
            "message": "Cannot delete vendor with existing products",
            "status_code": 400,
        }

    def test_unexpected_error_is_500(self, client):
        with patch("marketplace.api.vendors.VendorService.get_vendor_by_id", side_effect=RuntimeError("boom")):
            response = client.get("/api/v1/vendors/v1")

        assert response.status_code == 500
        assert response.json()["detail"] == "Error getting vendor: boom"

    def test_success_envelope(self, client):
        with patch("marketplace.api.vendors.VendorService.get_vendor_by_id",
                   return_value={"id": "v1", "business_name": "Tea House"}) as get_vendor:
            response = client.get("/api/v1/vendors/v1")

        get_vendor.assert_called_once_with("v1")
        assert response.json() == {"status": "success", "data": {"id": "v1", "business_name": "Tea House"}}


class TestUserHeader:

    def test_missing_user_header_is_422(self, client):
        response = client.get("/api/v1/loyalty/me")

        assert response.status_code == 422

    def test_user_id_taken_from_header(self, client):
        with patch("marketplace.api.loyalty.LoyaltyService.get_customer_loyalty_program",
                   return_value={"current_points": 250}) as program:
            response = client.get("/api/v1/loyalty/me", headers=USER_HEADERS)

        assert response.status_code == 200
        program.assert_called_once_with(USER_HEADERS["X-User-Id"])

    def test_request_id_is_forwarded(self, client):
        with patch("marketplace.api.loyalty.LoyaltyService.redeem_reward",
                   return_value={"code": "ABC123"}) as redeem:
            response = client.post("/api/v1/loyalty/rewards/redeem", json={"reward_id": "discount_5"},
                                   headers={**USER_HEADERS, "X-Request-Id": "req-42"})

        assert response.status_code == 201
        redeem.assert_called_once_with(USER_HEADERS["X-User-Id"], "discount_5", request_id="req-42")

    def test_review_rating_validated(self, client):
        response = client.post("/api/v1/reviews", json={"product_id": "p1", "rating": 6}, headers=USER_HEADERS)

        assert response.status_code == 422


class TestExports:

    def test_csv_download(self, client):
        with patch("marketplace.api.exports.ExportService.export_orders", return_value=b"order_number\nORD-1\n"):
            response = client.get("/api/v1/export/orders", params={"format": "csv"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        disposition = response.headers["content-disposition"]
        assert disposition.startswith("attachment; filename=orders_")
        assert disposition.endswith(".csv")
        assert response.content == b"order_number\nORD-1\n"

    def test_excel_alias(self, client):
        with patch("marketplace.api.exports.ExportService.export_users", return_value=b"PK"):
            response = client.get("/api/v1/export/users", params={"format": "excel"})

        assert response.headers["content-disposition"].endswith(".xlsx")

    def test_unsupported_format(self, client):
        response = client.get("/api/v1/export/products", params={"format": "docx"})

        assert response.status_code == 400
        assert response.json()["message"] == "Unsupported export format: docx"


class TestScheduler:

    def test_validate_cron(self, client):
        valid = client.post("/api/v1/scheduler/validate-cron", json={"expression": "*/5 * * * *"}).json()
        invalid = client.post("/api/v1/scheduler/validate-cron", json={"expression": "often"}).json()

        assert valid["data"]["valid"] is True
        assert invalid["data"]["valid"] is False

    def test_run_job_reports_outcome(self, client):
        with patch("marketplace.api.scheduler.scheduler_service") as service:
            service.run_job_now.return_value = False
            response = client.post("/api/v1/scheduler/jobs/process_email_queue/run")

        assert response.json()["data"] == {"job": "process_email_queue", "succeeded": False}

    def test_custom_job_name_validated(self, client):
        response = client.post("/api/v1/scheduler/jobs", json={
            "name": "bad name!", "cron_expression": "0 * * * *", "job_type": "cleanup_old_reports",
        })

        assert response.status_code == 422

    def test_unknown_job_type(self, client):
        with patch("marketplace.api.scheduler.scheduler_service") as service:
            response = client.post("/api/v1/scheduler/jobs", json={
                "name": "nightly", "cron_expression": "0 3 * * *", "job_type": "mine_bitcoin",
            })

        assert response.status_code == 400
        service.add_custom_job.assert_not_called()


class TestCountries:

    def test_get_country(self, client):
        with patch("marketplace.api.countries.CountryService.get_country",
                   return_value={"code": "US", "name": "United States"}) as get_country:
            response = client.get("/api/v1/countries/us")

        get_country.assert_called_once_with("us")
        assert response.json()["data"]["code"] == "US"

    def test_search_is_not_taken_as_a_code(self, client):
        with patch("marketplace.api.countries.CountryService.search_countries", return_value=[]) as search:
            response = client.get("/api/v1/countries/search", params={"q": "uni"})

        assert response.status_code == 200
        search.assert_called_once_with("uni")

    def test_country_in_use_maps_to_400(self, client):
        with patch("marketplace.api.countries.CountryService.delete_country",
                   side_effect=ApiError("Cannot delete country US as it is being used by 3 users", 400)):
            response = client.delete("/api/v1/countries/US")

        assert response.status_code == 400
        assert response.json()["message"] == "Cannot delete country US as it is being used by 3 users"


class TestVendorAnalytics:

    def test_dashboard_period_forwarded(self, client):
        with patch("marketplace.api.vendors.VendorService.get_vendor_dashboard",
                   return_value={"period": "week"}) as dashboard:
            response = client.get("/api/v1/vendors/v1/dashboard", params={"period": "week"},
                                  headers={"X-Request-Id": "req-9"})

        dashboard.assert_called_once_with("v1", period="week", request_id="req-9")
        assert response.json() == {"status": "success", "data": {"period": "week"}}

    def test_sales_analytics_query_parsing(self, client):
        with patch("marketplace.api.vendors.VendorService.get_vendor_sales_analytics",
                   return_value={}) as sales:
            client.get("/api/v1/vendors/v1/analytics/sales",
                       params={"interval": "monthly", "compare_with_previous": "false", "group_by": "product"})

        kwargs = sales.call_args.kwargs
        assert kwargs["interval"] == "monthly"
        assert kwargs["compare_with_previous"] is False
        assert kwargs["group_by"] == "product"
        assert kwargs["start_date"] is None
