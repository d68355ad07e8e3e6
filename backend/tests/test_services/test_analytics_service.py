"""
Tests for AnalyticsService

Author: TM3
Date: 2026-02-24
"""
from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import patch

import psycopg2
import pytest

from marketplace.core.exceptions import ApiError
from marketplace.services.analytics_service import (
    AnalyticsService, growth_percentage, previous_period, resolve_period,
)

START = datetime(2026, 1, 1)
END = datetime(2026, 1, 31)


class TestHelpers:

    @pytest.mark.parametrize("current, previous, expected", [
        (0, 0, 0.0),
        (5, 0, 100.0),
        (150, 100, 50.0),
        (50, 100, -50.0),
        (1, 3, -66.67),
    ])
    def test_growth_percentage(self, current, previous, expected):
        assert growth_percentage(current, previous) == expected

    def test_default_period_is_last_30_days(self):
        start, end = resolve_period(None, END)

        assert end == END
        assert end - start == timedelta(days=30)

    def test_inverted_period_rejected(self):
        with pytest.raises(ApiError) as exc:
            resolve_period(END, START)

        assert exc.value.status_code == 400

    def test_previous_period_has_same_length(self):
        prev_start, prev_end = previous_period(START, END)

        assert prev_end == START
        assert START - prev_start == END - START


class TestDashboard:

    def test_summary_compares_with_previous_period(self, mock_db):
        # Arrange
        conn, cursor = mock_db
        cursor.fetchone.side_effect = [
            {"total_orders": 4, "total_sales": Decimal("200"), "avg_order_value": Decimal("50"), "total_items": 8},
            {"total_orders": 2, "total_sales": Decimal("100"), "avg_order_value": Decimal("50"), "total_items": 8},
            {"total_customers": 10, "new_customers": 3, "active_customers": 4},
            {"total_customers": 7, "new_customers": 0, "active_customers": 4},
        ]
        cursor.fetchall.side_effect = [
            [{"status": "DELIVERED", "count": 3}, {"status": "PENDING", "count": 1}],
            [],
            [],
            [{"id": "c1", "name": "Tea", "orders": 2, "units_sold": 4, "revenue": Decimal("150")},
             {"id": "c2", "name": "Coffee", "orders": 1, "units_sold": 1, "revenue": Decimal("50")}],
            [],
            [],
        ]

        # Act
        dashboard = AnalyticsService.get_dashboard_analytics(START, END)

        # Assert
        sales = dashboard["sales_summary"]
        assert sales["total_sales"] == 200.0
        assert sales["growth"]["total_sales"] == 100.0
        assert sales["growth"]["total_items"] == 0.0
        assert dashboard["customer_summary"]["growth"] == {"new_customers": 100.0, "active_customers": 0.0}
        assert dashboard["order_summary"]["total_orders"] == 4
        assert dashboard["order_summary"]["by_status"][0] == {"status": "DELIVERED", "count": 3, "percentage": 75.0}
        assert [c["percentage"] for c in dashboard["sales_by_category"]] == [75.0, 25.0]

    def test_result_is_cached(self, mock_db, mock_cache):
        conn, cursor = mock_db
        cursor.fetchone.return_value = {}
        cursor.fetchall.return_value = []

        AnalyticsService.get_dashboard_analytics(START, END, compare_with_previous=False)

        key, value, ttl = mock_cache.set_cache.call_args[0]
        assert key.startswith("dashboard_analytics:2026-01-01")
        assert ttl == 1800

    def test_cache_hit_skips_database(self, mock_db, mock_cache):
        conn, cursor = mock_db
        mock_cache.get_cache.return_value = {"sales_summary": {}}

        assert AnalyticsService.get_dashboard_analytics(START, END) == {"sales_summary": {}}
        cursor.execute.assert_not_called()

    def test_database_error_is_500(self):
        with patch("marketplace.core.database.get_db_connection_dict_with_retry",
                   side_effect=psycopg2.OperationalError("down")):
            with pytest.raises(ApiError) as exc:
                AnalyticsService.get_dashboard_analytics(START, END)

        assert exc.value.status_code == 500


class TestSalesAnalytics:

    def test_invalid_interval_rejected(self, mock_db):
        conn, cursor = mock_db

        with pytest.raises(ApiError) as exc:
            AnalyticsService.get_sales_analytics(START, END, interval="fortnight")

        assert exc.value.status_code == 400
        cursor.execute.assert_not_called()

    def test_invalid_group_by_rejected(self, mock_db):
        conn, cursor = mock_db

        with pytest.raises(ApiError):
            AnalyticsService.get_sales_analytics(START, END, group_by="region")

        cursor.execute.assert_not_called()

    def test_trend_without_comparison(self, mock_db):
        # Arrange
        conn, cursor = mock_db
        cursor.fetchone.return_value = {"total_orders": 1, "total_sales": Decimal("20"),
                                        "avg_order_value": Decimal("20"), "total_items": 2}
        cursor.fetchall.side_effect = [
            [],
            [{"date": START, "sales": Decimal("20"), "orders": 1, "items": 2}],
        ]

        # Act
        analytics = AnalyticsService.get_sales_analytics(START, END, interval="week",
                                                         compare_with_previous=False, group_by="vendor")

        # Assert
        assert analytics["trend"]["previous"] is None
        assert analytics["trend"]["current"] == [{"date": START, "sales": 20.0, "orders": 1, "items": 2}]
        assert analytics["summary"]["growth"]["total_sales"] == 0.0
        assert analytics["options"]["group_by"] == "vendor"
