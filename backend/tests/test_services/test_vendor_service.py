"""
Tests for VendorService

Author: TM3
Date: 2026-02-20
"""
from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest

from marketplace.core.exceptions import ApiError
from marketplace.domain.vendor import PayoutCreate, VendorCreate, VendorStatus, VendorUpdate
from marketplace.services.vendor_service import (
    EPOCH, VendorService, dashboard_window, payout_reference, percentage, slugify, to_base36,
)

VENDOR_ID = "3f1c2a9e-0000-4000-8000-000000000001"


def vendor_row(**overrides):
    row = {
        "id": VENDOR_ID, "user_id": None, "business_name": "Green Farm", "slug": "green-farm",
        "description": None, "contact_email": "farm@example.com", "contact_phone": None,
        "website": None, "logo_url": None, "address": None, "commission_rate": Decimal("10.00"),
        "status": "PENDING", "verification_notes": None, "is_active": True,
        "created_at": datetime(2026, 1, 1), "updated_at": datetime(2026, 1, 1),
    }
    row.update(overrides)
    return row


class TestHelpers:

    def test_slugify(self):
        assert slugify("Green Farm & Co.") == "green-farm-co"
        assert slugify("!!!") == "vendor"

    def test_to_base36(self):
        assert to_base36(0) == "0"
        assert to_base36(35) == "z"
        assert to_base36(36) == "10"

    def test_payout_reference_format(self):
        reference = payout_reference(VENDOR_ID)
        assert reference.startswith("PAY-3F1C2A9E-")
        assert reference == reference.upper()


class TestCreateVendor:

    def test_duplicate_email_rejected(self, mock_db):
        conn, cursor = mock_db
        cursor.fetchone.return_value = {"id": "other"}

        with pytest.raises(ApiError) as exc:
            VendorService.create_vendor(VendorCreate(business_name="Green Farm", contact_email="farm@example.com"))

        assert exc.value.status_code == 400

    def test_default_commission_and_pending_status(self, mock_db, mock_cache):
        # Arrange
        conn, cursor = mock_db
        cursor.fetchone.side_effect = [None, None, vendor_row()]

        # Act
        vendor = VendorService.create_vendor(VendorCreate(business_name="Green Farm",
                                                          contact_email="farm@example.com"))

        # Assert
        insert_params = cursor.execute.call_args_list[-1][0][1]
        assert insert_params[2] == "green-farm"
        assert insert_params[9] == 10.0
        assert insert_params[10] == VendorStatus.PENDING.value
        assert vendor["slug"] == "green-farm"
        mock_cache.delete_cache_pattern.assert_called_with("vendors:list*")
        conn.commit.assert_called_once()

    def test_taken_slug_gets_suffix(self, mock_db):
        conn, cursor = mock_db
        cursor.fetchone.side_effect = [None, {"id": "other"}, vendor_row(slug="green-farm-abc123")]

        VendorService.create_vendor(VendorCreate(business_name="Green Farm", contact_email="farm@example.com"))

        insert_params = cursor.execute.call_args_list[-1][0][1]
        assert insert_params[2].startswith("green-farm-")
        assert len(insert_params[2]) == len("green-farm-") + 6


class TestDeleteVendor:

    def test_vendor_with_products_cannot_be_deleted(self, mock_db):
        conn, cursor = mock_db
        cursor.fetchone.side_effect = [{"id": VENDOR_ID, "slug": "green-farm"}, {"count": 3}]

        with pytest.raises(ApiError) as exc:
            VendorService.delete_vendor(VENDOR_ID)

        assert exc.value.status_code == 400
        assert "products" in exc.value.message
        conn.commit.assert_not_called()

    def test_vendor_with_open_payouts_cannot_be_deleted(self, mock_db):
        conn, cursor = mock_db
        cursor.fetchone.side_effect = [{"id": VENDOR_ID, "slug": "green-farm"}, {"count": 0}, {"count": 1}]

        with pytest.raises(ApiError) as exc:
            VendorService.delete_vendor(VENDOR_ID)

        assert "pending payouts" in exc.value.message

    def test_vendor_without_products_is_deleted(self, mock_db, mock_cache):
        # Arrange
        conn, cursor = mock_db
        cursor.fetchone.side_effect = [{"id": VENDOR_ID, "slug": "green-farm"}, {"count": 0}, {"count": 0}]

        # Act
        VendorService.delete_vendor(VENDOR_ID)

        # Assert
        statements = [" ".join(c[0][0].split()) for c in cursor.execute.call_args_list]
        assert "DELETE FROM vendors WHERE id = %s" in statements
        conn.commit.assert_called_once()
        mock_cache.delete_cache.assert_called_with(
            f"vendor:{VENDOR_ID}", f"vendor:metrics:{VENDOR_ID}", "vendor:slug:green-farm")

    def test_unknown_vendor_is_404(self, mock_db):
        conn, cursor = mock_db
        cursor.fetchone.return_value = None

        with pytest.raises(ApiError) as exc:
            VendorService.delete_vendor(VENDOR_ID)

        assert exc.value.status_code == 404


class TestUpdateVendor:

    def test_empty_update_rejected(self, mock_db):
        conn, cursor = mock_db
        cursor.fetchone.return_value = {"id": VENDOR_ID, "slug": "green-farm", "business_name": "Green Farm",
                                        "contact_email": "farm@example.com"}

        with pytest.raises(ApiError) as exc:
            VendorService.update_vendor(VENDOR_ID, VendorUpdate())

        assert exc.value.message == "No fields to update"

    def test_renaming_regenerates_slug(self, mock_db):
        conn, cursor = mock_db
        cursor.fetchone.side_effect = [
            {"id": VENDOR_ID, "slug": "green-farm", "business_name": "Green Farm",
             "contact_email": "farm@example.com"},
            None,
            vendor_row(business_name="Blue Farm", slug="blue-farm"),
        ]

        vendor = VendorService.update_vendor(VENDOR_ID, VendorUpdate(business_name="Blue Farm"))

        update_sql, update_params = cursor.execute.call_args_list[-1][0]
        assert "slug = %s" in update_sql
        assert "blue-farm" in update_params
        assert vendor["slug"] == "blue-farm"


class TestGetAllVendors:

    def test_invalid_sort_field(self):
        with pytest.raises(ApiError) as exc:
            VendorService.get_all_vendors(sort="-password")
        assert exc.value.status_code == 400

    def test_cached_list_skips_database(self, mock_db, mock_cache):
        conn, cursor = mock_db
        mock_cache.get_cache.return_value = {"vendors": [], "pagination": {}}

        result = VendorService.get_all_vendors()

        assert result == {"vendors": [], "pagination": {}}
        cursor.execute.assert_not_called()


class TestPayouts:

    start = datetime(2026, 1, 1)
    end = datetime(2026, 2, 1)

    def test_commission_is_deducted(self, mock_db):
        # Arrange
        conn, cursor = mock_db
        cursor.fetchone.side_effect = [
            {"id": VENDOR_ID, "commission_rate": Decimal("12.5")},
            {"order_count": 4, "total_sales": Decimal("1000.10")},
        ]

        # Act
        calculation = VendorService.calculate_vendor_payout(VENDOR_ID, self.start, self.end)

        # Assert
        assert calculation.order_count == 4
        assert calculation.total_sales == 1000.10
        assert calculation.commission_amount == 125.01
        assert calculation.net_amount == 875.09

    def test_inverted_period_rejected(self, mock_db):
        with pytest.raises(ApiError) as exc:
            VendorService.calculate_vendor_payout(VENDOR_ID, self.end, self.start)
        assert exc.value.status_code == 400

    def test_overlapping_payout_rejected(self, mock_db):
        conn, cursor = mock_db
        cursor.fetchone.side_effect = [
            {"id": VENDOR_ID, "commission_rate": Decimal("10")},
            {"order_count": 4, "total_sales": Decimal("1000")},
            {"id": "existing-payout"},
        ]

        with pytest.raises(ApiError) as exc:
            VendorService.create_vendor_payout(VENDOR_ID, PayoutCreate(start_date=self.start, end_date=self.end))

        assert exc.value.message == "A payout already exists for this period"

    def test_payout_below_minimum_rejected(self, mock_db):
        conn, cursor = mock_db
        cursor.fetchone.side_effect = [
            {"id": VENDOR_ID, "commission_rate": Decimal("10")},
            {"order_count": 1, "total_sales": Decimal("20")},
            None,
        ]

        with patch("marketplace.services.vendor_service.settings.MINIMUM_PAYOUT_AMOUNT", 50.0):
            with pytest.raises(ApiError) as exc:
                VendorService.create_vendor_payout(VENDOR_ID,
                                                   PayoutCreate(start_date=self.start, end_date=self.end))

        assert "below the minimum" in exc.value.message

    def test_unknown_payout_is_404(self, mock_db):
        conn, cursor = mock_db
        cursor.fetchone.return_value = None

        with pytest.raises(ApiError) as exc:
            VendorService.get_payout_by_id("missing")

        assert exc.value.status_code == 404


NOW = datetime(2026, 3, 15, 12, 30)
VENDOR = {"id": VENDOR_ID, "business_name": "Green Farm", "commission_rate": Decimal("12.5")}


def sales_row(revenue, orders, customers=1, units=1):
    return {"revenue": Decimal(revenue), "orders": orders, "customers": customers, "units": units}


class TestDashboardWindows:

    def test_day_starts_at_midnight(self):
        assert dashboard_window("day", NOW) == (datetime(2026, 3, 15), datetime(2026, 3, 14))

    def test_month_compares_with_the_month_before(self):
        assert dashboard_window("month", NOW) == (datetime(2026, 2, 15, 12, 30), datetime(2026, 1, 15, 12, 30))

    def test_all_starts_at_epoch(self):
        assert dashboard_window("all", NOW) == (EPOCH, EPOCH)

    def test_percentage_of_nothing_is_zero(self):
        assert percentage(3, 0) == 0.0
        assert percentage(1, 8) == 12.5


@patch("marketplace.services.vendor_service.utc_now", return_value=NOW)
class TestDashboard:

    def test_growth_against_previous_period(self, _now, mock_db, mock_cache):
        # Arrange
        conn, cursor = mock_db
        cursor.fetchone.side_effect = [
            VENDOR,
            sales_row("300", 3, customers=2, units=6),
            sales_row("200", 4),
            {"total": 5, "active": 4, "out_of_stock": 1, "low_stock": 2},
        ]
        cursor.fetchall.side_effect = [
            [{"id": "o-1", "order_number": "ORD-1", "status": "PAID", "total_amount": Decimal("120.50"),
              "created_at": NOW, "first_name": "Ana", "last_name": None}],
            [],
        ]

        # Act
        dashboard = VendorService.get_vendor_dashboard(VENDOR_ID, "month")

        # Assert
        assert dashboard["metrics"]["total_revenue"] == 300.0
        assert dashboard["metrics"]["average_order_value"] == 100.0
        assert dashboard["metrics"]["total_products"] == 5
        assert dashboard["growth"] == {"revenue": 50.0, "orders": -25.0, "average_order_value": 100.0}
        assert dashboard["product_stats"]["inactive_products"] == 1
        assert dashboard["recent_orders"][0]["customer_name"] == "Ana"
        assert dashboard["recent_orders"][0]["total_amount"] == 120.5
        assert cursor.execute.call_args_list[1][0][1] == (VENDOR_ID, datetime(2026, 2, 15, 12, 30), NOW)
        mock_cache.set_cache.assert_called_once_with(f"vendor:{VENDOR_ID}:dashboard:month", dashboard, 1800)

    def test_only_vendor_line_items_count_as_revenue(self, _now, mock_db):
        conn, cursor = mock_db
        cursor.fetchone.side_effect = [VENDOR, sales_row("0", 0), sales_row("0", 0),
                                       {"total": 0, "active": 0, "out_of_stock": 0, "low_stock": 0}]
        cursor.fetchall.side_effect = [[], []]

        dashboard = VendorService.get_vendor_dashboard(VENDOR_ID, "week")

        sql = cursor.execute.call_args_list[1][0][0]
        assert "SUM(oi.price * oi.quantity)" in sql
        assert "p.vendor_id = %s" in sql
        assert dashboard["growth"]["revenue"] == 0.0

    def test_cached_dashboard_skips_database(self, _now, mock_db, mock_cache):
        conn, cursor = mock_db
        mock_cache.get_cache.return_value = {"period": "day"}

        assert VendorService.get_vendor_dashboard(VENDOR_ID, "day") == {"period": "day"}
        cursor.execute.assert_not_called()

    def test_invalid_period_rejected(self, _now, mock_db):
        conn, cursor = mock_db

        with pytest.raises(ApiError) as exc:
            VendorService.get_vendor_dashboard(VENDOR_ID, "decade")

        assert exc.value.status_code == 400
        cursor.execute.assert_not_called()

    def test_unknown_vendor_is_404(self, _now, mock_db):
        conn, cursor = mock_db
        cursor.fetchone.return_value = None

        with pytest.raises(ApiError) as exc:
            VendorService.get_vendor_dashboard(VENDOR_ID)

        assert exc.value.status_code == 404
        assert exc.value.message == "Vendor not found"


class TestSalesAnalytics:

    start = datetime(2026, 3, 1)
    end = datetime(2026, 3, 11)

    def test_comparison_with_previous_period(self, mock_db, mock_cache):
        # Arrange
        conn, cursor = mock_db
        cursor.fetchone.side_effect = [VENDOR, sales_row("150", 3), sales_row("100", 2)]
        cursor.fetchall.return_value = [{"period": self.start, "revenue": Decimal("150"), "orders": 3}]

        # Act
        analytics = VendorService.get_vendor_sales_analytics(VENDOR_ID, self.start, self.end)

        # Assert
        assert analytics["time_series"] == [{"period": self.start, "revenue": 150.0, "orders": 3}]
        assert analytics["comparison"]["period"] == {"start_date": datetime(2026, 2, 19),
                                                     "end_date": self.start}
        assert analytics["comparison"]["growth"]["revenue"] == 50.0
        assert analytics["comparison"]["growth"]["orders"] == 50.0
        assert "grouped_sales" not in analytics
        assert mock_cache.set_cache.call_args[0][2] == 3600

    def test_interval_maps_to_date_trunc_unit(self, mock_db):
        conn, cursor = mock_db
        cursor.fetchone.side_effect = [VENDOR, sales_row("0", 0)]
        cursor.fetchall.return_value = []

        VendorService.get_vendor_sales_analytics(VENDOR_ID, self.start, self.end, interval="weekly",
                                                 compare_with_previous=False)

        sql, params = cursor.execute.call_args_list[2][0]
        assert "DATE_TRUNC(%s, o.created_at)" in sql
        assert params == ("week", VENDOR_ID, self.start, self.end)

    def test_grouped_by_category(self, mock_db):
        conn, cursor = mock_db
        cursor.fetchone.side_effect = [VENDOR, sales_row("80", 2)]
        cursor.fetchall.side_effect = [
            [],
            [{"id": "cat-1", "name": "Produce", "total_sold": 4, "total_revenue": Decimal("80"), "order_count": 2}],
        ]

        analytics = VendorService.get_vendor_sales_analytics(VENDOR_ID, self.start, self.end,
                                                             compare_with_previous=False, group_by="category")

        assert analytics["grouped_sales"]["data"][0]["total_revenue"] == 80.0
        assert "JOIN categories c ON c.id = p.category_id" in cursor.execute.call_args[0][0]

    def test_invalid_interval_rejected(self, mock_db):
        with pytest.raises(ApiError) as exc:
            VendorService.get_vendor_sales_analytics(VENDOR_ID, self.start, self.end, interval="yearly")

        assert exc.value.status_code == 400

    def test_invalid_grouping_rejected(self, mock_db):
        with pytest.raises(ApiError) as exc:
            VendorService.get_vendor_sales_analytics(VENDOR_ID, self.start, self.end, group_by="region")

        assert "Invalid group_by" in exc.value.message


class TestProductAndOrderAnalytics:

    start = datetime(2026, 3, 1)
    end = datetime(2026, 3, 31)

    def test_inventory_and_category_filter(self, mock_db):
        # Arrange
        conn, cursor = mock_db
        cursor.fetchone.side_effect = [VENDOR, {"active": 3, "inactive": 1, "low_stock": 1, "out_of_stock": 0}]
        cursor.fetchall.side_effect = [
            [{"id": "p-1", "name": "Apples", "sku": "APL", "price": Decimal("2.50"), "stock": 4,
              "is_active": True, "average_rating": Decimal("4.50"), "review_count": 2,
              "total_sold": 10, "total_revenue": Decimal("25"), "order_count": 3}],
            [],
        ]

        # Act
        analytics = VendorService.get_vendor_product_analytics(VENDOR_ID, self.start, self.end,
                                                               category_id="cat-1", limit=5)

        # Assert
        assert analytics["inventory_status"] == {"active": 3, "inactive": 1, "low_stock": 1, "out_of_stock": 0}
        assert analytics["product_performance"][0]["total_revenue"] == 25.0
        sql, params = cursor.execute.call_args_list[1][0]
        assert "AND p.category_id = %s" in sql
        assert params == [self.start, self.end, VENDOR_ID, "cat-1", 5]

    def test_fulfillment_rates(self, mock_db):
        # Arrange
        conn, cursor = mock_db
        cursor.fetchone.side_effect = [
            VENDOR,
            {"avg_processing_days": Decimal("1.254"), "avg_shipping_days": None,
             "delivered": 3, "cancelled": 1, "total": 8},
        ]
        cursor.fetchall.side_effect = [
            [{"status": "DELIVERED", "count": 3, "total": Decimal("90")}],
            [{"payment_method": "UNKNOWN", "count": 8, "total": Decimal("240")}],
        ]

        # Act
        analytics = VendorService.get_vendor_order_analytics(VENDOR_ID, self.start, self.end)

        # Assert
        metrics = analytics["fulfillment_metrics"]
        assert metrics["fulfillment_rate"] == 37.5
        assert metrics["cancellation_rate"] == 12.5
        assert metrics["avg_processing_days"] == 1.25
        assert metrics["avg_shipping_days"] is None
        assert analytics["payment_methods"][0]["total"] == 240.0

    def test_status_filter_is_uppercased(self, mock_db):
        conn, cursor = mock_db
        cursor.fetchone.side_effect = [VENDOR, {"avg_processing_days": None, "avg_shipping_days": None,
                                                "delivered": 0, "cancelled": 0, "total": 0}]
        cursor.fetchall.return_value = []

        analytics = VendorService.get_vendor_order_analytics(VENDOR_ID, self.start, self.end, status="shipped")

        sql, params = cursor.execute.call_args_list[1][0]
        assert "AND o.status = %s" in sql
        assert params == [VENDOR_ID, self.start, self.end, "SHIPPED"]
        assert analytics["fulfillment_metrics"]["fulfillment_rate"] == 0.0


class TestPayoutAnalytics:

    def test_pending_earnings_net_of_commission(self, mock_db):
        # Arrange
        conn, cursor = mock_db
        cursor.fetchone.side_effect = [
            VENDOR,
            {"count": 3, "total_amount": Decimal("1100"), "total_fees": Decimal("100"),
             "total_net": Decimal("1000"), "average_payout": Decimal("333.333")},
            {"order_count": 4, "total_sales": Decimal("1000.10")},
        ]
        cursor.fetchall.side_effect = [[{"status": "COMPLETED", "count": 3, "total": Decimal("1000")}], []]

        # Act
        analytics = VendorService.get_vendor_payout_analytics(VENDOR_ID, datetime(2026, 1, 1), datetime(2026, 3, 1))

        # Assert
        assert analytics["summary"]["average_payout"] == 333.33
        assert analytics["pending_earnings"] == {
            "order_count": 4, "total_sales": 1000.1, "commission_rate": 12.5,
            "commission_amount": 125.01, "net_amount": 875.09,
        }
        assert cursor.execute.call_args_list[-1][0][1] == (VENDOR_ID, ["SHIPPED", "DELIVERED"], "CANCELLED")

    def test_defaults_to_last_year(self, mock_db):
        conn, cursor = mock_db
        cursor.fetchone.side_effect = [
            VENDOR,
            {"count": 0, "total_amount": 0, "total_fees": 0, "total_net": 0, "average_payout": 0},
            {"order_count": 0, "total_sales": 0},
        ]
        cursor.fetchall.return_value = []

        with patch("marketplace.services.vendor_service.utc_now", return_value=NOW):
            analytics = VendorService.get_vendor_payout_analytics(VENDOR_ID)

        assert analytics["period"] == {"start_date": NOW - timedelta(days=365), "end_date": NOW}
        assert analytics["pending_earnings"]["net_amount"] == 0.0
