"""
Vendor Service - vendor registry, metrics and payouts

Author: TM3
Date: 2026-02-17
"""
import re
import json
import time
import random
import string
import hashlib
import logging
from typing import Dict, List, Optional, Any, Tuple
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP

from dateutil.relativedelta import relativedelta
from psycopg2.extras import Json

from marketplace.core import cache
from marketplace.core.config import settings
from marketplace.core.database import get_cursor
from marketplace.core.exceptions import ApiError
from marketplace.core.logging import get_request_logger
from marketplace.core.pagination import page_offset, pagination
from marketplace.domain.vendor import (
    VendorCreate, VendorUpdate, VendorFilters, VendorStatus, PayoutStatus,
    PayoutCalculation, PayoutCreate,
)
from marketplace.services.analytics_service import growth_percentage, previous_period, resolve_period, utc_now

logger = logging.getLogger(__name__)

VENDOR_CACHE_TTL = 3600
VENDOR_LIST_CACHE_TTL = 1800
DASHBOARD_CACHE_TTL = 1800
ANALYTICS_CACHE_TTL = 3600

SORT_FIELDS = {"created_at", "business_name", "status", "commission_rate", "updated_at"}
UPDATABLE_FIELDS = ("business_name", "contact_email", "description", "contact_phone",
                    "website", "logo_url", "address", "commission_rate", "is_active")

PAYABLE_ORDER_STATUSES = ["SHIPPED", "DELIVERED"]
OPEN_PAYOUT_STATUSES = [PayoutStatus.PENDING.value, PayoutStatus.PROCESSING.value]

EPOCH = datetime(1970, 1, 1)
DASHBOARD_SPANS = {
    "week": relativedelta(weeks=1),
    "month": relativedelta(months=1),
    "year": relativedelta(years=1),
}
DASHBOARD_PERIODS = ("day", "week", "month", "year", "all")
SALES_INTERVALS = {"hourly": "hour", "daily": "day", "weekly": "week", "monthly": "month"}
LOW_STOCK_THRESHOLD = 10
PAYOUT_HISTORY_DAYS = 365

VENDOR_COLUMNS = """
    id, user_id, business_name, slug, description, contact_email, contact_phone,
    website, logo_url, address, commission_rate, status, verification_notes,
    is_active, created_at, updated_at
"""


# ============================================================================
# Helpers
# ============================================================================

def slugify(text: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return slug or "vendor"


def random_suffix(length: int = 6) -> str:
    return "".join(random.choices(string.ascii_lowercase + string.digits, k=length))


def to_base36(number: int) -> str:
    digits = string.digits + string.ascii_lowercase
    if number == 0:
        return "0"
    out = ""
    while number:
        number, rem = divmod(number, 36)
        out = digits[rem] + out
    return out


def payout_reference(vendor_id: str) -> str:
    return f"PAY-{str(vendor_id)[:8]}-{to_base36(int(time.time() * 1000))}".upper()


def money(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _unique_slug(cursor, business_name: str, exclude_id: Optional[str] = None) -> str:
    slug = slugify(business_name)
    cursor.execute("SELECT id FROM vendors WHERE slug = %s AND id IS DISTINCT FROM %s",
                   (slug, exclude_id))
    if cursor.fetchone():
        slug = f"{slug}-{random_suffix()}"
    return slug


def invalidate_vendor_cache(vendor_id: str, slug: Optional[str] = None) -> None:
    keys = [f"vendor:{vendor_id}", f"vendor:metrics:{vendor_id}"]
    if slug:
        keys.append(f"vendor:slug:{slug}")
    cache.delete_cache(*keys)
    cache.delete_cache_pattern("vendors:list*")


# ============================================================================
# Dashboard and analytics queries
# ============================================================================

SALES_GROUPINGS = {
    "product": ("p.id, p.name", "", "LIMIT 20"),
    "category": ("c.id, c.name", "JOIN categories c ON c.id = p.category_id", ""),
    "customer": ("u.id, u.first_name, u.last_name", "JOIN users u ON u.id = o.user_id", "LIMIT 20"),
}

# Per-product sales in a period, joined onto products; params: (start, end)
PRODUCT_SALES_SUBQUERY = """
    SELECT oi.product_id,
           SUM(oi.quantity) AS total_sold,
           SUM(oi.price * oi.quantity) AS total_revenue,
           COUNT(DISTINCT o.id) AS order_count
    FROM order_items oi
    JOIN orders o ON o.id = oi.order_id
    WHERE o.created_at >= %s AND o.created_at <= %s
      AND o.status <> 'CANCELLED'
    GROUP BY oi.product_id
"""


def vendor_sales_from(join: str = "") -> str:
    """
    FROM and WHERE over a vendor's line items in non-cancelled orders

    Vendor revenue is the vendor's own line items, never the whole order
    total. Parameters: (vendor_id, start, end).
    """
    return f"""
        FROM order_items oi
        JOIN orders o ON o.id = oi.order_id
        JOIN products p ON p.id = oi.product_id
        {join}
        WHERE p.vendor_id = %s
          AND o.created_at >= %s AND o.created_at <= %s
          AND o.status <> 'CANCELLED'
    """


def dashboard_window(period: str, now: datetime) -> Tuple[datetime, datetime]:
    """(start, previous_start) of a dashboard period ending now"""
    if period == "day":
        start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        return start, start - relativedelta(days=1)
    span = DASHBOARD_SPANS.get(period)
    if span is None:
        return EPOCH, EPOCH
    start = now - span
    return start, start - span


def percentage(part: float, total: float) -> float:
    return round(part / total * 100, 2) if total else 0.0


def _require_vendor(cursor, vendor_id: str) -> Dict:
    cursor.execute("SELECT id, business_name, commission_rate FROM vendors WHERE id = %s", (vendor_id,))
    vendor = cursor.fetchone()
    if not vendor:
        raise ApiError("Vendor not found", 404)
    return vendor


def _sales_metrics(cursor, vendor_id: str, start: datetime, end: datetime) -> Dict:
    cursor.execute(f"""
        SELECT COALESCE(SUM(oi.price * oi.quantity), 0) AS revenue,
               COUNT(DISTINCT o.id) AS orders,
               COUNT(DISTINCT o.user_id) AS customers,
               COALESCE(SUM(oi.quantity), 0) AS units
        {vendor_sales_from()}
    """, (vendor_id, start, end))
    row = cursor.fetchone()
    revenue, orders = float(row["revenue"]), int(row["orders"])
    return {
        "total_revenue": revenue,
        "total_orders": orders,
        "unique_customers": int(row["customers"]),
        "units_sold": int(row["units"]),
        "average_order_value": round(revenue / orders, 2) if orders else 0.0,
    }


def _product_stats(cursor, vendor_id: str) -> Dict:
    cursor.execute("""
        SELECT COUNT(*) AS total,
               COUNT(*) FILTER (WHERE is_active) AS active,
               COUNT(*) FILTER (WHERE stock = 0) AS out_of_stock,
               COUNT(*) FILTER (WHERE stock > 0 AND stock <= %s) AS low_stock
        FROM products WHERE vendor_id = %s
    """, (LOW_STOCK_THRESHOLD, vendor_id))
    row = cursor.fetchone()
    return {
        "total_products": int(row["total"]),
        "active_products": int(row["active"]),
        "inactive_products": int(row["total"]) - int(row["active"]),
        "out_of_stock_products": int(row["out_of_stock"]),
        "low_stock_products": int(row["low_stock"]),
    }


def _recent_orders(cursor, vendor_id: str, limit: int = 10) -> List[Dict]:
    cursor.execute("""
        SELECT o.id, o.order_number, o.status, o.total_amount, o.created_at,
               u.first_name, u.last_name
        FROM orders o
        LEFT JOIN users u ON u.id = o.user_id
        WHERE EXISTS (
            SELECT 1 FROM order_items oi
            JOIN products p ON p.id = oi.product_id
            WHERE oi.order_id = o.id AND p.vendor_id = %s
        )
        ORDER BY o.created_at DESC
        LIMIT %s
    """, (vendor_id, limit))
    orders = []
    for row in cursor.fetchall():
        order = dict(row)
        order["total_amount"] = float(order["total_amount"])
        order["customer_name"] = " ".join(n for n in (order.pop("first_name"), order.pop("last_name")) if n) or None
        orders.append(order)
    return orders


def _top_products(cursor, vendor_id: str, start: datetime, end: datetime, limit: int = 5) -> List[Dict]:
    cursor.execute(f"""
        SELECT p.id, p.name, p.price,
               SUM(oi.quantity) AS total_sold,
               SUM(oi.price * oi.quantity) AS total_revenue
        {vendor_sales_from()}
        GROUP BY p.id, p.name, p.price
        ORDER BY total_revenue DESC
        LIMIT %s
    """, (vendor_id, start, end, limit))
    return [
        {**dict(r), "price": float(r["price"]), "total_sold": int(r["total_sold"]),
         "total_revenue": float(r["total_revenue"])}
        for r in cursor.fetchall()
    ]


def _sales_time_series(cursor, vendor_id: str, start: datetime, end: datetime, unit: str) -> List[Dict]:
    cursor.execute(f"""
        SELECT DATE_TRUNC(%s, o.created_at) AS period,
               SUM(oi.price * oi.quantity) AS revenue,
               COUNT(DISTINCT o.id) AS orders
        {vendor_sales_from()}
        GROUP BY 1
        ORDER BY 1
    """, (unit, vendor_id, start, end))
    return [
        {"period": r["period"], "revenue": float(r["revenue"]), "orders": int(r["orders"])}
        for r in cursor.fetchall()
    ]


def _sales_by_group(cursor, vendor_id: str, start: datetime, end: datetime, group_by: str) -> List[Dict]:
    columns, join, limit = SALES_GROUPINGS[group_by]
    cursor.execute(f"""
        SELECT {columns},
               SUM(oi.quantity) AS total_sold,
               SUM(oi.price * oi.quantity) AS total_revenue,
               COUNT(DISTINCT o.id) AS order_count
        {vendor_sales_from(join)}
        GROUP BY {columns}
        ORDER BY total_revenue DESC
        {limit}
    """, (vendor_id, start, end))
    return [
        {**dict(r), "total_sold": int(r["total_sold"]), "total_revenue": float(r["total_revenue"]),
         "order_count": int(r["order_count"])}
        for r in cursor.fetchall()
    ]


# ============================================================================
# Vendor Service
# ============================================================================

class VendorService:
    """Vendor CRUD, status management, metrics and payouts"""

    @staticmethod
    def create_vendor(data: VendorCreate, request_id: Optional[str] = None) -> Dict:
        log = get_request_logger(__name__, request_id)

        with get_cursor(commit=True) as cursor:
            cursor.execute("SELECT id FROM vendors WHERE contact_email = %s", (data.contact_email,))
            if cursor.fetchone():
                raise ApiError("A vendor with this email already exists", 400)

            slug = _unique_slug(cursor, data.business_name)
            commission = data.commission_rate if data.commission_rate is not None else settings.DEFAULT_COMMISSION_RATE

            cursor.execute(f"""
                INSERT INTO vendors (
                    user_id, business_name, slug, description, contact_email, contact_phone,
                    website, logo_url, address, commission_rate, status
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING {VENDOR_COLUMNS}
            """, (
                data.user_id, data.business_name, slug, data.description, data.contact_email,
                data.contact_phone, data.website, data.logo_url,
                Json(data.address) if data.address is not None else None,
                commission, VendorStatus.PENDING.value,
            ))
            vendor = dict(cursor.fetchone())

        cache.delete_cache_pattern("vendors:list*")
        log.info(f"Created vendor {vendor['id']} ({slug})")
        return vendor

    @staticmethod
    def _get_vendor(where: str, value: str, cache_key: str) -> Dict:
        cached = cache.get_cache(cache_key)
        if cached:
            return cached

        with get_cursor() as cursor:
            cursor.execute(f"SELECT {VENDOR_COLUMNS} FROM vendors WHERE {where} = %s", (value,))
            vendor = cursor.fetchone()
            if not vendor:
                raise ApiError("Vendor not found", 404)

            cursor.execute("SELECT COUNT(*) AS count FROM products WHERE vendor_id = %s", (vendor["id"],))
            product_count = cursor.fetchone()["count"]

            cursor.execute("""
                SELECT id, name, slug, price, average_rating
                FROM products
                WHERE vendor_id = %s AND is_active = TRUE
                ORDER BY created_at DESC
                LIMIT 5
            """, (vendor["id"],))
            products = cursor.fetchall()

        result = {**dict(vendor), "product_count": product_count, "products": [dict(p) for p in products]}
        cache.set_cache(cache_key, result, VENDOR_CACHE_TTL)
        return result

    @staticmethod
    def get_vendor_by_id(vendor_id: str) -> Dict:
        return VendorService._get_vendor("id", vendor_id, f"vendor:{vendor_id}")

    @staticmethod
    def get_vendor_by_slug(slug: str) -> Dict:
        return VendorService._get_vendor("slug", slug, f"vendor:slug:{slug}")

    @staticmethod
    def update_vendor(vendor_id: str, data: VendorUpdate, request_id: Optional[str] = None) -> Dict:
        """Partial update; a new business name regenerates the slug"""
        log = get_request_logger(__name__, request_id)
        changes = data.model_dump(exclude_unset=True)

        with get_cursor(commit=True) as cursor:
            cursor.execute("SELECT id, slug, business_name, contact_email FROM vendors WHERE id = %s FOR UPDATE",
                           (vendor_id,))
            existing = cursor.fetchone()
            if not existing:
                raise ApiError("Vendor not found", 404)

            if "contact_email" in changes and changes["contact_email"] != existing["contact_email"]:
                cursor.execute("SELECT id FROM vendors WHERE contact_email = %s AND id <> %s",
                               (changes["contact_email"], vendor_id))
                if cursor.fetchone():
                    raise ApiError("A vendor with this email already exists", 400)

            sets = []
            params: List[Any] = []
            for field in UPDATABLE_FIELDS:
                if field in changes:
                    value = changes[field]
                    sets.append(f"{field} = %s")
                    params.append(Json(value) if field == "address" and value is not None else value)

            if changes.get("business_name") and changes["business_name"] != existing["business_name"]:
                sets.append("slug = %s")
                params.append(_unique_slug(cursor, changes["business_name"], vendor_id))

            if not sets:
                raise ApiError("No fields to update", 400)

            sets.append("updated_at = NOW()")
            cursor.execute(f"""
                UPDATE vendors SET {', '.join(sets)}
                WHERE id = %s
                RETURNING {VENDOR_COLUMNS}
            """, params + [vendor_id])
            vendor = dict(cursor.fetchone())

        invalidate_vendor_cache(vendor_id, existing["slug"])
        if vendor["slug"] != existing["slug"]:
            cache.delete_cache(f"vendor:slug:{vendor['slug']}")
        log.info(f"Updated vendor {vendor_id}: {sorted(changes)}")
        return vendor

    @staticmethod
    def delete_vendor(vendor_id: str, request_id: Optional[str] = None) -> None:
        """
        Delete a vendor

        Raises:
            ApiError 404: unknown vendor
            ApiError 400: vendor still has products or open payouts
        """
        log = get_request_logger(__name__, request_id)

        with get_cursor(commit=True) as cursor:
            cursor.execute("SELECT id, slug FROM vendors WHERE id = %s FOR UPDATE", (vendor_id,))
            vendor = cursor.fetchone()
            if not vendor:
                raise ApiError("Vendor not found", 404)

            cursor.execute("SELECT COUNT(*) AS count FROM products WHERE vendor_id = %s", (vendor_id,))
            if cursor.fetchone()["count"] > 0:
                raise ApiError("Cannot delete vendor with existing products", 400)

            cursor.execute("""
                SELECT COUNT(*) AS count FROM vendor_payouts
                WHERE vendor_id = %s AND status = ANY(%s)
            """, (vendor_id, OPEN_PAYOUT_STATUSES))
            if cursor.fetchone()["count"] > 0:
                raise ApiError("Cannot delete vendor with pending payouts", 400)

            cursor.execute("DELETE FROM vendor_payouts WHERE vendor_id = %s", (vendor_id,))
            cursor.execute("DELETE FROM vendors WHERE id = %s", (vendor_id,))

        invalidate_vendor_cache(vendor_id, vendor["slug"])
        log.info(f"Deleted vendor {vendor_id}")

    @staticmethod
    def get_all_vendors(filters: Optional[VendorFilters] = None, page: int = 1, limit: int = 20,
                        sort: str = "-created_at") -> Dict:
        """Paginated vendor list. `sort` is a column name, '-' prefix for descending."""
        filters = filters or VendorFilters()
        descending = sort.startswith("-")
        sort_field = sort.lstrip("-")
        if sort_field not in SORT_FIELDS:
            raise ApiError(f"Invalid sort field: {sort_field}", 400)

        params_key = hashlib.md5(json.dumps(
            {"f": filters.model_dump(mode="json"), "p": page, "l": limit, "s": sort}, sort_keys=True
        ).encode()).hexdigest()
        cache_key = f"vendors:list:{params_key}"
        cached = cache.get_cache(cache_key)
        if cached:
            return cached

        conditions = []
        params: List[Any] = []
        if filters.status:
            conditions.append("status = %s")
            params.append(filters.status.value)
        if filters.is_active is not None:
            conditions.append("is_active = %s")
            params.append(filters.is_active)
        if filters.search:
            conditions.append("(business_name ILIKE %s OR description ILIKE %s)")
            params.extend([f"%{filters.search}%"] * 2)
        where_clause = " AND ".join(conditions) if conditions else "1=1"

        with get_cursor() as cursor:
            cursor.execute(f"SELECT COUNT(*) AS total FROM vendors WHERE {where_clause}", params)
            total = cursor.fetchone()["total"]

            cursor.execute(f"""
                SELECT {VENDOR_COLUMNS},
                       (SELECT COUNT(*) FROM products p WHERE p.vendor_id = vendors.id) AS product_count
                FROM vendors
                WHERE {where_clause}
                ORDER BY {sort_field} {'DESC' if descending else 'ASC'}
                LIMIT %s OFFSET %s
            """, params + [limit, page_offset(page, limit)])
            vendors = cursor.fetchall()

        result = {"vendors": [dict(v) for v in vendors], "pagination": pagination(page, limit, total)}
        cache.set_cache(cache_key, result, VENDOR_LIST_CACHE_TTL)
        return result

    @staticmethod
    def get_vendor_products(vendor_id: str, page: int = 1, limit: int = 20,
                            is_active: Optional[bool] = None) -> Dict:
        where = "vendor_id = %s"
        params: List[Any] = [vendor_id]
        if is_active is not None:
            where += " AND is_active = %s"
            params.append(is_active)

        with get_cursor() as cursor:
            cursor.execute("SELECT id FROM vendors WHERE id = %s", (vendor_id,))
            if not cursor.fetchone():
                raise ApiError("Vendor not found", 404)

            cursor.execute(f"SELECT COUNT(*) AS total FROM products WHERE {where}", params)
            total = cursor.fetchone()["total"]

            cursor.execute(f"""
                SELECT id, sku, name, slug, price, stock, is_active, average_rating, review_count, created_at
                FROM products
                WHERE {where}
                ORDER BY created_at DESC
                LIMIT %s OFFSET %s
            """, params + [limit, page_offset(page, limit)])
            products = cursor.fetchall()

        return {"products": [dict(p) for p in products], "pagination": pagination(page, limit, total)}

    @staticmethod
    def get_vendor_metrics(vendor_id: str) -> Dict:
        cache_key = f"vendor:metrics:{vendor_id}"
        cached = cache.get_cache(cache_key)
        if cached:
            return cached

        with get_cursor() as cursor:
            cursor.execute("SELECT id FROM vendors WHERE id = %s", (vendor_id,))
            if not cursor.fetchone():
                raise ApiError("Vendor not found", 404)

            cursor.execute("""
                SELECT COUNT(*) AS total_products,
                       COUNT(*) FILTER (WHERE is_active) AS active_products,
                       COALESCE(AVG(average_rating) FILTER (WHERE review_count > 0), 0) AS average_rating,
                       COALESCE(SUM(review_count), 0) AS total_reviews
                FROM products WHERE vendor_id = %s
            """, (vendor_id,))
            products = cursor.fetchone()

            cursor.execute("""
                SELECT COUNT(DISTINCT o.id) AS total_orders,
                       COALESCE(SUM(oi.price * oi.quantity), 0) AS total_sales,
                       COALESCE(SUM(oi.quantity), 0) AS units_sold
                FROM order_items oi
                JOIN orders o ON o.id = oi.order_id
                JOIN products p ON p.id = oi.product_id
                WHERE p.vendor_id = %s AND o.payment_status = 'PAID'
            """, (vendor_id,))
            sales = cursor.fetchone()

            cursor.execute("""
                SELECT COALESCE(SUM(net_amount) FILTER (WHERE status = 'COMPLETED'), 0) AS total_paid_out,
                       COALESCE(SUM(net_amount) FILTER (WHERE status = ANY(%s)), 0) AS pending_payouts
                FROM vendor_payouts WHERE vendor_id = %s
            """, (OPEN_PAYOUT_STATUSES, vendor_id))
            payouts = cursor.fetchone()

        metrics = {
            "vendor_id": vendor_id,
            "total_products": products["total_products"],
            "active_products": products["active_products"],
            "average_rating": round(float(products["average_rating"]), 2),
            "total_reviews": int(products["total_reviews"]),
            "total_orders": sales["total_orders"],
            "total_sales": float(sales["total_sales"]),
            "units_sold": int(sales["units_sold"]),
            "total_paid_out": float(payouts["total_paid_out"]),
            "pending_payouts": float(payouts["pending_payouts"]),
        }
        cache.set_cache(cache_key, metrics, VENDOR_CACHE_TTL)
        return metrics

    @staticmethod
    def update_vendor_status(vendor_id: str, status: VendorStatus, notes: Optional[str] = None,
                             request_id: Optional[str] = None) -> Dict:
        log = get_request_logger(__name__, request_id)

        with get_cursor(commit=True) as cursor:
            cursor.execute(f"""
                UPDATE vendors
                SET status = %s, verification_notes = COALESCE(%s, verification_notes), updated_at = NOW()
                WHERE id = %s
                RETURNING {VENDOR_COLUMNS}
            """, (status.value, notes, vendor_id))
            vendor = cursor.fetchone()

        if not vendor:
            raise ApiError("Vendor not found", 404)

        invalidate_vendor_cache(vendor_id, vendor["slug"])
        log.info(f"Vendor {vendor_id} status set to {status.value}")
        return dict(vendor)

    # ------------------------------------------------------------------
    # Payouts
    # ------------------------------------------------------------------

    @staticmethod
    def get_vendor_payouts(vendor_id: str, page: int = 1, limit: int = 20,
                           status: Optional[PayoutStatus] = None) -> Dict:
        where = "vendor_id = %s"
        params: List[Any] = [vendor_id]
        if status:
            where += " AND status = %s"
            params.append(status.value)

        with get_cursor() as cursor:
            cursor.execute(f"SELECT COUNT(*) AS total FROM vendor_payouts WHERE {where}", params)
            total = cursor.fetchone()["total"]
            cursor.execute(f"""
                SELECT * FROM vendor_payouts
                WHERE {where}
                ORDER BY period_end DESC
                LIMIT %s OFFSET %s
            """, params + [limit, page_offset(page, limit)])
            payouts = cursor.fetchall()

        return {"payouts": [dict(p) for p in payouts], "pagination": pagination(page, limit, total)}

    @staticmethod
    def _calculate(cursor, vendor_id: str, start_date: datetime, end_date: datetime) -> PayoutCalculation:
        if start_date >= end_date:
            raise ApiError("Start date must be before end date", 400)

        cursor.execute("SELECT id, commission_rate FROM vendors WHERE id = %s", (vendor_id,))
        vendor = cursor.fetchone()
        if not vendor:
            raise ApiError("Vendor not found", 404)

        cursor.execute("""
            SELECT COUNT(DISTINCT o.id) AS order_count,
                   COALESCE(SUM(oi.price * oi.quantity), 0) AS total_sales
            FROM order_items oi
            JOIN orders o ON o.id = oi.order_id
            JOIN products p ON p.id = oi.product_id
            WHERE p.vendor_id = %s
              AND o.status = ANY(%s)
              AND o.payment_status = 'PAID'
              AND o.created_at >= %s AND o.created_at < %s
        """, (vendor_id, PAYABLE_ORDER_STATUSES, start_date, end_date))
        sales = cursor.fetchone()

        total = Decimal(str(sales["total_sales"]))
        rate = Decimal(str(vendor["commission_rate"]))
        commission = money(total * rate / Decimal("100"))

        return PayoutCalculation(
            vendor_id=str(vendor_id),
            period_start=start_date,
            period_end=end_date,
            order_count=sales["order_count"],
            total_sales=float(money(total)),
            commission_rate=float(rate),
            commission_amount=float(commission),
            net_amount=float(money(total) - commission),
        )

    @staticmethod
    def calculate_vendor_payout(vendor_id: str, start_date: datetime, end_date: datetime) -> PayoutCalculation:
        """Sales of paid, shipped/delivered orders in the period, minus commission"""
        with get_cursor() as cursor:
            return VendorService._calculate(cursor, vendor_id, start_date, end_date)

    @staticmethod
    def create_vendor_payout(vendor_id: str, data: PayoutCreate, request_id: Optional[str] = None) -> Dict:
        """
        Create a PENDING payout for a period

        Raises:
            ApiError 400: period overlaps an existing payout, or net amount
                below MINIMUM_PAYOUT_AMOUNT
        """
        log = get_request_logger(__name__, request_id)

        with get_cursor(commit=True) as cursor:
            calculation = VendorService._calculate(cursor, vendor_id, data.start_date, data.end_date)

            cursor.execute("""
                SELECT id FROM vendor_payouts
                WHERE vendor_id = %s
                  AND status <> %s
                  AND period_start < %s AND period_end > %s
                LIMIT 1
            """, (vendor_id, PayoutStatus.CANCELLED.value, data.end_date, data.start_date))
            if cursor.fetchone():
                raise ApiError("A payout already exists for this period", 400)

            if calculation.net_amount < settings.MINIMUM_PAYOUT_AMOUNT:
                raise ApiError(
                    f"Payout amount {calculation.net_amount:.2f} is below the minimum of "
                    f"{settings.MINIMUM_PAYOUT_AMOUNT:.2f}", 400)

            cursor.execute("""
                INSERT INTO vendor_payouts (
                    vendor_id, amount, fee, net_amount, status, period_start, period_end, reference, notes
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING *
            """, (
                vendor_id, calculation.total_sales, calculation.commission_amount, calculation.net_amount,
                PayoutStatus.PENDING.value, data.start_date, data.end_date,
                payout_reference(vendor_id), data.notes,
            ))
            payout = dict(cursor.fetchone())

        cache.delete_cache(f"vendor:metrics:{vendor_id}")
        log.info(f"Created payout {payout['reference']} for vendor {vendor_id}: {calculation.net_amount:.2f}")
        return payout

    @staticmethod
    def update_payout_status(payout_id: str, status: PayoutStatus, notes: Optional[str] = None) -> Dict:
        processed_at = utc_now() if status == PayoutStatus.COMPLETED else None

        with get_cursor(commit=True) as cursor:
            cursor.execute("""
                UPDATE vendor_payouts
                SET status = %s,
                    notes = COALESCE(%s, notes),
                    processed_at = COALESCE(%s, processed_at),
                    updated_at = NOW()
                WHERE id = %s
                RETURNING *
            """, (status.value, notes, processed_at, payout_id))
            payout = cursor.fetchone()

        if not payout:
            raise ApiError("Payout not found", 404)

        cache.delete_cache(f"vendor:metrics:{payout['vendor_id']}")
        logger.info(f"Payout {payout_id} set to {status.value}")
        return dict(payout)

    @staticmethod
    def get_payout_by_id(payout_id: str) -> Dict:
        with get_cursor() as cursor:
            cursor.execute("""
                SELECT p.*, v.business_name AS vendor_name
                FROM vendor_payouts p
                JOIN vendors v ON v.id = p.vendor_id
                WHERE p.id = %s
            """, (payout_id,))
            payout = cursor.fetchone()

        if not payout:
            raise ApiError("Payout not found", 404)
        return dict(payout)

    # ------------------------------------------------------------------
    # Search and statistics
    # ------------------------------------------------------------------

    @staticmethod
    def search_vendors(query: str, page: int = 1, limit: int = 20) -> Dict:
        """Approved, active vendors whose name or description matches"""
        pattern = f"%{query}%"
        with get_cursor() as cursor:
            cursor.execute("""
                SELECT COUNT(*) AS total FROM vendors
                WHERE status = 'APPROVED' AND is_active = TRUE
                  AND (business_name ILIKE %s OR description ILIKE %s)
            """, (pattern, pattern))
            total = cursor.fetchone()["total"]

            cursor.execute(f"""
                SELECT {VENDOR_COLUMNS} FROM vendors
                WHERE status = 'APPROVED' AND is_active = TRUE
                  AND (business_name ILIKE %s OR description ILIKE %s)
                ORDER BY business_name
                LIMIT %s OFFSET %s
            """, (pattern, pattern, limit, page_offset(page, limit)))
            vendors = cursor.fetchall()

        return {"vendors": [dict(v) for v in vendors], "pagination": pagination(page, limit, total)}

    @staticmethod
    def get_vendor_statistics() -> Dict:
        with get_cursor() as cursor:
            cursor.execute("SELECT status, COUNT(*) AS count FROM vendors GROUP BY status")
            by_status = {row["status"]: row["count"] for row in cursor.fetchall()}

            cursor.execute("""
                SELECT v.id, v.business_name, COALESCE(SUM(oi.price * oi.quantity), 0) AS total_sales
                FROM vendors v
                JOIN products p ON p.vendor_id = v.id
                JOIN order_items oi ON oi.product_id = p.id
                JOIN orders o ON o.id = oi.order_id
                WHERE o.payment_status = 'PAID'
                GROUP BY v.id, v.business_name
                ORDER BY total_sales DESC
                LIMIT 5
            """)
            top = cursor.fetchall()

            cursor.execute("""
                SELECT COALESCE(SUM(net_amount) FILTER (WHERE status = 'COMPLETED'), 0) AS total_paid_out
                FROM vendor_payouts
            """)
            paid = cursor.fetchone()

        return {
            "total_vendors": sum(by_status.values()),
            "by_status": {status.value: by_status.get(status.value, 0) for status in VendorStatus},
            "top_vendors": [{**dict(v), "total_sales": float(v["total_sales"])} for v in top],
            "total_paid_out": float(paid["total_paid_out"]),
        }

    # ------------------------------------------------------------------
    # Dashboard and analytics
    # ------------------------------------------------------------------

    @staticmethod
    def get_vendor_dashboard(vendor_id: str, period: str = "month", request_id: Optional[str] = None) -> Dict:
        """
        Vendor dashboard for the period ending now

        Compares revenue, orders and average order value with the period of
        the same length just before it. "day" starts at midnight, "all" at
        the epoch (growth is then 0 or 100).

        Returns:
            Dict with period, date_range, metrics, growth, recent_orders,
            top_products and product_stats
        """
        log = get_request_logger(__name__, request_id)
        if period not in DASHBOARD_PERIODS:
            raise ApiError(f"Invalid period: {period}. Use one of {', '.join(DASHBOARD_PERIODS)}", 400)

        cache_key = f"vendor:{vendor_id}:dashboard:{period}"
        cached = cache.get_cache(cache_key)
        if cached:
            log.info(f"Dashboard for vendor {vendor_id} served from cache")
            return cached

        now = utc_now()
        start, previous_start = dashboard_window(period, now)

        with get_cursor() as cursor:
            _require_vendor(cursor, vendor_id)
            current = _sales_metrics(cursor, vendor_id, start, now)
            previous = _sales_metrics(cursor, vendor_id, previous_start, start)
            product_stats = _product_stats(cursor, vendor_id)
            recent_orders = _recent_orders(cursor, vendor_id, 10)
            top_products = _top_products(cursor, vendor_id, start, now, 5)

        dashboard = {
            "period": period,
            "date_range": {"start": start, "end": now},
            "metrics": {
                **current,
                "total_products": product_stats["total_products"],
                "active_products": product_stats["active_products"],
            },
            "growth": {
                "revenue": growth_percentage(current["total_revenue"], previous["total_revenue"]),
                "orders": growth_percentage(current["total_orders"], previous["total_orders"]),
                "average_order_value": growth_percentage(current["average_order_value"],
                                                         previous["average_order_value"]),
            },
            "recent_orders": recent_orders,
            "top_products": top_products,
            "product_stats": product_stats,
        }
        cache.set_cache(cache_key, dashboard, DASHBOARD_CACHE_TTL)
        return dashboard

    @staticmethod
    def get_vendor_sales_analytics(vendor_id: str, start_date: Optional[datetime] = None,
                                   end_date: Optional[datetime] = None, interval: str = "daily",
                                   compare_with_previous: bool = True, group_by: Optional[str] = None,
                                   request_id: Optional[str] = None) -> Dict:
        """Sales summary and time series for a period, last 30 days by default"""
        log = get_request_logger(__name__, request_id)
        start, end = resolve_period(start_date, end_date)
        unit = SALES_INTERVALS.get(interval)
        if not unit:
            raise ApiError(f"Invalid interval: {interval}. Use one of {', '.join(SALES_INTERVALS)}", 400)
        if group_by is not None and group_by not in SALES_GROUPINGS:
            raise ApiError(f"Invalid group_by: {group_by}. Use one of {', '.join(SALES_GROUPINGS)}", 400)

        cache_key = (f"vendor:{vendor_id}:sales:{start.isoformat()}:{end.isoformat()}:"
                     f"{interval}:{compare_with_previous}:{group_by or ''}")
        cached = cache.get_cache(cache_key)
        if cached:
            return cached

        with get_cursor() as cursor:
            _require_vendor(cursor, vendor_id)
            summary = _sales_metrics(cursor, vendor_id, start, end)
            analytics = {
                "period": {"start_date": start, "end_date": end, "interval": interval},
                "summary": summary,
                "time_series": _sales_time_series(cursor, vendor_id, start, end, unit),
            }
            if group_by:
                analytics["grouped_sales"] = {
                    "group_by": group_by,
                    "data": _sales_by_group(cursor, vendor_id, start, end, group_by),
                }
            if compare_with_previous:
                previous_start, previous_end = previous_period(start, end)
                previous = _sales_metrics(cursor, vendor_id, previous_start, previous_end)
                analytics["comparison"] = {
                    "period": {"start_date": previous_start, "end_date": previous_end},
                    "summary": previous,
                    "growth": {
                        "revenue": growth_percentage(summary["total_revenue"], previous["total_revenue"]),
                        "orders": growth_percentage(summary["total_orders"], previous["total_orders"]),
                        "average_order_value": growth_percentage(summary["average_order_value"],
                                                                 previous["average_order_value"]),
                    },
                }

        cache.set_cache(cache_key, analytics, ANALYTICS_CACHE_TTL)
        log.info(f"Sales analytics for vendor {vendor_id}: {start.date()} - {end.date()} by {interval}")
        return analytics

    @staticmethod
    def get_vendor_product_analytics(vendor_id: str, start_date: Optional[datetime] = None,
                                     end_date: Optional[datetime] = None, category_id: Optional[str] = None,
                                     limit: int = 20) -> Dict:
        """Per-product sales, inventory health and sales by category"""
        start, end = resolve_period(start_date, end_date)

        cache_key = (f"vendor:{vendor_id}:products:{start.isoformat()}:{end.isoformat()}:"
                     f"{category_id or ''}:{limit}")
        cached = cache.get_cache(cache_key)
        if cached:
            return cached

        category_filter = "AND p.category_id = %s" if category_id else ""
        params: List[Any] = [start, end, vendor_id] + ([category_id] if category_id else []) + [limit]

        with get_cursor() as cursor:
            _require_vendor(cursor, vendor_id)
            cursor.execute(f"""
                SELECT p.id, p.name, p.sku, p.price, p.stock, p.is_active,
                       p.average_rating, p.review_count,
                       COALESCE(s.total_sold, 0) AS total_sold,
                       COALESCE(s.total_revenue, 0) AS total_revenue,
                       COALESCE(s.order_count, 0) AS order_count
                FROM products p
                LEFT JOIN ({PRODUCT_SALES_SUBQUERY}) s ON s.product_id = p.id
                WHERE p.vendor_id = %s {category_filter}
                ORDER BY total_revenue DESC, p.name
                LIMIT %s
            """, params)
            products = cursor.fetchall()

            cursor.execute("""
                SELECT COUNT(*) FILTER (WHERE is_active) AS active,
                       COUNT(*) FILTER (WHERE NOT is_active) AS inactive,
                       COUNT(*) FILTER (WHERE stock > 0 AND stock <= %s) AS low_stock,
                       COUNT(*) FILTER (WHERE stock = 0) AS out_of_stock
                FROM products WHERE vendor_id = %s
            """, (LOW_STOCK_THRESHOLD, vendor_id))
            inventory = cursor.fetchone()

            cursor.execute(f"""
                SELECT c.id, c.name,
                       COUNT(DISTINCT p.id) AS product_count,
                       COALESCE(SUM(s.total_sold), 0) AS total_sold,
                       COALESCE(SUM(s.total_revenue), 0) AS total_revenue
                FROM products p
                JOIN categories c ON c.id = p.category_id
                LEFT JOIN ({PRODUCT_SALES_SUBQUERY}) s ON s.product_id = p.id
                WHERE p.vendor_id = %s
                GROUP BY c.id, c.name
                ORDER BY total_revenue DESC
            """, (start, end, vendor_id))
            categories = cursor.fetchall()

        analytics = {
            "period": {"start_date": start, "end_date": end},
            "product_performance": [
                {**dict(p), "price": float(p["price"]), "average_rating": float(p["average_rating"]),
                 "total_sold": int(p["total_sold"]), "total_revenue": float(p["total_revenue"]),
                 "order_count": int(p["order_count"])}
                for p in products
            ],
            "inventory_status": {key: int(value) for key, value in dict(inventory).items()},
            "category_performance": [
                {**dict(c), "product_count": int(c["product_count"]), "total_sold": int(c["total_sold"]),
                 "total_revenue": float(c["total_revenue"])}
                for c in categories
            ],
        }
        cache.set_cache(cache_key, analytics, ANALYTICS_CACHE_TTL)
        return analytics

    @staticmethod
    def get_vendor_order_analytics(vendor_id: str, start_date: Optional[datetime] = None,
                                   end_date: Optional[datetime] = None, status: Optional[str] = None) -> Dict:
        """
        Orders containing the vendor's products: status split, fulfillment
        times and payment methods

        Processing time runs from creation to shipment, shipping time from
        shipment to delivery, both in days.
        """
        start, end = resolve_period(start_date, end_date)

        cache_key = f"vendor:{vendor_id}:orders:{start.isoformat()}:{end.isoformat()}:{status or ''}"
        cached = cache.get_cache(cache_key)
        if cached:
            return cached

        status_filter = "AND o.status = %s" if status else ""
        params: List[Any] = [vendor_id, start, end] + ([status.upper()] if status else [])
        vendor_orders = f"""
            WITH vendor_orders AS (
                SELECT o.id, o.status, o.payment_method, o.created_at, o.shipped_at, o.delivered_at,
                       SUM(oi.price * oi.quantity) AS vendor_total
                FROM orders o
                JOIN order_items oi ON oi.order_id = o.id
                JOIN products p ON p.id = oi.product_id
                WHERE p.vendor_id = %s
                  AND o.created_at >= %s AND o.created_at <= %s
                  {status_filter}
                GROUP BY o.id
            )
        """

        with get_cursor() as cursor:
            _require_vendor(cursor, vendor_id)

            cursor.execute(f"""
                {vendor_orders}
                SELECT status, COUNT(*) AS count, COALESCE(SUM(vendor_total), 0) AS total
                FROM vendor_orders
                GROUP BY status
                ORDER BY count DESC
            """, params)
            by_status = cursor.fetchall()

            cursor.execute(f"""
                {vendor_orders}
                SELECT AVG(EXTRACT(EPOCH FROM (shipped_at - created_at)) / 86400)
                           FILTER (WHERE shipped_at IS NOT NULL) AS avg_processing_days,
                       AVG(EXTRACT(EPOCH FROM (delivered_at - shipped_at)) / 86400)
                           FILTER (WHERE shipped_at IS NOT NULL AND delivered_at IS NOT NULL) AS avg_shipping_days,
                       COUNT(*) FILTER (WHERE status = 'DELIVERED') AS delivered,
                       COUNT(*) FILTER (WHERE status = 'CANCELLED') AS cancelled,
                       COUNT(*) AS total
                FROM vendor_orders
            """, params)
            fulfillment = cursor.fetchone()

            cursor.execute(f"""
                {vendor_orders}
                SELECT COALESCE(payment_method, 'UNKNOWN') AS payment_method,
                       COUNT(*) AS count, COALESCE(SUM(vendor_total), 0) AS total
                FROM vendor_orders
                GROUP BY 1
                ORDER BY count DESC
            """, params)
            payment_methods = cursor.fetchall()

        total = int(fulfillment["total"])
        delivered, cancelled = int(fulfillment["delivered"]), int(fulfillment["cancelled"])

        def days(value) -> Optional[float]:
            return round(float(value), 2) if value is not None else None

        analytics = {
            "period": {"start_date": start, "end_date": end},
            "orders_by_status": [
                {"status": r["status"], "count": int(r["count"]), "total": float(r["total"])} for r in by_status
            ],
            "fulfillment_metrics": {
                "avg_processing_days": days(fulfillment["avg_processing_days"]),
                "avg_shipping_days": days(fulfillment["avg_shipping_days"]),
                "delivered_orders": delivered,
                "cancelled_orders": cancelled,
                "total_orders": total,
                "fulfillment_rate": percentage(delivered, total),
                "cancellation_rate": percentage(cancelled, total),
            },
            "payment_methods": [
                {"payment_method": r["payment_method"], "count": int(r["count"]), "total": float(r["total"])}
                for r in payment_methods
            ],
        }
        cache.set_cache(cache_key, analytics, ANALYTICS_CACHE_TTL)
        return analytics

    @staticmethod
    def get_vendor_payout_analytics(vendor_id: str, start_date: Optional[datetime] = None,
                                    end_date: Optional[datetime] = None) -> Dict:
        """
        Payout history for a period (the last year by default) plus the
        earnings no payout covers yet

        Pending earnings are paid, shipped/delivered sales outside every
        non-cancelled payout period, less the vendor's commission.
        """
        end = end_date or utc_now()
        start = start_date or end - timedelta(days=PAYOUT_HISTORY_DAYS)
        if start >= end:
            raise ApiError("start_date must be before end_date", 400)

        with get_cursor() as cursor:
            vendor = _require_vendor(cursor, vendor_id)

            cursor.execute("""
                SELECT COUNT(*) AS count,
                       COALESCE(SUM(amount), 0) AS total_amount,
                       COALESCE(SUM(fee), 0) AS total_fees,
                       COALESCE(SUM(net_amount), 0) AS total_net,
                       COALESCE(AVG(net_amount), 0) AS average_payout
                FROM vendor_payouts
                WHERE vendor_id = %s AND created_at >= %s AND created_at <= %s
            """, (vendor_id, start, end))
            summary = cursor.fetchone()

            cursor.execute("""
                SELECT status, COUNT(*) AS count, COALESCE(SUM(net_amount), 0) AS total
                FROM vendor_payouts
                WHERE vendor_id = %s AND created_at >= %s AND created_at <= %s
                GROUP BY status
            """, (vendor_id, start, end))
            by_status = cursor.fetchall()

            cursor.execute("""
                SELECT * FROM vendor_payouts
                WHERE vendor_id = %s AND created_at >= %s AND created_at <= %s
                ORDER BY created_at DESC
                LIMIT 10
            """, (vendor_id, start, end))
            recent = cursor.fetchall()

            cursor.execute("""
                SELECT COUNT(DISTINCT o.id) AS order_count,
                       COALESCE(SUM(oi.price * oi.quantity), 0) AS total_sales
                FROM order_items oi
                JOIN orders o ON o.id = oi.order_id
                JOIN products p ON p.id = oi.product_id
                WHERE p.vendor_id = %s
                  AND o.status = ANY(%s)
                  AND o.payment_status = 'PAID'
                  AND NOT EXISTS (
                      SELECT 1 FROM vendor_payouts vp
                      WHERE vp.vendor_id = p.vendor_id
                        AND vp.status <> %s
                        AND o.created_at >= vp.period_start AND o.created_at < vp.period_end
                  )
            """, (vendor_id, PAYABLE_ORDER_STATUSES, PayoutStatus.CANCELLED.value))
            unpaid = cursor.fetchone()

        sales = money(Decimal(str(unpaid["total_sales"])))
        rate = Decimal(str(vendor["commission_rate"]))
        commission = money(sales * rate / Decimal("100"))

        return {
            "period": {"start_date": start, "end_date": end},
            "summary": {
                "total_payouts": int(summary["count"]),
                "total_amount": float(summary["total_amount"]),
                "total_fees": float(summary["total_fees"]),
                "total_net": float(summary["total_net"]),
                "average_payout": float(money(Decimal(str(summary["average_payout"])))),
            },
            "payouts_by_status": [
                {"status": r["status"], "count": int(r["count"]), "total": float(r["total"])} for r in by_status
            ],
            "recent_payouts": [dict(p) for p in recent],
            "pending_earnings": {
                "order_count": int(unpaid["order_count"]),
                "total_sales": float(sales),
                "commission_rate": float(rate),
                "commission_amount": float(commission),
                "net_amount": float(sales - commission),
            },
        }
