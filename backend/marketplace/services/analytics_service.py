"""
Analytics Service - dashboard and sales analytics

Revenue figures only count orders that reached SHIPPED or DELIVERED.
Growth compares the requested period with the period of equal length
right before it.

Author: TM3
Date: 2026-02-24
"""
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

from marketplace.core import cache
from marketplace.core.database import get_cursor
from marketplace.core.exceptions import ApiError
from marketplace.core.logging import get_request_logger

DASHBOARD_CACHE_TTL = 1800
SALES_CACHE_TTL = 3600
DEFAULT_PERIOD_DAYS = 30

REVENUE_STATUSES = ("SHIPPED", "DELIVERED")

TRUNC_UNITS = {"hour": "hour", "day": "day", "week": "week", "month": "month"}


# ============================================================================
# Helpers
# ============================================================================

def growth_percentage(current: float, previous: float) -> float:
    """Percent change from previous to current; 100 when starting from zero"""
    if not previous:
        return 100.0 if current > 0 else 0.0
    return round((current - previous) / previous * 100, 2)


def utc_now() -> datetime:
    """Naive UTC, comparable with the TIMESTAMP columns"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def resolve_period(start_date: Optional[datetime], end_date: Optional[datetime]) -> Tuple[datetime, datetime]:
    end = end_date or utc_now()
    start = start_date or end - timedelta(days=DEFAULT_PERIOD_DAYS)
    if start >= end:
        raise ApiError("start_date must be before end_date", 400)
    return start, end


def previous_period(start: datetime, end: datetime) -> Tuple[datetime, datetime]:
    length = end - start
    return start - length, start


def _num(value) -> float:
    return float(value) if value is not None else 0.0


# ============================================================================
# Queries
# ============================================================================

def _sales_totals(cursor, start: datetime, end: datetime) -> Dict:
    cursor.execute("""
        SELECT COUNT(*) AS total_orders,
               COALESCE(SUM(o.total_amount), 0) AS total_sales,
               COALESCE(AVG(o.total_amount), 0) AS avg_order_value,
               COALESCE(SUM((SELECT SUM(oi.quantity) FROM order_items oi WHERE oi.order_id = o.id)), 0) AS total_items
        FROM orders o
        WHERE o.created_at >= %s AND o.created_at <= %s AND o.status IN %s
    """, (start, end, REVENUE_STATUSES))
    row = cursor.fetchone() or {}
    return {
        "total_sales": _num(row.get("total_sales")),
        "total_orders": int(row.get("total_orders") or 0),
        "avg_order_value": round(_num(row.get("avg_order_value")), 2),
        "total_items": int(row.get("total_items") or 0),
    }


def _sales_summary(cursor, start: datetime, end: datetime, compare: bool) -> Dict:
    current = _sales_totals(cursor, start, end)
    growth = {key: 0.0 for key in current}
    if compare:
        previous = _sales_totals(cursor, *previous_period(start, end))
        growth = {key: growth_percentage(current[key], previous[key]) for key in current}
    return {**current, "growth": growth}


def _customer_counts(cursor, start: datetime, end: datetime) -> Dict:
    cursor.execute("""
        SELECT
            (SELECT COUNT(*) FROM users WHERE role = 'CUSTOMER') AS total_customers,
            (SELECT COUNT(*) FROM users WHERE role = 'CUSTOMER'
                AND created_at >= %s AND created_at <= %s) AS new_customers,
            (SELECT COUNT(DISTINCT user_id) FROM orders
                WHERE created_at >= %s AND created_at <= %s) AS active_customers
    """, (start, end, start, end))
    row = cursor.fetchone() or {}
    return {
        "total_customers": int(row.get("total_customers") or 0),
        "new_customers": int(row.get("new_customers") or 0),
        "active_customers": int(row.get("active_customers") or 0),
    }


def _customer_summary(cursor, start: datetime, end: datetime, compare: bool) -> Dict:
    current = _customer_counts(cursor, start, end)
    growth = {"new_customers": 0.0, "active_customers": 0.0}
    if compare:
        previous = _customer_counts(cursor, *previous_period(start, end))
        growth = {key: growth_percentage(current[key], previous[key]) for key in growth}
    return {**current, "growth": growth}


def _order_summary(cursor, start: datetime, end: datetime) -> Dict:
    cursor.execute("""
        SELECT status, COUNT(*) AS count
        FROM orders
        WHERE created_at >= %s AND created_at <= %s
        GROUP BY status
    """, (start, end))
    by_status = {r["status"]: int(r["count"]) for r in cursor.fetchall()}
    total = sum(by_status.values())
    return {
        "total_orders": total,
        "by_status": [
            {"status": status, "count": count,
             "percentage": round(count / total * 100, 2) if total else 0.0}
            for status, count in sorted(by_status.items())
        ],
    }


def _recent_orders(cursor, limit: int = 10) -> List[Dict]:
    cursor.execute("""
        SELECT o.id, o.order_number, o.status, o.total_amount, o.created_at,
               u.email AS customer_email,
               TRIM(CONCAT(u.first_name, ' ', u.last_name)) AS customer_name
        FROM orders o
        LEFT JOIN users u ON u.id = o.user_id
        ORDER BY o.created_at DESC
        LIMIT %s
    """, (limit,))
    return [dict(r) for r in cursor.fetchall()]


def _top_products(cursor, start: datetime, end: datetime, limit: int = 5) -> List[Dict]:
    cursor.execute("""
        SELECT p.id, p.name, p.sku,
               SUM(oi.quantity) AS units_sold,
               SUM(oi.quantity * oi.price) AS revenue
        FROM order_items oi
        JOIN orders o ON o.id = oi.order_id
        JOIN products p ON p.id = oi.product_id
        WHERE o.created_at >= %s AND o.created_at <= %s AND o.status IN %s
        GROUP BY p.id
        ORDER BY revenue DESC
        LIMIT %s
    """, (start, end, REVENUE_STATUSES, limit))
    return [dict(r) for r in cursor.fetchall()]


def _sales_by(cursor, start: datetime, end: datetime, dimension: str) -> List[Dict]:
    table, alias, label, key = {
        "category": ("categories", "c", "c.name", "p.category_id"),
        "vendor": ("vendors", "v", "v.business_name", "p.vendor_id"),
    }[dimension]
    cursor.execute(f"""
        SELECT {alias}.id, {label} AS name,
               COUNT(DISTINCT o.id) AS orders,
               SUM(oi.quantity) AS units_sold,
               SUM(oi.quantity * oi.price) AS revenue
        FROM order_items oi
        JOIN orders o ON o.id = oi.order_id
        JOIN products p ON p.id = oi.product_id
        JOIN {table} {alias} ON {alias}.id = {key}
        WHERE o.created_at >= %s AND o.created_at <= %s AND o.status IN %s
        GROUP BY {alias}.id, {label}
        ORDER BY revenue DESC
    """, (start, end, REVENUE_STATUSES))
    rows = [dict(r) for r in cursor.fetchall()]
    total = sum(_num(r["revenue"]) for r in rows)
    for r in rows:
        r["percentage"] = round(_num(r["revenue"]) / total * 100, 2) if total else 0.0
    return rows


def _sales_trend(cursor, start: datetime, end: datetime, interval: str) -> List[Dict]:
    unit = TRUNC_UNITS.get(interval)
    if not unit:
        raise ApiError(f"Invalid interval: {interval}. Use one of {', '.join(TRUNC_UNITS)}", 400)
    cursor.execute("""
        SELECT DATE_TRUNC(%s, o.created_at) AS date,
               COALESCE(SUM(o.total_amount), 0) AS sales,
               COUNT(*) AS orders,
               COALESCE(SUM((SELECT SUM(oi.quantity) FROM order_items oi WHERE oi.order_id = o.id)), 0) AS items
        FROM orders o
        WHERE o.created_at >= %s AND o.created_at <= %s AND o.status IN %s
        GROUP BY 1
        ORDER BY 1
    """, (unit, start, end, REVENUE_STATUSES))
    return [
        {"date": r["date"], "sales": _num(r["sales"]), "orders": int(r["orders"]), "items": int(r["items"])}
        for r in cursor.fetchall()
    ]


# ============================================================================
# Service
# ============================================================================

class AnalyticsService:

    @staticmethod
    def get_dashboard_analytics(start_date: Optional[datetime] = None, end_date: Optional[datetime] = None,
                                compare_with_previous: bool = True, request_id: Optional[str] = None) -> Dict:
        """
        Everything the admin dashboard shows for one period

        Returns:
            Dict with sales_summary, customer_summary, order_summary,
            recent_orders, top_products, sales_by_category, sales_by_vendor,
            sales_trend and period
        """
        log = get_request_logger(__name__, request_id)
        start, end = resolve_period(start_date, end_date)

        cache_key = f"dashboard_analytics:{start.isoformat()}:{end.isoformat()}:{compare_with_previous}"
        cached = cache.get_cache(cache_key)
        if cached:
            log.info("Dashboard analytics served from cache")
            return cached

        try:
            with get_cursor() as cursor:
                dashboard = {
                    "sales_summary": _sales_summary(cursor, start, end, compare_with_previous),
                    "customer_summary": _customer_summary(cursor, start, end, compare_with_previous),
                    "order_summary": _order_summary(cursor, start, end),
                    "recent_orders": _recent_orders(cursor, 10),
                    "top_products": _top_products(cursor, start, end, 5),
                    "sales_by_category": _sales_by(cursor, start, end, "category"),
                    "sales_by_vendor": _sales_by(cursor, start, end, "vendor"),
                    "sales_trend": _sales_trend(cursor, start, end, "day"),
                    "period": {"start_date": start, "end_date": end},
                }
        except ApiError:
            raise
        except Exception as e:
            log.error(f"Error getting dashboard analytics: {e}")
            raise ApiError(f"Failed to get dashboard analytics: {e}", 500)

        cache.set_cache(cache_key, dashboard, DASHBOARD_CACHE_TTL)
        return dashboard

    @staticmethod
    def get_sales_analytics(start_date: Optional[datetime] = None, end_date: Optional[datetime] = None,
                            interval: str = "day", compare_with_previous: bool = True,
                            group_by: str = "product", request_id: Optional[str] = None) -> Dict:
        log = get_request_logger(__name__, request_id)
        start, end = resolve_period(start_date, end_date)
        if interval not in TRUNC_UNITS:
            raise ApiError(f"Invalid interval: {interval}. Use one of {', '.join(TRUNC_UNITS)}", 400)
        if group_by not in ("product", "category", "vendor"):
            raise ApiError(f"Invalid group_by: {group_by}", 400)

        cache_key = f"sales_analytics:{start.isoformat()}:{end.isoformat()}:{interval}:{compare_with_previous}:{group_by}"
        cached = cache.get_cache(cache_key)
        if cached:
            return cached

        try:
            with get_cursor() as cursor:
                previous_trend = None
                if compare_with_previous:
                    previous_trend = _sales_trend(cursor, *previous_period(start, end), interval)

                if group_by == "product":
                    grouped = _top_products(cursor, start, end, 100)
                else:
                    grouped = _sales_by(cursor, start, end, group_by)

                analytics = {
                    "summary": _sales_summary(cursor, start, end, compare_with_previous),
                    "trend": {
                        "current": _sales_trend(cursor, start, end, interval),
                        "previous": previous_trend,
                    },
                    "grouped_sales": grouped,
                    "period": {"start_date": start, "end_date": end},
                    "options": {"interval": interval, "group_by": group_by,
                                "compare_with_previous": compare_with_previous},
                }
        except ApiError:
            raise
        except Exception as e:
            log.error(f"Error getting sales analytics: {e}")
            raise ApiError(f"Failed to get sales analytics: {e}", 500)

        cache.set_cache(cache_key, analytics, SALES_CACHE_TTL)
        log.info(f"Sales analytics computed for {start.date()} - {end.date()} by {interval}")
        return analytics
