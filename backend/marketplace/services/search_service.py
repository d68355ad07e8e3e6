"""
Search Service - product search with facets, suggestions and popular queries

Popular searches are a Redis sorted set scored by how often each normalized
query was searched.

Author: TM3
Date: 2026-02-19
"""
import json
import hashlib
import logging
from typing import Dict, List, Optional, Any, Tuple

from redis.exceptions import RedisError

from marketplace.core import cache
from marketplace.core.database import get_cursor
from marketplace.core.logging import get_request_logger
from marketplace.core.pagination import page_offset, pagination
from marketplace.domain.search import SearchFilters, SearchSort

logger = logging.getLogger(__name__)

SEARCH_CACHE_TTL = 300
FACETS_CACHE_TTL = 3600
SUGGESTIONS_CACHE_TTL = 1800

POPULAR_SEARCHES_KEY = "search:popular"

SORT_CLAUSES = {
    SearchSort.PRICE_ASC: "p.price ASC",
    SearchSort.PRICE_DESC: "p.price DESC",
    SearchSort.NEWEST: "p.created_at DESC",
    SearchSort.OLDEST: "p.created_at ASC",
    SearchSort.NAME_ASC: "p.name ASC",
    SearchSort.NAME_DESC: "p.name DESC",
    SearchSort.RATING: "p.average_rating DESC, p.review_count DESC",
    SearchSort.POPULARITY: "p.review_count DESC, p.average_rating DESC",
}


def normalize_query(query: str) -> str:
    return " ".join(query.lower().split())


def build_search_conditions(filters: SearchFilters) -> Tuple[str, List[Any]]:
    """WHERE clause and parameters for the filters (active products only)"""
    conditions = ["p.is_active = TRUE"]
    params: List[Any] = []

    if filters.query:
        conditions.append("(p.name ILIKE %s OR p.description ILIKE %s OR p.sku ILIKE %s)")
        params.extend([f"%{filters.query}%"] * 3)
    if filters.category_ids:
        conditions.append("p.category_id = ANY(%s::uuid[])")
        params.append(filters.category_ids)
    if filters.vendor_ids:
        conditions.append("p.vendor_id = ANY(%s::uuid[])")
        params.append(filters.vendor_ids)
    if filters.min_price is not None:
        conditions.append("p.price >= %s")
        params.append(filters.min_price)
    if filters.max_price is not None:
        conditions.append("p.price <= %s")
        params.append(filters.max_price)
    if filters.min_rating is not None:
        conditions.append("p.average_rating >= %s")
        params.append(filters.min_rating)
    if filters.in_stock is not None:
        conditions.append("p.stock > 0" if filters.in_stock else "p.stock <= 0")
    if filters.created_after:
        conditions.append("p.created_at >= %s")
        params.append(filters.created_after)
    if filters.created_before:
        conditions.append("p.created_at <= %s")
        params.append(filters.created_before)

    return " AND ".join(conditions), params


def order_clause(filters: SearchFilters) -> Tuple[str, List[Any]]:
    if filters.sort == SearchSort.RELEVANCE:
        if filters.query:
            # Name matches rank above description/sku matches
            return "(p.name ILIKE %s) DESC, p.review_count DESC, p.created_at DESC", [f"%{filters.query}%"]
        return "p.created_at DESC", []
    return SORT_CLAUSES[filters.sort], []


class SearchService:

    @staticmethod
    def advanced_search(filters: SearchFilters, user_id: Optional[str] = None,
                        request_id: Optional[str] = None) -> Dict:
        log = get_request_logger(__name__, request_id)

        params_key = hashlib.md5(json.dumps(filters.model_dump(mode="json"), sort_keys=True).encode()).hexdigest()
        cache_key = f"advanced_search:{params_key}"
        cached = cache.get_cache(cache_key)
        if cached:
            log.info("Search results served from cache")
            return cached

        where, params = build_search_conditions(filters)
        order, order_params = order_clause(filters)

        with get_cursor() as cursor:
            cursor.execute(f"SELECT COUNT(*) AS total FROM products p WHERE {where}", params)
            total = cursor.fetchone()["total"]

            cursor.execute(f"""
                SELECT p.id, p.name, p.slug, p.sku, p.price, p.stock, p.average_rating, p.review_count,
                       p.created_at, c.name AS category_name, v.business_name AS vendor_name
                FROM products p
                LEFT JOIN categories c ON c.id = p.category_id
                LEFT JOIN vendors v ON v.id = p.vendor_id
                WHERE {where}
                ORDER BY {order}
                LIMIT %s OFFSET %s
            """, params + order_params + [filters.limit, page_offset(filters.page, filters.limit)])
            products = cursor.fetchall()

        result = {
            "products": [dict(p) for p in products],
            "pagination": pagination(filters.page, filters.limit, total),
        }
        if filters.include_facets:
            result["facets"] = SearchService.get_facets(filters)

        cache.set_cache(cache_key, result, SEARCH_CACHE_TTL)

        if filters.query:
            SearchService.track_search_query(filters.query, user_id, total, request_id)
        return result

    @staticmethod
    def get_facets(filters: SearchFilters) -> Dict:
        """Category, vendor, price and rating breakdowns for the text query"""
        base = SearchFilters(query=filters.query)
        cache_key = f"facets:{normalize_query(filters.query or '')}"
        cached = cache.get_cache(cache_key)
        if cached:
            return cached

        where, params = build_search_conditions(base)

        with get_cursor() as cursor:
            cursor.execute(f"""
                SELECT c.id, c.name, COUNT(*) AS count
                FROM products p JOIN categories c ON c.id = p.category_id
                WHERE {where}
                GROUP BY c.id, c.name
                ORDER BY count DESC
                LIMIT 20
            """, params)
            categories = cursor.fetchall()

            cursor.execute(f"""
                SELECT v.id, v.business_name AS name, COUNT(*) AS count
                FROM products p JOIN vendors v ON v.id = p.vendor_id
                WHERE {where}
                GROUP BY v.id, v.business_name
                ORDER BY count DESC
                LIMIT 20
            """, params)
            vendors = cursor.fetchall()

            cursor.execute(f"""
                SELECT COALESCE(MIN(p.price), 0) AS min_price, COALESCE(MAX(p.price), 0) AS max_price
                FROM products p WHERE {where}
            """, params)
            prices = cursor.fetchone()

            cursor.execute(f"""
                SELECT FLOOR(p.average_rating)::int AS rating, COUNT(*) AS count
                FROM products p
                WHERE {where} AND p.review_count > 0
                GROUP BY FLOOR(p.average_rating)
                ORDER BY rating DESC
            """, params)
            ratings = cursor.fetchall()

        facets = {
            "categories": [dict(c) for c in categories],
            "vendors": [dict(v) for v in vendors],
            "price_range": {"min": float(prices["min_price"]), "max": float(prices["max_price"])},
            "ratings": [dict(r) for r in ratings],
        }
        cache.set_cache(cache_key, facets, FACETS_CACHE_TTL)
        return facets

    @staticmethod
    def get_product_suggestions(prefix: str, limit: int = 5, include_categories: bool = True,
                                include_vendors: bool = True) -> Dict:
        """Autocomplete: products whose name starts with or contains the prefix"""
        prefix = prefix.strip()
        if len(prefix) < 2:
            return {"products": [], "categories": [], "vendors": []}

        cache_key = f"suggestions:{normalize_query(prefix)}:{limit}:{include_categories}:{include_vendors}"
        cached = cache.get_cache(cache_key)
        if cached:
            return cached

        with get_cursor() as cursor:
            cursor.execute("""
                SELECT id, name, slug, price
                FROM products
                WHERE is_active = TRUE AND name ILIKE %s
                ORDER BY (name ILIKE %s) DESC, review_count DESC
                LIMIT %s
            """, (f"%{prefix}%", f"{prefix}%", limit))
            products = [dict(p) for p in cursor.fetchall()]

            categories: List[Dict] = []
            if include_categories:
                cursor.execute("SELECT id, name, slug FROM categories WHERE name ILIKE %s ORDER BY name LIMIT 3",
                               (f"%{prefix}%",))
                categories = [dict(c) for c in cursor.fetchall()]

            vendors: List[Dict] = []
            if include_vendors:
                cursor.execute("""
                    SELECT id, business_name AS name, slug FROM vendors
                    WHERE status = 'APPROVED' AND business_name ILIKE %s
                    ORDER BY business_name LIMIT 3
                """, (f"%{prefix}%",))
                vendors = [dict(v) for v in cursor.fetchall()]

        suggestions = {"products": products, "categories": categories, "vendors": vendors}
        cache.set_cache(cache_key, suggestions, SUGGESTIONS_CACHE_TTL)
        return suggestions

    @staticmethod
    def get_popular_searches(limit: int = 10) -> List[Dict]:
        try:
            return [{"query": q, "count": int(score)} for q, score in cache.top_scores(POPULAR_SEARCHES_KEY, limit)]
        except RedisError as e:
            logger.error(f"Cannot read popular searches: {e}")
            return []

    @staticmethod
    def track_search_query(query: str, user_id: Optional[str] = None, results: Optional[int] = None,
                           request_id: Optional[str] = None) -> None:
        """Count a query towards popular searches. Tracking errors are logged only."""
        log = get_request_logger(__name__, request_id)
        normalized = normalize_query(query)
        if not normalized:
            return
        try:
            cache.increment_score(POPULAR_SEARCHES_KEY, normalized)
            log.debug(f"Search tracked: query={normalized!r} user={user_id} results={results}")
        except RedisError as e:
            log.error(f"Error tracking search query: {e}")
