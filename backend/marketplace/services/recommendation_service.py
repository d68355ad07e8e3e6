"""
Recommendation Service - popular, related, personalized, recently viewed and
frequently bought together products

Author: TM3
Date: 2026-02-19
"""
import logging
from typing import Dict, List

from redis.exceptions import RedisError

from marketplace.core import cache
from marketplace.core.database import get_cursor
from marketplace.core.exceptions import ApiError

logger = logging.getLogger(__name__)

POPULAR_CACHE_TTL = 3600
RELATED_CACHE_TTL = 3600
PERSONALIZED_CACHE_TTL = 86400
RECENTLY_VIEWED_MAX = 20

PRODUCT_FIELDS = "p.id, p.name, p.slug, p.price, p.stock, p.average_rating, p.review_count"


def _rows(cursor) -> List[Dict]:
    return [dict(r) for r in cursor.fetchall()]


class RecommendationService:

    @staticmethod
    def get_popular_products(limit: int = 10) -> List[Dict]:
        """Best sellers over the last 30 days, topped up with best rated products"""
        cache_key = f"popular_products:{limit}"
        cached = cache.get_cache(cache_key)
        if cached:
            return cached

        with get_cursor() as cursor:
            cursor.execute(f"""
                SELECT {PRODUCT_FIELDS}, SUM(oi.quantity) AS units_sold
                FROM products p
                JOIN order_items oi ON oi.product_id = p.id
                JOIN orders o ON o.id = oi.order_id
                WHERE p.is_active = TRUE AND o.created_at >= NOW() - INTERVAL '30 days'
                GROUP BY p.id
                ORDER BY units_sold DESC
                LIMIT %s
            """, (limit,))
            products = _rows(cursor)

            if len(products) < limit:
                cursor.execute(f"""
                    SELECT {PRODUCT_FIELDS}, 0 AS units_sold
                    FROM products p
                    WHERE p.is_active = TRUE AND NOT (p.id = ANY(%s::uuid[]))
                    ORDER BY p.average_rating DESC, p.review_count DESC, p.created_at DESC
                    LIMIT %s
                """, ([str(p["id"]) for p in products], limit - len(products)))
                products.extend(_rows(cursor))

        cache.set_cache(cache_key, products, POPULAR_CACHE_TTL)
        return products

    @staticmethod
    def get_related_products(product_id: str, limit: int = 10) -> List[Dict]:
        """Other active products of the same category"""
        cache_key = f"related_products:{product_id}:{limit}"
        cached = cache.get_cache(cache_key)
        if cached:
            return cached

        with get_cursor() as cursor:
            cursor.execute("SELECT id, category_id, vendor_id FROM products WHERE id = %s", (product_id,))
            product = cursor.fetchone()
            if not product:
                raise ApiError("Product not found", 404)

            cursor.execute(f"""
                SELECT {PRODUCT_FIELDS}
                FROM products p
                WHERE p.is_active = TRUE AND p.id <> %s
                  AND (p.category_id = %s OR p.vendor_id = %s)
                ORDER BY (p.category_id = %s) DESC, p.average_rating DESC, p.review_count DESC
                LIMIT %s
            """, (product_id, product["category_id"], product["vendor_id"], product["category_id"], limit))
            related = _rows(cursor)

        cache.set_cache(cache_key, related, RELATED_CACHE_TTL)
        return related

    @staticmethod
    def get_personalized_recommendations(user_id: str, limit: int = 10) -> List[Dict]:
        """
        Products from the categories the user bought from recently, excluding
        what they already bought. Falls back to popular products.
        """
        cache_key = f"personalized_recommendations:{user_id}:{limit}"
        cached = cache.get_cache(cache_key)
        if cached:
            return cached

        with get_cursor() as cursor:
            cursor.execute("""
                SELECT DISTINCT p.id, p.category_id
                FROM orders o
                JOIN order_items oi ON oi.order_id = o.id
                JOIN products p ON p.id = oi.product_id
                WHERE o.user_id = %s
                  AND o.id IN (SELECT id FROM orders WHERE user_id = %s ORDER BY created_at DESC LIMIT 10)
            """, (user_id, user_id))
            purchased = cursor.fetchall()

            if not purchased:
                recommendations = RecommendationService.get_popular_products(limit)
            else:
                purchased_ids = [str(r["id"]) for r in purchased]
                category_ids = list({str(r["category_id"]) for r in purchased if r["category_id"]})
                cursor.execute(f"""
                    SELECT {PRODUCT_FIELDS}
                    FROM products p
                    WHERE p.is_active = TRUE
                      AND p.category_id = ANY(%s::uuid[])
                      AND NOT (p.id = ANY(%s::uuid[]))
                    ORDER BY p.average_rating DESC, p.review_count DESC
                    LIMIT %s
                """, (category_ids, purchased_ids, limit))
                recommendations = _rows(cursor)

        cache.set_cache(cache_key, recommendations, PERSONALIZED_CACHE_TTL)
        return recommendations

    @staticmethod
    def track_recently_viewed_product(user_id: str, product_id: str) -> None:
        try:
            cache.push_recent(f"recently_viewed:{user_id}", str(product_id), RECENTLY_VIEWED_MAX)
        except RedisError as e:
            logger.error(f"Cannot track recently viewed product for {user_id}: {e}")

    @staticmethod
    def get_recently_viewed_products(user_id: str, limit: int = 10) -> List[Dict]:
        try:
            product_ids = cache.read_recent(f"recently_viewed:{user_id}", limit)
        except RedisError as e:
            logger.error(f"Cannot read recently viewed products for {user_id}: {e}")
            return []

        if not product_ids:
            return []

        with get_cursor() as cursor:
            cursor.execute(f"""
                SELECT {PRODUCT_FIELDS} FROM products p
                WHERE p.id = ANY(%s::uuid[]) AND p.is_active = TRUE
            """, (product_ids,))
            by_id = {str(r["id"]): dict(r) for r in cursor.fetchall()}

        # Keep most-recent-first order
        return [by_id[pid] for pid in product_ids if pid in by_id]

    @staticmethod
    def get_frequently_bought_together(product_id: str, limit: int = 3) -> List[Dict]:
        """Products that most often share an order with product_id"""
        cache_key = f"frequently_bought_together:{product_id}:{limit}"
        cached = cache.get_cache(cache_key)
        if cached:
            return cached

        with get_cursor() as cursor:
            cursor.execute(f"""
                SELECT {PRODUCT_FIELDS}, COUNT(DISTINCT other.order_id) AS times_bought_together
                FROM order_items base
                JOIN order_items other ON other.order_id = base.order_id AND other.product_id <> base.product_id
                JOIN products p ON p.id = other.product_id
                WHERE base.product_id = %s AND p.is_active = TRUE
                GROUP BY p.id
                ORDER BY times_bought_together DESC
                LIMIT %s
            """, (product_id, limit))
            products = _rows(cursor)

        cache.set_cache(cache_key, products, RELATED_CACHE_TTL)
        return products
