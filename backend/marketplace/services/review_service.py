"""
Review Service - product reviews, ratings and helpful votes

Creating a review recomputes the product's average rating in the same
transaction and awards REVIEW_POINTS loyalty points afterwards. A loyalty
failure is logged and does not undo the review.

Author: TM3
Date: 2026-02-20
"""
import logging
from typing import Dict, List, Optional, Any

from marketplace.core import cache
from marketplace.core.database import get_cursor
from marketplace.core.exceptions import ApiError
from marketplace.core.logging import get_request_logger
from marketplace.core.pagination import page_offset, pagination
from marketplace.domain.loyalty import PointsType
from marketplace.domain.notification import NotificationCreate, NotificationType
from marketplace.domain.review import (
    ReviewCreate, ReviewUpdate, ReviewStatus, ReviewSort, ModerationAction,
)
from marketplace.services.loyalty_service import LoyaltyService
from marketplace.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

REVIEW_CACHE_TTL = 1800
REVIEW_POINTS = 50

SORT_CLAUSES = {
    ReviewSort.NEWEST: "r.created_at DESC",
    ReviewSort.OLDEST: "r.created_at ASC",
    ReviewSort.RATING_HIGH: "r.rating DESC, r.created_at DESC",
    ReviewSort.RATING_LOW: "r.rating ASC, r.created_at DESC",
    ReviewSort.HELPFUL: "r.helpful_count DESC, r.created_at DESC",
}

REVIEW_COLUMNS = """
    r.id, r.product_id, r.user_id, r.rating, r.title, r.comment, r.is_verified,
    r.status, r.helpful_count, r.created_at, r.updated_at
"""

RETURNING_COLUMNS = """
    id, product_id, user_id, rating, title, comment, is_verified,
    status, helpful_count, created_at, updated_at
"""


def invalidate_review_cache(product_id: str, user_id: Optional[str] = None) -> None:
    cache.delete_cache(f"review_stats:{product_id}")
    cache.delete_cache_pattern(f"product_reviews:{product_id}:*")
    if user_id:
        cache.delete_cache_pattern(f"user_reviews:{user_id}:*")


def update_product_ratings(cursor, product_id: str) -> Dict:
    """Recompute average_rating (2 dp) and review_count from APPROVED reviews"""
    cursor.execute("""
        SELECT COALESCE(ROUND(AVG(rating)::numeric, 2), 0) AS average_rating, COUNT(*) AS review_count
        FROM reviews
        WHERE product_id = %s AND status = %s
    """, (product_id, ReviewStatus.APPROVED.value))
    ratings = cursor.fetchone()

    cursor.execute("""
        UPDATE products SET average_rating = %s, review_count = %s, updated_at = NOW()
        WHERE id = %s
    """, (ratings["average_rating"], ratings["review_count"], product_id))

    return {"average_rating": float(ratings["average_rating"]), "review_count": ratings["review_count"]}


def _fetch_review(cursor, review_id: str, lock: bool = False) -> Dict:
    cursor.execute(f"SELECT {REVIEW_COLUMNS} FROM reviews r WHERE r.id = %s{' FOR UPDATE' if lock else ''}",
                   (review_id,))
    review = cursor.fetchone()
    if not review:
        raise ApiError("Review not found", 404)
    return dict(review)


class ReviewService:

    @staticmethod
    def create_review(user_id: str, data: ReviewCreate, request_id: Optional[str] = None) -> Dict:
        """
        Create an auto-approved review

        Raises:
            ApiError 404: unknown product or user
            ApiError 400: product inactive, or user already reviewed it
        """
        log = get_request_logger(__name__, request_id)

        with get_cursor(commit=True) as cursor:
            cursor.execute("SELECT id, is_active FROM products WHERE id = %s", (data.product_id,))
            product = cursor.fetchone()
            if not product:
                raise ApiError("Product not found", 404)
            if not product["is_active"]:
                raise ApiError("Cannot review an inactive product", 400)

            cursor.execute("SELECT id, role FROM users WHERE id = %s", (user_id,))
            user = cursor.fetchone()
            if not user:
                raise ApiError("User not found", 404)

            cursor.execute("SELECT id FROM reviews WHERE user_id = %s AND product_id = %s",
                           (user_id, data.product_id))
            if cursor.fetchone():
                raise ApiError("You have already reviewed this product", 400)

            cursor.execute("""
                SELECT EXISTS (
                    SELECT 1 FROM orders o
                    JOIN order_items oi ON oi.order_id = o.id
                    WHERE o.user_id = %s AND oi.product_id = %s AND o.status IN ('SHIPPED', 'DELIVERED')
                ) AS purchased
            """, (user_id, data.product_id))
            purchased = cursor.fetchone()["purchased"]
            is_verified = bool(purchased) or user["role"] == "ADMIN"

            cursor.execute(f"""
                INSERT INTO reviews (product_id, user_id, rating, title, comment, is_verified, status)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                RETURNING {RETURNING_COLUMNS}
            """, (data.product_id, user_id, data.rating, data.title, data.comment,
                  is_verified, ReviewStatus.APPROVED.value))
            review = dict(cursor.fetchone())

            update_product_ratings(cursor, data.product_id)

        invalidate_review_cache(data.product_id, user_id)
        log.info(f"Review {review['id']} created for product {data.product_id}")

        try:
            LoyaltyService.add_loyalty_points(user_id, REVIEW_POINTS, "Points for writing a product review",
                                              str(review["id"]), PointsType.REVIEW, request_id=request_id)
        except Exception as e:
            log.error(f"Failed to award review points to {user_id}: {e}")

        return review

    @staticmethod
    def get_product_reviews(product_id: str, page: int = 1, limit: int = 10,
                            sort: ReviewSort = ReviewSort.NEWEST, rating: Optional[int] = None,
                            verified_only: bool = False) -> Dict:
        cache_key = f"product_reviews:{product_id}:{page}:{limit}:{sort.value}:{rating}:{verified_only}"
        cached = cache.get_cache(cache_key)
        if cached:
            return cached

        conditions = ["r.product_id = %s", "r.status = %s"]
        params: List[Any] = [product_id, ReviewStatus.APPROVED.value]
        if rating:
            conditions.append("r.rating = %s")
            params.append(rating)
        if verified_only:
            conditions.append("r.is_verified = TRUE")
        where = " AND ".join(conditions)

        with get_cursor() as cursor:
            cursor.execute(f"SELECT COUNT(*) AS total FROM reviews r WHERE {where}", params)
            total = cursor.fetchone()["total"]

            cursor.execute(f"""
                SELECT {REVIEW_COLUMNS}, u.first_name, u.last_name
                FROM reviews r
                JOIN users u ON u.id = r.user_id
                WHERE {where}
                ORDER BY {SORT_CLAUSES[sort]}
                LIMIT %s OFFSET %s
            """, params + [limit, page_offset(page, limit)])
            reviews = cursor.fetchall()

        result = {
            "reviews": [dict(r) for r in reviews],
            "pagination": pagination(page, limit, total),
            "stats": ReviewService.get_review_stats(product_id),
        }
        cache.set_cache(cache_key, result, REVIEW_CACHE_TTL)
        return result

    @staticmethod
    def get_review_stats(product_id: str) -> Dict:
        """Average, count and the 5..1 star distribution of approved reviews"""
        cache_key = f"review_stats:{product_id}"
        cached = cache.get_cache(cache_key)
        if cached:
            return cached

        with get_cursor() as cursor:
            cursor.execute("""
                SELECT rating, COUNT(*) AS count
                FROM reviews
                WHERE product_id = %s AND status = %s
                GROUP BY rating
            """, (product_id, ReviewStatus.APPROVED.value))
            rows = cursor.fetchall()

        counts = {row["rating"]: row["count"] for row in rows}
        total = sum(counts.values())
        average = round(sum(r * c for r, c in counts.items()) / total, 2) if total else 0.0

        stats = {
            "average_rating": average,
            "total_reviews": total,
            "distribution": [
                {"rating": r, "count": counts.get(r, 0),
                 "percentage": round(counts.get(r, 0) / total * 100, 1) if total else 0.0}
                for r in range(5, 0, -1)
            ],
        }
        cache.set_cache(cache_key, stats, REVIEW_CACHE_TTL)
        return stats

    @staticmethod
    def get_user_reviews(user_id: str, page: int = 1, limit: int = 10) -> Dict:
        cache_key = f"user_reviews:{user_id}:{page}:{limit}"
        cached = cache.get_cache(cache_key)
        if cached:
            return cached

        with get_cursor() as cursor:
            cursor.execute("SELECT COUNT(*) AS total FROM reviews WHERE user_id = %s", (user_id,))
            total = cursor.fetchone()["total"]
            cursor.execute(f"""
                SELECT {REVIEW_COLUMNS}, p.name AS product_name, p.slug AS product_slug
                FROM reviews r
                JOIN products p ON p.id = r.product_id
                WHERE r.user_id = %s
                ORDER BY r.created_at DESC
                LIMIT %s OFFSET %s
            """, (user_id, limit, page_offset(page, limit)))
            reviews = cursor.fetchall()

        result = {"reviews": [dict(r) for r in reviews], "pagination": pagination(page, limit, total)}
        cache.set_cache(cache_key, result, REVIEW_CACHE_TTL)
        return result

    @staticmethod
    def update_review(review_id: str, user_id: str, data: ReviewUpdate) -> Dict:
        """
        Owner edit. Changing the rating or comment sends the review back to
        PENDING moderation.
        """
        changes = data.model_dump(exclude_unset=True)
        if not changes:
            raise ApiError("No fields to update", 400)

        with get_cursor(commit=True) as cursor:
            review = _fetch_review(cursor, review_id, lock=True)
            if str(review["user_id"]) != str(user_id):
                raise ApiError("You can only update your own reviews", 403)
            if review["status"] == ReviewStatus.REJECTED.value:
                raise ApiError("Rejected reviews cannot be updated", 400)

            sets = [f"{field} = %s" for field in changes]
            params: List[Any] = list(changes.values())

            content_changed = (
                ("rating" in changes and changes["rating"] != review["rating"])
                or ("comment" in changes and changes["comment"] != review["comment"])
            )
            if content_changed:
                sets.append("status = %s")
                params.append(ReviewStatus.PENDING.value)

            sets.append("updated_at = NOW()")
            cursor.execute(f"""
                UPDATE reviews SET {', '.join(sets)}
                WHERE id = %s
                RETURNING {RETURNING_COLUMNS}
            """, params + [review_id])
            updated = dict(cursor.fetchone())

            update_product_ratings(cursor, review["product_id"])

        invalidate_review_cache(review["product_id"], user_id)
        return updated

    @staticmethod
    def delete_review(review_id: str, user_id: str) -> None:
        with get_cursor(commit=True) as cursor:
            review = _fetch_review(cursor, review_id, lock=True)
            if str(review["user_id"]) != str(user_id):
                raise ApiError("You can only delete your own reviews", 403)

            cursor.execute("DELETE FROM review_helpful_votes WHERE review_id = %s", (review_id,))
            cursor.execute("DELETE FROM reviews WHERE id = %s", (review_id,))
            update_product_ratings(cursor, review["product_id"])

        invalidate_review_cache(review["product_id"], user_id)

    @staticmethod
    def mark_review_helpful(review_id: str, user_id: str, is_helpful: bool = True) -> Dict:
        """
        Record a helpful/unhelpful vote

        Repeating the same vote removes it; the opposite vote replaces it.
        helpful_count counts the helpful votes.
        """
        with get_cursor(commit=True) as cursor:
            review = _fetch_review(cursor, review_id, lock=True)
            if str(review["user_id"]) == str(user_id):
                raise ApiError("You cannot vote on your own review", 400)

            cursor.execute("""
                SELECT is_helpful FROM review_helpful_votes WHERE review_id = %s AND user_id = %s
            """, (review_id, user_id))
            existing = cursor.fetchone()

            if existing and existing["is_helpful"] == is_helpful:
                cursor.execute("DELETE FROM review_helpful_votes WHERE review_id = %s AND user_id = %s",
                               (review_id, user_id))
                vote = None
            elif existing:
                cursor.execute("""
                    UPDATE review_helpful_votes SET is_helpful = %s WHERE review_id = %s AND user_id = %s
                """, (is_helpful, review_id, user_id))
                vote = is_helpful
            else:
                cursor.execute("""
                    INSERT INTO review_helpful_votes (review_id, user_id, is_helpful) VALUES (%s, %s, %s)
                """, (review_id, user_id, is_helpful))
                vote = is_helpful

            cursor.execute("""
                UPDATE reviews
                SET helpful_count = (
                    SELECT COUNT(*) FROM review_helpful_votes WHERE review_id = %s AND is_helpful = TRUE
                )
                WHERE id = %s
                RETURNING helpful_count
            """, (review_id, review_id))
            helpful_count = cursor.fetchone()["helpful_count"]

        invalidate_review_cache(review["product_id"])
        return {"review_id": review_id, "helpful_count": helpful_count, "vote": vote}

    @staticmethod
    def moderate_review(review_id: str, action: ModerationAction, reason: Optional[str] = None,
                        request_id: Optional[str] = None) -> Dict:
        log = get_request_logger(__name__, request_id)
        status = ReviewStatus.APPROVED if action == ModerationAction.APPROVE else ReviewStatus.REJECTED

        with get_cursor(commit=True) as cursor:
            review = _fetch_review(cursor, review_id, lock=True)
            cursor.execute(f"""
                UPDATE reviews SET status = %s, updated_at = NOW()
                WHERE id = %s
                RETURNING {RETURNING_COLUMNS}
            """, (status.value, review_id))
            moderated = dict(cursor.fetchone())
            update_product_ratings(cursor, review["product_id"])

        invalidate_review_cache(review["product_id"], review["user_id"])

        if status == ReviewStatus.APPROVED:
            notification = NotificationCreate(
                user_id=str(review["user_id"]), title="Review approved",
                message="Your review has been approved and is now visible.",
                type=NotificationType.SUCCESS)
        else:
            notification = NotificationCreate(
                user_id=str(review["user_id"]), title="Review rejected",
                message=f"Your review was not approved.{f' Reason: {reason}' if reason else ''}",
                type=NotificationType.WARNING)
        NotificationService.create_in_app_notification(notification)

        log.info(f"Review {review_id} {status.value.lower()}")
        return moderated
