"""
A/B Test Service - experiments, variant assignment and result analysis

Lifecycle: DRAFT -> RUNNING <-> PAUSED -> COMPLETED. A test starts only when
its variants' traffic allocations add up to exactly 100.

Significance uses a pooled two-proportion z-test between the two best
variants by conversion rate, mapped onto fixed confidence buckets
(95/90/80/60/50). The buckets are a reporting simplification, not a p-value;
the raw z-score is returned alongside so callers can apply their own
threshold.

Author: TM3
Date: 2026-02-18
"""
import math
import random
import logging
from typing import Dict, List, Optional, Any

from psycopg2.extras import Json

from marketplace.core import cache
from marketplace.core.database import get_cursor
from marketplace.core.exceptions import ApiError
from marketplace.core.logging import get_request_logger
from marketplace.core.pagination import page_offset, pagination
from marketplace.domain.ab_test import (
    ABTestCreate, ABTestUpdate, ABTestStatus, ABTestEvent, PrimaryGoal,
    VariantCreate, VariantStats, SignificanceResult,
)

logger = logging.getLogger(__name__)

TEST_CACHE_TTL = 300
ACTIVE_TESTS_KEY = "active_tests"

# (minimum |z|, confidence %) in descending order
CONFIDENCE_BUCKETS = [
    (1.96, 95),
    (1.645, 90),
    (1.28, 80),
    (0.84, 60),
]
SIGNIFICANT_CONFIDENCE = 95

GOAL_METRICS = {
    PrimaryGoal.CONVERSION: "conversion_rate",
    PrimaryGoal.REVENUE: "revenue",
    PrimaryGoal.ENGAGEMENT: "engagements",
}


# ============================================================================
# Pure helpers
# ============================================================================

def validate_traffic_allocation(variants: List[Any]) -> bool:
    """True when the allocations add up to exactly 100 (to the cent)"""
    total = sum(float(_allocation(v)) for v in variants)
    return round(total, 2) == 100.0


def _allocation(variant: Any) -> float:
    if isinstance(variant, dict):
        return variant["traffic_allocation"]
    return variant.traffic_allocation


def assign_variant(variants: List[Dict], roll: Optional[float] = None) -> Dict:
    """
    Pick a variant by cumulative traffic allocation

    roll is a number in [0, 100); a random one is drawn when omitted.
    Falls back to the first variant if the allocations leave a gap.
    """
    if not variants:
        raise ApiError("Test has no variants", 400)

    if roll is None:
        roll = random.uniform(0, 100)

    cumulative = 0.0
    for variant in variants:
        cumulative += float(variant["traffic_allocation"])
        if roll < cumulative:
            return variant
    return variants[0]


def calculate_confidence_level(z_score: float) -> int:
    magnitude = abs(z_score)
    for threshold, confidence in CONFIDENCE_BUCKETS:
        if magnitude >= threshold:
            return confidence
    return 50


def calculate_statistical_significance(variants: List[VariantStats]) -> SignificanceResult:
    """
    Compare the best variant against the runner-up by conversion rate

    Returns confidence 0 and no winner when fewer than two variants exist.
    """
    if len(variants) < 2:
        return SignificanceResult(is_significant=False, confidence_level=0, winner=None)

    ranked = sorted(variants, key=lambda v: v.conversion_rate, reverse=True)
    variation, control = ranked[0], ranked[1]

    n1, n2 = control.impressions, variation.impressions
    if n1 == 0 or n2 == 0:
        return SignificanceResult(is_significant=False, confidence_level=50, winner=None, z_score=0.0)

    p1 = control.conversions / n1
    p2 = variation.conversions / n2
    pooled = (control.conversions + variation.conversions) / (n1 + n2)
    se = math.sqrt(pooled * (1 - pooled) * (1 / n1 + 1 / n2))
    z_score = (p2 - p1) / se if se > 0 else 0.0

    confidence = calculate_confidence_level(z_score)
    significant = confidence >= SIGNIFICANT_CONFIDENCE

    return SignificanceResult(
        is_significant=significant,
        confidence_level=confidence,
        winner=variation.name if significant else None,
        z_score=round(z_score, 4),
        improvement=round((p2 - p1) / p1 * 100, 2) if p1 > 0 else None,
    )


def determine_winner_by_metric(variants: List[VariantStats], goal: PrimaryGoal) -> Optional[str]:
    """Variant with the highest value of the goal's metric, None if all are zero"""
    if not variants:
        return None
    metric = GOAL_METRICS[goal]
    best = max(variants, key=lambda v: getattr(v, metric))
    return best.name if getattr(best, metric) > 0 else None


def build_variant_stats(row: Dict) -> VariantStats:
    impressions = int(row["impressions"])
    conversions = int(row["conversions"])
    users = int(row["users"])
    revenue = float(row["revenue"])
    return VariantStats(
        name=row["name"],
        users=users,
        impressions=impressions,
        conversions=conversions,
        revenue=round(revenue, 2),
        engagements=int(row["engagements"]),
        conversion_rate=round(conversions / impressions * 100, 2) if impressions else 0.0,
        average_revenue=round(revenue / users, 2) if users else 0.0,
    )


def invalidate_test_cache(test_id: str) -> None:
    cache.delete_cache(ACTIVE_TESTS_KEY, f"test:{test_id}")
    cache.delete_cache_pattern(f"user_assignment:*:{test_id}")


def _insert_variants(cursor, test_id: str, variants: List[VariantCreate]) -> None:
    names = [v.name for v in variants]
    if len(names) != len(set(names)):
        raise ApiError("Variant names must be unique within a test", 400)

    for variant in variants:
        cursor.execute("""
            INSERT INTO ab_test_variants (test_id, name, description, traffic_allocation, config)
            VALUES (%s, %s, %s, %s, %s)
        """, (test_id, variant.name, variant.description, variant.traffic_allocation,
              Json(variant.config) if variant.config is not None else None))


def _fetch_test(cursor, test_id: str, lock: bool = False) -> Dict:
    cursor.execute(f"SELECT * FROM ab_tests WHERE id = %s{' FOR UPDATE' if lock else ''}", (test_id,))
    test = cursor.fetchone()
    if not test:
        raise ApiError("A/B test not found", 404)
    return dict(test)


def _fetch_variants(cursor, test_id: str) -> List[Dict]:
    cursor.execute("""
        SELECT id, name, description, traffic_allocation, config,
               impressions, conversions, revenue, engagements
        FROM ab_test_variants
        WHERE test_id = %s
        ORDER BY name
    """, (test_id,))
    return [dict(v) for v in cursor.fetchall()]


# ============================================================================
# A/B Test Service
# ============================================================================

class ABTestService:

    @staticmethod
    def create_ab_test(data: ABTestCreate, request_id: Optional[str] = None) -> Dict:
        log = get_request_logger(__name__, request_id)

        with get_cursor(commit=True) as cursor:
            cursor.execute("""
                INSERT INTO ab_tests (name, description, status, primary_goal, start_date, end_date)
                VALUES (%s, %s, %s, %s, %s, %s)
                RETURNING id
            """, (data.name, data.description, ABTestStatus.DRAFT.value, data.primary_goal.value,
                  data.start_date, data.end_date))
            test_id = cursor.fetchone()["id"]
            _insert_variants(cursor, test_id, data.variants)

            test = _fetch_test(cursor, test_id)
            test["variants"] = _fetch_variants(cursor, test_id)

        log.info(f"Created A/B test {test_id} with {len(data.variants)} variants")
        return test

    @staticmethod
    def get_ab_test_by_id(test_id: str) -> Dict:
        cache_key = f"test:{test_id}"
        cached = cache.get_cache(cache_key)
        if cached:
            return cached

        with get_cursor() as cursor:
            test = _fetch_test(cursor, test_id)
            test["variants"] = _fetch_variants(cursor, test_id)

        cache.set_cache(cache_key, test, TEST_CACHE_TTL)
        return test

    @staticmethod
    def get_ab_tests(page: int = 1, limit: int = 20, status: Optional[ABTestStatus] = None) -> Dict:
        where = "1=1"
        params: List[Any] = []
        if status:
            where = "status = %s"
            params.append(status.value)

        with get_cursor() as cursor:
            cursor.execute(f"SELECT COUNT(*) AS total FROM ab_tests WHERE {where}", params)
            total = cursor.fetchone()["total"]
            cursor.execute(f"""
                SELECT t.*, (SELECT COUNT(*) FROM ab_test_variants v WHERE v.test_id = t.id) AS variant_count
                FROM ab_tests t
                WHERE {where}
                ORDER BY created_at DESC
                LIMIT %s OFFSET %s
            """, params + [limit, page_offset(page, limit)])
            tests = cursor.fetchall()

        return {"tests": [dict(t) for t in tests], "pagination": pagination(page, limit, total)}

    @staticmethod
    def get_active_ab_tests() -> List[Dict]:
        """RUNNING tests whose end date is unset or in the future"""
        cached = cache.get_cache(ACTIVE_TESTS_KEY)
        if cached is not None:
            return cached

        with get_cursor() as cursor:
            cursor.execute("""
                SELECT * FROM ab_tests
                WHERE status = %s AND (end_date IS NULL OR end_date > NOW())
                ORDER BY created_at DESC
            """, (ABTestStatus.RUNNING.value,))
            tests = [dict(t) for t in cursor.fetchall()]
            for test in tests:
                test["variants"] = _fetch_variants(cursor, test["id"])

        cache.set_cache(ACTIVE_TESTS_KEY, tests, TEST_CACHE_TTL)
        return tests

    @staticmethod
    def update_ab_test(test_id: str, data: ABTestUpdate, request_id: Optional[str] = None) -> Dict:
        log = get_request_logger(__name__, request_id)
        changes = data.model_dump(exclude_unset=True, exclude={"variants"})

        with get_cursor(commit=True) as cursor:
            test = _fetch_test(cursor, test_id, lock=True)
            if test["status"] == ABTestStatus.COMPLETED.value:
                raise ApiError("Cannot update a completed test", 400)
            if data.variants is not None and test["status"] == ABTestStatus.RUNNING.value:
                raise ApiError("Cannot change variants of a running test", 400)

            if changes:
                sets = []
                params: List[Any] = []
                for field, value in changes.items():
                    sets.append(f"{field} = %s")
                    params.append(value.value if isinstance(value, PrimaryGoal) else value)
                sets.append("updated_at = NOW()")
                cursor.execute(f"UPDATE ab_tests SET {', '.join(sets)} WHERE id = %s",
                               params + [test_id])

            if data.variants is not None:
                cursor.execute("DELETE FROM ab_test_assignments WHERE test_id = %s", (test_id,))
                cursor.execute("DELETE FROM ab_test_variants WHERE test_id = %s", (test_id,))
                _insert_variants(cursor, test_id, data.variants)

            updated = _fetch_test(cursor, test_id)
            updated["variants"] = _fetch_variants(cursor, test_id)

        invalidate_test_cache(test_id)
        log.info(f"Updated A/B test {test_id}")
        return updated

    @staticmethod
    def delete_ab_test(test_id: str) -> None:
        with get_cursor(commit=True) as cursor:
            test = _fetch_test(cursor, test_id, lock=True)
            if test["status"] == ABTestStatus.RUNNING.value:
                raise ApiError("Cannot delete a running test. Pause or complete it first", 400)

            cursor.execute("DELETE FROM ab_test_assignments WHERE test_id = %s", (test_id,))
            cursor.execute("DELETE FROM ab_test_variants WHERE test_id = %s", (test_id,))
            cursor.execute("DELETE FROM ab_tests WHERE id = %s", (test_id,))

        invalidate_test_cache(test_id)
        logger.info(f"Deleted A/B test {test_id}")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @staticmethod
    def start_ab_test(test_id: str, request_id: Optional[str] = None) -> Dict:
        """
        Move a DRAFT or PAUSED test to RUNNING

        Raises:
            ApiError 404: unknown test
            ApiError 400: already running, completed, no variants, or
                allocations not summing to 100
        """
        log = get_request_logger(__name__, request_id)

        with get_cursor(commit=True) as cursor:
            test = _fetch_test(cursor, test_id, lock=True)
            if test["status"] == ABTestStatus.RUNNING.value:
                raise ApiError("Test is already running", 400)
            if test["status"] == ABTestStatus.COMPLETED.value:
                raise ApiError("Cannot start a completed test", 400)

            variants = _fetch_variants(cursor, test_id)
            if not variants:
                raise ApiError("Test must have at least one variant", 400)
            if not validate_traffic_allocation(variants):
                raise ApiError("Variant traffic allocation must add up to 100%", 400)

            cursor.execute("""
                UPDATE ab_tests
                SET status = %s, start_date = COALESCE(start_date, NOW()), updated_at = NOW()
                WHERE id = %s
                RETURNING *
            """, (ABTestStatus.RUNNING.value, test_id))
            started = dict(cursor.fetchone())

        started["variants"] = variants
        invalidate_test_cache(test_id)
        log.info(f"Started A/B test {test_id}")
        return started

    @staticmethod
    def pause_ab_test(test_id: str) -> Dict:
        with get_cursor(commit=True) as cursor:
            test = _fetch_test(cursor, test_id, lock=True)
            if test["status"] != ABTestStatus.RUNNING.value:
                raise ApiError("Only running tests can be paused", 400)

            cursor.execute("""
                UPDATE ab_tests SET status = %s, updated_at = NOW()
                WHERE id = %s
                RETURNING *
            """, (ABTestStatus.PAUSED.value, test_id))
            paused = dict(cursor.fetchone())

        invalidate_test_cache(test_id)
        return paused

    @staticmethod
    def complete_ab_test(test_id: str, winner: Optional[str] = None,
                         request_id: Optional[str] = None) -> Dict:
        """
        Close a test and record its winner

        An explicit winner must name one of the test's variants. Without one,
        the winner is the best variant by the test's primary goal (or none
        when every variant scored zero).
        """
        log = get_request_logger(__name__, request_id)

        with get_cursor(commit=True) as cursor:
            test = _fetch_test(cursor, test_id, lock=True)
            if test["status"] == ABTestStatus.COMPLETED.value:
                raise ApiError("Test is already completed", 400)

            if winner is not None:
                variants = _fetch_variants(cursor, test_id)
                if winner not in {v["name"] for v in variants}:
                    raise ApiError("Winner must be one of the test variants", 400)
            else:
                stats = ABTestService._variant_stats(cursor, test_id)
                winner = determine_winner_by_metric(stats, PrimaryGoal(test["primary_goal"]))

            cursor.execute("""
                UPDATE ab_tests
                SET status = %s, winner = %s, end_date = NOW(), updated_at = NOW()
                WHERE id = %s
                RETURNING *
            """, (ABTestStatus.COMPLETED.value, winner, test_id))
            completed = dict(cursor.fetchone())

        invalidate_test_cache(test_id)
        log.info(f"Completed A/B test {test_id}, winner: {winner}")
        return completed

    # ------------------------------------------------------------------
    # Assignment and tracking
    # ------------------------------------------------------------------

    @staticmethod
    def get_user_test_assignment(test_id: str, user_id: str) -> Optional[Dict]:
        """
        Sticky variant for a user in a running test

        Returns None when the test is not running.
        """
        cache_key = f"user_assignment:{user_id}:{test_id}"
        cached = cache.get_cache(cache_key)
        if cached:
            return cached

        with get_cursor(commit=True) as cursor:
            test = _fetch_test(cursor, test_id)
            if test["status"] != ABTestStatus.RUNNING.value:
                return None

            cursor.execute("""
                SELECT a.variant_id, v.name, v.config
                FROM ab_test_assignments a
                JOIN ab_test_variants v ON v.id = a.variant_id
                WHERE a.test_id = %s AND a.user_id = %s
            """, (test_id, user_id))
            existing = cursor.fetchone()

            if existing:
                variant_id, name, config = existing["variant_id"], existing["name"], existing["config"]
            else:
                variant = assign_variant(_fetch_variants(cursor, test_id))
                cursor.execute("""
                    INSERT INTO ab_test_assignments (test_id, variant_id, user_id)
                    VALUES (%s, %s, %s)
                    ON CONFLICT (test_id, user_id) DO NOTHING
                    RETURNING variant_id
                """, (test_id, variant["id"], user_id))
                if cursor.fetchone() is None:
                    # Lost a race with a concurrent request: use the stored assignment
                    cursor.execute("""
                        SELECT a.variant_id, v.name, v.config
                        FROM ab_test_assignments a
                        JOIN ab_test_variants v ON v.id = a.variant_id
                        WHERE a.test_id = %s AND a.user_id = %s
                    """, (test_id, user_id))
                    variant = cursor.fetchone()
                    variant_id, name, config = variant["variant_id"], variant["name"], variant["config"]
                else:
                    variant_id, name, config = variant["id"], variant["name"], variant["config"]

        assignment = {
            "test_id": test_id,
            "test_name": test["name"],
            "variant_id": variant_id,
            "variant_name": name,
            "config": config,
        }
        cache.set_cache(cache_key, assignment, TEST_CACHE_TTL)
        return assignment

    @staticmethod
    def get_user_test_assignments(user_id: str) -> List[Dict]:
        assignments = []
        for test in ABTestService.get_active_ab_tests():
            assignment = ABTestService.get_user_test_assignment(test["id"], user_id)
            if assignment:
                assignments.append(assignment)
        return assignments

    @staticmethod
    def track_test_event(test_id: str, user_id: str, event: ABTestEvent,
                         amount: Optional[float] = None) -> Optional[Dict]:
        """
        Increment the counter of the user's variant

        Returns the updated counters, or None when the test is not running.
        """
        if event == ABTestEvent.REVENUE and (amount is None or amount <= 0):
            raise ApiError("Revenue events require a positive amount", 400)

        assignment = ABTestService.get_user_test_assignment(test_id, user_id)
        if not assignment:
            return None

        updates = {
            ABTestEvent.IMPRESSION: ("impressions = impressions + 1", []),
            ABTestEvent.CONVERSION: ("conversions = conversions + 1, revenue = revenue + %s", [amount or 0]),
            ABTestEvent.REVENUE: ("revenue = revenue + %s", [amount]),
            ABTestEvent.ENGAGEMENT: ("engagements = engagements + 1", []),
        }
        set_clause, params = updates[event]

        with get_cursor(commit=True) as cursor:
            cursor.execute(f"""
                UPDATE ab_test_variants SET {set_clause}
                WHERE id = %s
                RETURNING id, name, impressions, conversions, revenue, engagements
            """, params + [assignment["variant_id"]])
            variant = cursor.fetchone()

        cache.delete_cache(f"test:{test_id}")
        return dict(variant) if variant else None

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    @staticmethod
    def _variant_stats(cursor, test_id: str) -> List[VariantStats]:
        cursor.execute("""
            SELECT v.name, v.impressions, v.conversions, v.revenue, v.engagements,
                   COUNT(a.id) AS users
            FROM ab_test_variants v
            LEFT JOIN ab_test_assignments a ON a.variant_id = v.id
            WHERE v.test_id = %s
            GROUP BY v.id, v.name, v.impressions, v.conversions, v.revenue, v.engagements
            ORDER BY v.name
        """, (test_id,))
        return [build_variant_stats(row) for row in cursor.fetchall()]

    @staticmethod
    def get_test_results(test_id: str) -> Dict:
        with get_cursor() as cursor:
            test = _fetch_test(cursor, test_id)
            stats = ABTestService._variant_stats(cursor, test_id)

        goal = PrimaryGoal(test["primary_goal"])
        significance = calculate_statistical_significance(stats)

        return {
            "test": test,
            "variants": [s.model_dump() for s in stats],
            "totals": {
                "users": sum(s.users for s in stats),
                "impressions": sum(s.impressions for s in stats),
                "conversions": sum(s.conversions for s in stats),
                "revenue": round(sum(s.revenue for s in stats), 2),
            },
            "significance": significance.model_dump(),
            "leader_by_goal": determine_winner_by_metric(stats, goal),
            # A recorded winner outranks the significance result
            "winner": test.get("winner") or significance.winner,
        }
